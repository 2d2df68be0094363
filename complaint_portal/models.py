# Enums and request/response models

from datetime import datetime
from enum import Enum
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Category(str, Enum):
    INFRASTRUCTURE = "infrastructure"
    SANITATION = "sanitation"
    WATER_SUPPLY = "water_supply"
    ELECTRICITY = "electricity"
    TRAFFIC = "traffic"
    WASTE_MANAGEMENT = "waste_management"
    PARKS = "parks"
    SECURITY = "security"
    OTHER = "other"

class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

class ComplaintStatus(str, Enum):
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"

TERMINAL_STATUSES = (ComplaintStatus.RESOLVED.value, ComplaintStatus.CLOSED.value)

class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"
    DEPARTMENT_STAFF = "department_staff"

STAFF_ROLES = (UserRole.ADMIN.value, UserRole.DEPARTMENT_STAFF.value)

class NotificationType(str, Enum):
    COMPLAINT_FILED = "complaint_filed"
    COMPLAINT_ASSIGNED = "complaint_assigned"
    STATUS_UPDATED = "status_updated"
    ESCALATION = "escalation"
    RESOLVED = "resolved"
    NEW_MESSAGE = "new_message"
    SLA_WARNING = "sla_warning"
    FEEDBACK_REQUEST = "feedback_request"

class AttachmentKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., max_length=320)
    password: str = Field(..., min_length=6, max_length=72)
    role: UserRole = UserRole.USER
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=500)
    department: Optional[str] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v

class UserLogin(BaseModel):
    email: str
    password: str

class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=500)
    role: Optional[UserRole] = None
    department: Optional[str] = None
    is_active: Optional[bool] = None

class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    role: UserRole
    phone: Optional[str] = None
    address: Optional[str] = None
    avatar: Optional[str] = None
    department: Optional[str] = None
    is_active: bool = True
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


# ---------------------------------------------------------------------------
# Complaints
# ---------------------------------------------------------------------------
class StatusUpdate(BaseModel):
    status: ComplaintStatus
    comment: Optional[str] = Field(None, max_length=2000)

class AssignRequest(BaseModel):
    staff_id: Optional[str] = None
    department_id: Optional[str] = None

class FeedbackRequest(BaseModel):
    rating: int
    comment: Optional[str] = Field(None, max_length=2000)


# ---------------------------------------------------------------------------
# Departments
# ---------------------------------------------------------------------------
class DepartmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    category: Category
    head: Optional[str] = None
    contact_email: Optional[str] = Field(None, max_length=320)
    contact_phone: Optional[str] = Field(None, max_length=20)
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Department name is required")
        return v

class DepartmentUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    category: Optional[Category] = None
    head: Optional[str] = None
    contact_email: Optional[str] = Field(None, max_length=320)
    contact_phone: Optional[str] = Field(None, max_length=20)
    is_active: Optional[bool] = None

class StaffMembership(BaseModel):
    user_id: str


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------
class DepartmentWorkload(BaseModel):
    department_id: Optional[str] = None
    department_name: str
    total: int
    resolved: int
    pending: int

class DashboardResponse(BaseModel):
    total_complaints: int
    recent_complaints: int
    unresolved_complaints: int
    by_category: Dict[str, int]
    by_priority: Dict[str, int]
    by_status: Dict[str, int]
    department_workload: List[DepartmentWorkload]

class TrendPoint(BaseModel):
    date: str
    count: int

class TrendResponse(BaseModel):
    days: int
    trend: List[TrendPoint]


def user_to_response(user: Dict[str, Any]) -> UserResponse:
    return UserResponse(
        id=str(user["_id"]), name=user["name"], email=user["email"], role=user["role"],
        phone=user.get("phone"), address=user.get("address"), avatar=user.get("avatar"),
        department=user.get("department"), is_active=user.get("is_active", True),
        last_login=user.get("last_login"), created_at=user.get("created_at"))


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Expose a stored document with ``id`` in place of ``_id``."""
    if doc is None:
        return None
    out = dict(doc)
    out["id"] = str(out.pop("_id"))
    out.pop("hashed_password", None)
    return out
