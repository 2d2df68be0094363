import logging
import math
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status

from complaint_portal.db import get_db, run_db, validate_uuid
from complaint_portal.errors import AccessDenied, PortalError
from complaint_portal.lifecycle import ComplaintLifecycle, get_lifecycle
from complaint_portal.models import (
    Category, Priority, ComplaintStatus, UserRole, StatusUpdate, AssignRequest, FeedbackRequest,
    serialize_doc,
)
from complaint_portal.security import get_current_user, require_role, can_view_complaint
from complaint_portal.storage import save_uploads, delete_stored, MEDIA_TYPES

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/complaints", tags=["complaints"])

MAX_LOCATION_RESULTS = 1000


def scope_for(user) -> dict:
    """Base query limiting which complaints a caller may list."""
    if user["role"] == UserRole.USER.value:
        return {"user_id": str(user["_id"])}
    if user["role"] == UserRole.DEPARTMENT_STAFF.value:
        return {"assigned_staff": str(user["_id"])}
    return {}


async def _discard(stored):
    for meta in stored:
        await delete_stored(meta["path"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_complaint(title: str = Form(""), description: str = Form(""),
                           category: Optional[Category] = Form(None),
                           priority: Optional[Priority] = Form(None),
                           address: Optional[str] = Form(None),
                           lat: Optional[float] = Form(None, ge=-90, le=90),
                           lng: Optional[float] = Form(None, ge=-180, le=180),
                           attachments: Optional[List[UploadFile]] = File(None),
                           user=Depends(get_current_user),
                           lifecycle: ComplaintLifecycle = Depends(get_lifecycle)):
    stored = await save_uploads(attachments, "complaints")
    try:
        complaint = await lifecycle.create(user, title, description, category, priority,
                                           address, lat, lng, stored)
    except PortalError:
        await _discard(stored)
        raise
    return {"message": "Complaint filed successfully", "complaint": serialize_doc(complaint)}


@router.get("")
async def list_complaints(status_filter: Optional[ComplaintStatus] = Query(None, alias="status"),
                          category: Optional[Category] = None,
                          priority: Optional[Priority] = None,
                          department: Optional[str] = None,
                          page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                          user=Depends(get_current_user), db=Depends(get_db)):
    query = scope_for(user)
    if status_filter:
        query["status"] = status_filter.value
    if category:
        query["category"] = category.value
    if priority:
        query["priority"] = priority.value
    if department:
        query["assigned_department"] = validate_uuid(department, "department")

    def fetch():
        total = db.complaints.count_documents(query)
        docs = list(db.complaints.find(query).sort("created_at", -1)
                    .skip((page - 1) * limit).limit(limit))
        return total, docs

    total, docs = await run_db(fetch)
    return {
        "complaints": [serialize_doc(d) for d in docs],
        "pagination": {"page": page, "limit": limit, "total": total,
                       "pages": math.ceil(total / limit) if total else 0},
    }


@router.get("/location")
async def complaints_by_location(lat: Optional[float] = Query(None, ge=-90, le=90),
                                 lng: Optional[float] = Query(None, ge=-180, le=180),
                                 radius: int = Query(50000, ge=1),
                                 user=Depends(get_current_user), db=Depends(get_db)):
    query = scope_for(user) if user["role"] == UserRole.USER.value else {}
    if lat is not None and lng is not None:
        query["location"] = {"$near": {
            "$geometry": {"type": "Point", "coordinates": [lng, lat]},
            "$maxDistance": radius}}
    else:
        query["location.coordinates.0"] = {"$exists": True, "$ne": 0}
        query["location.coordinates.1"] = {"$exists": True, "$ne": 0}
    projection = {"title": 1, "category": 1, "priority": 1, "status": 1, "location": 1, "created_at": 1}
    docs = await run_db(lambda: list(db.complaints.find(query, projection).limit(MAX_LOCATION_RESULTS)))
    return {"complaints": [serialize_doc(d) for d in docs], "count": len(docs)}


@router.get("/{complaint_id}")
async def get_complaint(complaint_id: str, user=Depends(get_current_user),
                        lifecycle: ComplaintLifecycle = Depends(get_lifecycle)):
    complaint = await lifecycle.load(complaint_id)
    if not can_view_complaint(user, complaint):
        raise AccessDenied("Access denied")
    return serialize_doc(complaint)


@router.put("/{complaint_id}/status")
async def update_status(complaint_id: str, body: StatusUpdate, user=Depends(get_current_user),
                        lifecycle: ComplaintLifecycle = Depends(get_lifecycle)):
    complaint = await lifecycle.update_status(user, complaint_id, body.status, body.comment)
    return {"message": "Status updated successfully", "complaint": serialize_doc(complaint)}


@router.put("/{complaint_id}/assign")
async def assign_complaint(complaint_id: str, body: AssignRequest,
                           user=Depends(require_role(UserRole.ADMIN.value)),
                           lifecycle: ComplaintLifecycle = Depends(get_lifecycle)):
    complaint = await lifecycle.assign(user, complaint_id, body.staff_id, body.department_id)
    return {"message": "Complaint assigned successfully", "complaint": serialize_doc(complaint)}


@router.put("/{complaint_id}/resolve")
async def resolve_complaint(complaint_id: str, resolution_details: str = Form(""),
                            images: Optional[List[UploadFile]] = File(None),
                            user=Depends(require_role(UserRole.ADMIN.value, UserRole.DEPARTMENT_STAFF.value)),
                            lifecycle: ComplaintLifecycle = Depends(get_lifecycle)):
    stored = await save_uploads(images, "resolutions", MEDIA_TYPES)
    try:
        complaint = await lifecycle.resolve(user, complaint_id, resolution_details, stored)
    except PortalError:
        await _discard(stored)
        raise
    return {"message": "Complaint resolved successfully", "complaint": serialize_doc(complaint)}


@router.post("/{complaint_id}/feedback")
async def submit_feedback(complaint_id: str, body: FeedbackRequest,
                          user=Depends(require_role(UserRole.USER.value)),
                          lifecycle: ComplaintLifecycle = Depends(get_lifecycle)):
    complaint = await lifecycle.submit_feedback(user, complaint_id, body.rating, body.comment)
    return {"message": "Feedback submitted successfully", "complaint": serialize_doc(complaint)}
