# Account creation shared by registration, the admin user panel and seeding

import logging
from typing import Dict, Any

from pymongo.errors import DuplicateKeyError

from complaint_portal.db import run_db, new_id, now_utc
from complaint_portal.departments import assign_staff_to_department, get_department_or_404
from complaint_portal.errors import Conflict
from complaint_portal.models import UserCreate, UserRole
from complaint_portal.security import hash_password, enforce_admin_policy

logger = logging.getLogger(__name__)


def build_user_doc(name: str, email: str, password: str, role: str, **fields) -> Dict[str, Any]:
    now = now_utc()
    return {
        "_id": new_id(), "name": name, "email": email.strip().lower(),
        "hashed_password": hash_password(password), "role": role,
        "phone": fields.get("phone"), "address": fields.get("address"),
        "avatar": None, "department": None, "is_active": True, "last_login": None,
        "created_at": now, "updated_at": now,
    }


async def create_account(db, data: UserCreate, allow_department: bool = False) -> Dict[str, Any]:
    """Create a citizen or staff account.

    Only admin-created staff may join a department at creation; self-service
    registration ignores ``department``.
    """
    enforce_admin_policy(None, {"role": data.role})
    join_department = allow_department and data.department and data.role == UserRole.DEPARTMENT_STAFF
    if join_department:
        await get_department_or_404(db, data.department)
    existing = await run_db(db.users.find_one, {"email": data.email})
    if existing:
        raise Conflict("Email already registered")
    doc = build_user_doc(data.name, data.email, data.password, data.role.value,
                         phone=data.phone, address=data.address)
    try:
        await run_db(db.users.insert_one, doc)
    except DuplicateKeyError:
        raise Conflict("Email already registered")
    if join_department:
        doc = await assign_staff_to_department(db, doc["_id"], data.department)
    logger.info("Account created: %s (%s)", doc["email"], doc["role"])
    return doc
