import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from complaint_portal.accounts import create_account
from complaint_portal.db import get_db, run_db, now_utc, validate_uuid
from complaint_portal.departments import assign_staff_to_department, remove_staff_from_department
from complaint_portal.errors import AccessDenied, NotFound, ValidationFailed
from complaint_portal.models import (
    ComplaintStatus, UserRole, UserCreate, UserUpdate, UserResponse, user_to_response,
)
from complaint_portal.security import get_current_user, require_role, enforce_admin_policy

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

PENDING_STATUSES = [ComplaintStatus.SUBMITTED.value, ComplaintStatus.REVIEWED.value,
                    ComplaintStatus.ASSIGNED.value, ComplaintStatus.IN_PROGRESS.value]


async def _load_user(db, user_id: str):
    target = await run_db(db.users.find_one, {"_id": validate_uuid(user_id, "user_id")})
    if not target:
        raise NotFound("User not found")
    return target


async def _stats_for(db, user_id: str):
    def fetch():
        rows = list(db.complaints.aggregate([
            {"$match": {"user_id": user_id}},
            {"$group": {"_id": "$status", "count": {"$sum": 1}}}]))
        return {r["_id"]: r["count"] for r in rows}

    by_status = await run_db(fetch)
    return {"stats": {
        "total": sum(by_status.values()),
        "resolved": by_status.get(ComplaintStatus.RESOLVED.value, 0),
        "pending": sum(by_status.get(s, 0) for s in PENDING_STATUSES),
        "by_status": by_status,
    }}


@router.get("/stats")
async def my_stats(user=Depends(get_current_user), db=Depends(get_db)):
    return await _stats_for(db, str(user["_id"]))


@router.get("/stats/{user_id}")
async def user_stats(user_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    user_id = validate_uuid(user_id, "user_id")
    if user["role"] != UserRole.ADMIN.value and str(user["_id"]) != user_id:
        raise AccessDenied("Access denied")
    return await _stats_for(db, user_id)


@router.get("")
async def list_users(role: Optional[UserRole] = None, department: Optional[str] = None,
                     is_active: Optional[bool] = None,
                     page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                     user=Depends(require_role(UserRole.ADMIN.value)), db=Depends(get_db)):
    query = {}
    if role:
        query["role"] = role.value
    if department:
        query["department"] = validate_uuid(department, "department")
    if is_active is not None:
        query["is_active"] = is_active

    def fetch():
        total = db.users.count_documents(query)
        docs = list(db.users.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
        return total, docs

    total, docs = await run_db(fetch)
    return {"users": [user_to_response(u) for u in docs],
            "pagination": {"page": page, "limit": limit, "total": total,
                           "pages": math.ceil(total / limit) if total else 0}}


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(body: UserCreate, user=Depends(require_role(UserRole.ADMIN.value)),
                      db=Depends(get_db)):
    created = await create_account(db, body, allow_department=True)
    logger.info("Admin %s created user %s (%s)", user["email"], created["email"], created["role"])
    return user_to_response(created)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, user=Depends(require_role(UserRole.ADMIN.value)), db=Depends(get_db)):
    return user_to_response(await _load_user(db, user_id))


@router.put("/{user_id}")
async def update_user(user_id: str, body: UserUpdate,
                      user=Depends(require_role(UserRole.ADMIN.value)), db=Depends(get_db)):
    target = await _load_user(db, user_id)
    changes = body.model_dump(exclude_unset=True)
    enforce_admin_policy(target, changes)

    set_fields = {}
    for field in ("name", "phone", "address", "is_active"):
        if changes.get(field) is not None:
            set_fields[field] = changes[field]
    new_role = changes.get("role")
    if new_role is not None:
        set_fields["role"] = new_role.value
    role_after = set_fields.get("role", target["role"])
    if changes.get("department") and role_after != UserRole.DEPARTMENT_STAFF.value:
        raise ValidationFailed("Only department staff can belong to a department")
    if set_fields:
        set_fields["updated_at"] = now_utc()
        await run_db(db.users.update_one, {"_id": target["_id"]}, {"$set": set_fields})

    # Roster changes go through the department service so both sides stay in step
    if role_after != UserRole.DEPARTMENT_STAFF.value and target.get("department"):
        await remove_staff_from_department(db, target["_id"])
    elif "department" in changes:
        if changes["department"]:
            await assign_staff_to_department(db, target["_id"], validate_uuid(changes["department"], "department"))
        elif target.get("department"):
            await remove_staff_from_department(db, target["_id"])
    elif not set_fields:
        raise ValidationFailed("No fields to update")

    updated = await run_db(db.users.find_one, {"_id": target["_id"]})
    logger.info("Admin %s updated user %s", user["email"], target["email"])
    return {"message": "User updated successfully", "user": user_to_response(updated)}


@router.delete("/{user_id}")
async def delete_user(user_id: str, user=Depends(require_role(UserRole.ADMIN.value)), db=Depends(get_db)):
    target = await _load_user(db, user_id)
    enforce_admin_policy(target, {"delete": True})
    # Accounts are deactivated, never removed
    await run_db(db.users.update_one, {"_id": target["_id"]},
                 {"$set": {"is_active": False, "updated_at": now_utc()}})
    logger.info("Admin %s deactivated user %s", user["email"], target["email"])
    return {"message": "User deactivated successfully"}
