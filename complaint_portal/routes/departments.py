import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from pymongo.errors import DuplicateKeyError

from complaint_portal.db import get_db, run_db, new_id, now_utc, validate_uuid
from complaint_portal.departments import (
    get_department_or_404, assign_staff_to_department, remove_staff_from_department, department_workload,
)
from complaint_portal.errors import Conflict, ValidationFailed
from complaint_portal.models import (
    UserRole, DepartmentCreate, DepartmentUpdate, StaffMembership, serialize_doc, user_to_response,
)
from complaint_portal.security import get_current_user, require_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/departments", tags=["departments"])


@router.get("")
async def list_departments(is_active: Optional[bool] = None,
                           user=Depends(get_current_user), db=Depends(get_db)):
    query = {} if is_active is None else {"is_active": is_active}
    docs = await run_db(lambda: list(db.departments.find(query).sort("name", 1)))
    return {"departments": [serialize_doc(d) for d in docs]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_department(body: DepartmentCreate,
                            user=Depends(require_role(UserRole.ADMIN.value)), db=Depends(get_db)):
    existing = await run_db(db.departments.find_one, {"name": body.name})
    if existing:
        raise Conflict("Department with this name already exists")
    if body.head:
        validate_uuid(body.head, "head")
    now = now_utc()
    doc = {"_id": new_id(), **body.model_dump(mode="json"), "staff": [],
           "created_at": now, "updated_at": now}
    try:
        await run_db(db.departments.insert_one, doc)
    except DuplicateKeyError:
        raise Conflict("Department with this name already exists")
    logger.info("Admin %s created department %s (%s)", user["email"], doc["name"], doc["category"])
    return {"message": "Department created successfully", "department": serialize_doc(doc)}


@router.get("/{department_id}")
async def get_department(department_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    dept = await get_department_or_404(db, validate_uuid(department_id, "department_id"))
    staff = await run_db(lambda: list(db.users.find({"_id": {"$in": dept.get("staff", [])}})))
    out = serialize_doc(dept)
    out["staff_members"] = [user_to_response(s).model_dump(mode="json") for s in staff]
    return out


@router.put("/{department_id}")
async def update_department(department_id: str, body: DepartmentUpdate,
                            user=Depends(require_role(UserRole.ADMIN.value)), db=Depends(get_db)):
    department_id = validate_uuid(department_id, "department_id")
    dept = await get_department_or_404(db, department_id)
    set_fields = body.model_dump(mode="json", exclude_none=True)
    if "name" in set_fields:
        set_fields["name"] = set_fields["name"].strip()
        if not set_fields["name"]:
            raise ValidationFailed("Department name cannot be empty")
        clash = await run_db(db.departments.find_one,
                             {"name": set_fields["name"], "_id": {"$ne": department_id}})
        if clash:
            raise Conflict("Department with this name already exists")
    if not set_fields:
        raise ValidationFailed("No fields to update")
    set_fields["updated_at"] = now_utc()
    await run_db(db.departments.update_one, {"_id": department_id}, {"$set": set_fields})
    logger.info("Admin %s updated department %s", user["email"], dept["name"])
    updated = await run_db(db.departments.find_one, {"_id": department_id})
    return {"message": "Department updated successfully", "department": serialize_doc(updated)}


@router.get("/{department_id}/workload")
async def get_workload(department_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    return await department_workload(db, validate_uuid(department_id, "department_id"))


@router.post("/{department_id}/staff")
async def add_staff(department_id: str, body: StaffMembership,
                    user=Depends(require_role(UserRole.ADMIN.value)), db=Depends(get_db)):
    department_id = validate_uuid(department_id, "department_id")
    member = await assign_staff_to_department(db, validate_uuid(body.user_id, "user_id"), department_id)
    dept = await run_db(db.departments.find_one, {"_id": department_id})
    return {"message": "Staff added to department", "department": serialize_doc(dept),
            "user": user_to_response(member)}


@router.delete("/{department_id}/staff")
async def remove_staff(department_id: str, body: StaffMembership,
                       user=Depends(require_role(UserRole.ADMIN.value)), db=Depends(get_db)):
    department_id = validate_uuid(department_id, "department_id")
    await get_department_or_404(db, department_id)
    member = await remove_staff_from_department(db, validate_uuid(body.user_id, "user_id"), department_id)
    dept = await run_db(db.departments.find_one, {"_id": department_id})
    return {"message": "Staff removed from department", "department": serialize_doc(dept),
            "user": user_to_response(member)}
