"""
Department roster operations.

A staff member's ``users.department`` back-reference and the department's
``staff`` list are two documents with no multi-document transaction between
them. Both are only ever changed through the functions here, which apply the
writes in a fixed order and undo the earlier ones when a later one fails.
"""

import logging
from typing import Optional, Dict, Any

from complaint_portal.db import run_db, now_utc
from complaint_portal.errors import NotFound, ValidationFailed
from complaint_portal.models import UserRole, ComplaintStatus

logger = logging.getLogger(__name__)


async def get_department_or_404(db, department_id: str) -> Dict[str, Any]:
    dept = await run_db(db.departments.find_one, {"_id": department_id})
    if not dept:
        raise NotFound("Department not found")
    return dept


async def assign_staff_to_department(db, user_id: str, department_id: str) -> Dict[str, Any]:
    """Move a staff member into ``department_id``. Returns the updated user."""
    user = await run_db(db.users.find_one, {"_id": user_id})
    if not user:
        raise NotFound("User not found")
    if user["role"] != UserRole.DEPARTMENT_STAFF.value:
        raise ValidationFailed("Only department staff can belong to a department")
    target = await get_department_or_404(db, department_id)
    previous = user.get("department")
    if previous == department_id and user_id in target.get("staff", []):
        return user

    already_listed = user_id in target.get("staff", [])
    await run_db(db.departments.update_one, {"_id": department_id},
                 {"$addToSet": {"staff": user_id}, "$set": {"updated_at": now_utc()}})
    if previous and previous != department_id:
        await run_db(db.departments.update_one, {"_id": previous},
                     {"$pull": {"staff": user_id}, "$set": {"updated_at": now_utc()}})
    try:
        await run_db(db.users.update_one, {"_id": user_id},
                     {"$set": {"department": department_id, "updated_at": now_utc()}})
    except Exception:
        logger.exception("Staff move failed for %s, restoring department rosters", user_id)
        if not already_listed:
            await run_db(db.departments.update_one, {"_id": department_id}, {"$pull": {"staff": user_id}})
        if previous and previous != department_id:
            await run_db(db.departments.update_one, {"_id": previous}, {"$addToSet": {"staff": user_id}})
        raise
    logger.info("Staff %s moved from %s to %s", user_id, previous, department_id)
    return await run_db(db.users.find_one, {"_id": user_id})


async def remove_staff_from_department(db, user_id: str, department_id: Optional[str] = None) -> Dict[str, Any]:
    """Detach a staff member from their department (or from ``department_id``)."""
    user = await run_db(db.users.find_one, {"_id": user_id})
    if not user:
        raise NotFound("User not found")
    department_id = department_id or user.get("department")
    if not department_id:
        return user
    await run_db(db.departments.update_one, {"_id": department_id},
                 {"$pull": {"staff": user_id}, "$set": {"updated_at": now_utc()}})
    if user.get("department") == department_id:
        try:
            await run_db(db.users.update_one, {"_id": user_id},
                         {"$set": {"department": None, "updated_at": now_utc()}})
        except Exception:
            logger.exception("Staff removal failed for %s, restoring roster", user_id)
            await run_db(db.departments.update_one, {"_id": department_id}, {"$addToSet": {"staff": user_id}})
            raise
    logger.info("Staff %s removed from %s", user_id, department_id)
    return await run_db(db.users.find_one, {"_id": user_id})


async def department_workload(db, department_id: str) -> Dict[str, Any]:
    dept = await get_department_or_404(db, department_id)

    def fetch():
        rows = list(db.complaints.aggregate([
            {"$match": {"assigned_department": department_id}},
            {"$group": {"_id": "$status", "count": {"$sum": 1}}}]))
        return {r["_id"]: r["count"] for r in rows}

    by_status = await run_db(fetch)
    done = (ComplaintStatus.RESOLVED.value, ComplaintStatus.CLOSED.value)
    return {
        "department_id": department_id,
        "department_name": dept["name"],
        "total": sum(by_status.values()),
        "resolved": sum(v for k, v in by_status.items() if k in done),
        "pending": sum(v for k, v in by_status.items() if k not in done),
        "by_status": by_status,
        "staff_count": len(dept.get("staff", [])),
    }
