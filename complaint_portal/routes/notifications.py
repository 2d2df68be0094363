import math
from typing import Optional

from fastapi import APIRouter, Depends, Query

from complaint_portal.db import get_db, run_db, now_utc, validate_uuid
from complaint_portal.errors import NotFound
from complaint_portal.models import serialize_doc
from complaint_portal.security import get_current_user

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(is_read: Optional[bool] = None,
                             page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                             user=Depends(get_current_user), db=Depends(get_db)):
    user_id = str(user["_id"])
    query = {"user_id": user_id}
    if is_read is not None:
        query["is_read"] = is_read

    def fetch():
        total = db.notifications.count_documents(query)
        unread = db.notifications.count_documents({"user_id": user_id, "is_read": False})
        docs = list(db.notifications.find(query).sort("created_at", -1)
                    .skip((page - 1) * limit).limit(limit))
        return total, unread, docs

    total, unread, docs = await run_db(fetch)
    return {
        "notifications": [serialize_doc(d) for d in docs],
        "unread_count": unread,
        "pagination": {"page": page, "limit": limit, "total": total,
                       "pages": math.ceil(total / limit) if total else 0},
    }


@router.put("/read-all")
async def mark_all_read(user=Depends(get_current_user), db=Depends(get_db)):
    result = await run_db(db.notifications.update_many,
                          {"user_id": str(user["_id"]), "is_read": False},
                          {"$set": {"is_read": True, "read_at": now_utc()}})
    return {"message": "All notifications marked as read", "updated": result.modified_count}


@router.put("/{notification_id}/read")
async def mark_read(notification_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    notification_id = validate_uuid(notification_id, "notification_id")
    doc = await run_db(db.notifications.find_one, {"_id": notification_id, "user_id": str(user["_id"])})
    if not doc:
        raise NotFound("Notification not found")
    if not doc.get("is_read"):
        await run_db(db.notifications.update_one, {"_id": notification_id},
                     {"$set": {"is_read": True, "read_at": now_utc()}})
        doc = await run_db(db.notifications.find_one, {"_id": notification_id})
    return serialize_doc(doc)


@router.delete("/{notification_id}")
async def delete_notification(notification_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    notification_id = validate_uuid(notification_id, "notification_id")
    result = await run_db(db.notifications.delete_one,
                          {"_id": notification_id, "user_id": str(user["_id"])})
    if result.deleted_count == 0:
        raise NotFound("Notification not found")
    return {"message": "Notification deleted"}
