import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status

from complaint_portal.db import run_db, now_utc
from complaint_portal.errors import AccessDenied, PortalError
from complaint_portal.lifecycle import ComplaintLifecycle, get_lifecycle
from complaint_portal.models import serialize_doc
from complaint_portal.security import get_current_user, can_view_complaint
from complaint_portal.storage import save_uploads, delete_stored, to_chat_attachment, MEDIA_TYPES

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


@router.get("/{complaint_id}")
async def get_messages(complaint_id: str, user=Depends(get_current_user),
                       lifecycle: ComplaintLifecycle = Depends(get_lifecycle)):
    complaint = await lifecycle.load(complaint_id)
    if not can_view_complaint(user, complaint):
        raise AccessDenied("Access denied")
    db = lifecycle.db
    user_id = str(user["_id"])

    def fetch():
        # One receipt per reader: only messages this user has not read yet
        db.chats.update_many(
            {"complaint_id": complaint["_id"], "read_by.user_id": {"$ne": user_id}},
            {"$push": {"read_by": {"user_id": user_id, "read_at": now_utc()}}})
        return list(db.chats.find({"complaint_id": complaint["_id"]}).sort("created_at", 1))

    messages = await run_db(fetch)
    return {"messages": [serialize_doc(m) for m in messages]}


@router.post("/{complaint_id}", status_code=status.HTTP_201_CREATED)
async def send_message(complaint_id: str, message: str = Form(""),
                       attachments: Optional[List[UploadFile]] = File(None),
                       user=Depends(get_current_user),
                       lifecycle: ComplaintLifecycle = Depends(get_lifecycle)):
    stored = await save_uploads(attachments, "chat", MEDIA_TYPES)
    try:
        sent = await lifecycle.send_message(user, complaint_id, message,
                                            [to_chat_attachment(meta) for meta in stored])
    except PortalError:
        for meta in stored:
            await delete_stored(meta["path"])
        raise
    return {"message": "Message sent", "chat": sent}
