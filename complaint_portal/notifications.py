# Notification fan-out: lifecycle events -> notification records

import logging
from dataclasses import dataclass, asdict
from typing import List, Optional, Dict, Any

from complaint_portal.db import run_db, new_id, now_utc
from complaint_portal.models import NotificationType, ComplaintStatus

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    ComplaintStatus.REVIEWED.value: "Your complaint has been reviewed",
    ComplaintStatus.ASSIGNED.value: "Your complaint has been assigned to a department",
    ComplaintStatus.IN_PROGRESS.value: "Work on your complaint has started",
    ComplaintStatus.RESOLVED.value: "Your complaint has been resolved",
    ComplaintStatus.CLOSED.value: "Your complaint has been closed",
}


@dataclass
class NotificationDraft:
    user_id: str
    type: str
    title: str
    message: str
    complaint_id: Optional[str] = None


def status_message(status: str) -> str:
    return STATUS_MESSAGES.get(status, "Status updated")


def complaint_filed(complaint: Dict[str, Any]) -> List[NotificationDraft]:
    return [NotificationDraft(
        complaint["user_id"], NotificationType.COMPLAINT_FILED.value,
        "Complaint Filed Successfully",
        f'Your complaint "{complaint["title"]}" has been filed and is under review.',
        complaint["_id"])]


def status_changed(complaint: Dict[str, Any], new_status: str) -> List[NotificationDraft]:
    drafts = [NotificationDraft(
        complaint["user_id"], NotificationType.STATUS_UPDATED.value,
        "Complaint Status Updated",
        f'{status_message(new_status)}: "{complaint["title"]}"',
        complaint["_id"])]
    if new_status == ComplaintStatus.RESOLVED.value:
        drafts.append(NotificationDraft(
            complaint["user_id"], NotificationType.FEEDBACK_REQUEST.value,
            "Feedback Request",
            f'Please provide feedback for your resolved complaint: "{complaint["title"]}"',
            complaint["_id"]))
    return drafts


def complaint_assigned(complaint: Dict[str, Any], staff_id: Optional[str]) -> List[NotificationDraft]:
    drafts = []
    if staff_id:
        drafts.append(NotificationDraft(
            staff_id, NotificationType.COMPLAINT_ASSIGNED.value,
            "New Complaint Assigned",
            f'You have been assigned to handle complaint: "{complaint["title"]}"',
            complaint["_id"]))
    # The owner hears about the assignment even when the status was already past it
    drafts += status_changed(complaint, ComplaintStatus.ASSIGNED.value)
    return drafts


def new_message(complaint: Dict[str, Any], sender_id: str) -> List[NotificationDraft]:
    if sender_id == complaint["user_id"]:
        recipient = complaint.get("assigned_staff") or complaint.get("assigned_department")
    else:
        recipient = complaint["user_id"]
    if not recipient:
        return []
    return [NotificationDraft(
        recipient, NotificationType.NEW_MESSAGE.value, "New Message",
        f'You have a new message regarding complaint: "{complaint["title"]}"',
        complaint["_id"])]


async def deliver(db, drafts: List[NotificationDraft]) -> int:
    """Persist drafts one by one. Failures are logged and skipped."""
    delivered = 0
    for draft in drafts:
        doc = {"_id": new_id(), **asdict(draft), "is_read": False, "read_at": None,
               "created_at": now_utc()}
        try:
            await run_db(db.notifications.insert_one, doc)
            delivered += 1
        except Exception as e:
            logger.error("Notification write failed for user %s (%s): %s", draft.user_id, draft.type, e)
    return delivered
