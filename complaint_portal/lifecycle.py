"""
Complaint lifecycle engine.

Every operation follows the same order: validate, write the complaint
document (one timeline entry per status change), persist notifications,
then broadcast. Notifications and broadcasts are best-effort: their
failures are logged and never undo or fail the complaint write.

    submitted -> (reviewed) -> assigned -> in_progress -> resolved -> closed

``reviewed`` is never entered automatically; only an explicit admin status
update sets it.
"""

import logging
from typing import List, Optional, Dict, Any

from fastapi import Depends
from pymongo import ReturnDocument

from complaint_portal import notifications
from complaint_portal.assistant import Categorization, get_assistant, route_to_department
from complaint_portal.db import get_db, run_db, new_id, now_utc, validate_uuid
from complaint_portal.departments import get_department_or_404
from complaint_portal.errors import AccessDenied, InvalidTransition, NotFound, ValidationFailed
from complaint_portal.models import (
    Category, Priority, ComplaintStatus, UserRole, TERMINAL_STATUSES, STAFF_ROLES,
)
from complaint_portal.realtime import (
    Broadcaster, get_broadcaster, complaint_created_events, complaint_assigned_events,
    status_updated_events, complaint_resolved_events, chat_message_events,
)
from complaint_portal.security import can_view_complaint

logger = logging.getLogger(__name__)

STAFF_TARGETS = (ComplaintStatus.IN_PROGRESS.value, ComplaintStatus.RESOLVED.value)
OPEN_FILTER = {"$nin": list(TERMINAL_STATUSES)}


def _value(v):
    return v.value if hasattr(v, "value") else v


def timeline_entry(status: str, actor_id: str, comment: Optional[str] = None) -> Dict[str, Any]:
    return {"status": status, "updated_by": actor_id, "comment": comment, "timestamp": now_utc()}


class ComplaintLifecycle:
    def __init__(self, db, assistant, broadcaster: Broadcaster, notifier=None):
        self.db = db
        self.assistant = assistant
        self.broadcaster = broadcaster
        self.notifier = notifier or notifications.deliver

    # -- helpers ----------------------------------------------------------
    async def load(self, complaint_id: str) -> Dict[str, Any]:
        complaint_id = validate_uuid(complaint_id, "complaint_id")
        complaint = await run_db(self.db.complaints.find_one, {"_id": complaint_id})
        if not complaint:
            raise NotFound("Complaint not found")
        return complaint

    async def _fan_out(self, drafts, events):
        try:
            await self.notifier(self.db, drafts)
        except Exception as e:
            logger.error("Notification fan-out failed: %s", e)
        try:
            await self.broadcaster.emit_all(events)
        except Exception as e:
            logger.error("Broadcast fan-out failed: %s", e)

    async def _apply(self, complaint: Dict[str, Any], set_fields: Dict[str, Any],
                     entry: Optional[Dict[str, Any]] = None, extra_filter: Optional[Dict[str, Any]] = None):
        """Write ``set_fields`` (and a timeline entry) unless the complaint went terminal meanwhile."""
        set_fields["updated_at"] = now_utc()
        update: Dict[str, Any] = {"$set": set_fields}
        if entry:
            update["$push"] = {"timeline": entry}
        query = {"_id": complaint["_id"], "status": OPEN_FILTER}
        if extra_filter:
            query.update(extra_filter)
        updated = await run_db(self.db.complaints.find_one_and_update, query, update,
                               return_document=ReturnDocument.AFTER)
        if updated is None:
            raise InvalidTransition("Complaint was closed by another update")
        return updated

    @staticmethod
    def _ensure_open(complaint: Dict[str, Any], action: str):
        if complaint["status"] in TERMINAL_STATUSES:
            raise InvalidTransition(f"Cannot {action} a complaint that is {complaint['status']}")

    # -- operations -------------------------------------------------------
    async def create(self, user: Dict[str, Any], title: str, description: str,
                     category=None, priority=None, address: Optional[str] = None,
                     lat: Optional[float] = None, lng: Optional[float] = None,
                     attachments: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        title = (title or "").strip()
        description = (description or "").strip()
        if not title or not description:
            raise ValidationFailed("Title and description are required")
        category, priority = _value(category), _value(priority)

        ai_category = ai_priority = ai_department = None
        if category is None or priority is None:
            try:
                proposal = await self.assistant.categorize(title, description)
            except Exception as e:
                logger.error("Categorization failed, using defaults: %s", e)
                proposal = Categorization()
            ai_category, ai_priority = proposal.category.value, proposal.priority.value
            if not proposal.fallback:
                ai_department = await route_to_department(self.db, ai_category)
            category = category or ai_category
            priority = priority or ai_priority
        if category not in [c.value for c in Category]:
            raise ValidationFailed("Invalid category")
        if priority not in [p.value for p in Priority]:
            raise ValidationFailed("Invalid priority")

        coordinates = [0.0, 0.0]
        if lat is not None and lng is not None:
            coordinates = [float(lng), float(lat)]
        user_id = str(user["_id"])
        now = now_utc()
        doc = {
            "_id": new_id(), "title": title, "description": description,
            "category": category, "priority": priority,
            "status": ComplaintStatus.SUBMITTED.value, "user_id": user_id,
            "assigned_department": ai_department, "assigned_staff": None,
            "location": {"type": "Point", "coordinates": coordinates, "address": address or ""},
            "attachments": attachments or [],
            "timeline": [timeline_entry(ComplaintStatus.SUBMITTED.value, user_id, "Complaint submitted")],
            "ai_category": ai_category, "ai_priority": ai_priority,
            "ai_assigned_department": ai_department,
            "resolution_summary": None, "resolution_images": [], "feedback": None,
            "created_at": now, "updated_at": now,
        }
        await run_db(self.db.complaints.insert_one, doc)
        logger.info("Complaint %s filed by %s (%s/%s)", doc["_id"], user_id, category, priority)
        await self._fan_out(notifications.complaint_filed(doc), complaint_created_events(doc))
        return doc

    async def assign(self, user: Dict[str, Any], complaint_id: str,
                     staff_id: Optional[str] = None, department_id: Optional[str] = None) -> Dict[str, Any]:
        if user["role"] != UserRole.ADMIN.value:
            raise AccessDenied("Only administrators can assign complaints")
        complaint = await self.load(complaint_id)
        self._ensure_open(complaint, "assign")
        if not staff_id and not department_id:
            raise ValidationFailed("staff_id or department_id is required")

        set_fields: Dict[str, Any] = {}
        if department_id:
            department_id = validate_uuid(department_id, "department_id")
            await get_department_or_404(self.db, department_id)
            set_fields["assigned_department"] = department_id
        if staff_id:
            staff_id = validate_uuid(staff_id, "staff_id")
            staff = await run_db(self.db.users.find_one, {"_id": staff_id})
            if not staff:
                raise NotFound("Staff member not found")
            if staff["role"] != UserRole.DEPARTMENT_STAFF.value or not staff.get("is_active", True):
                raise ValidationFailed("Assignee must be an active department staff member")
            staff_dept = staff.get("department")
            known_dept = department_id or complaint.get("assigned_department")
            if known_dept and staff_dept and staff_dept != known_dept:
                raise ValidationFailed("Staff member does not belong to the complaint's department")
            if not known_dept and staff_dept:
                set_fields["assigned_department"] = staff_dept
            set_fields["assigned_staff"] = staff_id

        entry = None
        if complaint["status"] in (ComplaintStatus.SUBMITTED.value, ComplaintStatus.REVIEWED.value):
            set_fields["status"] = ComplaintStatus.ASSIGNED.value
            entry = timeline_entry(ComplaintStatus.ASSIGNED.value, str(user["_id"]), "Complaint assigned")
        updated = await self._apply(complaint, set_fields, entry)
        logger.info("Complaint %s assigned (staff=%s, department=%s)", updated["_id"],
                    updated.get("assigned_staff"), updated.get("assigned_department"))
        await self._fan_out(notifications.complaint_assigned(updated, staff_id),
                            complaint_assigned_events(updated))
        return updated

    async def update_status(self, user: Dict[str, Any], complaint_id: str, new_status,
                            comment: Optional[str] = None) -> Dict[str, Any]:
        new_status = _value(new_status)
        if new_status not in [s.value for s in ComplaintStatus]:
            raise ValidationFailed("Invalid status")
        complaint = await self.load(complaint_id)
        self._ensure_open(complaint, "update")
        user_id = str(user["_id"])
        if user["role"] == UserRole.USER.value:
            if complaint["user_id"] != user_id:
                raise AccessDenied("Access denied")
            if new_status != ComplaintStatus.SUBMITTED.value:
                raise AccessDenied("Citizens cannot change the status of a complaint")
        elif user["role"] == UserRole.DEPARTMENT_STAFF.value:
            if complaint.get("assigned_staff") != user_id:
                raise AccessDenied("You are not assigned to this complaint")
            if new_status not in STAFF_TARGETS:
                raise ValidationFailed("Staff can only set status to in_progress or resolved")

        comment = (comment or "").strip() or f"Status updated to {new_status}"
        updated = await self._apply(complaint, {"status": new_status},
                                    timeline_entry(new_status, user_id, comment))
        logger.info("Complaint %s: %s -> %s by %s", updated["_id"], complaint["status"], new_status, user_id)
        await self._fan_out(notifications.status_changed(updated, new_status),
                            status_updated_events(updated, user_id))
        return updated

    async def resolve(self, user: Dict[str, Any], complaint_id: str, resolution_details: Optional[str],
                      images: Optional[List[Dict[str, Any]]]) -> Dict[str, Any]:
        if user["role"] not in STAFF_ROLES:
            raise AccessDenied("Only staff and administrators can resolve complaints")
        complaint = await self.load(complaint_id)
        self._ensure_open(complaint, "resolve")
        user_id = str(user["_id"])
        if user["role"] == UserRole.DEPARTMENT_STAFF.value and complaint.get("assigned_staff") != user_id:
            raise AccessDenied("You are not assigned to this complaint")
        details = (resolution_details or "").strip()
        if not details:
            raise ValidationFailed("Resolution details are required")
        if not images:
            raise ValidationFailed("At least one resolution image is required")

        try:
            summary = await self.assistant.summarize_resolution(
                complaint["title"], complaint["description"], details)
        except Exception as e:
            logger.error("Resolution summary failed, using raw details: %s", e)
            summary = None
        updated = await self._apply(complaint, {
            "status": ComplaintStatus.RESOLVED.value,
            "resolution_summary": summary or details,
            "resolution_images": images,
        }, timeline_entry(ComplaintStatus.RESOLVED.value, user_id, details))
        logger.info("Complaint %s resolved by %s", updated["_id"], user_id)
        await self._fan_out(notifications.status_changed(updated, ComplaintStatus.RESOLVED.value),
                            complaint_resolved_events(updated, user_id))
        return updated

    async def submit_feedback(self, user: Dict[str, Any], complaint_id: str, rating: int,
                              comment: Optional[str] = None) -> Dict[str, Any]:
        complaint = await self.load(complaint_id)
        user_id = str(user["_id"])
        if complaint["user_id"] != user_id:
            raise AccessDenied("Only the complaint owner can submit feedback")
        if complaint.get("feedback"):
            raise InvalidTransition("Feedback has already been submitted")
        if complaint["status"] != ComplaintStatus.RESOLVED.value:
            raise InvalidTransition("Feedback can only be submitted for resolved complaints")
        if not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationFailed("Rating must be between 1 and 5")

        feedback = {"rating": rating, "comment": (comment or "").strip() or None, "submitted_at": now_utc()}
        updated = await run_db(
            self.db.complaints.find_one_and_update,
            {"_id": complaint["_id"], "status": ComplaintStatus.RESOLVED.value, "feedback": None},
            {"$set": {"feedback": feedback, "status": ComplaintStatus.CLOSED.value, "updated_at": now_utc()},
             "$push": {"timeline": timeline_entry(ComplaintStatus.CLOSED.value, user_id,
                                                  f"Closed with {rating}-star feedback")}},
            return_document=ReturnDocument.AFTER)
        if updated is None:
            raise InvalidTransition("Feedback has already been submitted")
        logger.info("Complaint %s closed with rating %d", updated["_id"], rating)
        await self._fan_out(notifications.status_changed(updated, ComplaintStatus.CLOSED.value),
                            status_updated_events(updated, user_id))
        return updated

    async def send_message(self, user: Dict[str, Any], complaint_id: str, text: Optional[str],
                           attachments: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        complaint = await self.load(complaint_id)
        if not can_view_complaint(user, complaint):
            raise AccessDenied("Access denied")
        text = (text or "").strip()
        if not text:
            raise ValidationFailed("Message is required")
        user_id = str(user["_id"])
        now = now_utc()
        message = {
            "_id": new_id(), "complaint_id": complaint["_id"], "sender_id": user_id,
            "sender_name": user.get("name"), "sender_role": user["role"],
            "message": text, "attachments": attachments or [],
            "read_by": [{"user_id": user_id, "read_at": now}],
            "created_at": now,
        }
        await run_db(self.db.chats.insert_one, message)
        public = {**{k: v for k, v in message.items() if k != "_id"}, "id": message["_id"]}
        await self._fan_out(notifications.new_message(complaint, user_id),
                            chat_message_events(complaint["_id"], public))
        return public


async def get_lifecycle(db=Depends(get_db), assistant=Depends(get_assistant),
                        broadcaster=Depends(get_broadcaster)) -> ComplaintLifecycle:
    return ComplaintLifecycle(db, assistant, broadcaster)
