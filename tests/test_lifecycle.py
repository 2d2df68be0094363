"""
Complaint lifecycle tests: transitions, role gating, timeline bookkeeping,
the categorization assistant round-trip, and best-effort fan-out.
"""

import uuid

import pytest

from complaint_portal.assistant import DefaultAssistant
from complaint_portal.config import UPLOAD_DIR
from complaint_portal.errors import InvalidTransition
from complaint_portal.lifecycle import ComplaintLifecycle
from complaint_portal.models import Category, Priority

pytestmark = pytest.mark.asyncio


def _images(count=1):
    return [("images", (f"fix{i}.jpg", b"\xff\xd8\xff\xe0" + b"0" * 64, "image/jpeg")) for i in range(count)]


def _stored(folder):
    path = UPLOAD_DIR / folder
    return sorted(p.name for p in path.iterdir()) if path.exists() else []


async def _assign(client, complaint, staff, admin_headers):
    resp = await client.put(f"/complaints/{complaint['id']}/assign", json={"staff_id": staff["_id"]},
                            headers=admin_headers)
    assert resp.status_code == 200, resp.text
    return resp.json()["complaint"]


async def _resolve(client, complaint, headers, details="Pipe replaced"):
    resp = await client.put(f"/complaints/{complaint['id']}/resolve", data={"resolution_details": details},
                            files=_images(), headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()["complaint"]


# ═══════════════════════════════════════════════════════════════════════════════
# FILING & CATEGORIZATION
# ═══════════════════════════════════════════════════════════════════════════════

class TestFiling:
    async def test_new_complaint_is_submitted(self, file_complaint, citizen):
        complaint = await file_complaint()
        assert complaint["status"] == "submitted"
        assert complaint["user_id"] == citizen["_id"]
        assert len(complaint["timeline"]) == 1
        entry = complaint["timeline"][0]
        assert entry["status"] == "submitted"
        assert entry["updated_by"] == citizen["_id"]
        assert entry["comment"] == "Complaint submitted"
        assert complaint["location"]["coordinates"] == [0.0, 0.0]

    async def test_title_required(self, client, citizen_headers):
        resp = await client.post("/complaints", data={"title": "  ", "description": "Something"},
                                 headers=citizen_headers)
        assert resp.status_code == 400

    async def test_explicit_labels_skip_assistant(self, file_complaint, assistant):
        complaint = await file_complaint(category="parks", priority="low")
        assert assistant.categorize_calls == 0
        assert complaint["category"] == "parks"
        assert complaint["ai_category"] is None
        assert complaint["assigned_department"] is None

    async def test_assistant_fills_missing_labels(self, file_complaint, assistant, department):
        complaint = await file_complaint(category=None, priority=None)
        assert assistant.categorize_calls == 1
        assert complaint["category"] == "water_supply"
        assert complaint["priority"] == "high"
        assert complaint["ai_category"] == "water_supply"
        assert complaint["ai_priority"] == "high"
        # A real proposal routes the complaint to the matching department
        assert complaint["assigned_department"] == department["_id"]
        assert complaint["status"] == "submitted"

    async def test_user_label_wins_over_assistant(self, file_complaint, assistant):
        complaint = await file_complaint(category="electricity", priority=None)
        assert assistant.categorize_calls == 1
        assert complaint["category"] == "electricity"
        assert complaint["priority"] == "high"
        assert complaint["ai_category"] == "water_supply"

    async def test_fallback_is_not_routed(self, file_complaint, assistant, department):
        assistant.category, assistant.priority, assistant.fallback = Category.OTHER, Priority.MEDIUM, True
        complaint = await file_complaint(category=None, priority=None)
        assert complaint["category"] == "other"
        assert complaint["priority"] == "medium"
        assert complaint["assigned_department"] is None

    async def test_assistant_error_uses_defaults(self, file_complaint, assistant, department):
        async def broken(title, description):
            raise RuntimeError("model unavailable")
        assistant.categorize = broken
        complaint = await file_complaint(category=None, priority=None)
        assert complaint["category"] == "other"
        assert complaint["priority"] == "medium"
        assert complaint["assigned_department"] is None

    async def test_invalid_category_rejected(self, client, citizen_headers):
        resp = await client.post("/complaints", data={
            "title": "x", "description": "y", "category": "aliens", "priority": "low"},
            headers=citizen_headers)
        assert resp.status_code == 422


# ═══════════════════════════════════════════════════════════════════════════════
# ASSIGNMENT
# ═══════════════════════════════════════════════════════════════════════════════

class TestAssignment:
    async def test_assign_staff(self, client, file_complaint, staff, department, admin_headers, headers_for):
        complaint = await _assign(client, await file_complaint(), staff, admin_headers)
        assert complaint["status"] == "assigned"
        assert complaint["assigned_staff"] == staff["_id"]
        assert complaint["assigned_department"] == department["_id"]
        assert [e["status"] for e in complaint["timeline"]] == ["submitted", "assigned"]

        notes = (await client.get("/notifications", headers=headers_for(staff))).json()["notifications"]
        assert [n["type"] for n in notes] == ["complaint_assigned"]

    async def test_assign_department_only(self, client, file_complaint, department, admin_headers):
        complaint = await file_complaint()
        resp = await client.put(f"/complaints/{complaint['id']}/assign",
                                json={"department_id": department["_id"]}, headers=admin_headers)
        assert resp.status_code == 200
        data = resp.json()["complaint"]
        assert data["status"] == "assigned"
        assert data["assigned_department"] == department["_id"]
        assert data["assigned_staff"] is None

    async def test_reassign_keeps_status(self, client, file_complaint, staff, other_staff, admin_headers):
        complaint = await _assign(client, await file_complaint(), staff, admin_headers)
        complaint = await _assign(client, complaint, other_staff, admin_headers)
        assert complaint["assigned_staff"] == other_staff["_id"]
        assert [e["status"] for e in complaint["timeline"]] == ["submitted", "assigned"]

    async def test_assign_requires_admin(self, client, file_complaint, staff, staff_headers):
        complaint = await file_complaint()
        resp = await client.put(f"/complaints/{complaint['id']}/assign", json={"staff_id": staff["_id"]},
                                headers=staff_headers)
        assert resp.status_code == 403

    async def test_assign_needs_a_target(self, client, file_complaint, admin_headers):
        complaint = await file_complaint()
        resp = await client.put(f"/complaints/{complaint['id']}/assign", json={}, headers=admin_headers)
        assert resp.status_code == 400

    async def test_assign_to_citizen_rejected(self, client, file_complaint, other_citizen, admin_headers):
        complaint = await file_complaint()
        resp = await client.put(f"/complaints/{complaint['id']}/assign",
                                json={"staff_id": other_citizen["_id"]}, headers=admin_headers)
        assert resp.status_code == 400

    async def test_staff_department_mismatch(self, client, file_complaint, staff, admin_headers, db):
        other_dept = str(uuid.uuid4())
        db.departments.insert_one({"_id": other_dept, "name": "Parks", "category": "parks",
                                   "staff": [], "is_active": True})
        complaint = await file_complaint()
        resp = await client.put(f"/complaints/{complaint['id']}/assign",
                                json={"staff_id": staff["_id"], "department_id": other_dept},
                                headers=admin_headers)
        assert resp.status_code == 400

    async def test_assign_unknown_department(self, client, file_complaint, admin_headers):
        complaint = await file_complaint()
        resp = await client.put(f"/complaints/{complaint['id']}/assign",
                                json={"department_id": str(uuid.uuid4())}, headers=admin_headers)
        assert resp.status_code == 404


# ═══════════════════════════════════════════════════════════════════════════════
# STATUS UPDATES
# ═══════════════════════════════════════════════════════════════════════════════

class TestStatusUpdates:
    async def test_assigned_staff_starts_work(self, client, file_complaint, staff, staff_headers, admin_headers,
                                              citizen_headers):
        complaint = await _assign(client, await file_complaint(), staff, admin_headers)
        resp = await client.put(f"/complaints/{complaint['id']}/status",
                                json={"status": "in_progress", "comment": "Crew dispatched"},
                                headers=staff_headers)
        assert resp.status_code == 200
        data = resp.json()["complaint"]
        assert data["status"] == "in_progress"
        assert data["timeline"][-1]["comment"] == "Crew dispatched"
        assert data["timeline"][-1]["updated_by"] == staff["_id"]

        notes = (await client.get("/notifications", headers=citizen_headers)).json()["notifications"]
        assert any(n["type"] == "status_updated" and "Work on your complaint has started" in n["message"]
                   for n in notes)

    async def test_unassigned_staff_forbidden(self, client, file_complaint, staff, other_staff, headers_for,
                                              admin_headers):
        complaint = await _assign(client, await file_complaint(), staff, admin_headers)
        resp = await client.put(f"/complaints/{complaint['id']}/status", json={"status": "in_progress"},
                                headers=headers_for(other_staff))
        assert resp.status_code == 403

    async def test_staff_cannot_close(self, client, file_complaint, staff, staff_headers, admin_headers):
        complaint = await _assign(client, await file_complaint(), staff, admin_headers)
        resp = await client.put(f"/complaints/{complaint['id']}/status", json={"status": "closed"},
                                headers=staff_headers)
        assert resp.status_code == 400

    async def test_citizen_cannot_advance(self, client, file_complaint, citizen_headers, db):
        complaint = await file_complaint()
        resp = await client.put(f"/complaints/{complaint['id']}/status", json={"status": "in_progress"},
                                headers=citizen_headers)
        assert resp.status_code == 403
        assert db.complaints.find_one({"_id": complaint["id"]})["status"] == "submitted"

    async def test_unknown_status_rejected(self, client, file_complaint, admin_headers):
        complaint = await file_complaint()
        resp = await client.put(f"/complaints/{complaint['id']}/status", json={"status": "archived"},
                                headers=admin_headers)
        assert resp.status_code == 422

    async def test_admin_default_comment(self, client, file_complaint, admin_headers):
        complaint = await file_complaint()
        resp = await client.put(f"/complaints/{complaint['id']}/status", json={"status": "in_progress"},
                                headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["complaint"]["timeline"][-1]["comment"] == "Status updated to in_progress"


# ═══════════════════════════════════════════════════════════════════════════════
# RESOLUTION & FEEDBACK
# ═══════════════════════════════════════════════════════════════════════════════

class TestResolution:
    async def test_resolve(self, client, file_complaint, staff, staff_headers, admin_headers, citizen_headers,
                           assistant):
        complaint = await _assign(client, await file_complaint(), staff, admin_headers)
        resolved = await _resolve(client, complaint, staff_headers)
        assert resolved["status"] == "resolved"
        assert resolved["resolution_summary"] == "Summary: Pipe replaced"
        assert len(resolved["resolution_images"]) == 1
        assert resolved["resolution_images"][0]["path"].startswith("uploads/resolutions/")
        assert resolved["timeline"][-1]["comment"] == "Pipe replaced"
        assert assistant.summary_calls == 1

        notes = (await client.get("/notifications", headers=citizen_headers)).json()["notifications"]
        types = [n["type"] for n in notes]
        assert "feedback_request" in types
        assert types.count("status_updated") == 2

    async def test_details_required(self, client, file_complaint, admin_headers):
        complaint = await file_complaint()
        before = _stored("resolutions")
        resp = await client.put(f"/complaints/{complaint['id']}/resolve", data={"resolution_details": " "},
                                files=_images(), headers=admin_headers)
        assert resp.status_code == 400
        # Uploaded evidence is discarded when the resolution is refused
        assert _stored("resolutions") == before

    async def test_images_required(self, client, file_complaint, admin_headers):
        complaint = await file_complaint()
        resp = await client.put(f"/complaints/{complaint['id']}/resolve",
                                data={"resolution_details": "Fixed"}, headers=admin_headers)
        assert resp.status_code == 400

    async def test_only_assigned_staff(self, client, file_complaint, staff, other_staff, headers_for,
                                       admin_headers):
        complaint = await _assign(client, await file_complaint(), staff, admin_headers)
        resp = await client.put(f"/complaints/{complaint['id']}/resolve", data={"resolution_details": "Fixed"},
                                files=_images(), headers=headers_for(other_staff))
        assert resp.status_code == 403

    async def test_citizen_cannot_resolve(self, client, file_complaint, citizen_headers):
        complaint = await file_complaint()
        resp = await client.put(f"/complaints/{complaint['id']}/resolve", data={"resolution_details": "Fixed"},
                                files=_images(), headers=citizen_headers)
        assert resp.status_code == 403

    async def test_summary_failure_keeps_details(self, client, file_complaint, admin_headers, assistant):
        async def broken(title, description, details):
            raise RuntimeError("model unavailable")
        assistant.summarize_resolution = broken
        resolved = await _resolve(client, await file_complaint(), admin_headers, details="Valve tightened")
        assert resolved["resolution_summary"] == "Valve tightened"


class TestFeedback:
    async def test_feedback_closes(self, client, file_complaint, admin_headers, citizen_headers):
        resolved = await _resolve(client, await file_complaint(), admin_headers)
        resp = await client.post(f"/complaints/{resolved['id']}/feedback",
                                 json={"rating": 4, "comment": "Thanks"}, headers=citizen_headers)
        assert resp.status_code == 200
        closed = resp.json()["complaint"]
        assert closed["status"] == "closed"
        assert closed["feedback"]["rating"] == 4
        assert closed["feedback"]["comment"] == "Thanks"
        assert closed["timeline"][-1]["status"] == "closed"

    async def test_feedback_only_once(self, client, file_complaint, admin_headers, citizen_headers):
        resolved = await _resolve(client, await file_complaint(), admin_headers)
        await client.post(f"/complaints/{resolved['id']}/feedback", json={"rating": 5}, headers=citizen_headers)
        resp = await client.post(f"/complaints/{resolved['id']}/feedback", json={"rating": 1},
                                 headers=citizen_headers)
        assert resp.status_code == 400

    async def test_feedback_requires_resolved(self, client, file_complaint, citizen_headers):
        complaint = await file_complaint()
        resp = await client.post(f"/complaints/{complaint['id']}/feedback", json={"rating": 5},
                                 headers=citizen_headers)
        assert resp.status_code == 400

    async def test_rating_range(self, client, file_complaint, admin_headers, citizen_headers, db):
        resolved = await _resolve(client, await file_complaint(), admin_headers)
        for rating in (0, 6):
            resp = await client.post(f"/complaints/{resolved['id']}/feedback", json={"rating": rating},
                                     headers=citizen_headers)
            assert resp.status_code == 400
        assert db.complaints.find_one({"_id": resolved["id"]})["status"] == "resolved"

    async def test_only_owner(self, client, file_complaint, admin_headers, other_citizen, headers_for,
                              staff_headers):
        resolved = await _resolve(client, await file_complaint(), admin_headers)
        resp = await client.post(f"/complaints/{resolved['id']}/feedback", json={"rating": 5},
                                 headers=headers_for(other_citizen))
        assert resp.status_code == 403
        resp = await client.post(f"/complaints/{resolved['id']}/feedback", json={"rating": 5},
                                 headers=staff_headers)
        assert resp.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════════
# TERMINAL STATES & FULL JOURNEY
# ═══════════════════════════════════════════════════════════════════════════════

class TestTerminalStates:
    async def test_resolved_is_frozen(self, client, file_complaint, staff, admin_headers):
        resolved = await _resolve(client, await file_complaint(), admin_headers)
        cid = resolved["id"]
        resp = await client.put(f"/complaints/{cid}/status", json={"status": "in_progress"}, headers=admin_headers)
        assert resp.status_code == 400
        resp = await client.put(f"/complaints/{cid}/assign", json={"staff_id": staff["_id"]}, headers=admin_headers)
        assert resp.status_code == 400
        resp = await client.put(f"/complaints/{cid}/resolve", data={"resolution_details": "Again"},
                                files=_images(), headers=admin_headers)
        assert resp.status_code == 400

    async def test_closed_by_admin_status(self, client, file_complaint, admin_headers, db):
        complaint = await file_complaint()
        resp = await client.put(f"/complaints/{complaint['id']}/status", json={"status": "closed"},
                                headers=admin_headers)
        assert resp.status_code == 200
        resp = await client.put(f"/complaints/{complaint['id']}/status", json={"status": "submitted"},
                                headers=admin_headers)
        assert resp.status_code == 400
        assert len(db.complaints.find_one({"_id": complaint["id"]})["timeline"]) == 2

    async def test_full_journey(self, client, file_complaint, staff, staff_headers, admin_headers,
                                citizen_headers, db):
        complaint = await file_complaint()
        await _assign(client, complaint, staff, admin_headers)
        await client.put(f"/complaints/{complaint['id']}/status", json={"status": "in_progress"},
                         headers=staff_headers)
        await _resolve(client, complaint, staff_headers)
        resp = await client.post(f"/complaints/{complaint['id']}/feedback", json={"rating": 5},
                                 headers=citizen_headers)
        assert resp.status_code == 200

        stored = db.complaints.find_one({"_id": complaint["id"]})
        timeline = stored["timeline"]
        assert [e["status"] for e in timeline] == ["submitted", "assigned", "in_progress", "resolved", "closed"]
        stamps = [e["timestamp"] for e in timeline]
        assert stamps == sorted(stamps)
        assert stored["status"] == timeline[-1]["status"]


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE GUARANTEES
# ═══════════════════════════════════════════════════════════════════════════════

class _BrokenBroadcaster:
    async def emit_all(self, events):
        raise ConnectionError("broadcast down")


async def _broken_notifier(db, drafts):
    raise ConnectionError("notification store down")


class TestEngineGuarantees:
    async def test_fan_out_failures_do_not_undo_writes(self, db, citizen, admin):
        engine = ComplaintLifecycle(db, DefaultAssistant(), _BrokenBroadcaster(), notifier=_broken_notifier)
        complaint = await engine.create(citizen, "Fallen tree", "Blocking the lane", "parks", "high")
        assert db.complaints.find_one({"_id": complaint["_id"]}) is not None

        updated = await engine.update_status(admin, complaint["_id"], "in_progress")
        assert updated["status"] == "in_progress"
        assert db.notifications.count_documents({}) == 0

    async def test_default_assistant_labels(self, db, citizen):
        engine = ComplaintLifecycle(db, DefaultAssistant(), _BrokenBroadcaster(), notifier=_broken_notifier)
        complaint = await engine.create(citizen, "Something odd", "Hard to describe")
        assert complaint["category"] == "other"
        assert complaint["priority"] == "medium"
        assert complaint["assigned_department"] is None

    async def test_write_refused_if_closed_meanwhile(self, db, citizen, admin):
        engine = ComplaintLifecycle(db, DefaultAssistant(), _BrokenBroadcaster(), notifier=_broken_notifier)
        complaint = await engine.create(citizen, "Pothole", "Deep pothole", "infrastructure", "high")
        stale = dict(complaint)
        db.complaints.update_one({"_id": complaint["_id"]}, {"$set": {"status": "closed"}})

        async def stale_load(complaint_id):
            return stale
        engine.load = stale_load

        with pytest.raises(InvalidTransition):
            await engine.update_status(admin, complaint["_id"], "in_progress")
        stored = db.complaints.find_one({"_id": complaint["_id"]})
        assert stored["status"] == "closed"
        assert len(stored["timeline"]) == 1


# ═══════════════════════════════════════════════════════════════════════════════
# END-TO-END SCENARIOS
# ═══════════════════════════════════════════════════════════════════════════════

class TestScenarios:
    async def test_pothole_from_filing_to_closure(self, client, citizen_headers, admin_headers, staff,
                                                  staff_headers, other_staff, headers_for, department, db):
        async def inbox(headers):
            resp = await client.get("/notifications", params={"limit": 100}, headers=headers)
            return [n["type"] for n in resp.json()["notifications"]]

        # A: citizen files
        resp = await client.post("/complaints", data={
            "title": "Pothole on Main St", "description": "Large pothole",
            "category": "infrastructure", "priority": "high"}, headers=citizen_headers)
        assert resp.status_code == 201
        complaint = resp.json()["complaint"]
        cid = complaint["id"]
        assert complaint["status"] == "submitted"
        assert len(complaint["timeline"]) == 1
        assert await inbox(citizen_headers) == ["complaint_filed"]

        # B: admin assigns department D and staff S
        resp = await client.put(f"/complaints/{cid}/assign",
                                json={"department_id": department["_id"], "staff_id": staff["_id"]},
                                headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["complaint"]["status"] == "assigned"
        assert len(resp.json()["complaint"]["timeline"]) == 2
        assert (await inbox(staff_headers)).count("complaint_assigned") == 1
        assert (await inbox(citizen_headers)).count("status_updated") == 1

        # C: unassigned staff is refused and nothing changes
        resp = await client.put(f"/complaints/{cid}/status", json={"status": "in_progress"},
                                headers=headers_for(other_staff))
        assert resp.status_code == 403
        stored = db.complaints.find_one({"_id": cid})
        assert stored["status"] == "assigned"
        assert len(stored["timeline"]) == 2

        # D: assigned staff resolves with one image
        resp = await client.put(f"/complaints/{cid}/resolve", data={"resolution_details": "Filled pothole"},
                                files=_images(), headers=staff_headers)
        assert resp.status_code == 200
        resolved = resp.json()["complaint"]
        assert resolved["status"] == "resolved"
        assert len(resolved["resolution_images"]) == 1
        owner_inbox = await inbox(citizen_headers)
        assert owner_inbox.count("status_updated") == 2
        assert owner_inbox.count("feedback_request") == 1

        # E: owner rates it, a second rating is refused
        resp = await client.post(f"/complaints/{cid}/feedback", json={"rating": 5}, headers=citizen_headers)
        assert resp.status_code == 200
        assert resp.json()["complaint"]["status"] == "closed"
        resp = await client.post(f"/complaints/{cid}/feedback", json={"rating": 5}, headers=citizen_headers)
        assert resp.status_code == 400

    async def test_routed_complaint_keeps_its_department(self, client, file_complaint, department, new_user,
                                                         admin_headers, db):
        complaint = await file_complaint(category=None, priority=None)
        assert complaint["assigned_department"] == department["_id"]
        elsewhere = str(uuid.uuid4())
        db.departments.insert_one({"_id": elsewhere, "name": "Traffic", "category": "traffic",
                                   "staff": [], "is_active": True})
        outsider = new_user("department_staff", department=elsewhere)
        resp = await client.put(f"/complaints/{complaint['id']}/assign", json={"staff_id": outsider["_id"]},
                                headers=admin_headers)
        assert resp.status_code == 400
