# Seed data: sample complaints across the lifecycle

from datetime import timedelta

from complaint_portal.db import new_id, now_utc

COMPLAINTS = [
    {"title": "Deep pothole near bus stop", "category": "infrastructure", "priority": "high",
     "description": "A large pothole has formed in front of the Lake Road bus stop and two-wheelers keep skidding.",
     "address": "Lake Road bus stop", "coordinates": [77.5946, 12.9716],
     "status": "submitted", "days_ago": 1, "citizen": 0},
    {"title": "Street light not working", "category": "electricity", "priority": "medium",
     "description": "The street light outside house 48 has been off for a week.",
     "address": "48 Station Street", "coordinates": [77.6010, 12.9750],
     "status": "assigned", "days_ago": 3, "citizen": 1},
    {"title": "Garbage not collected", "category": "waste_management", "priority": "medium",
     "description": "Garbage has not been collected in our lane for four days.",
     "address": "3rd Cross, Lake Road", "coordinates": [77.5950, 12.9730],
     "status": "in_progress", "days_ago": 5, "citizen": 0},
    {"title": "Low water pressure", "category": "water_supply", "priority": "high",
     "description": "Very low water pressure every morning for the whole block.",
     "address": "Station Street block B", "coordinates": [77.6020, 12.9760],
     "status": "resolved", "days_ago": 9, "citizen": 1},
    {"title": "Broken swing in park", "category": "parks", "priority": "low",
     "description": "One of the swings in the children's park is broken and unsafe.",
     "address": "Lakeside Park", "coordinates": [77.5930, 12.9700],
     "status": "closed", "days_ago": 14, "citizen": 0},
]

_PROGRESSION = ["submitted", "assigned", "in_progress", "resolved", "closed"]


def import_complaints(db, department_ids: dict, citizen_ids: list, staff_by_department: dict) -> int:
    """Insert sample complaints with timelines consistent with their status."""
    print("\n  Importing complaints...")
    for c in COMPLAINTS:
        created = now_utc() - timedelta(days=c["days_ago"])
        owner = citizen_ids[c["citizen"]]
        dept_id = department_ids[c["category"]]
        staff_id = staff_by_department.get(dept_id)
        reached = _PROGRESSION[:_PROGRESSION.index(c["status"]) + 1]
        timeline = []
        for step, status in enumerate(reached):
            timeline.append({
                "status": status,
                "comment": "Complaint submitted" if status == "submitted" else f"Status changed to {status}",
                "updated_by": owner if status in ("submitted", "closed") else staff_id,
                "timestamp": created + timedelta(hours=step * 6),
            })
        doc = {
            "_id": new_id(), "title": c["title"], "description": c["description"],
            "category": c["category"], "priority": c["priority"], "status": c["status"],
            "location": {"type": "Point", "coordinates": c["coordinates"], "address": c["address"]},
            "attachments": [], "user_id": owner,
            "assigned_department": dept_id if c["status"] != "submitted" else None,
            "assigned_staff": staff_id if c["status"] != "submitted" else None,
            "timeline": timeline, "feedback": None,
            "ai_category": None, "ai_priority": None, "ai_assigned_department": None,
            "resolution_summary": None, "resolution_images": [],
            "created_at": created, "updated_at": timeline[-1]["timestamp"],
        }
        if c["status"] in ("resolved", "closed"):
            doc["resolution_summary"] = "Issue fixed by the field team."
        if c["status"] == "closed":
            doc["feedback"] = {"rating": 5, "comment": "Quick response, thank you.",
                               "submitted_at": timeline[-1]["timestamp"]}
        db.complaints.insert_one(doc)
        print(f"    [{c['status']:<11}] {c['title']}")
    print(f"  => {len(COMPLAINTS)} complaints inserted")
    return len(COMPLAINTS)
