from datetime import timedelta

from fastapi import APIRouter, Depends, Query

from complaint_portal.db import get_db, run_db, now_utc
from complaint_portal.models import (
    TERMINAL_STATUSES, UserRole, DashboardResponse, DepartmentWorkload, TrendPoint, TrendResponse,
)
from complaint_portal.security import require_role

router = APIRouter(prefix="/analytics", tags=["analytics"])


def _counts_by(db, field: str) -> dict:
    rows = db.complaints.aggregate([{"$group": {"_id": f"${field}", "count": {"$sum": 1}}}])
    return {r["_id"]: r["count"] for r in rows if r["_id"] is not None}


@router.get("/dashboard", response_model=DashboardResponse)
async def dashboard(user=Depends(require_role(UserRole.ADMIN.value)), db=Depends(get_db)):
    week_ago = now_utc() - timedelta(days=7)

    def fetch():
        total = db.complaints.count_documents({})
        recent = db.complaints.count_documents({"created_at": {"$gte": week_ago}})
        unresolved = db.complaints.count_documents({"status": {"$nin": list(TERMINAL_STATUSES)}})
        rows = list(db.complaints.aggregate([
            {"$match": {"assigned_department": {"$ne": None}}},
            {"$group": {"_id": {"department": "$assigned_department", "status": "$status"},
                        "count": {"$sum": 1}}}]))
        workload = {}
        for r in rows:
            w = workload.setdefault(r["_id"]["department"], {"total": 0, "resolved": 0, "pending": 0})
            w["total"] += r["count"]
            w["resolved" if r["_id"]["status"] in TERMINAL_STATUSES else "pending"] += r["count"]
        names = {d["_id"]: d["name"] for d in db.departments.find({"_id": {"$in": list(workload)}})}
        return {
            "total": total, "recent": recent, "unresolved": unresolved,
            "by_category": _counts_by(db, "category"),
            "by_priority": _counts_by(db, "priority"),
            "by_status": _counts_by(db, "status"),
            "workload": [DepartmentWorkload(department_id=dept_id,
                                            department_name=names.get(dept_id, "Unknown"), **w)
                         for dept_id, w in workload.items()],
        }

    data = await run_db(fetch)
    data["workload"].sort(key=lambda w: -w.total)
    return DashboardResponse(
        total_complaints=data["total"], recent_complaints=data["recent"],
        unresolved_complaints=data["unresolved"],
        by_category=data["by_category"], by_priority=data["by_priority"], by_status=data["by_status"],
        department_workload=data["workload"])


@router.get("/trend", response_model=TrendResponse)
async def trend(days: int = Query(30, ge=1, le=365),
                user=Depends(require_role(UserRole.ADMIN.value)), db=Depends(get_db)):
    start_date = now_utc() - timedelta(days=days)

    def fetch():
        return list(db.complaints.aggregate([
            {"$match": {"created_at": {"$gte": start_date}}},
            {"$group": {"_id": {"year": {"$year": "$created_at"},
                                "month": {"$month": "$created_at"},
                                "day": {"$dayOfMonth": "$created_at"}},
                        "count": {"$sum": 1}}}]))

    rows = await run_db(fetch)
    points = sorted(
        (TrendPoint(date=f"{r['_id']['year']:04d}-{r['_id']['month']:02d}-{r['_id']['day']:02d}",
                    count=r["count"]) for r in rows),
        key=lambda p: p.date)
    return TrendResponse(days=days, trend=points)
