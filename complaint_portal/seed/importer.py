# Complaint Portal — Seed Data Importer
# Resets the portal collections and fills them with demo data
#
# Usage:  complaint-portal-seed
#     or: python -m complaint_portal.seed

from pymongo import MongoClient

from complaint_portal.config import MONGODB_URL, MONGODB_DB, ADMIN_EMAIL, ADMIN_PASSWORD, ADMIN_NAME
from complaint_portal.db import create_indexes
from complaint_portal.seed.admin import ensure_admin
from complaint_portal.seed.complaints import import_complaints, COMPLAINTS
from complaint_portal.seed.departments import import_departments, DEPARTMENTS
from complaint_portal.seed.users import import_users, CITIZENS, STAFF, STAFF_PASSWORD

COLLECTIONS = ["users", "departments", "complaints", "notifications", "chats"]


def main():
    print("=" * 64)
    print("  Complaint Portal — Data Importer")
    print("=" * 64)

    # ------------------------------------------------------------------
    # 1. Connect MongoDB
    # ------------------------------------------------------------------
    print("\n[1/6] Connecting to MongoDB...")
    mongo_client = MongoClient(MONGODB_URL, tz_aware=True)
    db = mongo_client[MONGODB_DB]
    print(f"  Connected: {MONGODB_URL} ({MONGODB_DB})")

    # ------------------------------------------------------------------
    # 2. Reset collections
    # ------------------------------------------------------------------
    print("\n[2/6] Resetting collections...")
    for name in COLLECTIONS:
        db[name].drop()
    create_indexes(db)
    print("  MongoDB: " + ", ".join(COLLECTIONS))

    # ------------------------------------------------------------------
    # 3. Departments
    # ------------------------------------------------------------------
    print("\n[3/6] Departments")
    department_ids = import_departments(db)

    # ------------------------------------------------------------------
    # 4. Users
    # ------------------------------------------------------------------
    print("\n[4/6] Users")
    user_ids = import_users(db, department_ids)
    admin_id = ensure_admin(db, ADMIN_EMAIL, ADMIN_PASSWORD, ADMIN_NAME)
    print(f"  Admin: {ADMIN_EMAIL if admin_id else 'skipped (ADMIN_EMAIL / ADMIN_PASSWORD not set)'}")

    # ------------------------------------------------------------------
    # 5. Complaints
    # ------------------------------------------------------------------
    print("\n[5/6] Complaints")
    citizen_ids = [user_ids[c["email"]] for c in CITIZENS]
    staff_by_department = {department_ids[s["category"]]: user_ids[s["email"]] for s in STAFF}
    import_complaints(db, department_ids, citizen_ids, staff_by_department)

    # ------------------------------------------------------------------
    # 6. Summary
    # ------------------------------------------------------------------
    print("\n" + "=" * 64)
    print("  [6/6] IMPORT COMPLETE")
    print("=" * 64)
    print(f"  Departments:  {len(DEPARTMENTS)}")
    print(f"  Citizens:     {len(CITIZENS)}")
    print(f"  Staff:        {len(STAFF)}")
    print(f"  Complaints:   {len(COMPLAINTS)}")
    print()
    print("  Test credentials:")
    for c in CITIZENS:
        print(f"    citizen  {c['email']:<32} / {c['password']}")
    print(f"    staff    {STAFF[0]['email']:<32} / {STAFF_PASSWORD}")
    print()
    mongo_client.close()


if __name__ == "__main__":
    main()
