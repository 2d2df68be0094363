# Seed data: citizens and one staff member per department

from complaint_portal.accounts import build_user_doc

CITIZENS = [
    {"name": "Asha Menon", "email": "asha.menon@example.com", "password": "citizen123",
     "phone": "9000000001", "address": "12 Lake Road"},
    {"name": "Ravi Kulkarni", "email": "ravi.kulkarni@example.com", "password": "citizen123",
     "phone": "9000000002", "address": "48 Station Street"},
]

STAFF = [
    {"name": "Imran Sheikh", "email": "imran.works@city.gov", "category": "infrastructure"},
    {"name": "Lakshmi Rao", "email": "lakshmi.sanitation@city.gov", "category": "sanitation"},
    {"name": "Joseph D'Souza", "email": "joseph.water@city.gov", "category": "water_supply"},
    {"name": "Meera Pillai", "email": "meera.power@city.gov", "category": "electricity"},
    {"name": "Harpreet Singh", "email": "harpreet.traffic@city.gov", "category": "traffic"},
    {"name": "Fatima Khan", "email": "fatima.waste@city.gov", "category": "waste_management"},
    {"name": "Arjun Nair", "email": "arjun.parks@city.gov", "category": "parks"},
    {"name": "Sunita Yadav", "email": "sunita.safety@city.gov", "category": "security"},
    {"name": "Kiran Bose", "email": "kiran.services@city.gov", "category": "other"},
]
STAFF_PASSWORD = "staff123"


def import_users(db, department_ids: dict) -> dict:
    """Insert citizens and staff; staff join their department roster.

    Returns {email: _id}.
    """
    print("\n  Importing users...")
    ids = {}
    for c in CITIZENS:
        doc = build_user_doc(c["name"], c["email"], c["password"], "user",
                             phone=c["phone"], address=c["address"])
        db.users.insert_one(doc)
        ids[doc["email"]] = doc["_id"]
    for s in STAFF:
        dept_id = department_ids[s["category"]]
        doc = build_user_doc(s["name"], s["email"], STAFF_PASSWORD, "department_staff")
        doc["department"] = dept_id
        db.users.insert_one(doc)
        db.departments.update_one({"_id": dept_id}, {"$addToSet": {"staff": doc["_id"]}})
        ids[doc["email"]] = doc["_id"]
    print(f"  => {len(CITIZENS)} citizens, {len(STAFF)} staff inserted")
    return ids
