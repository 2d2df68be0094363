# Seed data: one department per complaint category

from complaint_portal.db import new_id, now_utc

DEPARTMENTS = [
    {"name": "Public Works", "category": "infrastructure",
     "description": "Roads, bridges, footpaths and public buildings",
     "contact_email": "publicworks@city.gov", "contact_phone": "0801000101"},
    {"name": "Sanitation Services", "category": "sanitation",
     "description": "Public toilets, drains and street cleaning",
     "contact_email": "sanitation@city.gov", "contact_phone": "0801000102"},
    {"name": "Water Board", "category": "water_supply",
     "description": "Water supply, pipelines and water quality",
     "contact_email": "water@city.gov", "contact_phone": "0801000103"},
    {"name": "Electricity Department", "category": "electricity",
     "description": "Street lights, power outages and electrical hazards",
     "contact_email": "power@city.gov", "contact_phone": "0801000104"},
    {"name": "Traffic Police", "category": "traffic",
     "description": "Signals, road signs and congestion",
     "contact_email": "traffic@city.gov", "contact_phone": "0801000105"},
    {"name": "Solid Waste Management", "category": "waste_management",
     "description": "Garbage collection, dumping and recycling",
     "contact_email": "waste@city.gov", "contact_phone": "0801000106"},
    {"name": "Parks & Gardens", "category": "parks",
     "description": "Parks, playgrounds and green spaces",
     "contact_email": "parks@city.gov", "contact_phone": "0801000107"},
    {"name": "Public Safety", "category": "security",
     "description": "Safety and security concerns in public areas",
     "contact_email": "safety@city.gov", "contact_phone": "0801000108"},
    {"name": "Citizen Services", "category": "other",
     "description": "Everything that does not fit another department",
     "contact_email": "services@city.gov", "contact_phone": "0801000109"},
]


def import_departments(db) -> dict:
    """Insert seed departments. Returns {category: _id}."""
    print("\n  Importing departments...")
    ids = {}
    for d in DEPARTMENTS:
        now = now_utc()
        doc = {"_id": new_id(), **d, "head": None, "staff": [], "is_active": True,
               "created_at": now, "updated_at": now}
        db.departments.insert_one(doc)
        ids[d["category"]] = doc["_id"]
        print(f"    {d['name']} ({d['category']})")
    print(f"  => {len(ids)} departments inserted")
    return ids
