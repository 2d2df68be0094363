# Startup seeding of the single admin account

import logging
from typing import Optional

from complaint_portal.accounts import build_user_doc
from complaint_portal.config import ADMIN_EMAIL, ADMIN_NAME, ADMIN_PASSWORD
from complaint_portal.db import run_db, now_utc
from complaint_portal.models import UserRole

logger = logging.getLogger(__name__)


def ensure_admin(db, email: Optional[str], password: Optional[str], name: str) -> Optional[str]:
    """Create the admin from configuration, or promote and re-activate an existing
    account with that e-mail. This is the only path that grants the admin role.
    Returns the admin's id, or None when no credentials are configured.
    """
    email = (email or "").strip().lower()
    if not email or not password:
        logger.warning("ADMIN_EMAIL / ADMIN_PASSWORD not set, skipping admin seeding")
        return None
    existing = db.users.find_one({"email": email})
    if existing:
        if existing["role"] != UserRole.ADMIN.value or not existing.get("is_active", True):
            db.users.update_one({"_id": existing["_id"]}, {"$set": {
                "role": UserRole.ADMIN.value, "is_active": True, "department": None,
                "updated_at": now_utc()}})
            db.departments.update_many({"staff": existing["_id"]}, {"$pull": {"staff": existing["_id"]}})
            logger.info("Promoted existing account %s to admin", email)
        return existing["_id"]
    doc = build_user_doc(name, email, password, UserRole.ADMIN.value)
    db.users.insert_one(doc)
    logger.info("Seeded admin account %s", email)
    return doc["_id"]


async def seed_admin(db):
    try:
        await run_db(ensure_admin, db, ADMIN_EMAIL, ADMIN_PASSWORD, ADMIN_NAME)
    except Exception as e:
        logger.error("Admin seeding failed: %s", e)
