# Password hashing, bearer tokens, role checks and the admin-account policy

import logging
from datetime import timedelta
from typing import Optional, Dict, Any

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from slowapi import Limiter
from slowapi.util import get_remote_address

from complaint_portal.config import JWT_SECRET, JWT_ALGORITHM, JWT_EXPIRE_HOURS, BCRYPT_ROUNDS
from complaint_portal.db import get_db, run_db, now_utc
from complaint_portal.errors import AuthenticationFailed, AccessDenied, ValidationFailed
from complaint_portal.models import UserRole

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

limiter = Limiter(key_func=get_remote_address)

_token_blacklist: set = set()


def hash_password(password: str) -> str:
    if len(password.encode("utf-8")) > 72:
        raise ValidationFailed("Password cannot exceed 72 bytes")
    return pwd_context.hash(password)

def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)

def create_access_token(user: Dict[str, Any]) -> str:
    to_encode = {"sub": str(user["_id"]), "role": user["role"],
                 "exp": now_utc() + timedelta(hours=JWT_EXPIRE_HOURS)}
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)

def revoke_token(token: str):
    _token_blacklist.add(token)
    # Expired tokens are rejected by the signature check anyway
    if len(_token_blacklist) > 10000:
        _token_blacklist.clear()


async def authenticate_token(token: Optional[str], db) -> Dict[str, Any]:
    """Resolve a bearer token to an active user document.

    Shared by the HTTP dependency and the WebSocket handshake so both
    surfaces accept exactly the same credentials.
    """
    if token is None:
        raise AuthenticationFailed("Not authenticated")
    if token in _token_blacklist:
        raise AuthenticationFailed("Token has been revoked")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise AuthenticationFailed("Invalid token")
    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationFailed("Invalid token")
    user = await run_db(db.users.find_one, {"_id": user_id})
    if user is None:
        raise AuthenticationFailed("User not found")
    if not user.get("is_active", True):
        raise AuthenticationFailed("Account is deactivated")
    return user


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db=Depends(get_db)):
    return await authenticate_token(token, db)


def require_role(*roles):
    async def role_checker(user=Depends(get_current_user)):
        if user["role"] not in roles:
            raise AccessDenied("Insufficient permissions")
        return user
    return role_checker


# ---------------------------------------------------------------------------
# Admin-account policy
# ---------------------------------------------------------------------------
def enforce_admin_policy(target: Optional[Dict[str, Any]], changes: Dict[str, Any]):
    """Single gate for every user mutation.

    ``target`` is the stored user (None when creating one) and ``changes`` the
    fields about to be written. A ``{"delete": True}`` change marks removal.
    The admin role only ever comes from startup seeding.
    """
    new_role = changes.get("role")
    if isinstance(new_role, UserRole):
        new_role = new_role.value
    if target is None:
        if new_role == UserRole.ADMIN.value:
            raise AccessDenied("Admin accounts cannot be created through the API")
        return
    is_admin = target.get("role") == UserRole.ADMIN.value
    if is_admin:
        if new_role is not None and new_role != UserRole.ADMIN.value:
            raise AccessDenied("The admin account's role cannot be changed")
        if changes.get("is_active") is False or changes.get("delete"):
            raise AccessDenied("The admin account cannot be deactivated or deleted")
    elif new_role == UserRole.ADMIN.value:
        raise AccessDenied("Users cannot be promoted to admin")


def can_view_complaint(user: Dict[str, Any], complaint: Dict[str, Any]) -> bool:
    """Owner, staff and admins may read a complaint and its chat thread."""
    if user["role"] in (UserRole.ADMIN.value, UserRole.DEPARTMENT_STAFF.value):
        return True
    return complaint.get("user_id") == str(user["_id"])
