import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from starlette.requests import Request

from complaint_portal.accounts import create_account
from complaint_portal.db import get_db, run_db, now_utc
from complaint_portal.errors import AuthenticationFailed, ValidationFailed
from complaint_portal.models import UserCreate, UserLogin, UserResponse, TokenResponse, user_to_response
from complaint_portal.security import (
    limiter, oauth2_scheme, create_access_token, verify_password, hash_password,
    get_current_user, revoke_token, enforce_admin_policy,
)
from complaint_portal.storage import save_avatar, delete_stored

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def register(request: Request, user_data: UserCreate, db=Depends(get_db)):
    user = await create_account(db, user_data)
    return TokenResponse(access_token=create_access_token(user), user=user_to_response(user))


@router.post("/login", response_model=TokenResponse)
@limiter.limit("5/minute")
async def login(request: Request, form: UserLogin, db=Depends(get_db)):
    user = await run_db(db.users.find_one, {"email": form.email.strip().lower()})
    if not user or not verify_password(form.password, user["hashed_password"]):
        raise AuthenticationFailed("Invalid credentials")
    if not user.get("is_active", True):
        raise AuthenticationFailed("Account is deactivated. Please contact an administrator.")
    now = now_utc()
    await run_db(db.users.update_one, {"_id": user["_id"]}, {"$set": {"last_login": now}})
    user["last_login"] = now
    return TokenResponse(access_token=create_access_token(user), user=user_to_response(user))


@router.get("/profile", response_model=UserResponse)
async def get_profile(user=Depends(get_current_user)):
    return user_to_response(user)


@router.put("/profile", response_model=UserResponse)
async def update_profile(name: Optional[str] = Form(None), phone: Optional[str] = Form(None),
                         address: Optional[str] = Form(None),
                         current_password: Optional[str] = Form(None),
                         new_password: Optional[str] = Form(None),
                         avatar: Optional[UploadFile] = File(None),
                         user=Depends(get_current_user), db=Depends(get_db)):
    set_fields = {}
    if name is not None:
        if not name.strip():
            raise ValidationFailed("Name cannot be empty")
        set_fields["name"] = name.strip()
    if phone is not None:
        set_fields["phone"] = phone.strip()
    if address is not None:
        set_fields["address"] = address.strip()
    if new_password:
        if not current_password:
            raise ValidationFailed("Current password is required to set a new password")
        if not verify_password(current_password, user["hashed_password"]):
            raise ValidationFailed("Current password is incorrect")
        if len(new_password) < 6:
            raise ValidationFailed("New password must be at least 6 characters")
        set_fields["hashed_password"] = hash_password(new_password)
    enforce_admin_policy(user, set_fields)

    old_avatar = user.get("avatar")
    if avatar is not None and avatar.filename:
        stored = await save_avatar(avatar)
        set_fields["avatar"] = stored["path"]
    if not set_fields:
        raise ValidationFailed("No fields to update")
    set_fields["updated_at"] = now_utc()
    await run_db(db.users.update_one, {"_id": user["_id"]}, {"$set": set_fields})
    if "avatar" in set_fields and old_avatar:
        await delete_stored(old_avatar)
    updated = await run_db(db.users.find_one, {"_id": user["_id"]})
    logger.info("Profile updated for %s (%s)", updated["email"], ", ".join(sorted(set_fields)))
    return user_to_response(updated)


@router.post("/logout")
async def logout(token: Optional[str] = Depends(oauth2_scheme)):
    if token:
        revoke_token(token)
    return {"detail": "Logged out successfully"}
