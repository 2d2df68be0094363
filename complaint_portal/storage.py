# Local file store for complaint, resolution, chat and avatar uploads

import logging
import os
import uuid
from pathlib import Path
from typing import List, Optional, Dict, Any

from fastapi import UploadFile

from complaint_portal.config import UPLOAD_DIR, MAX_FILE_SIZE, AVATAR_MAX_SIZE
from complaint_portal.db import run_db
from complaint_portal.errors import ValidationFailed
from complaint_portal.models import AttachmentKind

logger = logging.getLogger(__name__)

MAX_FILES = 5

IMAGE_TYPES = {
    ".jpeg": {"image/jpeg", "image/pjpeg"}, ".jpg": {"image/jpeg", "image/pjpeg"},
    ".jfif": {"image/jpeg", "image/pjpeg"}, ".webp": {"image/webp"},
    ".png": {"image/png"}, ".gif": {"image/gif"},
}
VIDEO_TYPES = {
    ".mp4": {"video/mp4"}, ".mov": {"video/quicktime"},
    ".avi": {"video/x-msvideo", "video/avi", "video/msvideo"},
}
DOCUMENT_TYPES = {".pdf": {"application/pdf"}}

ATTACHMENT_TYPES = {**IMAGE_TYPES, **VIDEO_TYPES, **DOCUMENT_TYPES}
MEDIA_TYPES = {**IMAGE_TYPES, **VIDEO_TYPES}


def ensure_upload_dirs():
    for sub in ("complaints", "resolutions", "chat", "avatars"):
        os.makedirs(UPLOAD_DIR / sub, exist_ok=True)


def _write_file(path: Path, data: bytes):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def check_file_type(filename: str, content_type: Optional[str], allowed: Dict[str, set]) -> str:
    ext = Path(filename or "").suffix.lower()
    if ext not in allowed or (content_type or "").lower() not in allowed[ext]:
        raise ValidationFailed(
            f"Invalid file type for '{filename}'. Allowed: {', '.join(sorted(e.lstrip('.') for e in allowed))}")
    return ext


async def _read_checked(upload: UploadFile, allowed: Dict[str, set], max_size: int):
    ext = check_file_type(upload.filename, upload.content_type, allowed)
    data = await upload.read()
    if len(data) > max_size:
        raise ValidationFailed(f"File '{upload.filename}' exceeds the {max_size // (1024 * 1024)}MB limit")
    return ext, data


async def _store(upload: UploadFile, folder: str, ext: str, data: bytes) -> Dict[str, Any]:
    name = f"{folder.rstrip('s')}-{uuid.uuid4().hex}{ext}"
    await run_db(_write_file, UPLOAD_DIR / folder / name, data)
    logger.info("Stored upload %s (%d bytes)", name, len(data))
    return {"filename": name, "path": f"uploads/{folder}/{name}",
            "original_name": upload.filename, "mimetype": upload.content_type, "size": len(data)}


async def save_upload(upload: UploadFile, folder: str, allowed: Dict[str, set] = ATTACHMENT_TYPES,
                      max_size: int = MAX_FILE_SIZE) -> Dict[str, Any]:
    """Validate and store one upload. Returns the attachment metadata."""
    ext, data = await _read_checked(upload, allowed, max_size)
    return await _store(upload, folder, ext, data)


async def save_uploads(uploads: Optional[List[UploadFile]], folder: str,
                       allowed: Dict[str, set] = ATTACHMENT_TYPES) -> List[Dict[str, Any]]:
    """Store a batch of uploads, all or nothing."""
    files = [u for u in (uploads or []) if u is not None and u.filename]
    if len(files) > MAX_FILES:
        raise ValidationFailed(f"At most {MAX_FILES} files may be uploaded at once")
    # Type and size of every file are checked before anything is written
    checked = []
    for upload in files:
        ext, data = await _read_checked(upload, allowed, MAX_FILE_SIZE)
        checked.append((upload, ext, data))
    stored = []
    try:
        for upload, ext, data in checked:
            stored.append(await _store(upload, folder, ext, data))
    except Exception:
        for meta in stored:
            await delete_stored(meta["path"])
        raise
    return stored


async def save_avatar(upload: UploadFile) -> Dict[str, Any]:
    return await save_upload(upload, "avatars", IMAGE_TYPES, AVATAR_MAX_SIZE)


def to_chat_attachment(meta: Dict[str, Any]) -> Dict[str, Any]:
    kind = AttachmentKind.VIDEO if (meta.get("mimetype") or "").startswith("video/") else AttachmentKind.IMAGE
    return {"url": "/" + meta["path"], "storage_id": meta["filename"], "type": kind.value}


async def delete_stored(path: Optional[str]):
    """Remove a previously stored file given its ``uploads/...`` path."""
    if not path or not path.startswith("uploads/"):
        return
    target = (UPLOAD_DIR / path[len("uploads/"):]).resolve()
    if UPLOAD_DIR.resolve() not in target.parents:
        logger.warning("Refusing to delete file outside the upload dir: %s", path)
        return
    try:
        await run_db(target.unlink)
    except FileNotFoundError:
        logger.info("Stored file already gone: %s", path)
