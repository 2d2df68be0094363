# Municipal Complaint Portal: FastAPI application
# Citizens file complaints, staff work them, admins route and oversee them.

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from complaint_portal import db as database
from complaint_portal.config import FRONTEND_URL, UPLOAD_DIR
from complaint_portal.errors import unhandled_error_handler
from complaint_portal.realtime import broadcaster, build_transport, router as realtime_router
from complaint_portal.routes import ROUTERS
from complaint_portal.security import limiter
from complaint_portal.seed.admin import seed_admin
from complaint_portal.storage import ensure_upload_dirs

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App & Globals
# ---------------------------------------------------------------------------
app = FastAPI(title="Municipal Complaint Portal")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(Exception, unhandled_error_handler)


# ---------------------------------------------------------------------------
# Security Headers Middleware
# ---------------------------------------------------------------------------
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(self), camera=(), microphone=()"
        return response


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ensure_upload_dirs()
app.mount("/uploads", StaticFiles(directory=str(UPLOAD_DIR), check_dir=False), name="uploads")


# ---------------------------------------------------------------------------
# Startup / Shutdown
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    await database.startup_db()
    ensure_upload_dirs()
    await seed_admin(database.db)
    broadcaster.transport = build_transport()
    await broadcaster.start()
    logger.info("Realtime transport: %s", type(broadcaster.transport).__name__)
    yield
    await broadcaster.stop()
    database.close_db()

app.router.lifespan_context = lifespan

for _router in ROUTERS:
    app.include_router(_router)
app.include_router(realtime_router)


# ---------------------------------------------------------------------------
# HEALTH
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return {"status": "healthy", "system": "Municipal Complaint Portal",
            "timestamp": datetime.now(timezone.utc)}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
