import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

import config
from database import db, ensure_indexes, now_utc
from emailer import ensure_default_templates
from errors import register_exception_handlers
from middleware import RateLimitMiddleware, SecurityHeadersMiddleware, client_ip, limiter
from routers import (
    admin,
    auth,
    categories,
    comments,
    contacts,
    contributors,
    destinations,
    guides,
    newsletter,
    partners,
    photos,
    posts,
    resources,
    site_settings,
    users,
)
from scheduler import newsletter_scheduler

logging.basicConfig(
    level=logging.DEBUG if config.NODE_ENV == "development" else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

STARTED_AT = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        ensure_indexes()
        ensure_default_templates()
    if config.IS_PRODUCTION:
        newsletter_scheduler.start()
    logger.info("BagPackStories API running in %s mode on port %s", config.NODE_ENV, config.PORT)
    yield
    newsletter_scheduler.stop()


app = FastAPI(title="BagPackStories API", version="1.0.0", lifespan=lifespan)

app.add_middleware(RateLimitMiddleware, limiter=limiter, enabled=config.RATE_LIMIT_ENABLED)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

for module in (auth, users, posts, contributors, categories, destinations, guides, comments,
               contacts, partners, newsletter, photos, site_settings, admin, resources):
    app.include_router(module.router)
    if hasattr(module, "admin_router"):
        app.include_router(module.admin_router)
app.include_router(newsletter.templates_router)


# -------------------------------------------------------------------
# Root + health
# -------------------------------------------------------------------
@app.get("/")
def root():
    return {"app": "BagPackStories API", "status": "ok"}


@app.head("/")
def root_head():
    # Explicit HEAD route for health checks
    return {}


@app.get("/health")
def health():
    return {
        "success": True,
        "message": "BagPackStories API is running",
        "timestamp": now_utc().isoformat() + "Z",
        "environment": config.NODE_ENV,
        "uptime": round(time.time() - STARTED_AT, 3),
    }


@app.get("/api/public/stats")
def public_stats():
    if db is None:
        counts = dict.fromkeys(("posts", "destinations", "guides", "photos", "subscribers", "comments"), 0)
    else:
        counts = {
            "posts": db["post"].count_documents({"status": "published"}),
            "destinations": db["destination"].count_documents({"is_active": True, "status": "published"}),
            "guides": db["guide"].count_documents({"is_published": True}),
            "photos": db["photo"].count_documents({"status": "approved", "is_public": True}),
            "subscribers": db["newsletter"].count_documents({"status": "subscribed", "is_active": True}),
            "comments": db["comment"].count_documents({"status": "approved"}),
        }
    return {"success": True, "data": counts}


@app.get("/api/rate-limit-status")
def rate_limit_status(request: Request):
    remaining, reset_at = limiter.peek(client_ip(request))
    return {
        "success": True,
        "data": {
            "enabled": config.RATE_LIMIT_ENABLED,
            "limit": limiter.max_requests,
            "remaining": remaining,
            "windowSeconds": limiter.window_seconds,
            "resetAt": int(reset_at),
        },
    }


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    if db is not None:
        response["database"] = "✅ Available"
        response["database_name"] = db.name
        response["connection_status"] = "Connected"
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"

    response["database_url"] = "✅ Set" if config.DATABASE_URL else "❌ Not Set"
    response["scheduler"] = "✅ Running" if newsletter_scheduler.is_running() else "⏸️  Stopped"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=config.PORT, reload=not config.IS_PRODUCTION)
