# app/main.py
"""
FastAPI application entry point.
Includes security middleware, global error handlers, and all routers.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from app.routers import detections, passages, health
from app.database import create_tables, SessionLocal
from app.config import settings
from app.services.pricing_service import ensure_payment_types
from app.utils.logger import get_logger
import time
import asyncio

logger = get_logger(__name__)

app = FastAPI(
    title="Toll Checkpoint API",
    description="ANPR detection ingestion, passage lifecycle and pricing. Fully offline.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS (allow operator screens on same LAN to call the API) ───────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # Restrict to operator station IPs in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── API Key Middleware ───────────────────────────────────────────────────────
class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Optional lightweight API key auth.
    Detection push (/api/v1/detections) is excluded — camera-side integrations don't send keys.
    Set API_KEY in .env. Leave empty to disable auth.
    """
    async def dispatch(self, request: Request, call_next):
        open_paths = {"/api/v1/detections", "/api/v1/health", "/docs", "/redoc", "/openapi.json"}
        if request.url.path in open_paths or not settings.API_KEY:
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or request.query_params.get("api_key")
        if api_key != settings.API_KEY:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid or missing API key"},
            )
        return await call_next(request)


if settings.API_KEY:
    app.add_middleware(APIKeyMiddleware)


# ── Request Timing Middleware ────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 2)
    logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({duration}ms)")
    return response


# ── Global Exception Handler ─────────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(detections.router, prefix="/api/v1", tags=["📡 Detections"])
app.include_router(passages.router,   prefix="/api/v1", tags=["🚗 Passages"])
app.include_router(health.router,     prefix="/api/v1", tags=["💚 Health"])


# ── Startup ───────────────────────────────────────────────────────────────────
@app.on_event("startup")
async def startup():
    logger.info("🚀 Toll backend starting up...")
    create_tables()
    db = SessionLocal()
    try:
        ensure_payment_types(db)
    finally:
        db.close()
    logger.info("✅ Database tables and payment types ready")
    logger.info(f"📡 Cameras configured: {list(settings.CAMERAS.keys())}")
    logger.info(f"🌐 Listening on http://{settings.BACKEND_IP}:{settings.BACKEND_PORT}")
    logger.info("📖 API docs at /docs")

    if settings.CAMERA_POLLING_ENABLED:
        from app.services.camera_poller import start_camera_polling
        app.state.camera_polling_task = asyncio.create_task(start_camera_polling(settings.CAMERAS))
        logger.info("📡 Camera polling started (pull mode)")
    else:
        logger.info("📡 Camera polling disabled — use POST /api/v1/detections/fetch or push")


@app.on_event("shutdown")
async def shutdown():
    logger.info("🛑 Toll backend shutting down...")
    task = getattr(app.state, "camera_polling_task", None)
    if task is not None and not task.done():
        task.cancel()
