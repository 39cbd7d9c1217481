# app/services/camera_poller.py
"""
Background scheduling — keeps the detection queue filled and drained.

One ingest loop per camera calls fetch_and_store() every
INGEST_INTERVAL_SECONDS; one processor loop runs process_pending_detections()
every PROCESS_INTERVAL_SECONDS in a worker thread (it is blocking DB work).
The camera ring buffer re-delivers old results on every poll, the dedup in
ingestion_service makes that harmless.

An unreachable camera backs off (doubling up to _MAX_BACKOFF) instead of
hammering the network; the next successful poll resets the interval.
"""

import asyncio
from app.config import settings
from app.database import SessionLocal
from app.services.detection_processor import process_pending_detections
from app.services.ingestion_service import CameraConfig, fetch_and_store
from app.utils.logger import get_logger

logger = get_logger(__name__)

# Retry delay in seconds after a failed poll (doubles on each failure, max 60s)
_MIN_BACKOFF = 3
_MAX_BACKOFF = 60


async def _poll_camera(camera: CameraConfig):
    """Ingest loop for one camera. Never exits on its own."""
    backoff = _MIN_BACKOFF
    logger.info(f"📡 Polling {camera.camera_id} ({camera.ip}) every {settings.INGEST_INTERVAL_SECONDS}s")

    while True:
        delay = settings.INGEST_INTERVAL_SECONDS
        db = SessionLocal()
        try:
            summary = await fetch_and_store(db, camera)
            if summary.success:
                if backoff > _MIN_BACKOFF:
                    logger.info(f"✅ {camera.camera_id} reachable again")
                backoff = _MIN_BACKOFF
            else:
                logger.warning(f"⚠️  {camera.camera_id} poll failed: {summary.message}. Retry in {backoff}s")
                delay = backoff
                backoff = min(backoff * 2, _MAX_BACKOFF)
        except Exception as e:
            logger.error(f"❌ {camera.camera_id} — unexpected error: {e}", exc_info=True)
            delay = backoff
            backoff = min(backoff * 2, _MAX_BACKOFF)
        finally:
            db.close()

        await asyncio.sleep(delay)


def _run_processing_cycle():
    db = SessionLocal()
    try:
        return process_pending_detections(db)
    finally:
        db.close()


async def _process_queue():
    """Processor loop. Cycles may overlap with ingestion; row locks keep them apart."""
    logger.info(f"⚙️  Detection processor every {settings.PROCESS_INTERVAL_SECONDS}s")
    while True:
        try:
            summary = await asyncio.to_thread(_run_processing_cycle)
            if not summary.success:
                logger.warning(f"⚠️  Processing cycle failed: {summary.message}")
        except Exception as e:
            logger.error(f"❌ Detection processor — unexpected error: {e}", exc_info=True)
        await asyncio.sleep(settings.PROCESS_INTERVAL_SECONDS)


async def start_camera_polling(cameras: dict):
    """
    Launch one polling task per camera plus the queue processor.
    Called once at backend startup.
    """
    if not cameras:
        logger.warning("No cameras configured — polling disabled.")
        return

    logger.info(f"🚀 Starting camera polling for {len(cameras)} cameras...")
    tasks = [
        asyncio.create_task(_poll_camera(CameraConfig.from_settings(cam_id, cam)), name=f"poller-{cam_id}")
        for cam_id, cam in cameras.items()
    ]
    tasks.append(asyncio.create_task(_process_queue(), name="detection-processor"))
    # Run everything concurrently (they loop forever internally)
    await asyncio.gather(*tasks, return_exceptions=True)
