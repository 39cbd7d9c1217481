# app/routers/health.py
"""
System health check endpoint.
Returns status of backend + DB + camera reachability + detection backlog.
"""

import requests
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text
from app.database import get_db
from app.config import settings
from app.services.detection_processor import get_queue_status
from app.services.ingestion_service import CameraConfig, build_results_url
from app.utils.timeutils import utcnow

router = APIRouter()


@router.get("/health", summary="System health check")
def health_check(db: Session = Depends(get_db)):
    """
    Returns:
    - Backend status
    - Database connectivity
    - Camera reachability (one jsonlastresults call per camera)
    - Detection queue counts
    """
    result = {
        "status": "ok",
        "timestamp": utcnow().isoformat(),
        "backend": "ok",
        "database": "unknown",
        "cameras": {},
        "queue": {},
    }

    # Check database
    try:
        db.execute(text("SELECT 1"))
        result["database"] = "ok"
        result["queue"] = get_queue_status(db)
    except Exception as e:
        result["database"] = f"error: {str(e)}"
        result["status"] = "degraded"

    # Ping each camera
    for cam_id, cam in settings.CAMERAS.items():
        camera = CameraConfig.from_settings(cam_id, cam)
        try:
            resp = requests.get(build_results_url(camera, utcnow()), timeout=3)
            result["cameras"][cam_id] = "ok" if resp.status_code == 200 else f"http_{resp.status_code}"
        except requests.exceptions.ConnectionError:
            result["cameras"][cam_id] = "unreachable"
            result["status"] = "degraded"
        except requests.exceptions.Timeout:
            result["cameras"][cam_id] = "timeout"
            result["status"] = "degraded"
        except Exception as e:
            result["cameras"][cam_id] = f"error: {str(e)}"

    return result
