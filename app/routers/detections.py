# app/routers/detections.py
"""
Detection queue endpoints.
POST /detections                 — push detections (same shape as the camera feed)
POST /detections/fetch           — pull from the cameras now
POST /detections/process         — run one processing cycle now
GET  /detections                 — raw detection log
GET  /detections/queue           — counts per processing status
GET  /detections/pending/{status} — operator queues
POST /detections/{id}/confirm-entry | confirm-exit — operator confirmation
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from app.config import settings
from app.database import get_db
from app.models.camera_detection import CameraDetection, STATUS_PENDING_EXIT, STATUS_PENDING_VEHICLE_TYPE
from app.routers.passages import to_response
from app.schemas.camera_detection import (
    CameraDetectionOut, ConfirmEntryRequest, ConfirmExitRequest, DetectionPush, FetchRequest,
    IngestSummaryOut, ProcessingSummaryOut,
)
from app.schemas.vehicle_passage import PassageResultOut
from app.services import detection_processor
from app.services.detection_processor import DetectionNotConfirmable
from app.services.ingestion_service import CameraConfig, fetch_and_store, store_detections
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)

_OPERATOR_QUEUES = {STATUS_PENDING_VEHICLE_TYPE, STATUS_PENDING_EXIT}


@router.post("/detections", response_model=IngestSummaryOut, summary="Push detections")
def push_detections(body: DetectionPush, request: Request, db: Session = Depends(get_db)):
    """Stored through the same dedup path as polled detections."""
    source = CameraConfig(camera_id="PUSH", ip=request.client.host if request.client else "-", gate_id=body.gate_id)
    logger.info(f"[INGEST] Push of {len(body.data)} detections from {source.ip} for gate {body.gate_id}")
    return store_detections(db, body.data, source).as_dict()


@router.post("/detections/fetch", summary="Fetch detections from cameras now")
async def fetch_detections(body: FetchRequest, db: Session = Depends(get_db)):
    cameras = settings.CAMERAS
    if body.camera_id:
        if body.camera_id not in cameras:
            raise HTTPException(status_code=404, detail=f"Unknown camera {body.camera_id}")
        cameras = {body.camera_id: cameras[body.camera_id]}

    results = {}
    for cam_id, cam in cameras.items():
        summary = await fetch_and_store(db, CameraConfig.from_settings(cam_id, cam), body.since)
        results[cam_id] = summary.as_dict()
    return results


@router.post("/detections/process", response_model=ProcessingSummaryOut, summary="Run one processing cycle")
def process_detections(db: Session = Depends(get_db)):
    return detection_processor.process_pending_detections(db).as_dict()


@router.get("/detections", response_model=list[CameraDetectionOut], summary="List raw detections")
def list_detections(limit: int = 50, gate_id: Optional[int] = None, plate_number: Optional[str] = None,
                    status: Optional[str] = None, db: Session = Depends(get_db)):
    q = db.query(CameraDetection).filter(CameraDetection.deleted_at.is_(None))
    if gate_id:
        q = q.filter(CameraDetection.gate_id == gate_id)
    if plate_number:
        q = q.filter(CameraDetection.plate_number == plate_number.replace(" ", "").upper())
    if status:
        q = q.filter(CameraDetection.processing_status == status)
    return q.order_by(CameraDetection.detection_timestamp.desc()).limit(limit).all()


@router.get("/detections/queue", summary="Detection counts per status")
def queue_status(db: Session = Depends(get_db)):
    return detection_processor.get_queue_status(db)


@router.get("/detections/pending/{status}", response_model=list[CameraDetectionOut],
            summary="Detections awaiting an operator")
def pending_detections(status: str, gate_id: Optional[int] = None, limit: int = 50,
                       db: Session = Depends(get_db)):
    if status not in _OPERATOR_QUEUES:
        raise HTTPException(status_code=400, detail=f"status must be one of {sorted(_OPERATOR_QUEUES)}")
    return detection_processor.list_pending_detections(db, status, gate_id, limit)


@router.post("/detections/{detection_id}/confirm-entry", response_model=PassageResultOut,
             summary="Confirm an entry detection")
def confirm_entry(detection_id: int, body: ConfirmEntryRequest, db: Session = Depends(get_db)):
    extra = body.model_dump(exclude={"operator_id", "body_type_id"}, exclude_none=True)
    try:
        result = detection_processor.confirm_pending_entry(db, detection_id, body.operator_id,
                                                           body.body_type_id, extra)
    except DetectionNotConfirmable as e:
        raise HTTPException(status_code=409, detail=str(e))
    return to_response(result)


@router.post("/detections/{detection_id}/confirm-exit", response_model=PassageResultOut,
             summary="Confirm an exit detection")
def confirm_exit(detection_id: int, body: ConfirmExitRequest, db: Session = Depends(get_db)):
    extra = body.model_dump(exclude={"operator_id", "payment_confirmed"}, exclude_none=True)
    try:
        result = detection_processor.confirm_pending_exit(db, detection_id, body.operator_id,
                                                          body.payment_confirmed, extra)
    except DetectionNotConfirmable as e:
        raise HTTPException(status_code=409, detail=str(e))
    return to_response(result)
