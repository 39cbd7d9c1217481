# app/schemas/camera_detection.py
from pydantic import BaseModel
from datetime import datetime
from typing import Any, Optional


class CameraDetectionOut(BaseModel):
    id: int
    external_id: Optional[str]
    gate_id: Optional[int]
    plate_number: str
    original_plate: Optional[str]
    detection_timestamp: datetime
    direction: str
    confidence: Optional[float]
    make: Optional[str]
    model: Optional[str]
    color: Optional[str]
    vehicle_class: Optional[str]
    processed: bool
    processing_status: Optional[str]
    processing_notes: Optional[str]
    processed_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class DetectionPush(BaseModel):
    """Frontend / integration push: same item shape the camera feed returns."""
    gate_id: int
    data: list[dict[str, Any]]


class FetchRequest(BaseModel):
    camera_id: Optional[str] = None    # None → every configured camera
    since: Optional[datetime] = None


class ConfirmEntryRequest(BaseModel):
    operator_id: int
    body_type_id: Optional[int] = None
    account_id: Optional[int] = None
    notes: Optional[str] = None


class ConfirmExitRequest(BaseModel):
    operator_id: int
    payment_confirmed: bool = False
    payment_method: Optional[str] = None
    notes: Optional[str] = None


class IngestSummaryOut(BaseModel):
    success: bool
    message: str
    fetched: int
    stored: int
    skipped: int
    errors: int


class ProcessingSummaryOut(BaseModel):
    success: bool
    message: str
    processed: int
    errors: int
    pending_vehicle_type: int
    pending_exit: int
    total: int
