# app/models/camera_detection.py
"""
Raw ANPR detection log — the Detection Store.
Every sighting the ingestion pipeline accepts lands here with
processing_status='pending' and is never hard-deleted (audit trail).
external_id is the camera's own counter and gets reused, so duplicates
are detected by plate + gate + timestamp window instead.
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Float, Text, JSON, Index
from app.database import Base

STATUS_PENDING = "pending"
STATUS_PENDING_VEHICLE_TYPE = "pending_vehicle_type"
STATUS_PENDING_EXIT = "pending_exit"
STATUS_PROCESSED = "processed"
STATUS_FAILED = "failed"

DIRECTION_ENTRY = "entry"
DIRECTION_EXIT = "exit"
DIRECTION_UNKNOWN = "unknown"


class CameraDetection(Base):
    __tablename__ = "camera_detections"
    __table_args__ = (
        Index("ix_camera_detections_dedup", "gate_id", "plate_number", "detection_timestamp"),
        Index("ix_camera_detections_queue", "processing_status", "detection_timestamp"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String(100), index=True)          # camera counter, NOT unique
    gate_id = Column(Integer, index=True)
    plate_number = Column(String(50), nullable=False, index=True)   # normalized
    original_plate = Column(String(50))
    detection_timestamp = Column(DateTime(timezone=True), nullable=False)
    direction = Column(String(10), default=DIRECTION_UNKNOWN, nullable=False)  # entry | exit | unknown
    confidence = Column(Float)
    make = Column(String(100))
    model = Column(String(100))
    color = Column(String(50))
    vehicle_class = Column(String(50))
    raw_payload = Column(JSON)

    # Processing state — written by the detection processor only
    processed = Column(Boolean, default=False, nullable=False)
    processing_status = Column(String(30), default=STATUS_PENDING)
    processing_notes = Column(Text)
    processed_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), nullable=False)
    deleted_at = Column(DateTime(timezone=True))

    def __repr__(self):
        return f"<CameraDetection {self.id} plate={self.plate_number} status={self.processing_status}>"
