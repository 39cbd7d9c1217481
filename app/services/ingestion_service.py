# app/services/ingestion_service.py
"""
Ingestion pipeline — pulls the latest ANPR results from a camera and stores
only detections the Detection Store has not seen yet.

Endpoint: GET http://{cam_ip}/edge/cgi-bin/vparcgi.cgi?computerid=N&oper=jsonlastresults&dd=...
The camera keeps a ring buffer and returns its last N results whatever `dd`
says, so every poll re-delivers old sightings. Duplicates are recognised by
(normalized plate, gate, timestamp ± DUPLICATE_TOLERANCE_SECONDS), reinforced
by the camera's own id when it sent one.

This module never touches vehicles or passages.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

import httpx
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config import settings
from app.models.camera_detection import CameraDetection, STATUS_PENDING
from app.models.station import Gate
from app.services.detection_parser import ParsedDetection, extract_items, parse_detection
from app.utils.logger import get_logger
from app.utils.timeutils import ensure_utc, utcnow

logger = get_logger(__name__)

_RESULTS_PATH = "/edge/cgi-bin/vparcgi.cgi"


@dataclass(frozen=True)
class CameraConfig:
    """Everything one poll needs to know about one camera. Passed explicitly per call."""
    camera_id: str
    ip: str
    gate_id: Optional[int]
    computer_id: int = 1
    timeout: float = 5.0

    @classmethod
    def from_settings(cls, camera_id: str, cam: dict) -> "CameraConfig":
        return cls(
            camera_id=camera_id,
            ip=cam["ip"],
            gate_id=cam.get("gate_id"),
            computer_id=int(cam.get("computer_id", 1)),
            timeout=float(cam.get("timeout", settings.CAMERA_TIMEOUT_SECONDS)),
        )


@dataclass
class FetchResult:
    success: bool
    message: str
    data: list = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.data)


@dataclass
class IngestSummary:
    success: bool = True
    message: str = ""
    fetched: int = 0
    stored: int = 0
    skipped: int = 0
    errors: int = 0

    def as_dict(self) -> dict:
        return {
            "success": self.success, "message": self.message, "fetched": self.fetched,
            "stored": self.stored, "skipped": self.skipped, "errors": self.errors,
        }


def default_since() -> datetime:
    return utcnow() - timedelta(hours=settings.DETECTION_LOOKBACK_HOURS)


def build_results_url(camera: CameraConfig, since: datetime) -> str:
    since = ensure_utc(since)
    date_param = since.strftime("%Y-%m-%dT%H:%M:%S.") + f"{since.microsecond // 1000:03d}"
    cache_buster = int(time.time() * 1000)
    return (f"http://{camera.ip}{_RESULTS_PATH}?computerid={camera.computer_id}"
            f"&oper=jsonlastresults&dd={date_param}&_={cache_buster}")


async def fetch_camera_detections(camera: CameraConfig, since: Optional[datetime] = None) -> FetchResult:
    """
    GET the camera's last results. Never raises: an unreachable camera, a
    timeout or a non-200 answer is a soft failure (success=False, no data),
    and the next scheduled poll simply tries again.
    """
    url = build_results_url(camera, since or default_since())
    logger.debug(f"[INGEST] {camera.camera_id} GET {url}")

    try:
        async with httpx.AsyncClient(timeout=camera.timeout) as client:
            response = await client.get(url)
    except (httpx.ConnectError, httpx.TimeoutException) as e:
        logger.warning(f"[INGEST] {camera.camera_id} ({camera.ip}) unreachable or timed out: {e}")
        return FetchResult(False, "Camera is unreachable or timed out")
    except httpx.HTTPError as e:
        logger.error(f"[INGEST] {camera.camera_id} request error: {e}")
        return FetchResult(False, f"Camera API error: {e}")

    if response.status_code != 200:
        logger.warning(f"[INGEST] {camera.camera_id} returned HTTP {response.status_code}")
        return FetchResult(False, f"Camera API request failed: {response.status_code}")

    try:
        body = response.json()
    except ValueError:
        logger.warning(f"[INGEST] {camera.camera_id} returned a non-JSON body ({len(response.content)} bytes)")
        return FetchResult(True, "No detections found")

    items = extract_items(body)
    logger.debug(f"[INGEST] {camera.camera_id} fetched {len(items)} items")
    return FetchResult(True, "Camera logs fetched successfully", items)


def latest_detection_timestamp(db: Session, gate_id: Optional[int]) -> Optional[datetime]:
    """Watermark: newest stored detection time for this gate."""
    q = db.query(func.max(CameraDetection.detection_timestamp))
    q = q.filter(CameraDetection.gate_id == gate_id) if gate_id is not None else q.filter(
        CameraDetection.gate_id.is_(None))
    return ensure_utc(q.scalar())


def detection_exists(db: Session, parsed: ParsedDetection) -> bool:
    """Same plate at the same gate within the tolerance window, or same camera id at the same instant."""
    tolerance = timedelta(seconds=settings.DUPLICATE_TOLERANCE_SECONDS)
    ts = parsed.detection_timestamp
    gate_filter = (CameraDetection.gate_id == parsed.gate_id if parsed.gate_id is not None
                   else CameraDetection.gate_id.is_(None))

    by_window = db.query(CameraDetection.id).filter(
        gate_filter,
        CameraDetection.plate_number == parsed.plate_number,
        CameraDetection.detection_timestamp >= ts - tolerance,
        CameraDetection.detection_timestamp <= ts + tolerance,
    ).first()
    if by_window:
        return True

    if parsed.external_id:
        by_external_id = db.query(CameraDetection.id).filter(
            gate_filter,
            CameraDetection.external_id == parsed.external_id,
            CameraDetection.detection_timestamp == ts,
        ).first()
        if by_external_id:
            return True

    return False


def _claim_gate(db: Session, gate_id: Optional[int]):
    """Row-lock the gate so overlapping polls of one gate check-and-insert one at a time."""
    if gate_id is not None:
        db.query(Gate.id).filter(Gate.id == gate_id).with_for_update().first()


def store_detections(db: Session, items: list, camera: CameraConfig,
                     since: Optional[datetime] = None) -> IngestSummary:
    """
    Persist genuinely new detections with processing_status='pending'.
    Each item is checked and committed on its own; one bad item is counted
    as an error and the rest of the batch carries on.
    """
    since = ensure_utc(since) or default_since()
    summary = IngestSummary(fetched=len(items))
    watermark = latest_detection_timestamp(db, camera.gate_id)

    for item in items:
        try:
            parsed = parse_detection(item, camera.gate_id)

            if not parsed.plate_number:
                summary.skipped += 1
                continue

            if parsed.detection_timestamp < since:
                summary.skipped += 1
                continue

            _claim_gate(db, parsed.gate_id)
            if detection_exists(db, parsed):
                db.rollback()
                summary.skipped += 1
                continue

            if watermark and parsed.detection_timestamp <= watermark:
                logger.info(
                    f"[INGEST] Late detection {parsed.plate_number} at {parsed.detection_timestamp.isoformat()} "
                    f"(watermark {watermark.isoformat()}) passed duplicate check — storing"
                )

            db.add(CameraDetection(
                external_id=parsed.external_id,
                gate_id=parsed.gate_id,
                plate_number=parsed.plate_number,
                original_plate=parsed.original_plate,
                detection_timestamp=parsed.detection_timestamp,
                direction=parsed.direction,
                confidence=parsed.confidence,
                make=parsed.make,
                model=parsed.model,
                color=parsed.color,
                vehicle_class=parsed.vehicle_class,
                raw_payload=parsed.raw_payload,
                processed=False,
                processing_status=STATUS_PENDING,
                created_at=utcnow(),
            ))
            db.commit()
            summary.stored += 1

        except Exception as e:
            db.rollback()
            summary.errors += 1
            logger.error(f"[INGEST] Failed to store detection {item.get('id')!r} from {camera.camera_id}: {e}")

    if summary.stored or summary.errors:
        logger.info(
            f"[INGEST] {camera.camera_id} gate={camera.gate_id} fetched={summary.fetched} "
            f"stored={summary.stored} skipped={summary.skipped} errors={summary.errors}"
        )
    summary.message = "Camera logs stored"
    return summary


async def fetch_and_store(db: Session, camera: CameraConfig, since: Optional[datetime] = None) -> IngestSummary:
    """One ingestion cycle for one camera. Always returns a summary."""
    since = ensure_utc(since) or default_since()
    fetch = await fetch_camera_detections(camera, since)

    if not fetch.success:
        return IngestSummary(success=False, message=fetch.message)

    if fetch.count == 0:
        return IngestSummary(message="No new detections found")

    summary = store_detections(db, fetch.data, camera, since)
    summary.message = "Camera logs fetched and stored successfully"
    return summary
