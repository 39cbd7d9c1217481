# app/services/detection_processor.py
"""
Detection Processor — drains the pending detection queue.

A processing cycle never opens or closes a passage on its own. Every
detection ends up in one of:
  pending_vehicle_type → operator confirms an entry (confirm_pending_entry)
  pending_exit         → operator confirms an exit  (confirm_pending_exit)
  processed / failed   → terminal, with the reason in processing_notes

The confirmation calls are where detections meet the passage lifecycle.
Lifecycle failures are routed by FailureReason:
  ACTIVE_PASSAGE_EXISTS → pending_exit (or terminal if the gate is entry-only)
  NO_PRICING            → pending_vehicle_type
  VEHICLE_NOT_FOUND     → pending_vehicle_type
  UNPAID_ENTRY_FEE      → stays pending_exit until payment is collected
  anything else         → processed with the error, counted as error
An exception from the lifecycle marks the detection failed. A detection
settled by another confirmation in the meantime is left as it is.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.models.camera_detection import (
    CameraDetection, DIRECTION_EXIT,
    STATUS_PENDING, STATUS_PENDING_VEHICLE_TYPE, STATUS_PENDING_EXIT, STATUS_PROCESSED, STATUS_FAILED,
)
from app.services.passage_service import get_active_passage, get_gate, process_vehicle_entry, process_vehicle_exit
from app.services.results import FailureReason, PassageResult
from app.services.vehicle_service import lookup_vehicle_by_plate
from app.utils.logger import get_logger
from app.utils.timeutils import utcnow

logger = get_logger(__name__)

CONFIRMABLE_ENTRY = (STATUS_PENDING_VEHICLE_TYPE, STATUS_PENDING, None)
CONFIRMABLE_EXIT = (STATUS_PENDING_EXIT, STATUS_PENDING, None)


@dataclass
class ProcessingSummary:
    success: bool = True
    message: str = ""
    processed: int = 0
    errors: int = 0
    pending_vehicle_type: int = 0
    pending_exit: int = 0
    total: int = 0

    def as_dict(self) -> dict:
        return {
            "success": self.success, "message": self.message, "processed": self.processed,
            "errors": self.errors, "pending_vehicle_type": self.pending_vehicle_type,
            "pending_exit": self.pending_exit, "total": self.total,
        }


class DetectionNotConfirmable(Exception):
    """Detection is missing, already handled, or not in a state the confirmation accepts."""


def _is_postgres(db: Session) -> bool:
    return bool(db.bind and db.bind.dialect.name == "postgresql")


def _is_eligible(detection: CameraDetection) -> bool:
    return (not detection.processed and detection.deleted_at is None
            and detection.processing_status in (None, STATUS_PENDING))


def _set_status(detection: CameraDetection, status: str, notes: str, terminal: bool = False):
    detection.processing_status = status
    detection.processing_notes = notes
    if terminal:
        detection.processed = True
        detection.processed_at = utcnow()


def mark_processed(detection: CameraDetection, notes: str):
    _set_status(detection, STATUS_PROCESSED, notes, terminal=True)


def mark_failed(detection: CameraDetection, notes: str):
    _set_status(detection, STATUS_FAILED, notes, terminal=True)


def _route_detection(db: Session, detection: CameraDetection, summary: ProcessingSummary):
    """Decide one detection's next state. Only writes to the detection row."""
    if not (detection.plate_number or "").strip():
        mark_processed(detection, "Skipped: empty plate")
        summary.errors += 1
        return

    gate = get_gate(db, detection.gate_id)
    if gate is None:
        mark_failed(detection, "Invalid gate ID" if not detection.gate_id else f"Gate {detection.gate_id} not found")
        summary.errors += 1
        logger.warning(f"[PROCESSOR] Detection {detection.id} ({detection.plate_number}) has no usable gate")
        return

    vehicle = lookup_vehicle_by_plate(db, detection.plate_number)
    if vehicle is None:
        _set_status(detection, STATUS_PENDING_VEHICLE_TYPE, "Vehicle not found - awaiting vehicle type selection")
        summary.pending_vehicle_type += 1
        return

    if detection.direction != DIRECTION_EXIT:
        # Entries always wait for an operator, known vehicle or not
        _set_status(detection, STATUS_PENDING_VEHICLE_TYPE, "Entry detected - awaiting operator confirmation")
        summary.pending_vehicle_type += 1
        return

    active = get_active_passage(db, vehicle.id)
    if active is None:
        _set_status(detection, STATUS_PENDING_VEHICLE_TYPE,
                    "Exit detected without an active passage - treated as entry, awaiting confirmation")
        summary.pending_vehicle_type += 1
        return

    if gate.supports_exit:
        _set_status(detection, STATUS_PENDING_EXIT,
                    f"Vehicle has active passage {active.passage_number} - awaiting exit confirmation")
        summary.pending_exit += 1
        return

    mark_processed(detection, f"Exit detected at entry-only gate {gate.id} while {active.passage_number} is open")
    summary.errors += 1


def process_pending_detections(db: Session) -> ProcessingSummary:
    """
    One processing cycle. Locks every candidate row for the cycle's
    transaction, oldest first so an entry is always seen before a later exit.
    Never raises; a broken detection is marked failed and the batch goes on.
    """
    summary = ProcessingSummary()
    postgres = _is_postgres(db)

    try:
        query = (
            db.query(CameraDetection)
            .filter(
                CameraDetection.processed.is_(False),
                CameraDetection.deleted_at.is_(None),
                or_(CameraDetection.processing_status.is_(None),
                    CameraDetection.processing_status == STATUS_PENDING),
            )
            .order_by(CameraDetection.detection_timestamp, CameraDetection.id)
        )
        # Rows held by an overlapping cycle are left for it
        query = query.with_for_update(skip_locked=True) if postgres else query.with_for_update()
        candidates = query.all()

        if not candidates:
            db.commit()
            summary.message = "No unprocessed detections found"
            return summary

        for detection in candidates:
            db.refresh(detection)
            if not _is_eligible(detection):
                continue
            summary.total += 1
            try:
                if postgres:
                    with db.begin_nested():
                        _route_detection(db, detection, summary)
                else:
                    _route_detection(db, detection, summary)
            except Exception as e:
                logger.error(f"[PROCESSOR] Detection {detection.id} failed: {e}", exc_info=True)
                mark_failed(detection, f"Processing error: {e}")
                summary.errors += 1

        db.commit()

    except Exception as e:
        db.rollback()
        logger.error(f"[PROCESSOR] Cycle aborted: {e}", exc_info=True)
        summary.success = False
        summary.message = f"Processing cycle failed: {e}"
        return summary

    summary.message = (
        f"Processed {summary.processed} detections, {summary.errors} errors, "
        f"{summary.pending_vehicle_type} pending vehicle type, {summary.pending_exit} pending exit"
    )
    if summary.total:
        logger.info(f"[PROCESSOR] {summary.message}")
    return summary


# ── Operator confirmation ────────────────────────────────────────────────────

def _claim_detection(db: Session, detection_id: int, allowed: tuple) -> CameraDetection:
    detection = (
        db.query(CameraDetection)
        .filter(CameraDetection.id == detection_id, CameraDetection.deleted_at.is_(None))
        .with_for_update()
        .first()
    )
    if detection is None:
        raise DetectionNotConfirmable(f"Detection {detection_id} not found")
    if detection.processed or detection.processing_status not in allowed:
        db.rollback()
        raise DetectionNotConfirmable(
            f"Detection {detection_id} is {detection.processing_status or 'pending'}"
            f"{' (processed)' if detection.processed else ''} and cannot be confirmed"
        )
    return detection


def _detection_extra(detection: CameraDetection, extra: Optional[dict]) -> dict:
    merged = {
        "make": detection.make,
        "model": detection.model,
        "color": detection.color,
        "notes": "Automated camera detection",
        "camera_detection_id": detection.id,
    }
    merged.update(extra or {})
    return merged


def _relock(db: Session, detection_id: int) -> Optional[CameraDetection]:
    return db.query(CameraDetection).filter(CameraDetection.id == detection_id).with_for_update().first()


def _still_claimable(detection: Optional[CameraDetection], allowed: tuple) -> bool:
    return detection is not None and not detection.processed and detection.processing_status in allowed


def _apply_result(db: Session, detection_id: int, result: PassageResult, exiting: bool,
                  allowed: tuple) -> PassageResult:
    """Record the lifecycle outcome on the detection and commit it with the passage."""
    if not result.success:
        # The passage write (if any) is already gone; start clean and re-lock the detection
        db.rollback()
    detection = _relock(db, detection_id)

    if not _still_claimable(detection, allowed):
        # Another confirmation settled this detection while the lock was released
        db.commit()
        logger.info(f"[PROCESSOR] Detection {detection_id} already handled elsewhere, outcome not recorded")
        return result

    if result.success:
        mark_processed(detection, f"{'Exit' if exiting else 'Entry'} confirmed, passage {result.passage_id}")
    elif result.reason == FailureReason.ACTIVE_PASSAGE_EXISTS:
        gate = get_gate(db, detection.gate_id)
        if gate is not None and gate.supports_exit:
            _set_status(detection, STATUS_PENDING_EXIT,
                        "Vehicle already has an active passage - awaiting exit confirmation")
        else:
            mark_processed(detection, f"Error: {result.message}")
    elif result.reason in (FailureReason.NO_PRICING, FailureReason.VEHICLE_NOT_FOUND):
        _set_status(detection, STATUS_PENDING_VEHICLE_TYPE, f"{result.message} - awaiting vehicle type selection")
    elif result.reason == FailureReason.UNPAID_ENTRY_FEE and exiting:
        _set_status(detection, STATUS_PENDING_EXIT, f"{result.message} - collect payment and confirm again")
    else:
        mark_processed(detection, f"Error: {result.message}")

    db.commit()
    logger.info(
        f"[PROCESSOR] Detection {detection.id} {detection.plate_number} → {detection.processing_status} "
        f"({'ok' if result.success else result.reason.value})"
    )
    return result


def _fail_confirmation(db: Session, detection_id: int, allowed: tuple, error: Exception) -> PassageResult:
    """The lifecycle call blew up: drop its writes and mark the detection failed."""
    logger.error(f"[PROCESSOR] Confirmation of detection {detection_id} failed: {error}", exc_info=True)
    db.rollback()
    detection = _relock(db, detection_id)
    if _still_claimable(detection, allowed):
        mark_failed(detection, f"Processing error: {error}")
    db.commit()
    return PassageResult.fail(FailureReason.PROCESSING_ERROR, f"Processing error: {error}")


def confirm_pending_entry(db: Session, detection_id: int, operator_id: int,
                          body_type_id: Optional[int] = None, extra: Optional[dict] = None) -> PassageResult:
    """
    Operator confirmed an entry detection. Creates the vehicle with the chosen
    body type when it does not exist yet, then opens the passage.
    Raises DetectionNotConfirmable when the detection is not awaiting an entry.
    """
    detection = _claim_detection(db, detection_id, CONFIRMABLE_ENTRY)
    extra = _detection_extra(detection, extra)
    if body_type_id:
        extra["body_type_id"] = body_type_id

    try:
        result = process_vehicle_entry(db, detection.plate_number, detection.gate_id, operator_id,
                                       extra, autocommit=False)
    except Exception as e:
        return _fail_confirmation(db, detection_id, CONFIRMABLE_ENTRY, e)
    return _apply_result(db, detection_id, result, exiting=False, allowed=CONFIRMABLE_ENTRY)


def confirm_pending_exit(db: Session, detection_id: int, operator_id: int,
                         payment_confirmed: bool = False, extra: Optional[dict] = None) -> PassageResult:
    """Operator confirmed an exit detection; closes the open passage."""
    detection = _claim_detection(db, detection_id, CONFIRMABLE_EXIT)
    extra = _detection_extra(detection, extra)
    extra["payment_confirmed"] = payment_confirmed

    try:
        result = process_vehicle_exit(db, detection.plate_number, detection.gate_id, operator_id,
                                      extra, autocommit=False)
    except Exception as e:
        return _fail_confirmation(db, detection_id, CONFIRMABLE_EXIT, e)
    return _apply_result(db, detection_id, result, exiting=True, allowed=CONFIRMABLE_EXIT)


# ── Queue views ──────────────────────────────────────────────────────────────

def get_queue_status(db: Session) -> dict:
    """Counts per processing_status, pending including NULL."""
    rows = (
        db.query(CameraDetection.processing_status, func.count(CameraDetection.id))
        .filter(CameraDetection.deleted_at.is_(None))
        .group_by(CameraDetection.processing_status)
        .all()
    )
    counts = {status: 0 for status in (STATUS_PENDING, STATUS_PENDING_VEHICLE_TYPE, STATUS_PENDING_EXIT,
                                       STATUS_PROCESSED, STATUS_FAILED)}
    for status, count in rows:
        key = status or STATUS_PENDING
        counts[key] = counts.get(key, 0) + count
    counts["total"] = sum(counts.values())
    return counts


def list_pending_detections(db: Session, status: str, gate_id: Optional[int] = None, limit: int = 50) -> list:
    """Detections waiting in one of the operator queues, oldest first."""
    q = db.query(CameraDetection).filter(
        CameraDetection.processing_status == status,
        CameraDetection.processed.is_(False),
        CameraDetection.deleted_at.is_(None),
    )
    if gate_id:
        q = q.filter(CameraDetection.gate_id == gate_id)
    return q.order_by(CameraDetection.detection_timestamp, CameraDetection.id).limit(limit).all()
