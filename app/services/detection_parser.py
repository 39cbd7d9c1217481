# app/services/detection_parser.py
"""
Normalizes raw ANPR camera payloads into ParsedDetection records.
The camera returns either a bare JSON array or {"data": [...]}; each item
carries at least id, numberplate, timestamp and direction.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from app.models.camera_detection import DIRECTION_ENTRY, DIRECTION_EXIT, DIRECTION_UNKNOWN
from app.services.vehicle_service import normalize_plate
from app.utils.logger import get_logger
from app.utils.timeutils import parse_timestamp, utcnow

logger = get_logger(__name__)

_DIRECTIONS = {
    "0": DIRECTION_ENTRY, "entry": DIRECTION_ENTRY, "in": DIRECTION_ENTRY,
    "1": DIRECTION_EXIT, "exit": DIRECTION_EXIT, "out": DIRECTION_EXIT,
}


@dataclass
class ParsedDetection:
    external_id: Optional[str]
    gate_id: Optional[int]
    plate_number: str            # normalized, "" when the camera read nothing
    original_plate: Optional[str]
    detection_timestamp: datetime
    direction: str               # entry | exit | unknown
    raw_payload: dict
    confidence: Optional[float] = None
    make: Optional[str] = None
    model: Optional[str] = None
    color: Optional[str] = None
    vehicle_class: Optional[str] = None


def extract_items(body: Any) -> list:
    """Accepts a bare list or {"data": [...]}; anything else yields []."""
    if isinstance(body, list):
        return [item for item in body if isinstance(item, dict)]
    if isinstance(body, dict):
        data = body.get("data")
        if isinstance(data, list):
            return [item for item in data if isinstance(item, dict)]
    logger.warning(f"[INGEST] Unrecognised camera payload shape: {type(body).__name__}")
    return []


def parse_direction(value: Any) -> str:
    if value is None:
        return DIRECTION_UNKNOWN
    return _DIRECTIONS.get(str(value).strip().lower(), DIRECTION_UNKNOWN)


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def parse_detection(item: dict, default_gate_id: Optional[int] = None) -> ParsedDetection:
    """
    Map one camera item to a ParsedDetection.
    A gate_id/gateId in the payload (frontend push) wins over the camera's gate.
    Raises ValueError on an unparseable timestamp.
    """
    incoming_gate = item.get("gate_id") or item.get("gateId")
    gate_id = int(incoming_gate) if incoming_gate else default_gate_id

    timestamp = parse_timestamp(item.get("timestamp")) or parse_timestamp(item.get("utctime")) or utcnow()
    external_id = item.get("id")

    return ParsedDetection(
        external_id=str(external_id) if external_id not in (None, "") else None,
        gate_id=gate_id,
        plate_number=normalize_plate(item.get("numberplate")),
        original_plate=_to_str(item.get("originalplate")),
        detection_timestamp=timestamp,
        direction=parse_direction(item.get("direction")),
        raw_payload=item,
        confidence=_to_float(item.get("globalconfidence")),
        make=_to_str(item.get("make_str") or item.get("make")),
        model=_to_str(item.get("model_str") or item.get("model")),
        color=_to_str(item.get("color_str") or item.get("color")),
        vehicle_class=_to_str(item.get("veclass_str")),
    )
