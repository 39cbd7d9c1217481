# app/services/vehicle_service.py
"""
Vehicle lookup and management helpers.
Used by the detection processor, the passage lifecycle and the passages router.
"""

from typing import Optional
from sqlalchemy.orm import Session
from app.models.vehicle import Vehicle
from app.utils.logger import get_logger
from app.utils.timeutils import utcnow

logger = get_logger(__name__)


def normalize_plate(plate: Optional[str]) -> str:
    """Upper-case and drop all whitespace: ' abc 123 ' -> 'ABC123'."""
    if not plate:
        return ""
    return "".join(str(plate).split()).upper()


def lookup_vehicle_by_plate(db: Session, plate_number: str, for_update: bool = False) -> Optional[Vehicle]:
    """Find a vehicle by plate number. Returns None if not found."""
    q = db.query(Vehicle).filter(
        Vehicle.plate_number == normalize_plate(plate_number),
        Vehicle.deleted_at.is_(None),
    )
    if for_update:
        q = q.with_for_update()
    return q.first()


def is_registered(db: Session, plate_number: str) -> bool:
    """Check if a plate number is known to the system."""
    return lookup_vehicle_by_plate(db, plate_number) is not None


def find_or_create_vehicle(db: Session, plate_number: str, extra: Optional[dict] = None) -> Vehicle:
    """
    Locks and returns the vehicle for this plate, creating it when unseen.
    A body type from `extra` is only applied when the vehicle has none yet.
    Flushes but does not commit — the caller owns the transaction.
    """
    extra = extra or {}
    vehicle = lookup_vehicle_by_plate(db, plate_number, for_update=True)

    if vehicle is None:
        vehicle = Vehicle(
            plate_number=normalize_plate(plate_number),
            body_type_id=extra.get("body_type_id"),
            make=extra.get("make"),
            model=extra.get("model"),
            color=extra.get("color"),
            owner_name=extra.get("owner_name"),
            is_registered=False,
            created_at=utcnow(),
            updated_at=utcnow(),
        )
        db.add(vehicle)
        db.flush()
        logger.info(f"[VEHICLE] Created {vehicle.plate_number} (id={vehicle.id}, body_type={vehicle.body_type_id})")
    elif extra.get("body_type_id") and not vehicle.body_type_id:
        vehicle.body_type_id = extra["body_type_id"]
        vehicle.updated_at = utcnow()
        db.flush()
        logger.info(f"[VEHICLE] {vehicle.plate_number} body type set to {vehicle.body_type_id}")

    return vehicle
