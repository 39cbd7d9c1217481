# app/routers/passages.py
"""
Passage lifecycle endpoints — the seam operator screens and gate controllers call.
Business rejections (already inside, unpaid fee, ...) come back as HTTP 200
with success=false plus a reason and gate_action; the gate acts on those.
"""

from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.database import get_db
from app.models.vehicle_passage import VehiclePassage
from app.schemas.vehicle import PlateLookupOut
from app.schemas.vehicle_passage import (
    EntryRequest, ExitRequest, PaymentRequest, PassageOut, PassageResultOut, ReceiptOut,
)
from app.services import passage_service
from app.services.pricing_service import validate_pricing_configuration
from app.services.results import PassageResult

router = APIRouter()


def to_response(result: PassageResult) -> PassageResultOut:
    data = dict(result.extra)
    if result.vehicle is not None:
        data.setdefault("vehicle_id", result.vehicle.id)
        data.setdefault("plate_number", result.vehicle.plate_number)
    return PassageResultOut(
        success=result.success,
        message=result.message,
        reason=result.reason.value if result.reason else None,
        gate_action=result.gate_action.value,
        passage=PassageOut.model_validate(result.passage) if result.passage is not None else None,
        receipt=ReceiptOut.model_validate(result.receipt) if result.receipt is not None else None,
        quote=result.quote.as_dict() if result.quote is not None else None,
        data=data,
    )


@router.post("/passages/entry", response_model=PassageResultOut, summary="Record a vehicle entry")
def vehicle_entry(body: EntryRequest, db: Session = Depends(get_db)):
    extra = body.model_dump(exclude={"plate_number", "gate_id", "operator_id"}, exclude_none=True)
    result = passage_service.process_vehicle_entry(db, body.plate_number, body.gate_id, body.operator_id, extra)
    return to_response(result)


@router.post("/passages/exit", response_model=PassageResultOut, summary="Record a vehicle exit")
def vehicle_exit(body: ExitRequest, db: Session = Depends(get_db)):
    extra = body.model_dump(exclude={"plate_number", "gate_id", "operator_id"}, exclude_none=True)
    result = passage_service.process_vehicle_exit(db, body.plate_number, body.gate_id, body.operator_id, extra)
    return to_response(result)


@router.post("/passages/{passage_id}/payment", response_model=PassageResultOut, summary="Confirm entry payment")
def confirm_payment(passage_id: int, body: PaymentRequest, db: Session = Depends(get_db)):
    result = passage_service.confirm_entry_payment(
        db, passage_id, body.operator_id, body.model_dump(exclude={"operator_id"}, exclude_none=True),
    )
    return to_response(result)


@router.get("/passages/active", response_model=list[PassageOut], summary="Vehicles currently inside")
def active_passages(station_id: Optional[int] = None, limit: int = 100, db: Session = Depends(get_db)):
    q = db.query(VehiclePassage).filter(VehiclePassage.exit_time.is_(None), VehiclePassage.deleted_at.is_(None))
    if station_id:
        q = q.filter(VehiclePassage.entry_station_id == station_id)
    return q.order_by(VehiclePassage.entry_time.desc()).limit(limit).all()


@router.get("/passages/lookup/{plate_number}", response_model=PlateLookupOut, summary="Quick plate lookup")
def plate_lookup(plate_number: str, db: Session = Depends(get_db)):
    return passage_service.quick_plate_lookup(db, plate_number)


@router.get("/passages/quote", response_model=PassageResultOut, summary="Preview the entry price")
def entry_quote(plate_number: str, gate_id: int, body_type_id: Optional[int] = None,
                db: Session = Depends(get_db)):
    return to_response(passage_service.quote_entry(db, plate_number, gate_id, body_type_id))


@router.get("/pricing/validate/{station_id}", summary="Body types without a price at a station")
def pricing_check(station_id: int, db: Session = Depends(get_db)):
    return validate_pricing_configuration(db, station_id)
