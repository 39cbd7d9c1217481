# app/services/passage_service.py
"""
Passage Lifecycle Manager — entry/exit state machine per vehicle.

States per vehicle: no passage ↔ open passage (exit_time IS NULL).

  process_vehicle_entry   no passage → open passage (priced, maybe unpaid)
  confirm_entry_payment   marks an open passage paid (idempotent)
  process_vehicle_exit    open passage → closed (must be paid)
  quick_plate_lookup      read-only gate decision helper
  quote_entry             read-only price preview

Every mutating call locks the vehicle row and does its check + write in one
transaction. The partial unique index on vehicle_passages backs this up: a
racing second entry fails with IntegrityError and comes back as
ACTIVE_PASSAGE_EXISTS, which callers treat as a normal outcome.

Pass autocommit=False when the caller needs to commit other rows in the same
transaction (the detection processor does this).
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.account import Account
from app.models.station import Gate, Station
from app.models.vehicle import Vehicle
from app.models.vehicle_passage import (
    VehiclePassage, PASSAGE_TOLL, PASSAGE_FREE, PASSAGE_REENTRY, PASSAGE_EXEMPTED,
    STATUS_ACTIVE, STATUS_COMPLETED,
)
from app.services import pricing_service
from app.services.pricing_service import PAYMENT_BUNDLE, PAYMENT_CASH, PAYMENT_EXEMPTION, PriceQuote, ZERO
from app.services.receipt_service import (
    create_receipt_for_passage, generate_number, get_receipt_for_passage, hand_off_receipt,
)
from app.services.results import FailureReason, GateAction, PassageResult
from app.services.vehicle_service import find_or_create_vehicle, lookup_vehicle_by_plate, normalize_plate
from app.utils.logger import get_logger
from app.utils.timeutils import billing_day_bounds, ensure_utc, utcnow

logger = get_logger(__name__)

_PASSAGE_TYPES = {
    PAYMENT_EXEMPTION: PASSAGE_EXEMPTED,
    PAYMENT_BUNDLE: PASSAGE_FREE,
    PAYMENT_CASH: PASSAGE_TOLL,
}


def generate_passage_number() -> str:
    return generate_number("PASS")


def get_gate(db: Session, gate_id: Optional[int]) -> Optional[Gate]:
    if not gate_id:
        return None
    return db.query(Gate).filter(Gate.id == gate_id, Gate.is_active.is_(True)).first()


def get_active_passage(db: Session, vehicle_id: int, for_update: bool = False) -> Optional[VehiclePassage]:
    """The vehicle's open passage, if any. There is never more than one."""
    q = db.query(VehiclePassage).filter(
        VehiclePassage.vehicle_id == vehicle_id,
        VehiclePassage.exit_time.is_(None),
        VehiclePassage.deleted_at.is_(None),
    )
    if for_update:
        q = q.with_for_update()
    return q.first()


def find_paid_passage_today(db: Session, vehicle_id: int, station_id: int,
                            now: datetime) -> Optional[VehiclePassage]:
    """A paid, non-zero toll passage entered at this station on the same billing day."""
    day_start, day_end = billing_day_bounds(now)
    return (
        db.query(VehiclePassage)
        .filter(
            VehiclePassage.vehicle_id == vehicle_id,
            VehiclePassage.entry_station_id == station_id,
            VehiclePassage.entry_time >= day_start,
            VehiclePassage.entry_time < day_end,
            VehiclePassage.passage_type == PASSAGE_TOLL,
            VehiclePassage.is_paid.is_(True),
            VehiclePassage.total_amount > 0,
            VehiclePassage.deleted_at.is_(None),
        )
        .order_by(VehiclePassage.entry_time)
        .first()
    )


def _resolve_account(db: Session, vehicle: Vehicle, extra: dict, now: datetime) -> Optional[Account]:
    account_id = extra.get("account_id")
    if account_id:
        return db.query(Account).filter(Account.id == account_id, Account.is_active.is_(True)).first()
    return pricing_service.find_bundle_account(db, vehicle, now)


def _finish(db: Session, autocommit: bool, *instances):
    if autocommit:
        db.commit()
        for instance in instances:
            if instance is not None:
                db.refresh(instance)
    else:
        db.flush()


def _abort(db: Session, autocommit: bool):
    # Releases the vehicle lock; with autocommit=False the caller decides
    if autocommit:
        db.rollback()


def _compute_paid_until(db: Session, vehicle: Vehicle, now: datetime) -> datetime:
    """Free re-entry window anchored on the first paid entry of the trailing window."""
    window = timedelta(hours=settings.FREE_REENTRY_HOURS)
    first = (
        db.query(VehiclePassage)
        .filter(
            VehiclePassage.vehicle_id == vehicle.id,
            VehiclePassage.entry_time >= now - window,
            VehiclePassage.passage_type == PASSAGE_TOLL,
            VehiclePassage.is_paid.is_(True),
            VehiclePassage.total_amount > 0,
            VehiclePassage.deleted_at.is_(None),
        )
        .order_by(VehiclePassage.entry_time)
        .first()
    )
    if first is None:
        return now + window
    return ensure_utc(first.entry_time) + window


# ── Entry ────────────────────────────────────────────────────────────────────

def process_vehicle_entry(db: Session, plate: str, gate_id: int, operator_id: int,
                          extra: Optional[dict] = None, autocommit: bool = True) -> PassageResult:
    """
    Open a passage for `plate` at `gate_id`.

    extra may carry body_type_id (applied when the vehicle has none),
    account_id (bundle account to charge), make/model/color/owner_name
    for new vehicles, and notes.
    """
    extra = extra or {}
    now = utcnow()
    plate = normalize_plate(plate)

    if not plate:
        return PassageResult.fail(FailureReason.INVALID_PLATE, "Plate number is required")

    gate = get_gate(db, gate_id)
    if gate is None:
        return PassageResult.fail(FailureReason.GATE_NOT_FOUND, f"Gate {gate_id} not found")
    station = db.query(Station).filter(Station.id == gate.station_id).first()
    if station is None:
        raise LookupError(f"Gate {gate.id} references missing station {gate.station_id}")

    try:
        vehicle = find_or_create_vehicle(db, plate, extra)

        active = get_active_passage(db, vehicle.id)
        if active:
            _abort(db, autocommit)
            logger.info(f"[ENTRY] {plate} rejected — already inside on {active.passage_number}")
            return PassageResult.fail(
                FailureReason.ACTIVE_PASSAGE_EXISTS,
                f"Vehicle {plate} already has an active passage",
                passage=active, vehicle=vehicle,
            )

        account = _resolve_account(db, vehicle, extra, now)
        quote = pricing_service.price(db, vehicle, station, account, now)

        if quote.payment_type == PAYMENT_CASH and not quote.configured:
            _abort(db, autocommit)
            return PassageResult.fail(
                FailureReason.NO_PRICING,
                f"No pricing configured for {plate}: vehicle body type is not set",
                vehicle=vehicle, quote=quote,
            )

        passage_type = _PASSAGE_TYPES[quote.payment_type]
        base, discount, total = quote.base_amount, quote.discount_amount, quote.total_amount
        notes = extra.get("notes")
        is_paid = passage_type != PASSAGE_TOLL or total <= 0

        if passage_type == PASSAGE_TOLL:
            paid_today = find_paid_passage_today(db, vehicle.id, station.id, now)
            if paid_today:
                passage_type = PASSAGE_REENTRY
                base = discount = total = ZERO
                is_paid = True
                notes = notes or f"Same-day re-entry, paid on {paid_today.passage_number}"

        passage = VehiclePassage(
            passage_number=generate_passage_number(),
            vehicle_id=vehicle.id,
            account_id=quote.account_id,
            bundle_subscription_id=quote.bundle_subscription_id,
            payment_type_id=quote.payment_type_id,
            entry_time=now,
            entry_operator_id=operator_id,
            entry_gate_id=gate.id,
            entry_station_id=station.id,
            passage_type=passage_type,
            base_amount=base,
            discount_amount=discount,
            total_amount=total,
            is_paid=is_paid,
            paid_at=now if is_paid else None,
            status=STATUS_ACTIVE,
            notes=notes,
            created_at=now,
        )
        db.add(passage)
        db.flush()
        _finish(db, autocommit, passage, vehicle)

    except IntegrityError:
        db.rollback()
        vehicle = lookup_vehicle_by_plate(db, plate)
        active = get_active_passage(db, vehicle.id) if vehicle else None
        if active is None:
            raise
        logger.warning(f"[ENTRY] {plate} lost a race — {active.passage_number} opened concurrently")
        return PassageResult.fail(
            FailureReason.ACTIVE_PASSAGE_EXISTS,
            f"Vehicle {plate} already has an active passage",
            passage=active, vehicle=vehicle,
        )

    requires_payment = not passage.is_paid
    gate_action = GateAction.REQUIRE_PAYMENT if requires_payment else GateAction.ALLOW
    logger.info(
        f"[ENTRY] {plate} {passage.passage_number} type={passage.passage_type} "
        f"total={passage.total_amount} gate={gate.id} action={gate_action.value}"
    )
    message = "Payment required before entry" if requires_payment else "Entry recorded"
    return PassageResult.ok(message, gate_action=gate_action, passage=passage, vehicle=vehicle, quote=quote)


def confirm_entry_payment(db: Session, passage_id: int, operator_id: int,
                          payment_data: Optional[dict] = None, autocommit: bool = True) -> PassageResult:
    """Collect the entry fee. Calling it again on a paid passage is a no-op success."""
    passage = (
        db.query(VehiclePassage)
        .filter(VehiclePassage.id == passage_id, VehiclePassage.deleted_at.is_(None))
        .with_for_update()
        .first()
    )
    if passage is None:
        return PassageResult.fail(FailureReason.PASSAGE_NOT_FOUND, f"Passage {passage_id} not found")

    if passage.is_paid:
        _abort(db, autocommit)
        return PassageResult.ok(
            "Passage already paid", passage=passage, receipt=get_receipt_for_passage(db, passage.id),
        )

    receipt = None
    if Decimal(passage.total_amount or 0) > 0:
        receipt = create_receipt_for_passage(db, passage, operator_id, payment_data)
    passage.is_paid = True
    passage.paid_at = utcnow()
    _finish(db, autocommit, passage, receipt)

    logger.info(f"[PAYMENT] {passage.passage_number} paid {passage.total_amount} by operator {operator_id}")
    if receipt:
        hand_off_receipt(passage, receipt)
    return PassageResult.ok("Payment confirmed", passage=passage, receipt=receipt)


# ── Exit ─────────────────────────────────────────────────────────────────────

def process_vehicle_exit(db: Session, plate: str, gate_id: int, operator_id: int,
                         extra: Optional[dict] = None, autocommit: bool = True) -> PassageResult:
    """
    Close the vehicle's open passage at `gate_id`.
    An unpaid fee blocks the exit unless extra["payment_confirmed"] is set,
    in which case the fee is collected here.
    """
    extra = extra or {}
    now = utcnow()
    plate = normalize_plate(plate)

    gate = get_gate(db, gate_id)
    if gate is None:
        return PassageResult.fail(FailureReason.GATE_NOT_FOUND, f"Gate {gate_id} not found")

    vehicle = lookup_vehicle_by_plate(db, plate, for_update=True)
    if vehicle is None:
        _abort(db, autocommit)
        return PassageResult.fail(FailureReason.VEHICLE_NOT_FOUND, f"Vehicle {plate} not found")

    passage = get_active_passage(db, vehicle.id, for_update=True)
    if passage is None:
        _abort(db, autocommit)
        return PassageResult.fail(
            FailureReason.NO_ACTIVE_PASSAGE, f"Vehicle {plate} has no active passage", vehicle=vehicle,
        )

    total = Decimal(passage.total_amount or 0)
    if not passage.is_paid and total > 0:
        if not extra.get("payment_confirmed"):
            _abort(db, autocommit)
            logger.info(f"[EXIT] {plate} denied — {passage.passage_number} has unpaid fee {total}")
            return PassageResult.fail(
                FailureReason.UNPAID_ENTRY_FEE,
                f"Unpaid entry fee of {total} on passage {passage.passage_number}",
                passage=passage, vehicle=vehicle,
            )
        passage.is_paid = True
        passage.paid_at = now
    elif not passage.is_paid:
        passage.is_paid = True
        passage.paid_at = now

    passage.exit_time = now
    passage.exit_gate_id = gate.id
    passage.exit_station_id = gate.station_id
    passage.exit_operator_id = operator_id
    passage.duration_minutes = int((now - ensure_utc(passage.entry_time)).total_seconds() // 60)
    passage.status = STATUS_COMPLETED

    receipt = None
    if passage.passage_type == PASSAGE_TOLL and total > 0:
        receipt = create_receipt_for_passage(db, passage, operator_id, extra)
        db.flush()
        vehicle.paid_until = _compute_paid_until(db, vehicle, now)
        vehicle.updated_at = now

    _finish(db, autocommit, passage, vehicle, receipt)

    logger.info(
        f"[EXIT] {plate} {passage.passage_number} closed after {passage.duration_minutes} min "
        f"type={passage.passage_type} total={passage.total_amount}"
    )
    hand_off_receipt(passage, receipt)
    return PassageResult.ok("Exit recorded", passage=passage, vehicle=vehicle, receipt=receipt)


# ── Read-only helpers ────────────────────────────────────────────────────────

def quick_plate_lookup(db: Session, plate: str) -> dict:
    """Vehicle, open passage and bundle linkage for a plate, with a suggested gate action."""
    plate = normalize_plate(plate)
    vehicle = lookup_vehicle_by_plate(db, plate)
    if vehicle is None:
        return {"plate_number": plate, "found": False, "has_active_passage": False,
                "gate_action": GateAction.REQUIRE_PAYMENT.value}

    now = utcnow()
    active = get_active_passage(db, vehicle.id)
    account = pricing_service.find_bundle_account(db, vehicle, now)
    exempted = vehicle.is_currently_exempted(now)

    if active is not None:
        settled = active.is_paid or Decimal(active.total_amount or 0) <= 0
        gate_action = GateAction.ALLOW if settled else GateAction.REQUIRE_PAYMENT
    elif exempted or account is not None:
        gate_action = GateAction.ALLOW
    else:
        gate_action = GateAction.REQUIRE_PAYMENT

    return {
        "plate_number": vehicle.plate_number,
        "found": True,
        "vehicle_id": vehicle.id,
        "body_type_id": vehicle.body_type_id,
        "is_exempted": exempted,
        "paid_until": ensure_utc(vehicle.paid_until),
        "has_active_passage": active is not None,
        "active_passage_id": active.id if active else None,
        "active_passage_number": active.passage_number if active else None,
        "active_passage_paid": active.is_paid if active else None,
        "bundle_account_id": account.id if account else None,
        "gate_action": gate_action.value,
    }


def quote_entry(db: Session, plate: str, gate_id: int, body_type_id: Optional[int] = None) -> PassageResult:
    """What an entry right now would cost, same-day re-entry included. Writes nothing."""
    now = utcnow()
    plate = normalize_plate(plate)

    gate = get_gate(db, gate_id)
    if gate is None:
        return PassageResult.fail(FailureReason.GATE_NOT_FOUND, f"Gate {gate_id} not found")
    station = db.query(Station).filter(Station.id == gate.station_id).first()

    vehicle = lookup_vehicle_by_plate(db, plate)
    if vehicle is None:
        if not body_type_id:
            return PassageResult.fail(FailureReason.VEHICLE_NOT_FOUND, f"Vehicle {plate} not found")
        vehicle = Vehicle(plate_number=plate, body_type_id=body_type_id, is_exempted=False)
    elif body_type_id and not vehicle.body_type_id:
        # Preview only; never flushed
        vehicle = Vehicle(id=vehicle.id, plate_number=plate, body_type_id=body_type_id,
                          is_exempted=vehicle.is_exempted, exemption_reason=vehicle.exemption_reason,
                          exemption_expires_at=vehicle.exemption_expires_at)

    account = pricing_service.find_bundle_account(db, vehicle, now) if vehicle.id else None
    quote = pricing_service.price(db, vehicle, station, account, now)
    if quote.payment_type == PAYMENT_CASH and not quote.configured:
        return PassageResult.fail(FailureReason.NO_PRICING, quote.description, quote=quote)

    reentry = None
    if quote.payment_type == PAYMENT_CASH and vehicle.id:
        reentry = find_paid_passage_today(db, vehicle.id, station.id, now)
    if reentry:
        quote = PriceQuote(
            payment_type=quote.payment_type,
            payment_type_id=quote.payment_type_id,
            pricing_id=quote.pricing_id,
            description=f"Same-day re-entry, paid on {reentry.passage_number}",
        )

    gate_action = GateAction.REQUIRE_PAYMENT if quote.requires_payment else GateAction.ALLOW
    return PassageResult.ok(quote.description, gate_action=gate_action, quote=quote,
                            extra={"reentry": reentry is not None})
