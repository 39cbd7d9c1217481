# app/services/pricing_service.py
"""
Pricing Engine — decides what a vehicle pays at a station.

Decision order (first match wins):
  1. Vehicle currently exempted            → Exemption, 0
  2. Account has a bundle covering now     → Bundle, 0
  3. Otherwise                             → Cash, daily body-type × station price

A missing price row never blocks the gate: Cash falls back to 0 with a
diagnostic. Nothing in here writes to the DB except ensure_payment_types(),
which is only called at startup / from scripts.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models.account import Account, AccountVehicle, BundleSubscription
from app.models.body_type import VehicleBodyType, VehicleBodyTypePrice
from app.models.payment_type import PaymentType
from app.models.station import Station
from app.models.vehicle import Vehicle
from app.utils.logger import get_logger
from app.utils.timeutils import billing_date, ensure_utc, utcnow

logger = get_logger(__name__)

PAYMENT_CASH = "Cash"
PAYMENT_BUNDLE = "Bundle"
PAYMENT_EXEMPTION = "Exemption"

DEFAULT_PAYMENT_TYPES = {
    PAYMENT_CASH: "Pay per visit at the gate",
    PAYMENT_BUNDLE: "Covered by an active bundle subscription",
    PAYMENT_EXEMPTION: "Exempted vehicle, no charge",
}

ZERO = Decimal("0.00")


@dataclass
class PriceQuote:
    payment_type: str
    payment_type_id: Optional[int]
    base_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    total_amount: Decimal = ZERO
    requires_payment: bool = False
    bundle_subscription_id: Optional[int] = None
    account_id: Optional[int] = None
    pricing_id: Optional[int] = None
    configured: bool = True        # False → vehicle has no body type, price unknown
    description: str = ""

    def as_dict(self) -> dict:
        return {
            "payment_type": self.payment_type,
            "payment_type_id": self.payment_type_id,
            "base_amount": float(self.base_amount),
            "discount_amount": float(self.discount_amount),
            "total_amount": float(self.total_amount),
            "requires_payment": self.requires_payment,
            "bundle_subscription_id": self.bundle_subscription_id,
            "account_id": self.account_id,
            "pricing_id": self.pricing_id,
            "configured": self.configured,
            "description": self.description,
        }


def ensure_payment_types(db: Session) -> dict:
    """Seed Cash / Bundle / Exemption if missing. Returns {name: id}."""
    existing = {pt.name: pt for pt in db.query(PaymentType).all()}
    created = []
    for name, description in DEFAULT_PAYMENT_TYPES.items():
        if name not in existing:
            pt = PaymentType(name=name, description=description, is_active=True)
            db.add(pt)
            existing[name] = pt
            created.append(name)
    if created:
        db.commit()
        logger.info(f"[PRICING] Seeded payment types: {', '.join(created)}")
    return {name: pt.id for name, pt in existing.items()}


def get_payment_type(db: Session, name: str) -> PaymentType:
    payment_type = db.query(PaymentType).filter(PaymentType.name == name).first()
    if payment_type is None:
        # Reference data that must exist — seed with ensure_payment_types()
        raise LookupError(f"Payment type '{name}' is not configured")
    return payment_type


def get_active_bundle_subscription(db: Session, account_id: Optional[int],
                                   now: Optional[datetime] = None) -> Optional[BundleSubscription]:
    """Active subscription on this account whose window covers `now`, latest-ending first."""
    if not account_id:
        return None
    now = now or utcnow()
    return (
        db.query(BundleSubscription)
        .filter(
            BundleSubscription.account_id == account_id,
            BundleSubscription.status == "active",
            BundleSubscription.start_datetime <= now,
            BundleSubscription.end_datetime >= now,
        )
        .order_by(BundleSubscription.end_datetime.desc())
        .first()
    )


def has_active_bundle_subscription(db: Session, account_id: Optional[int],
                                   now: Optional[datetime] = None) -> bool:
    return get_active_bundle_subscription(db, account_id, now) is not None


def find_bundle_account(db: Session, vehicle: Vehicle, now: Optional[datetime] = None) -> Optional[Account]:
    """First active account linked to the vehicle that holds a live bundle. Primary links first."""
    links = (
        db.query(AccountVehicle)
        .filter(AccountVehicle.vehicle_id == vehicle.id)
        .order_by(AccountVehicle.is_primary.desc(), AccountVehicle.id)
        .all()
    )
    for link in links:
        account = db.query(Account).filter(Account.id == link.account_id, Account.is_active.is_(True)).first()
        if account and has_active_bundle_subscription(db, account.id, now):
            return account
    return None


def get_current_price(db: Session, body_type_id: int, station_id: int,
                      now: Optional[datetime] = None) -> Optional[VehicleBodyTypePrice]:
    """Active price row for body type × station effective on the billing day; newest effective_from wins."""
    today = billing_date(now or utcnow())
    return (
        db.query(VehicleBodyTypePrice)
        .filter(
            VehicleBodyTypePrice.body_type_id == body_type_id,
            VehicleBodyTypePrice.station_id == station_id,
            VehicleBodyTypePrice.is_active.is_(True),
            VehicleBodyTypePrice.effective_from <= today,
            or_(VehicleBodyTypePrice.effective_to.is_(None), VehicleBodyTypePrice.effective_to >= today),
        )
        .order_by(VehicleBodyTypePrice.effective_from.desc(), VehicleBodyTypePrice.id.desc())
        .first()
    )


def price(db: Session, vehicle: Vehicle, station: Station, account: Optional[Account] = None,
          now: Optional[datetime] = None) -> PriceQuote:
    """Quote for one visit of `vehicle` at `station`. Read-only."""
    now = now or utcnow()

    if vehicle.is_currently_exempted(now):
        pt = get_payment_type(db, PAYMENT_EXEMPTION)
        return PriceQuote(
            payment_type=PAYMENT_EXEMPTION,
            payment_type_id=pt.id,
            description=f"Exempted: {vehicle.exemption_reason or 'no reason recorded'}",
        )

    if account is not None:
        bundle = get_active_bundle_subscription(db, account.id, now)
        if bundle:
            pt = get_payment_type(db, PAYMENT_BUNDLE)
            return PriceQuote(
                payment_type=PAYMENT_BUNDLE,
                payment_type_id=pt.id,
                bundle_subscription_id=bundle.id,
                account_id=account.id,
                description=f"Bundle '{bundle.bundle_name or bundle.id}' until {ensure_utc(bundle.end_datetime).isoformat()}",
            )

    cash = get_payment_type(db, PAYMENT_CASH)

    if not vehicle.body_type_id:
        return PriceQuote(
            payment_type=PAYMENT_CASH,
            payment_type_id=cash.id,
            configured=False,
            description="Vehicle has no body type, price cannot be determined",
        )

    row = get_current_price(db, vehicle.body_type_id, station.id, now)
    if row is None:
        logger.warning(
            f"[PRICING] No price for body_type={vehicle.body_type_id} at station={station.id} "
            f"— charging 0 for {vehicle.plate_number}"
        )
        return PriceQuote(
            payment_type=PAYMENT_CASH,
            payment_type_id=cash.id,
            description="No pricing configured for this body type at this station",
        )

    amount = Decimal(row.base_price).quantize(ZERO)
    return PriceQuote(
        payment_type=PAYMENT_CASH,
        payment_type_id=cash.id,
        base_amount=amount,
        total_amount=amount,
        requires_payment=amount > 0,
        pricing_id=row.id,
        description=f"Daily rate {amount}",
    )


def validate_pricing_configuration(db: Session, station_id: int, now: Optional[datetime] = None) -> dict:
    """Which active body types have no effective price at this station."""
    body_types = db.query(VehicleBodyType).filter(VehicleBodyType.is_active.is_(True)).order_by(VehicleBodyType.id).all()
    missing = [
        {"body_type_id": bt.id, "name": bt.name}
        for bt in body_types
        if get_current_price(db, bt.id, station_id, now) is None
    ]
    if missing:
        logger.warning(f"[PRICING] Station {station_id} has no price for {len(missing)} body type(s)")
    return {
        "station_id": station_id,
        "valid": not missing,
        "body_types": len(body_types),
        "missing": missing,
    }
