# app/services/receipt_service.py
"""
Receipts for collected payments, plus the hand-off to the printing side.
One receipt per passage at most; callers check total_amount > 0 first.
"""

import random
import string
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from app.models.receipt import Receipt
from app.models.vehicle_passage import VehiclePassage
from app.utils.logger import get_logger
from app.utils.timeutils import utcnow

logger = get_logger(__name__)


def generate_number(prefix: str) -> str:
    """PREFIX + YYYYMMDD + 6 random upper-case alphanumerics, e.g. RCPT20260101A1B2C3."""
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"{prefix}{utcnow().strftime('%Y%m%d')}{suffix}"


def get_receipt_for_passage(db: Session, passage_id: int) -> Optional[Receipt]:
    return db.query(Receipt).filter(Receipt.vehicle_passage_id == passage_id).first()


def create_receipt_for_passage(db: Session, passage: VehiclePassage, operator_id: int,
                               payment_data: Optional[dict] = None) -> Receipt:
    """
    Returns the passage's receipt, creating it if none exists.
    Flushes only — committed together with the passage update.
    """
    existing = get_receipt_for_passage(db, passage.id)
    if existing:
        return existing

    payment_data = payment_data or {}
    receipt = Receipt(
        receipt_number=generate_number("RCPT"),
        vehicle_passage_id=passage.id,
        amount=Decimal(passage.total_amount or 0),
        payment_method=payment_data.get("payment_method", "cash"),
        issued_by=operator_id,
        issued_at=utcnow(),
        notes=payment_data.get("notes"),
    )
    db.add(receipt)
    db.flush()
    logger.info(f"[RECEIPT] {receipt.receipt_number} issued for {passage.passage_number} amount={receipt.amount}")
    return receipt


def hand_off_receipt(passage: VehiclePassage, receipt: Optional[Receipt] = None):
    """Printing collaborator seam. Formatting and the printer itself live elsewhere."""
    logger.info(
        f"[RECEIPT] Hand-off passage={passage.passage_number} "
        f"receipt={receipt.receipt_number if receipt else '-'} total={passage.total_amount}"
    )
