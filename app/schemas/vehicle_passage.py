# app/schemas/vehicle_passage.py
from pydantic import BaseModel
from datetime import datetime
from typing import Any, Optional


class PassageOut(BaseModel):
    id: int
    passage_number: str
    vehicle_id: int
    account_id: Optional[int]
    bundle_subscription_id: Optional[int]
    payment_type_id: Optional[int]
    entry_time: datetime
    entry_gate_id: int
    entry_station_id: int
    exit_time: Optional[datetime]
    exit_gate_id: Optional[int]
    exit_station_id: Optional[int]
    passage_type: str
    base_amount: float
    discount_amount: float
    total_amount: float
    is_paid: bool
    paid_at: Optional[datetime]
    status: str
    duration_minutes: Optional[int]
    notes: Optional[str]

    class Config:
        from_attributes = True


class ReceiptOut(BaseModel):
    id: int
    receipt_number: str
    vehicle_passage_id: int
    amount: float
    payment_method: str
    issued_by: Optional[int]
    issued_at: datetime

    class Config:
        from_attributes = True


class EntryRequest(BaseModel):
    plate_number: str
    gate_id: int
    operator_id: int
    body_type_id: Optional[int] = None
    account_id: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None
    color: Optional[str] = None
    owner_name: Optional[str] = None
    notes: Optional[str] = None


class ExitRequest(BaseModel):
    plate_number: str
    gate_id: int
    operator_id: int
    payment_confirmed: bool = False
    payment_method: Optional[str] = None
    notes: Optional[str] = None


class PaymentRequest(BaseModel):
    operator_id: int
    payment_method: str = "cash"
    notes: Optional[str] = None


class PassageResultOut(BaseModel):
    """What the gate / operator screen gets back from every lifecycle call."""
    success: bool
    message: str
    reason: Optional[str] = None
    gate_action: str
    passage: Optional[PassageOut] = None
    receipt: Optional[ReceiptOut] = None
    quote: Optional[dict[str, Any]] = None
    data: dict[str, Any] = {}
