# app/schemas/vehicle.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class VehicleOut(BaseModel):
    id: int
    plate_number: str
    body_type_id: Optional[int]
    make: Optional[str]
    model: Optional[str]
    color: Optional[str]
    owner_name: Optional[str]
    is_registered: bool
    paid_until: Optional[datetime]
    is_exempted: bool
    exemption_reason: Optional[str]
    exemption_expires_at: Optional[datetime]

    class Config:
        from_attributes = True


class PlateLookupOut(BaseModel):
    plate_number: str
    found: bool
    has_active_passage: bool
    gate_action: str
    vehicle_id: Optional[int] = None
    body_type_id: Optional[int] = None
    is_exempted: Optional[bool] = None
    paid_until: Optional[datetime] = None
    active_passage_id: Optional[int] = None
    active_passage_number: Optional[str] = None
    active_passage_paid: Optional[bool] = None
    bundle_account_id: Optional[int] = None
