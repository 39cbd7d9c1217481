# app/services/results.py
"""
Result types shared by the passage lifecycle and the detection processor.
Callers branch on FailureReason, never on message text.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class FailureReason(str, Enum):
    INVALID_PLATE = "invalid_plate"
    VEHICLE_NOT_FOUND = "vehicle_not_found"
    GATE_NOT_FOUND = "gate_not_found"
    ACTIVE_PASSAGE_EXISTS = "active_passage_exists"
    NO_ACTIVE_PASSAGE = "no_active_passage"
    UNPAID_ENTRY_FEE = "unpaid_entry_fee"
    NO_PRICING = "no_pricing"
    PASSAGE_NOT_FOUND = "passage_not_found"
    PROCESSING_ERROR = "processing_error"


class GateAction(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    REQUIRE_PAYMENT = "require_payment"


@dataclass
class PassageResult:
    success: bool
    message: str
    reason: Optional[FailureReason] = None
    gate_action: GateAction = GateAction.DENY
    passage: Any = None          # VehiclePassage
    vehicle: Any = None          # Vehicle
    receipt: Any = None          # Receipt
    quote: Any = None            # PriceQuote
    extra: dict = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, gate_action: GateAction = GateAction.ALLOW, **kwargs) -> "PassageResult":
        return cls(success=True, message=message, gate_action=gate_action, **kwargs)

    @classmethod
    def fail(cls, reason: FailureReason, message: str, **kwargs) -> "PassageResult":
        kwargs.setdefault("gate_action", GateAction.DENY)
        return cls(success=False, message=message, reason=reason, **kwargs)

    @property
    def passage_id(self) -> Optional[int]:
        return self.passage.id if self.passage is not None else None
