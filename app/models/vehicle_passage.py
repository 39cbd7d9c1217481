# app/models/vehicle_passage.py
"""
Vehicle passages — one parking session from entry to exit.
A passage with exit_time NULL is "open" (vehicle inside). The partial unique
index below guarantees at most one open passage per vehicle at the DB level.
"""

from sqlalchemy import (Column, Integer, String, DateTime, Boolean, Numeric, Text,
                        ForeignKey, Index, text)
from app.database import Base

PASSAGE_TOLL = "toll"
PASSAGE_FREE = "free"           # bundle subscriber
PASSAGE_REENTRY = "reentry"     # same-day re-entry, already paid
PASSAGE_EXEMPTED = "exempted"

STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"

_OPEN_PASSAGE = text("exit_time IS NULL AND deleted_at IS NULL")


class VehiclePassage(Base):
    __tablename__ = "vehicle_passages"
    __table_args__ = (
        Index("uq_vehicle_passages_open_per_vehicle", "vehicle_id", unique=True,
              postgresql_where=_OPEN_PASSAGE, sqlite_where=_OPEN_PASSAGE),
        Index("ix_vehicle_passages_station_day", "entry_station_id", "entry_time"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    passage_number = Column(String(30), unique=True, nullable=False)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"))
    bundle_subscription_id = Column(Integer, ForeignKey("bundle_subscriptions.id"))
    payment_type_id = Column(Integer, ForeignKey("payment_types.id"))

    entry_time = Column(DateTime(timezone=True), nullable=False, index=True)
    entry_operator_id = Column(Integer)
    entry_gate_id = Column(Integer, ForeignKey("gates.id"), nullable=False)
    entry_station_id = Column(Integer, ForeignKey("stations.id"), nullable=False)
    exit_time = Column(DateTime(timezone=True))
    exit_operator_id = Column(Integer)
    exit_gate_id = Column(Integer, ForeignKey("gates.id"))
    exit_station_id = Column(Integer, ForeignKey("stations.id"))

    passage_type = Column(String(20), default=PASSAGE_TOLL, nullable=False)
    base_amount = Column(Numeric(10, 2), default=0, nullable=False)
    discount_amount = Column(Numeric(10, 2), default=0, nullable=False)
    total_amount = Column(Numeric(10, 2), default=0, nullable=False)
    is_paid = Column(Boolean, default=False, nullable=False)
    paid_at = Column(DateTime(timezone=True))
    status = Column(String(20), default=STATUS_ACTIVE, nullable=False)
    duration_minutes = Column(Integer)          # set on exit
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True))
    deleted_at = Column(DateTime(timezone=True))

    @property
    def is_open(self) -> bool:
        return self.exit_time is None

    def __repr__(self):
        return f"<VehiclePassage {self.passage_number} vehicle={self.vehicle_id} type={self.passage_type}>"
