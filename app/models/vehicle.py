# app/models/vehicle.py
"""
Vehicles table, one row per normalized plate.
Created on first sighting; body type may stay NULL until an operator picks it.
paid_until marks the end of the current free re-entry window.
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, ForeignKey
from app.database import Base
from app.utils.timeutils import ensure_utc, utcnow


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    plate_number = Column(String(50), unique=True, nullable=False, index=True)
    body_type_id = Column(Integer, ForeignKey("vehicle_body_types.id"))
    make = Column(String(100))
    model = Column(String(100))
    color = Column(String(50))
    owner_name = Column(String(200))
    is_registered = Column(Boolean, default=False, nullable=False)
    paid_until = Column(DateTime(timezone=True))
    is_exempted = Column(Boolean, default=False, nullable=False)
    exemption_reason = Column(Text)
    exemption_expires_at = Column(DateTime(timezone=True))    # NULL = permanent
    created_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True))
    deleted_at = Column(DateTime(timezone=True))

    def is_currently_exempted(self, now=None) -> bool:
        if not self.is_exempted:
            return False
        if self.exemption_expires_at is None:
            return True
        return ensure_utc(self.exemption_expires_at) > (now or utcnow())

    def __repr__(self):
        return f"<Vehicle {self.plate_number} body_type={self.body_type_id}>"
