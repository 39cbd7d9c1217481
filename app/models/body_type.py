# app/models/body_type.py
"""
Vehicle body types (car, bus, truck, ...) and their daily price per station.
The Pricing Engine picks the active row whose effective window covers today.
"""

from sqlalchemy import Column, Integer, String, DateTime, Date, Boolean, Numeric, ForeignKey
from app.database import Base


class VehicleBodyType(Base):
    __tablename__ = "vehicle_body_types"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(String(255))
    is_active = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<VehicleBodyType {self.name}>"


class VehicleBodyTypePrice(Base):
    __tablename__ = "vehicle_body_type_prices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    body_type_id = Column(Integer, ForeignKey("vehicle_body_types.id"), nullable=False, index=True)
    station_id = Column(Integer, ForeignKey("stations.id"), nullable=False, index=True)
    base_price = Column(Numeric(10, 2), nullable=False)
    effective_from = Column(Date, nullable=False)
    effective_to = Column(Date)                  # NULL = open-ended
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True))

    def __repr__(self):
        return f"<VehicleBodyTypePrice body={self.body_type_id} station={self.station_id} price={self.base_price}>"
