# app/models/station.py
"""
Toll stations and their gates.
A gate belongs to one station; gate_type decides which traffic it can take.
Reference data — maintained by the admin layer, only read here.
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from app.database import Base


class Station(Base):
    __tablename__ = "stations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    code = Column(String(50), unique=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True))

    def __repr__(self):
        return f"<Station {self.code} name={self.name}>"


class Gate(Base):
    __tablename__ = "gates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    station_id = Column(Integer, ForeignKey("stations.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    gate_type = Column(String(20), default="both", nullable=False)  # entry | exit | both
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True))

    @property
    def supports_exit(self) -> bool:
        return self.gate_type in ("exit", "both")

    @property
    def supports_entry(self) -> bool:
        return self.gate_type in ("entry", "both")

    def __repr__(self):
        return f"<Gate {self.id} station={self.station_id} type={self.gate_type}>"
