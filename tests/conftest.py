# tests/conftest.py
"""Shared fixtures: an in-memory SQLite database with one station's reference data."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.database import create_tables
from app.models.body_type import VehicleBodyType, VehicleBodyTypePrice
from app.models.station import Station, Gate
from app.services.pricing_service import ensure_payment_types


@pytest.fixture
def db():
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    create_tables(bind=engine)
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def ref(db):
    """Station 1 with an entry-only, an exit-only and a two-way gate; Car costs 5000, Bus has no price."""
    station = Station(name="Main Checkpoint", code="ST-001")
    db.add(station)
    db.flush()
    entry_gate = Gate(station_id=station.id, name="Entry", gate_type="entry")
    exit_gate = Gate(station_id=station.id, name="Exit", gate_type="exit")
    both_gate = Gate(station_id=station.id, name="Two-way", gate_type="both")
    car = VehicleBodyType(name="Car")
    bus = VehicleBodyType(name="Bus")
    db.add_all([entry_gate, exit_gate, both_gate, car, bus])
    db.flush()
    db.add(VehicleBodyTypePrice(body_type_id=car.id, station_id=station.id, base_price=5000,
                                effective_from=date(2020, 1, 1), is_active=True))
    db.commit()
    payment_types = ensure_payment_types(db)

    return SimpleNamespace(
        station=station, entry_gate=entry_gate, exit_gate=exit_gate, both_gate=both_gate,
        car=car, bus=bus, payment_types=payment_types,
    )
