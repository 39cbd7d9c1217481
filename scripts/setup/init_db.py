# scripts/setup/init_db.py
"""
Initialize database — creates all tables and seeds payment types.
Run once before first launch, or after adding new models.
Usage: python scripts/setup/init_db.py
       python scripts/setup/init_db.py --demo   # also a station, two gates, body types and prices
"""

import sys
import os
import argparse
from datetime import date
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from app.database import create_tables, engine, SessionLocal
from app.config import settings
from app.models.body_type import VehicleBodyType, VehicleBodyTypePrice
from app.models.station import Station, Gate
from app.services.pricing_service import ensure_payment_types, validate_pricing_configuration
from app.utils.timeutils import utcnow
from sqlalchemy import inspect, text

DEMO_PRICES = {"Car": 5000, "Pickup": 7000, "Bus": 10000, "Truck": 15000}


def seed_demo(db):
    station = db.query(Station).filter(Station.code == "ST-001").first()
    if station is None:
        station = Station(name="Main Checkpoint", code="ST-001", is_active=True, created_at=utcnow())
        db.add(station)
        db.flush()
        db.add_all([
            Gate(id=settings.CAM_ENTRY_GATE_ID, station_id=station.id, name="Entry lane",
                 gate_type="entry", created_at=utcnow()),
            Gate(id=settings.CAM_EXIT_GATE_ID, station_id=station.id, name="Exit lane",
                 gate_type="exit", created_at=utcnow()),
        ])

    for name, amount in DEMO_PRICES.items():
        body_type = db.query(VehicleBodyType).filter(VehicleBodyType.name == name).first()
        if body_type is None:
            body_type = VehicleBodyType(name=name, is_active=True)
            db.add(body_type)
            db.flush()
            db.add(VehicleBodyTypePrice(body_type_id=body_type.id, station_id=station.id, base_price=amount,
                                        effective_from=date.today(), is_active=True, created_at=utcnow()))
    db.commit()
    return station


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--demo", action="store_true", help="Seed a demo station, gates and prices")
    args = parser.parse_args()

    print("🗄️  Toll DB Initialization")
    print("=" * 40)
    print(f"📡 Database: {settings.DATABASE_URL}")

    # Test connection
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("✅ Database connection OK")
    except Exception as e:
        print(f"❌ Cannot connect to database: {e}")
        print("\nMake sure PostgreSQL is running:")
        print("  docker-compose up -d db")
        print("  # or: sudo systemctl start postgresql")
        sys.exit(1)

    # Create all tables
    print("\n📋 Creating tables...")
    create_tables()
    print("✅ All tables created")

    db = SessionLocal()
    try:
        payment_types = ensure_payment_types(db)
        print(f"✅ Payment types: {', '.join(sorted(payment_types))}")
        if args.demo:
            station = seed_demo(db)
            check = validate_pricing_configuration(db, station.id)
            print(f"✅ Demo station {station.code} seeded — pricing valid: {check['valid']}")
    finally:
        db.close()

    tables = sorted(inspect(engine).get_table_names())
    print(f"\n📊 Tables in database ({len(tables)} total):")
    for t in tables:
        print(f"   ✓ {t}")

    print("\n🎉 Database ready! You can now start the backend:")
    print("   uvicorn app.main:app --host 0.0.0.0 --port 8080 --reload")


if __name__ == "__main__":
    main()
