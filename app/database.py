# app/database.py
"""
Database connection, session management, and table creation.
Uses SQLAlchemy with PostgreSQL. All models are auto-imported here
so create_tables() creates every table in one call.
"""

from sqlalchemy import create_engine
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker
from app.config import settings

_engine_kwargs = {
    "pool_pre_ping": True,       # Auto-reconnect if DB connection drops
    "echo": False,               # Set True to log all SQL queries (debug only)
}
if not settings.DATABASE_URL.startswith("sqlite"):
    _engine_kwargs.update(pool_size=10, max_overflow=20)

engine = create_engine(settings.DATABASE_URL, **_engine_kwargs)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency — yields a DB session and closes it after request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind=None):
    """
    Creates all DB tables on startup. Safe to call multiple times.
    Import all models here so SQLAlchemy knows about them.
    """
    # Reference data
    from app.models.station import Station, Gate                              # noqa
    from app.models.body_type import VehicleBodyType, VehicleBodyTypePrice    # noqa
    from app.models.payment_type import PaymentType                           # noqa
    from app.models.account import Account, AccountVehicle, BundleSubscription  # noqa
    # Core tables
    from app.models.vehicle import Vehicle                                    # noqa
    from app.models.camera_detection import CameraDetection                   # noqa
    from app.models.vehicle_passage import VehiclePassage                     # noqa
    from app.models.receipt import Receipt                                    # noqa

    Base.metadata.create_all(bind=bind or engine)
