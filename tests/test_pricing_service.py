# tests/test_pricing_service.py
"""Unit tests for the pricing decision tree."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from app.config import settings
from app.models.account import Account, AccountVehicle, BundleSubscription
from app.models.body_type import VehicleBodyTypePrice
from app.models.vehicle import Vehicle
from app.services import pricing_service
from app.utils.timeutils import utcnow


def add_vehicle(db, plate="ABC1234", body_type_id=None, **kwargs):
    vehicle = Vehicle(plate_number=plate, body_type_id=body_type_id, **kwargs)
    db.add(vehicle)
    db.commit()
    return vehicle


def add_bundle_account(db, vehicle=None, start_offset=-1, end_offset=30, status="active"):
    now = utcnow()
    account = Account(name="Fleet Co", account_number=f"ACC-{status}-{end_offset}")
    db.add(account)
    db.flush()
    db.add(BundleSubscription(account_id=account.id, bundle_name="Monthly",
                              start_datetime=now + timedelta(days=start_offset),
                              end_datetime=now + timedelta(days=end_offset), status=status))
    if vehicle is not None:
        db.add(AccountVehicle(account_id=account.id, vehicle_id=vehicle.id, is_primary=True))
    db.commit()
    return account


class TestPrecedence:
    def test_cash_daily_price(self, db, ref):
        vehicle = add_vehicle(db, body_type_id=ref.car.id)
        quote = pricing_service.price(db, vehicle, ref.station)
        assert quote.payment_type == "Cash"
        assert quote.total_amount == Decimal("5000.00")
        assert quote.requires_payment is True
        assert quote.pricing_id is not None

    def test_exemption_beats_bundle_and_cash(self, db, ref):
        vehicle = add_vehicle(db, body_type_id=ref.car.id, is_exempted=True, exemption_reason="Ambulance")
        account = add_bundle_account(db, vehicle)
        quote = pricing_service.price(db, vehicle, ref.station, account)
        assert quote.payment_type == "Exemption"
        assert quote.total_amount == 0
        assert quote.requires_payment is False

    def test_expired_exemption_falls_through(self, db, ref):
        vehicle = add_vehicle(db, body_type_id=ref.car.id, is_exempted=True,
                              exemption_expires_at=utcnow() - timedelta(days=1))
        assert pricing_service.price(db, vehicle, ref.station).payment_type == "Cash"

    def test_bundle_beats_cash(self, db, ref):
        vehicle = add_vehicle(db, body_type_id=ref.car.id)
        account = add_bundle_account(db, vehicle)
        quote = pricing_service.price(db, vehicle, ref.station, account)
        assert quote.payment_type == "Bundle"
        assert quote.total_amount == 0
        assert quote.bundle_subscription_id is not None
        assert quote.account_id == account.id

    @pytest.mark.parametrize("start,end,status", [(-30, -1, "active"), (1, 30, "active"), (-1, 30, "cancelled")])
    def test_bundle_not_covering_now_is_cash(self, db, ref, start, end, status):
        vehicle = add_vehicle(db, body_type_id=ref.car.id)
        account = add_bundle_account(db, vehicle, start_offset=start, end_offset=end, status=status)
        assert pricing_service.price(db, vehicle, ref.station, account).payment_type == "Cash"

    def test_bundle_needs_an_account(self, db, ref):
        vehicle = add_vehicle(db, body_type_id=ref.car.id)
        add_bundle_account(db, vehicle)
        assert pricing_service.price(db, vehicle, ref.station).payment_type == "Cash"


class TestCashFallbacks:
    def test_missing_price_row_fails_open(self, db, ref):
        vehicle = add_vehicle(db, body_type_id=ref.bus.id)
        quote = pricing_service.price(db, vehicle, ref.station)
        assert quote.payment_type == "Cash"
        assert quote.total_amount == 0
        assert quote.requires_payment is False
        assert quote.configured is True
        assert "No pricing" in quote.description

    def test_no_body_type_is_unconfigured(self, db, ref):
        vehicle = add_vehicle(db)
        quote = pricing_service.price(db, vehicle, ref.station)
        assert quote.configured is False
        assert quote.requires_payment is False

    def test_newest_effective_price_wins(self, db, ref):
        db.add(VehicleBodyTypePrice(body_type_id=ref.car.id, station_id=ref.station.id, base_price=6000,
                                    effective_from=date.today() - timedelta(days=1), is_active=True))
        db.add(VehicleBodyTypePrice(body_type_id=ref.car.id, station_id=ref.station.id, base_price=9000,
                                    effective_from=date.today() + timedelta(days=10), is_active=True))
        db.commit()
        vehicle = add_vehicle(db, body_type_id=ref.car.id)
        assert pricing_service.price(db, vehicle, ref.station).total_amount == Decimal("6000.00")

    def test_price_change_follows_billing_day(self, db, ref, monkeypatch):
        db.add(VehicleBodyTypePrice(body_type_id=ref.car.id, station_id=ref.station.id, base_price=9000,
                                    effective_from=date(2026, 3, 10), is_active=True))
        db.commit()
        # 01:00 on the 10th in Riyadh, still the 9th in UTC
        late_evening = datetime(2026, 3, 9, 22, 0, tzinfo=timezone.utc)

        monkeypatch.setattr(settings, "BILLING_TIMEZONE", "UTC")
        assert pricing_service.get_current_price(db, ref.car.id, ref.station.id, late_evening).base_price == 5000

        monkeypatch.setattr(settings, "BILLING_TIMEZONE", "Asia/Riyadh")
        assert pricing_service.get_current_price(db, ref.car.id, ref.station.id, late_evening).base_price == 9000

    def test_price_is_read_only(self, db, ref):
        vehicle = add_vehicle(db, body_type_id=ref.car.id)
        pricing_service.price(db, vehicle, ref.station)
        assert not db.new and not db.dirty


class TestHelpers:
    def test_find_bundle_account(self, db, ref):
        vehicle = add_vehicle(db, body_type_id=ref.car.id)
        assert pricing_service.find_bundle_account(db, vehicle) is None
        account = add_bundle_account(db, vehicle)
        assert pricing_service.find_bundle_account(db, vehicle).id == account.id
        assert pricing_service.has_active_bundle_subscription(db, account.id) is True

    def test_ensure_payment_types_idempotent(self, db, ref):
        again = pricing_service.ensure_payment_types(db)
        assert again == ref.payment_types
        assert set(again) == {"Cash", "Bundle", "Exemption"}

    def test_validate_pricing_configuration(self, db, ref):
        report = pricing_service.validate_pricing_configuration(db, ref.station.id)
        assert report["valid"] is False
        assert report["missing"] == [{"body_type_id": ref.bus.id, "name": "Bus"}]

    def test_missing_payment_types_raise(self, db):
        vehicle = Vehicle(plate_number="X1", body_type_id=None)
        with pytest.raises(LookupError):
            pricing_service.price(db, vehicle, station=None)
