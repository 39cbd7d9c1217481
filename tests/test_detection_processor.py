# tests/test_detection_processor.py
"""Unit tests for queue draining and operator confirmation of detections."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from datetime import timedelta

import pytest
from app.models.camera_detection import CameraDetection
from app.models.vehicle import Vehicle
from app.models.vehicle_passage import VehiclePassage
from app.services import detection_processor, passage_service
from app.services.detection_processor import DetectionNotConfirmable
from app.services.results import FailureReason, PassageResult
from app.utils.timeutils import utcnow

OPERATOR = 1


def add_detection(db, plate="ABC1234", gate_id=1, direction="entry", seconds_ago=60, status="pending"):
    detection = CameraDetection(
        plate_number=plate, gate_id=gate_id, direction=direction,
        detection_timestamp=utcnow() - timedelta(seconds=seconds_ago),
        processing_status=status, processed=False, created_at=utcnow(),
    )
    db.add(detection)
    db.commit()
    return detection


def add_vehicle(db, ref, plate="ABC1234"):
    vehicle = Vehicle(plate_number=plate, body_type_id=ref.car.id)
    db.add(vehicle)
    db.commit()
    return vehicle


def status_of(db, detection_id):
    return db.query(CameraDetection).filter(CameraDetection.id == detection_id).one()


class TestProcessingCycle:
    def test_empty_queue(self, db, ref):
        summary = detection_processor.process_pending_detections(db)
        assert summary.success is True
        assert summary.total == 0

    def test_unknown_vehicle_waits_for_vehicle_type(self, db, ref):
        det = add_detection(db, gate_id=ref.entry_gate.id)
        summary = detection_processor.process_pending_detections(db)
        row = status_of(db, det.id)
        assert row.processing_status == "pending_vehicle_type"
        assert row.processed is False
        assert "Vehicle not found" in row.processing_notes
        assert summary.pending_vehicle_type == 1
        assert db.query(VehiclePassage).count() == 0

    def test_known_vehicle_entry_still_needs_confirmation(self, db, ref):
        add_vehicle(db, ref)
        det = add_detection(db, gate_id=ref.entry_gate.id)
        detection_processor.process_pending_detections(db)
        assert status_of(db, det.id).processing_status == "pending_vehicle_type"
        assert db.query(VehiclePassage).count() == 0

    def test_entry_detection_for_vehicle_inside_never_opens_second_passage(self, db, ref):
        add_vehicle(db, ref)
        passage_service.process_vehicle_entry(db, "ABC1234", ref.entry_gate.id, OPERATOR)
        det = add_detection(db, gate_id=ref.entry_gate.id, direction="entry")
        detection_processor.process_pending_detections(db)
        assert status_of(db, det.id).processing_status == "pending_vehicle_type"
        assert db.query(VehiclePassage).count() == 1

    def test_exit_with_open_passage_waits_for_exit_confirmation(self, db, ref):
        add_vehicle(db, ref)
        passage_service.process_vehicle_entry(db, "ABC1234", ref.entry_gate.id, OPERATOR)
        det = add_detection(db, gate_id=ref.exit_gate.id, direction="exit")
        summary = detection_processor.process_pending_detections(db)
        assert status_of(db, det.id).processing_status == "pending_exit"
        assert summary.pending_exit == 1

    def test_exit_at_entry_only_gate_is_terminal(self, db, ref):
        add_vehicle(db, ref)
        passage_service.process_vehicle_entry(db, "ABC1234", ref.entry_gate.id, OPERATOR)
        det = add_detection(db, gate_id=ref.entry_gate.id, direction="exit")
        summary = detection_processor.process_pending_detections(db)
        row = status_of(db, det.id)
        assert row.processing_status == "processed"
        assert row.processed is True
        assert summary.errors == 1

    def test_exit_without_passage_treated_as_entry(self, db, ref):
        add_vehicle(db, ref)
        det = add_detection(db, gate_id=ref.exit_gate.id, direction="exit")
        detection_processor.process_pending_detections(db)
        assert status_of(db, det.id).processing_status == "pending_vehicle_type"

    def test_empty_plate_is_terminal_error(self, db, ref):
        det = add_detection(db, plate="", gate_id=ref.entry_gate.id)
        summary = detection_processor.process_pending_detections(db)
        row = status_of(db, det.id)
        assert row.processing_status == "processed"
        assert "empty plate" in row.processing_notes
        assert summary.errors == 1

    @pytest.mark.parametrize("gate_id", [None, 999])
    def test_unresolvable_gate_fails(self, db, ref, gate_id):
        det = add_detection(db, gate_id=gate_id)
        summary = detection_processor.process_pending_detections(db)
        row = status_of(db, det.id)
        assert row.processing_status == "failed"
        assert row.processed is True
        assert summary.errors == 1

    def test_one_bad_detection_does_not_stop_batch(self, db, ref, monkeypatch):
        first = add_detection(db, plate="BOOM1", gate_id=ref.entry_gate.id, seconds_ago=120)
        second = add_detection(db, plate="FINE1", gate_id=ref.entry_gate.id, seconds_ago=60)
        real_lookup = detection_processor.lookup_vehicle_by_plate

        def flaky_lookup(session, plate, for_update=False):
            if plate == "BOOM1":
                raise RuntimeError("camera sent nonsense")
            return real_lookup(session, plate, for_update)

        monkeypatch.setattr(detection_processor, "lookup_vehicle_by_plate", flaky_lookup)
        summary = detection_processor.process_pending_detections(db)
        assert status_of(db, first.id).processing_status == "failed"
        assert "camera sent nonsense" in status_of(db, first.id).processing_notes
        assert status_of(db, second.id).processing_status == "pending_vehicle_type"
        assert summary.errors == 1
        assert summary.total == 2

    def test_already_routed_detections_are_left_alone(self, db, ref):
        det = add_detection(db, gate_id=ref.entry_gate.id, status="pending_exit")
        summary = detection_processor.process_pending_detections(db)
        assert summary.total == 0
        assert status_of(db, det.id).processing_status == "pending_exit"

    def test_null_status_is_picked_up(self, db, ref):
        det = add_detection(db, gate_id=ref.entry_gate.id, status=None)
        detection_processor.process_pending_detections(db)
        assert status_of(db, det.id).processing_status == "pending_vehicle_type"


class TestConfirmation:
    def test_confirm_entry_creates_vehicle_and_passage(self, db, ref):
        det = add_detection(db, plate="NEW1", gate_id=ref.entry_gate.id)
        detection_processor.process_pending_detections(db)

        result = detection_processor.confirm_pending_entry(db, det.id, OPERATOR, body_type_id=ref.car.id)
        assert result.success is True
        row = status_of(db, det.id)
        assert row.processing_status == "processed"
        assert str(result.passage_id) in row.processing_notes
        vehicle = db.query(Vehicle).filter(Vehicle.plate_number == "NEW1").one()
        assert vehicle.body_type_id == ref.car.id

    def test_confirm_entry_without_body_type_stays_pending(self, db, ref):
        det = add_detection(db, plate="NEW1", gate_id=ref.entry_gate.id)
        detection_processor.process_pending_detections(db)
        result = detection_processor.confirm_pending_entry(db, det.id, OPERATOR)
        assert result.reason == FailureReason.NO_PRICING
        row = status_of(db, det.id)
        assert row.processing_status == "pending_vehicle_type"
        assert row.processed is False

    def test_confirm_entry_when_already_inside_moves_to_pending_exit(self, db, ref):
        add_vehicle(db, ref)
        passage_service.process_vehicle_entry(db, "ABC1234", ref.entry_gate.id, OPERATOR)
        det = add_detection(db, gate_id=ref.both_gate.id, status="pending_vehicle_type")
        result = detection_processor.confirm_pending_entry(db, det.id, OPERATOR)
        assert result.reason == FailureReason.ACTIVE_PASSAGE_EXISTS
        assert status_of(db, det.id).processing_status == "pending_exit"
        assert db.query(VehiclePassage).count() == 1

    def test_confirm_entry_when_already_inside_at_entry_gate_is_terminal(self, db, ref):
        add_vehicle(db, ref)
        passage_service.process_vehicle_entry(db, "ABC1234", ref.entry_gate.id, OPERATOR)
        det = add_detection(db, gate_id=ref.entry_gate.id, status="pending_vehicle_type")
        detection_processor.confirm_pending_entry(db, det.id, OPERATOR)
        row = status_of(db, det.id)
        assert row.processing_status == "processed"
        assert row.processing_notes.startswith("Error:")

    def test_confirm_exit_requires_payment_then_closes(self, db, ref):
        add_vehicle(db, ref)
        passage_service.process_vehicle_entry(db, "ABC1234", ref.entry_gate.id, OPERATOR)
        det = add_detection(db, gate_id=ref.exit_gate.id, direction="exit")
        detection_processor.process_pending_detections(db)

        unpaid = detection_processor.confirm_pending_exit(db, det.id, OPERATOR)
        assert unpaid.reason == FailureReason.UNPAID_ENTRY_FEE
        assert status_of(db, det.id).processing_status == "pending_exit"

        paid = detection_processor.confirm_pending_exit(db, det.id, OPERATOR, payment_confirmed=True)
        assert paid.success is True
        assert paid.receipt is not None
        assert status_of(db, det.id).processing_status == "processed"
        assert db.query(VehiclePassage).one().exit_time is not None

    def test_confirm_exit_for_unknown_vehicle(self, db, ref):
        det = add_detection(db, plate="GHOST1", gate_id=ref.exit_gate.id, status="pending_exit")
        result = detection_processor.confirm_pending_exit(db, det.id, OPERATOR)
        assert result.reason == FailureReason.VEHICLE_NOT_FOUND
        assert status_of(db, det.id).processing_status == "pending_vehicle_type"

    def test_lifecycle_crash_marks_detection_failed(self, db, ref, monkeypatch):
        det = add_detection(db, plate="NEW1", gate_id=ref.entry_gate.id, status="pending_vehicle_type")

        def broken_entry(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(detection_processor, "process_vehicle_entry", broken_entry)
        result = detection_processor.confirm_pending_entry(db, det.id, OPERATOR, body_type_id=ref.car.id)
        assert result.success is False
        assert result.reason == FailureReason.PROCESSING_ERROR
        row = status_of(db, det.id)
        assert row.processing_status == "failed"
        assert row.processed is True
        assert "boom" in row.processing_notes
        assert db.query(VehiclePassage).count() == 0

    def test_exit_crash_marks_detection_failed(self, db, ref, monkeypatch):
        add_vehicle(db, ref)
        passage_service.process_vehicle_entry(db, "ABC1234", ref.entry_gate.id, OPERATOR)
        det = add_detection(db, gate_id=ref.exit_gate.id, direction="exit", status="pending_exit")

        def broken_exit(*args, **kwargs):
            raise RuntimeError("printer on fire")

        monkeypatch.setattr(detection_processor, "process_vehicle_exit", broken_exit)
        detection_processor.confirm_pending_exit(db, det.id, OPERATOR, payment_confirmed=True)
        row = status_of(db, det.id)
        assert row.processing_status == "failed"
        assert "printer on fire" in row.processing_notes
        assert db.query(VehiclePassage).one().exit_time is None

    def test_outcome_not_written_over_a_concurrent_confirmation(self, db, ref, monkeypatch):
        det = add_detection(db, gate_id=ref.both_gate.id, status="pending_vehicle_type")

        def settled_by_other_operator(session, plate, gate_id, operator_id, extra=None, autocommit=True):
            row = session.query(CameraDetection).filter(CameraDetection.id == det.id).one()
            row.processing_status = "processed"
            row.processing_notes = "Entry confirmed, passage 77"
            row.processed = True
            session.commit()
            return PassageResult.fail(FailureReason.ACTIVE_PASSAGE_EXISTS, f"Vehicle {plate} already has an active passage")

        monkeypatch.setattr(detection_processor, "process_vehicle_entry", settled_by_other_operator)
        result = detection_processor.confirm_pending_entry(db, det.id, OPERATOR)
        assert result.reason == FailureReason.ACTIVE_PASSAGE_EXISTS
        row = status_of(db, det.id)
        assert row.processing_status == "processed"
        assert row.processed is True
        assert row.processing_notes == "Entry confirmed, passage 77"

    def test_processed_detection_cannot_be_confirmed_twice(self, db, ref):
        det = add_detection(db, plate="NEW1", gate_id=ref.entry_gate.id, status="pending_vehicle_type")
        detection_processor.confirm_pending_entry(db, det.id, OPERATOR, body_type_id=ref.car.id)
        with pytest.raises(DetectionNotConfirmable):
            detection_processor.confirm_pending_entry(db, det.id, OPERATOR, body_type_id=ref.car.id)

    def test_missing_detection(self, db, ref):
        with pytest.raises(DetectionNotConfirmable):
            detection_processor.confirm_pending_exit(db, 4242, OPERATOR)


class TestQueueViews:
    def test_counts_and_listing(self, db, ref):
        add_detection(db, plate="A1", status="pending")
        add_detection(db, plate="A2", status=None)
        add_detection(db, plate="A3", status="pending_exit", gate_id=ref.exit_gate.id)
        add_detection(db, plate="A4", status="pending_vehicle_type")
        counts = detection_processor.get_queue_status(db)
        assert counts["pending"] == 2
        assert counts["pending_exit"] == 1
        assert counts["pending_vehicle_type"] == 1
        assert counts["total"] == 4

        pending_exit = detection_processor.list_pending_detections(db, "pending_exit")
        assert [d.plate_number for d in pending_exit] == ["A3"]
        assert detection_processor.list_pending_detections(db, "pending_exit", gate_id=ref.entry_gate.id) == []
