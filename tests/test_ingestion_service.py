# tests/test_ingestion_service.py
"""Unit tests for camera fetching and duplicate-safe storage."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from app.models.camera_detection import CameraDetection
from app.services.ingestion_service import (
    CameraConfig, build_results_url, fetch_and_store, fetch_camera_detections, store_detections,
)
from app.utils.timeutils import utcnow

CAMERA = CameraConfig(camera_id="CAM-ENTRY", ip="10.0.0.9", gate_id=1, computer_id=3, timeout=1.0)


def iso(dt):
    return dt.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def item(plate="ABC1234", when=None, ext_id=1, direction=0, **extra):
    payload = {"id": ext_id, "numberplate": plate, "timestamp": iso(when or utcnow()), "direction": direction}
    payload.update(extra)
    return payload


def mock_client(response=None, exc=None):
    client = MagicMock()
    client.get = AsyncMock(return_value=response, side_effect=exc)
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=client)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return ctx


def json_response(body, status_code=200):
    response = MagicMock(status_code=status_code, content=b"...")
    response.json.return_value = body
    return response


class TestResultsUrl:
    def test_url_format(self):
        since = datetime(2026, 3, 10, 8, 5, 1, 42000, tzinfo=timezone.utc)
        url = build_results_url(CAMERA, since)
        assert url.startswith("http://10.0.0.9/edge/cgi-bin/vparcgi.cgi?computerid=3&oper=jsonlastresults")
        assert "&dd=2026-03-10T08:05:01.042&_=" in url


class TestFetch:
    @pytest.mark.asyncio
    async def test_bare_list(self):
        with patch("app.services.ingestion_service.httpx.AsyncClient",
                   return_value=mock_client(json_response([item(), item(ext_id=2)]))):
            result = await fetch_camera_detections(CAMERA)
        assert result.success is True
        assert result.count == 2

    @pytest.mark.asyncio
    async def test_data_envelope(self):
        with patch("app.services.ingestion_service.httpx.AsyncClient",
                   return_value=mock_client(json_response({"data": [item()]}))):
            result = await fetch_camera_detections(CAMERA)
        assert result.success is True
        assert result.count == 1

    @pytest.mark.asyncio
    async def test_malformed_body_is_empty_success(self):
        response = json_response(None)
        response.json.side_effect = ValueError("not json")
        with patch("app.services.ingestion_service.httpx.AsyncClient", return_value=mock_client(response)):
            result = await fetch_camera_detections(CAMERA)
        assert result.success is True
        assert result.data == []

    @pytest.mark.asyncio
    async def test_unreachable_camera_is_soft_failure(self):
        with patch("app.services.ingestion_service.httpx.AsyncClient",
                   return_value=mock_client(exc=httpx.ConnectError("refused"))):
            result = await fetch_camera_detections(CAMERA)
        assert result.success is False
        assert result.data == []

    @pytest.mark.asyncio
    async def test_timeout_is_soft_failure(self):
        with patch("app.services.ingestion_service.httpx.AsyncClient",
                   return_value=mock_client(exc=httpx.ReadTimeout("slow"))):
            result = await fetch_camera_detections(CAMERA)
        assert result.success is False

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        with patch("app.services.ingestion_service.httpx.AsyncClient",
                   return_value=mock_client(json_response([], status_code=503))):
            result = await fetch_camera_detections(CAMERA)
        assert result.success is False
        assert "503" in result.message


class TestStore:
    def test_new_detection_stored_pending(self, db):
        summary = store_detections(db, [item(make_str="KIA")], CAMERA)
        assert (summary.fetched, summary.stored, summary.skipped, summary.errors) == (1, 1, 0, 0)
        row = db.query(CameraDetection).one()
        assert row.processing_status == "pending"
        assert row.processed is False
        assert row.gate_id == 1
        assert row.make == "KIA"
        assert row.raw_payload["numberplate"] == "ABC1234"

    def test_empty_plate_skipped(self, db):
        summary = store_detections(db, [item(plate=""), item(plate="   ")], CAMERA)
        assert summary.stored == 0
        assert summary.skipped == 2
        assert db.query(CameraDetection).count() == 0

    def test_same_plate_within_tolerance_is_duplicate(self, db):
        now = utcnow()
        summary = store_detections(db, [
            item(when=now, ext_id=1),
            item(when=now + timedelta(seconds=1), ext_id=2),
            item(plate="abc 1234", when=now - timedelta(seconds=2), ext_id=3),
        ], CAMERA)
        assert summary.stored == 1
        assert summary.skipped == 2

    def test_outside_tolerance_is_new(self, db):
        now = utcnow()
        summary = store_detections(db, [item(when=now), item(when=now + timedelta(seconds=5), ext_id=2)], CAMERA)
        assert summary.stored == 2

    def test_repoll_of_ring_buffer_stores_nothing(self, db):
        now = utcnow()
        batch = [item(when=now - timedelta(minutes=i), ext_id=i, plate=f"P{i}") for i in range(5)]
        store_detections(db, batch, CAMERA)
        summary = store_detections(db, batch, CAMERA)
        assert summary.stored == 0
        assert summary.skipped == 5
        assert db.query(CameraDetection).count() == 5

    def test_same_plate_other_gate_is_new(self, db):
        now = utcnow()
        store_detections(db, [item(when=now)], CAMERA)
        other = CameraConfig(camera_id="CAM-EXIT", ip="10.0.0.10", gate_id=2)
        assert store_detections(db, [item(when=now)], other).stored == 1

    def test_reused_external_id_at_same_instant_is_duplicate(self, db):
        now = utcnow()
        store_detections(db, [item(plate="AAA111", when=now, ext_id=77)], CAMERA)
        summary = store_detections(db, [item(plate="AAA11I", when=now, ext_id=77)], CAMERA)
        assert summary.stored == 0

    def test_reused_external_id_later_is_new(self, db):
        now = utcnow()
        store_detections(db, [item(plate="AAA111", when=now - timedelta(hours=1), ext_id=77)], CAMERA)
        assert store_detections(db, [item(plate="BBB222", when=now, ext_id=77)], CAMERA).stored == 1

    def test_older_than_since_skipped(self, db):
        old = utcnow() - timedelta(hours=30)
        summary = store_detections(db, [item(when=old)], CAMERA)
        assert summary.skipped == 1
        assert summary.stored == 0

    def test_late_arrival_below_watermark_still_stored(self, db):
        now = utcnow()
        store_detections(db, [item(plate="NEW1", when=now)], CAMERA)
        summary = store_detections(db, [item(plate="LATE1", when=now - timedelta(minutes=3), ext_id=9)], CAMERA)
        assert summary.stored == 1

    def test_bad_item_counted_and_batch_continues(self, db):
        summary = store_detections(db, [item(timestamp="garbage"), item(plate="GOOD1", ext_id=5)], CAMERA)
        assert summary.errors == 1
        assert summary.stored == 1


class TestFetchAndStore:
    @pytest.mark.asyncio
    async def test_soft_failure_returns_summary(self, db):
        with patch("app.services.ingestion_service.httpx.AsyncClient",
                   return_value=mock_client(exc=httpx.ConnectError("refused"))):
            summary = await fetch_and_store(db, CAMERA)
        assert summary.success is False
        assert summary.stored == 0

    @pytest.mark.asyncio
    async def test_fetched_items_are_stored(self, db):
        now = utcnow()
        body = [item(when=now), item(when=now), item(plate="", ext_id=3)]
        with patch("app.services.ingestion_service.httpx.AsyncClient",
                   return_value=mock_client(json_response(body))):
            summary = await fetch_and_store(db, CAMERA)
        assert summary.success is True
        assert (summary.fetched, summary.stored, summary.skipped) == (3, 1, 2)
