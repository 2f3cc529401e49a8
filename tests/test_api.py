"""
APARTRACK — HTTP API Tests
==========================
Tests: Registry, Schedules, Inspections, Reminders, Audit, Config
"""

import base64
import io
import datetime
import pytest
from PIL import Image

from tests.conftest import (
    SITE_LAT, SITE_LNG, north_of, jakarta, exif_jpeg, site_gps_ifd, db_query, db_count,
)


@pytest.fixture
def seeded(client):
    """Asset, inspector and a 09:00-10:00 schedule today, created through the API."""
    asset = client.post("/api/assets", json={
        "serial_number": "APAR-API-1",
        "location_type": "fixed",
        "location_name": "Warehouse B",
        "fixed_lat": SITE_LAT,
        "fixed_lng": SITE_LNG,
        "valid_radius_meters": 30,
    }).json()["asset_id"]
    inspector = client.post("/api/inspectors", json={"name": "Dewi", "email": "dewi@example.com"}).json()["inspector_id"]
    schedule = client.post("/api/schedules", json={
        "asset_id": asset,
        "assignee_id": inspector,
        "start_local": "2025-01-15T09:00:00",
        "end_local": "2025-01-15T10:00:00",
        "cadence": "monthly",
    }).json()["schedule"]
    return {"asset": asset, "inspector": inspector, "schedule": schedule}


# ============================================================================
# REGISTRY
# ============================================================================

class TestRegistry:

    def test_create_and_get_asset(self, client):
        resp = client.post("/api/assets", json={"serial_number": "A-1", "location_type": "statis",
                                                "fixed_lat": 1.0, "fixed_lng": 2.0})
        assert resp.status_code == 200
        asset_id = resp.json()["asset_id"]
        asset = client.get(f"/api/assets/{asset_id}").json()["asset"]
        assert asset["location_type"] == "fixed"

    def test_duplicate_serial(self, client):
        client.post("/api/assets", json={"serial_number": "A-1", "location_type": "mobile"})
        resp = client.post("/api/assets", json={"serial_number": "A-1", "location_type": "mobile"})
        assert resp.status_code == 409

    def test_fixed_asset_needs_coordinates(self, client):
        resp = client.post("/api/assets", json={"serial_number": "A-2", "location_type": "fixed"})
        assert resp.status_code == 422

    def test_missing_asset(self, client):
        assert client.get("/api/assets/999").status_code == 404

    def test_inspector_needs_name(self, client):
        assert client.post("/api/inspectors", json={"email": "x@example.com"}).status_code == 422


# ============================================================================
# SCHEDULES
# ============================================================================

class TestSchedules:

    def test_local_entry_stored_as_utc(self, seeded):
        schedule = seeded["schedule"]
        assert schedule["start_at"] == "2025-01-15T02:00:00+00:00"
        assert schedule["start_local"] == "2025-01-15T09:00:00+07:00"
        assert schedule["local_date"] == "2025-01-15"

    def test_status_follows_clock(self, client, clock, seeded):
        sid = seeded["schedule"]["id"]
        assert client.get(f"/api/schedules/{sid}").json()["schedule"]["status"] == "ongoing"
        clock.set(jakarta(2025, 1, 15, 8, 0))
        assert client.get(f"/api/schedules/{sid}").json()["schedule"]["status"] == "upcoming"
        clock.set(jakarta(2025, 1, 15, 10, 1))
        assert client.get(f"/api/schedules/{sid}").json()["schedule"]["status"] == "overdue"

    def test_list_status_filter(self, client, seeded):
        client.post("/api/schedules", json={
            "asset_id": seeded["asset"],
            "start_local": "2025-01-20T09:00:00",
            "end_local": "2025-01-20T10:00:00",
        })
        ongoing = client.get("/api/schedules?status=ongoing").json()["schedules"]
        upcoming = client.get("/api/schedules?status=upcoming").json()["schedules"]
        assert [s["id"] for s in ongoing] == [seeded["schedule"]["id"]]
        assert len(upcoming) == 1
        assert upcoming[0]["days_until"] == 5

    def test_unknown_status_filter(self, client):
        assert client.get("/api/schedules?status=sleeping").status_code == 422

    def test_upcoming(self, client, seeded):
        client.post("/api/schedules", json={
            "asset_id": seeded["asset"],
            "assignee_id": seeded["inspector"],
            "start_local": "2025-01-15T11:00:00",
            "end_local": "2025-01-15T12:00:00",
        })
        items = client.get("/api/schedules/upcoming?days=7").json()["schedules"]
        assert len(items) == 1
        assert items[0]["minutes_until_start"] == 120

    def test_mine(self, client, seeded):
        items = client.get(f"/api/schedules/mine/{seeded['inspector']}").json()["schedules"]
        assert [s["id"] for s in items] == [seeded["schedule"]["id"]]
        assert client.get("/api/schedules/mine/999").json()["schedules"] == []

    def test_inverted_window_rejected(self, client, seeded):
        resp = client.post("/api/schedules", json={
            "asset_id": seeded["asset"],
            "start_at": "2025-01-15T03:00:00Z",
            "end_at": "2025-01-15T03:00:00Z",
        })
        assert resp.status_code == 422
        assert db_count("inspection_schedules") == 1

    def test_schedule_for_unknown_asset(self, client):
        resp = client.post("/api/schedules", json={
            "asset_id": 999, "start_at": "2025-01-15T03:00:00Z", "end_at": "2025-01-15T04:00:00Z",
        })
        assert resp.status_code == 404

    def test_assignee_notified_on_create_and_update(self, client, seeded):
        sid = seeded["schedule"]["id"]
        resp = client.put(f"/api/schedules/{sid}", json={"notes": "bring ladder"})
        assert resp.status_code == 200
        assert resp.json()["notified"] is True
        notes = client.get(f"/api/notifications/{seeded['inspector']}").json()["notifications"]
        assert [n["type"] for n in notes] == ["schedule_updated", "schedule_created"]
        assert {n["related_id"] for n in notes} == {sid}
        assert "bring ladder" in notes[0]["message"]

    def test_failed_notice_still_saves(self, client, seeded):
        client.put("/api/config/reminder_channel", json={"value": "email"})
        resp = client.post("/api/schedules", json={
            "asset_id": seeded["asset"],
            "assignee_id": seeded["inspector"],
            "start_local": "2025-01-20T09:00:00",
            "end_local": "2025-01-20T10:00:00",
        })
        assert resp.status_code == 200
        assert resp.json()["notified"] is False
        assert db_count("inspection_schedules") == 2

    def test_unassigned_schedule_not_notified(self, client, seeded):
        resp = client.post("/api/schedules", json={
            "asset_id": seeded["asset"],
            "start_local": "2025-01-20T09:00:00",
            "end_local": "2025-01-20T10:00:00",
        })
        assert resp.json()["notified"] is False

    def test_is_active_string_flag(self, client, seeded):
        sid = seeded["schedule"]["id"]
        resp = client.put(f"/api/schedules/{sid}", json={"is_active": "false"})
        assert resp.status_code == 200
        assert resp.json()["schedule"]["is_active"] is False
        assert resp.json()["schedule"]["status"] == "inactive"

        resp = client.put(f"/api/schedules/{sid}", json={"is_active": "maybe"})
        assert resp.status_code == 422
        assert db_query("SELECT is_active FROM inspection_schedules WHERE id = ?", (sid,))[0]["is_active"] == 0

    def test_update_invalid_window(self, client, seeded):
        sid = seeded["schedule"]["id"]
        resp = client.put(f"/api/schedules/{sid}", json={"end_local": "2025-01-15T08:00:00"})
        assert resp.status_code == 422

    def test_moving_start_clears_reminder_markers(self, client, clock, seeded):
        sid = seeded["schedule"]["id"]
        client.put(f"/api/schedules/{sid}", json={
            "start_local": "2025-01-16T09:00:00", "end_local": "2025-01-16T10:00:00",
        })
        clock.set(jakarta(2025, 1, 15, 7, 0))
        client.post("/api/reminders/run")
        assert db_count("reminder_dispatches", "schedule_id = ?", (sid,)) == 1

        client.put(f"/api/schedules/{sid}", json={"start_local": "2025-01-16T08:00:00"})
        assert db_count("reminder_dispatches", "schedule_id = ?", (sid,)) == 0

        client.put(f"/api/schedules/{sid}", json={"notes": "bring ladder"})
        client.post("/api/reminders/run")
        client.put(f"/api/schedules/{sid}", json={"notes": "bring two ladders"})
        assert db_count("reminder_dispatches", "schedule_id = ?", (sid,)) == 1


# ============================================================================
# INSPECTIONS
# ============================================================================

class TestInspections:

    def test_scan_and_start_logged(self, client, seeded):
        body = {"asset_id": seeded["asset"], "actor_id": seeded["inspector"], "lat": SITE_LAT, "lng": SITE_LNG}
        assert client.post("/api/inspections/scan", json=body).status_code == 200
        assert client.post("/api/inspections/start", json=body).status_code == 200
        actions = [r["action"] for r in db_query("SELECT action FROM inspection_logs ORDER BY id")]
        assert actions == ["scan", "start"]

    def test_scan_unknown_asset(self, client):
        assert client.post("/api/inspections/scan", json={"asset_id": 9, "actor_id": 1}).status_code == 404

    def test_submit_accepted(self, client, seeded):
        resp = client.post("/api/inspections/submit", json={
            "asset_id": seeded["asset"],
            "submitted_by": seeded["inspector"],
            "lat": north_of(SITE_LAT, 29),
            "lng": SITE_LNG,
        })
        assert resp.status_code == 200
        decision = resp.json()["decision"]
        assert decision["accepted"] is True
        assert decision["schedule_id"] == seeded["schedule"]["id"]
        sched = db_query("SELECT is_completed FROM inspection_schedules WHERE id = ?", (seeded["schedule"]["id"],))
        assert sched[0]["is_completed"] == 1

    def test_submit_out_of_range(self, client, seeded):
        resp = client.post("/api/inspections/submit", json={
            "asset_id": seeded["asset"],
            "submitted_by": seeded["inspector"],
            "lat": north_of(SITE_LAT, 31),
            "lng": SITE_LNG,
        })
        assert resp.status_code == 422
        data = resp.json()
        assert data["decision"]["reason"] == "out_of_range"
        assert data["decision"]["distance_meters"] == pytest.approx(31, abs=0.1)
        assert "31 meters" in data["error"]

    def test_submit_late(self, client, seeded):
        resp = client.post("/api/inspections/submit", json={
            "asset_id": seeded["asset"],
            "submitted_by": seeded["inspector"],
            "reported_at": "2025-01-15T09:31:00+07:00",
            "lat": SITE_LAT,
            "lng": SITE_LNG,
        })
        assert resp.status_code == 422
        decision = resp.json()["decision"]
        assert decision["reason"] == "outside_scheduled_window"
        assert decision["window_end_local"].startswith("2025-01-15T09:30:00")

    def test_submit_with_photo_upload(self, client, seeded):
        buf = io.BytesIO()
        Image.new("RGB", (4, 4), "white").save(buf, format="JPEG")
        resp = client.post("/api/inspections/submit", json={
            "asset_id": seeded["asset"],
            "submitted_by": seeded["inspector"],
            "lat": SITE_LAT,
            "lng": SITE_LNG,
            "photo_base64": base64.b64encode(buf.getvalue()).decode(),
        })
        assert resp.status_code == 200
        assert resp.json()["decision"]["photo_check"] == "absent"
        assert db_query("SELECT photo_hash FROM inspection_logs")[0]["photo_hash"]

    def test_submit_with_two_day_old_exif_photo(self, client, seeded):
        data = exif_jpeg(taken="2025:01:13 09:00:00", gps=site_gps_ifd())
        resp = client.post("/api/inspections/submit", json={
            "asset_id": seeded["asset"],
            "submitted_by": seeded["inspector"],
            "lat": SITE_LAT,
            "lng": SITE_LNG,
            "photo_base64": base64.b64encode(data).decode(),
        })
        assert resp.status_code == 422
        decision = resp.json()["decision"]
        assert decision["reason"] == "photo_metadata_mismatch"
        assert decision["photo_check"] == "contradictory"
        assert decision["photo_age_hours"] == pytest.approx(48)
        assert decision["photo_distance_meters"] == pytest.approx(0, abs=1)
        row = db_query("SELECT action, is_successful FROM inspection_logs")[0]
        assert row == {"action": "validation_failed", "is_successful": 0}

    def test_submit_with_fresh_exif_photo(self, client, seeded):
        data = exif_jpeg(taken="2025:01:15 08:55:00", gps=site_gps_ifd())
        resp = client.post("/api/inspections/submit", json={
            "asset_id": seeded["asset"],
            "submitted_by": seeded["inspector"],
            "lat": SITE_LAT,
            "lng": SITE_LNG,
            "photo_base64": base64.b64encode(data).decode(),
        })
        assert resp.status_code == 200
        assert resp.json()["decision"]["photo_check"] == "consistent"

    def test_submit_with_contradicting_photo_fields(self, client, seeded):
        resp = client.post("/api/inspections/submit", json={
            "asset_id": seeded["asset"],
            "submitted_by": seeded["inspector"],
            "lat": SITE_LAT,
            "lng": SITE_LNG,
            "photo_capture_time": "2025-01-10T09:00:00+07:00",
        })
        assert resp.status_code == 422
        assert resp.json()["decision"]["reason"] == "photo_metadata_mismatch"

    def test_submit_bad_base64(self, client, seeded):
        resp = client.post("/api/inspections/submit", json={
            "asset_id": seeded["asset"], "submitted_by": seeded["inspector"],
            "lat": SITE_LAT, "lng": SITE_LNG, "photo_base64": "***",
        })
        assert resp.status_code == 422

    def test_submit_unknown_asset(self, client):
        resp = client.post("/api/inspections/submit", json={"asset_id": 77, "submitted_by": 1, "lat": 0, "lng": 0})
        assert resp.status_code == 404

    def test_submit_malformed_coordinates(self, client, seeded):
        resp = client.post("/api/inspections/submit", json={
            "asset_id": seeded["asset"], "submitted_by": seeded["inspector"], "lat": 95, "lng": SITE_LNG,
        })
        assert resp.status_code == 422


# ============================================================================
# REMINDERS
# ============================================================================

class TestReminders:

    def test_run_and_log(self, client, clock, seeded):
        client.post("/api/schedules", json={
            "asset_id": seeded["asset"],
            "assignee_id": seeded["inspector"],
            "start_local": "2025-01-18T09:00:00",
            "end_local": "2025-01-18T10:00:00",
        })
        resp = client.post("/api/reminders/run")
        assert resp.status_code == 200
        summary = resp.json()["summary"]
        assert summary["buckets"]["weekly"]["sent"] == 1
        assert summary["total_sent"] == 1

        again = client.post("/api/reminders/run").json()["summary"]
        assert again["total_sent"] == 0

        log = client.get("/api/reminders/log").json()["dispatches"]
        assert len(log) == 1
        assert log[0]["status"] == "sent"
        assert log[0]["channel"] == "internal"

        notes = client.get(f"/api/notifications/{seeded['inspector']}").json()["notifications"]
        reminders = [n for n in notes if n["type"] == "schedule_reminder"]
        assert len(reminders) == 1
        assert "APAR-API-1" in reminders[0]["title"]
        assert sorted(n["type"] for n in notes) == ["schedule_created", "schedule_created", "schedule_reminder"]

    def test_manual_remind(self, client, seeded):
        resp = client.post(f"/api/schedules/{seeded['schedule']['id']}/remind")
        assert resp.status_code == 200
        assert resp.json()["result"]["success"] is True

    def test_manual_remind_missing_schedule(self, client):
        assert client.post("/api/schedules/999/remind").status_code == 404


# ============================================================================
# AUDIT
# ============================================================================

class TestAudit:

    def _submit(self, client, seeded, **extra):
        body = {"asset_id": seeded["asset"], "submitted_by": seeded["inspector"], "lat": SITE_LAT, "lng": SITE_LNG}
        body.update(extra)
        return client.post("/api/inspections/submit", json=body)

    def test_logs_and_stats(self, client, seeded):
        self._submit(client, seeded)
        self._submit(client, seeded, lat=north_of(SITE_LAT, 100))
        logs = client.get("/api/audit/logs").json()["logs"]
        assert len(logs) == 2
        assert logs[0]["occurred_local"].endswith("+07:00")
        failed = client.get("/api/audit/logs?is_successful=false").json()["logs"]
        assert [l["action"] for l in failed] == ["validation_failed"]

        stats = client.get("/api/audit/stats").json()["stats"]
        assert stats["total_logs"] == 2
        assert stats["successful_logs"] == 1
        assert stats["failed_logs"] == 1
        assert stats["actions_breakdown"] == {"submit": 1, "validation_failed": 1}

    def test_anomalies(self, client, clock, seeded):
        client.post("/api/inspections/start", json={"asset_id": seeded["asset"], "actor_id": seeded["inspector"]})
        clock.advance(seconds=90)
        self._submit(client, seeded)
        data = client.get("/api/audit/anomalies").json()
        assert data["count"] == 1
        assert data["anomalies"][0]["type"] == "fast_inspection"

    def test_cleanup(self, client, clock, seeded):
        self._submit(client, seeded, reported_at="2024-01-01T10:00:00+07:00")
        self._submit(client, seeded)
        stats = client.get("/api/audit/cleanup/stats").json()["stats"]
        assert stats["total_logs"] == 2
        assert stats["logs_older_than_180_days"] == 1

        resp = client.post("/api/audit/cleanup", json={"days": 180})
        assert resp.json()["deleted_count"] == 1
        assert resp.json()["remaining_count"] == 1

    def test_cleanup_rejects_zero_days(self, client):
        assert client.post("/api/audit/cleanup", json={"days": 0}).status_code == 422


# ============================================================================
# CONFIG
# ============================================================================

class TestConfig:

    def test_read_masks_secrets(self, client):
        client.put("/api/config/sendgrid_api_key", json={"value": "SG.secret"})
        config = client.get("/api/config").json()["config"]
        assert config["sendgrid_api_key"] == "********"
        assert config["timezone"] == "Asia/Jakarta"

    def test_typed_update(self, client):
        resp = client.put("/api/config/inspection_window_minutes", json={"value": "45"})
        assert resp.json()["value"] == 45

    def test_unknown_key(self, client):
        assert client.put("/api/config/nope", json={"value": 1}).status_code == 404

    def test_health(self, client):
        assert client.get("/api/health").json()["ok"] is True
