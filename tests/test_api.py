from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from conftest import call_log
from dayline.app import create_app
from dayline.core.errors import AnalysisError
from dayline.handlers import batches, get_registered_handlers, timeline

DAY = "2025-03-01"


def ts(hour, minute=0):
    return int(datetime(2025, 3, 1, hour, minute).timestamp())


class StubManager:
    def __init__(self, error=None):
        self.error = error
        self.requests = []

    async def reprocess_batches(self, batch_ids, progress):
        self.requests.append(("batches", list(batch_ids)))
        progress(f"Preparing to reprocess {len(batch_ids)} selected batches...")
        if self.error:
            raise self.error

    async def reprocess_day(self, day, progress):
        self.requests.append(("day", day))
        progress(f"No batches found for {day}")


class StubCoordinator:
    def __init__(self, manager):
        self.manager = manager

    def ensure_manager(self):
        return self.manager

    def get_stats(self):
        return {"is_running": False, "total_cycles": 3}


@pytest.fixture
def manager():
    return StubManager()


@pytest.fixture
def client(db, manager, monkeypatch):
    monkeypatch.setattr(timeline, "get_db", lambda: db)
    monkeypatch.setattr(batches, "get_db", lambda: db)
    monkeypatch.setattr(batches, "get_coordinator", lambda: StubCoordinator(manager))
    return TestClient(create_app())


def test_handlers_are_registered():
    handlers = get_registered_handlers()

    assert handlers["get_timeline"]["path"] == "/timeline"
    assert handlers["get_processing_stats"]["method"] == "GET"


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_timeline_merged_and_raw(client, db, make_card):
    batch_id = db.save_batch(ts(9), ts(10), [])
    db.replace_cards_in_range(
        ts(9),
        ts(10),
        [make_card("9:00 AM", "9:30 AM", day=DAY), make_card("9:31 AM", "10:00 AM", day=DAY)],
        batch_id,
    )

    merged = client.post("/api/timeline", json={"day": DAY}).json()
    raw = client.post("/api/timeline", json={"day": DAY, "merged": False}).json()

    assert merged["success"]
    assert merged["data"]["count"] == 1
    assert merged["data"]["cards"][0]["endTime"] == "10:00 AM"
    assert raw["data"]["count"] == 2
    assert raw["data"]["cards"][0]["startTime"] == "9:00 AM"


def test_timeline_rejects_malformed_day(client):
    assert client.post("/api/timeline", json={"day": "03/01/2025"}).status_code == 422


def test_batches_and_llm_calls(client, db):
    batch_id = db.save_batch(ts(9), ts(9, 15), [])
    db.log_llm_call(call_log("transcribe", batch_id))

    listing = client.post("/api/batches", json={"day": DAY}).json()
    calls = client.post("/api/batches/llm-calls", json={"batchId": batch_id}).json()

    assert [b["id"] for b in listing["data"]["batches"]] == [batch_id]
    assert listing["data"]["batches"][0]["status"] == "pending"
    assert calls["data"]["count"] == 1
    assert calls["data"]["calls"][0]["operation"] == "transcribe"


def test_reprocess_requires_a_target(client):
    body = client.post("/api/batches/reprocess", json={}).json()

    assert body["success"] is False


def test_reprocess_returns_progress(client, manager):
    body = client.post("/api/batches/reprocess", json={"batchIds": [4, 2]}).json()

    assert body["success"]
    assert body["data"]["progress"] == ["Preparing to reprocess 2 selected batches..."]
    assert manager.requests == [("batches", [4, 2])]


def test_reprocess_day(client, manager):
    body = client.post("/api/batches/reprocess", json={"day": DAY}).json()

    assert body["data"]["progress"] == [f"No batches found for {DAY}"]
    assert manager.requests == [("day", DAY)]


def test_reprocess_failure_is_reported(client, manager):
    manager.error = AnalysisError("Failed to reprocess some batches (1 of 1)")

    body = client.post("/api/batches/reprocess", json={"batchIds": [1]}).json()

    assert body["success"] is False
    assert body["error"] == "Failed to reprocess some batches (1 of 1)"
    assert len(body["data"]["progress"]) == 1


def test_stats(client):
    body = client.get("/api/stats").json()

    assert body["data"]["total_cycles"] == 3
