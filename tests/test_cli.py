import json
from datetime import datetime

import pytest
from typer.testing import CliRunner

from dayline import cli
from dayline.core import coordinator as coordinator_module
from dayline.core import db as db_module

DAY = "2025-03-01"

runner = CliRunner()


def ts(hour, minute=0):
    return int(datetime(2025, 3, 1, hour, minute).timestamp())


class StubCoordinator:
    result = {"created": 1, "processed": 1, "failed": 0}

    def __init__(self, config):
        self.config = config

    async def run_once(self):
        return dict(self.result)


@pytest.fixture
def stored_day(db, make_card, monkeypatch):
    monkeypatch.setattr(db_module, "get_db", lambda: db)
    batch_id = db.save_batch(ts(9), ts(10), [])
    db.replace_cards_in_range(
        ts(9),
        ts(10),
        [make_card("9:00 AM", "9:30 AM", day=DAY), make_card("9:30 AM", "10:00 AM", day=DAY)],
        batch_id,
    )
    return db


def test_timeline_prints_merged_cards(stored_day):
    result = runner.invoke(cli.app, ["timeline", DAY])

    assert result.exit_code == 0
    cards = json.loads(result.stdout)
    assert [(c["startTime"], c["endTime"]) for c in cards] == [("9:00 AM", "10:00 AM")]


def test_timeline_raw(stored_day):
    result = runner.invoke(cli.app, ["timeline", DAY, "--raw"])

    assert len(json.loads(result.stdout)) == 2


def test_reprocess_needs_a_target():
    result = runner.invoke(cli.app, ["reprocess"])

    assert result.exit_code == 2


def test_analyze_reports_counts(monkeypatch):
    monkeypatch.setattr(coordinator_module, "AnalysisCoordinator", StubCoordinator)

    result = runner.invoke(cli.app, ["analyze"])

    assert result.exit_code == 0
    assert "1 batches created, 1 processed, 0 failed" in result.stdout


def test_analyze_exits_nonzero_on_failures(monkeypatch):
    class Failing(StubCoordinator):
        result = {"created": 0, "processed": 2, "failed": 1}

    monkeypatch.setattr(coordinator_module, "AnalysisCoordinator", Failing)

    assert runner.invoke(cli.app, ["analyze"]).exit_code == 1
