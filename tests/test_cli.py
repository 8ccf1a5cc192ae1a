"""Tests for the replay CLI."""

import csv
import io
import json
import logging
from pathlib import Path

import pytest

from agentstats.cli import main, replay
from agentstats.tracker import AgentStatsTracker, TrackerConfig
from tests.factories import complete_event, ring_no_answer_event


def _write_events(path: Path, lines: list[str]) -> Path:
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def events_file(tmp_path: Path) -> Path:
    return _write_events(
        tmp_path / "events.jsonl",
        [
            json.dumps(complete_event("u-1")),
            json.dumps(complete_event("u-2", Queue="support", Reason="transfer")),
            json.dumps(ring_no_answer_event("u-3")),
            json.dumps(complete_event("u-4", Interface="PJSIP/2002")),
            json.dumps({"Event": "Hangup"}),
        ],
    )


class TestReplay:
    def test_counts_events_and_recorded_calls(self, events_file: Path) -> None:
        tracker = AgentStatsTracker(TrackerConfig(agent_id="1001", realtime_updates=False))
        events, recorded = replay(events_file, tracker)
        assert events == 5
        assert recorded == 3
        assert tracker.stats.transferred_calls == 1
        assert tracker.stats.missed_calls == 1

    def test_invalid_lines_skipped_with_warning(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        path = _write_events(
            tmp_path / "bad.jsonl",
            ["{not json", "", "[1, 2]", json.dumps(complete_event("u-1"))],
        )
        tracker = AgentStatsTracker(TrackerConfig(agent_id="1001"))
        with caplog.at_level(logging.WARNING, logger="agentstats.cli"):
            events, recorded = replay(path, tracker)
        assert (events, recorded) == (1, 1)
        assert "line 1" in caplog.text
        assert "line 3" in caplog.text


class TestMain:
    def test_summary_output(self, events_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["replay", str(events_file), "--agent", "1001"]) == 0
        out = capsys.readouterr().out
        assert "Replayed 5 events (3 calls recorded)" in out
        assert "Agent:" in out
        assert "1 missed, 1 transferred" in out
        assert "sales:" in out

    def test_queue_filter(self, events_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["replay", str(events_file), "--agent", "1001", "--queue", "support"]) == 0
        assert "(1 calls recorded)" in capsys.readouterr().out

    def test_csv_output(self, events_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["replay", str(events_file), "--agent", "1001", "--format", "csv"]) == 0
        rows = list(csv.reader(io.StringIO(capsys.readouterr().out)))
        assert rows[0][0] == "Call ID"
        assert {r[0] for r in rows[1:]} == {"u-1", "u-2", "u-3-noanswer"}

    def test_json_output(self, events_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["replay", str(events_file), "--agent", "1001", "--format", "json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["agent_id"] == "1001"
        assert data["total_calls"] == 3

    def test_missing_file(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["replay", str(tmp_path / "nope.jsonl"), "--agent", "1001"]) == 1
        assert "Cannot read" in capsys.readouterr().err

    def test_invalid_interface_pattern(self, events_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["replay", str(events_file), "--agent", "1001", "--interface", "*/x"]) == 2
        assert "Invalid configuration" in capsys.readouterr().err
