"""Replay a file of upstream events through a tracker and print the result.

Usage:
    python -m agentstats.cli replay events.jsonl --agent 1001
    python -m agentstats.cli replay events.jsonl --agent 1001 --queue sales --format csv
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from agentstats.stats.kpis import format_duration
from agentstats.tracker import AgentStatsTracker, TrackerConfig

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)

logger = logging.getLogger(__name__)


def replay(path: Path, tracker: AgentStatsTracker) -> tuple[int, int]:
    """Feed every JSON line in ``path`` to ``tracker``.

    Returns ``(events_read, calls_recorded)``. Blank lines are ignored and
    invalid lines are skipped with a warning.
    """
    events = recorded = 0
    with path.open(encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError as exc:
                logger.warning("Skipping line %d: invalid JSON (%s)", lineno, exc.msg)
                continue
            if not isinstance(payload, dict):
                logger.warning("Skipping line %d: expected a JSON object", lineno)
                continue
            events += 1
            if tracker.handle_event(payload):
                recorded += 1
    return events, recorded


def format_summary(tracker: AgentStatsTracker) -> str:
    """Human-readable summary of the tracker's current statistics."""
    stats = tracker.stats
    perf = stats.performance
    lines = [
        f"Agent:           {stats.name} ({stats.agent_id})",
        f"Period:          {stats.period} ({stats.period_start:%Y-%m-%d %H:%M} - {stats.period_end:%Y-%m-%d %H:%M})",
        f"Calls:           {stats.total_calls} total, {stats.answered_calls} answered, "
        f"{stats.missed_calls} missed, {stats.transferred_calls} transferred",
        f"Talk time:       {tracker.formatted_talk_time}",
        f"Avg handle time: {format_duration(perf.avg_handle_time)}",
        f"Service level:   {perf.service_level:.1f}%",
        f"Transfer rate:   {perf.transfer_rate:.1f}%",
        f"Performance:     {stats.performance_level}",
    ]
    peaks = tracker.peak_hours
    if peaks:
        lines.append("Peak hours:      " + ", ".join(f"{h:02d}:00" for h in peaks))
    for queue in tracker.top_queues:
        lines.append(
            f"  {queue.queue}: {queue.calls_handled} handled, {queue.calls_missed} missed, "
            f"SL {queue.service_level:.1f}%"
        )
    if tracker.alert_count:
        lines.append(f"Alerts:          {tracker.alert_count} unacknowledged")
        lines.extend(f"  [{a.level}] {a.message}" for a in tracker.alerts if not a.acknowledged)
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agentstats", description="Agent performance statistics tools")
    sub = parser.add_subparsers(dest="command", required=True)

    replay_cmd = sub.add_parser("replay", help="Replay a JSON-lines file of upstream events")
    replay_cmd.add_argument("events", type=Path, help="File with one JSON event per line")
    replay_cmd.add_argument("--agent", required=True, help="Agent id to track (e.g. 1001)")
    replay_cmd.add_argument("--interface", default="", help="Interface pattern (e.g. PJSIP/*)")
    replay_cmd.add_argument("--queue", action="append", default=[], help="Queue to include (repeatable)")
    replay_cmd.add_argument("--format", choices=("summary", "csv", "json"), default="summary")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)

    try:
        config = TrackerConfig(
            agent_id=args.agent,
            interface_pattern=args.interface,
            queues=args.queue,
            realtime_updates=False,
        )
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    tracker = AgentStatsTracker(config)
    tracker.start()
    try:
        events, recorded = replay(args.events, tracker)
    except OSError as e:
        print(f"Cannot read {args.events}: {e}", file=sys.stderr)
        return 1
    finally:
        tracker.stop()

    if args.format == "csv":
        sys.stdout.write(tracker.export_csv())
    elif args.format == "json":
        print(tracker.export_json())
    else:
        print(f"Replayed {events} events ({recorded} calls recorded)")
        print(format_summary(tracker))
    return 0


if __name__ == "__main__":
    sys.exit(main())
