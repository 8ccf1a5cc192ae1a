"""Builders for call records and raw upstream event payloads used across tests."""

from datetime import datetime
from typing import Any

from agentstats.stats.models import CallRecord


def make_call(**overrides: Any) -> CallRecord:
    """An answered inbound call at 10:00 local time with 60s talk and 10s wait."""
    fields: dict[str, Any] = {
        "queue": "sales",
        "remote_party": "+15551234567",
        "direction": "inbound",
        "start_time": datetime(2026, 3, 2, 10, 0, 0),
        "wait_time": 10.0,
        "talk_time": 60.0,
        "disposition": "answered",
    }
    fields.update(overrides)
    return CallRecord(**fields)


def complete_event(unique_id: str = "1700000000.1", **overrides: Any) -> dict[str, Any]:
    """A raw AgentComplete payload as the upstream client delivers it."""
    data = {
        "Event": "AgentComplete",
        "Queue": "sales",
        "Uniqueid": unique_id,
        "Channel": "PJSIP/trunk-0001",
        "Interface": "PJSIP/1001",
        "MemberName": "Alice",
        "HoldTime": "12",
        "TalkTime": "95",
        "Reason": "agent",
    }
    data.update(overrides)
    return {"type": "event", "data": data}


def ring_no_answer_event(unique_id: str = "1700000000.2", **overrides: Any) -> dict[str, Any]:
    data = {
        "Event": "AgentRingNoAnswer",
        "Queue": "sales",
        "Uniqueid": unique_id,
        "Channel": "PJSIP/trunk-0002",
        "Interface": "PJSIP/1001",
        "RingTime": "15",
    }
    data.update(overrides)
    return {"type": "event", "data": data}


