"""Normalize upstream queue events into ``CallRecord`` objects.

The upstream feed delivers loosely-typed dicts keyed by the switch's own field
names (``Queue``, ``Interface``, ``TalkTime`` ...). ``parse_event`` turns one
into a member of a small tagged union; ``normalize_event`` filters it against
the tracked agent and produces zero or one ``CallRecord``.

Numeric fields arrive as strings. Anything unparseable coerces to 0; nothing
in this module raises on bad input.
"""

import logging
import math
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from agentstats.stats.models import CallRecord, utcnow

logger = logging.getLogger(__name__)

MAX_LABEL_LENGTH = 255
_UNSAFE_LABEL_CHARS = frozenset("<>'\";&|`$\\")


def to_seconds(value: object) -> float:
    """Coerce an upstream numeric field to non-negative seconds (0 on failure)."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def to_count(value: object) -> int:
    return int(to_seconds(value))


def to_text(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def sanitize_label(value: str) -> str:
    """Strip markup/shell metacharacters from a display label and cap its length."""
    cleaned = "".join(ch for ch in value if ch not in _UNSAFE_LABEL_CHARS)
    return cleaned.strip()[:MAX_LABEL_LENGTH]


Seconds = Annotated[float, BeforeValidator(to_seconds)]
Count = Annotated[int, BeforeValidator(to_count)]
Text = Annotated[str, BeforeValidator(to_text)]


# ---------------------------------------------------------------------------
# Event union
# ---------------------------------------------------------------------------


class _UpstreamEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    queue: Text = Field(default="", alias="Queue")
    unique_id: Text = Field(default="", alias="Uniqueid")
    channel: Text = Field(default="", alias="Channel")
    member: Text = Field(default="", alias="Member")
    member_name: Text = Field(default="", alias="MemberName")
    interface: Text = Field(default="", alias="Interface")

    @property
    def agent_label(self) -> str:
        """The interface label identifying the agent (falls back to Member)."""
        return self.interface or self.member


class AgentCompleteEvent(_UpstreamEvent):
    """A queue call the agent answered has ended."""

    kind: Literal["AgentComplete"] = Field(default="AgentComplete", alias="Event")
    hold_time: Seconds = Field(default=0.0, alias="HoldTime")  # queue wait before answer
    talk_time: Seconds = Field(default=0.0, alias="TalkTime")
    ring_time: Seconds = Field(default=0.0, alias="RingTime")
    reason: Text = Field(default="", alias="Reason")


class AgentRingNoAnswerEvent(_UpstreamEvent):
    """The agent was rung for a queue call and did not pick up."""

    kind: Literal["AgentRingNoAnswer"] = Field(default="AgentRingNoAnswer", alias="Event")
    ring_time: Seconds = Field(default=0.0, alias="RingTime")


class QueueMemberStatusEvent(_UpstreamEvent):
    """Periodic membership snapshot for the agent in one queue."""

    kind: Literal["QueueMemberStatus"] = Field(default="QueueMemberStatus", alias="Event")
    calls_taken: Count = Field(default=0, alias="CallsTaken")
    last_pause: Seconds = Field(default=0.0, alias="LastPause")


class UnrecognizedEvent(BaseModel):
    """Any event this engine does not act on. Handling it is a no-op."""

    model_config = ConfigDict(frozen=True)

    kind: str = ""
    malformed: bool = False


UpstreamEvent = AgentCompleteEvent | AgentRingNoAnswerEvent | QueueMemberStatusEvent | UnrecognizedEvent

EVENT_TYPES: dict[str, type[_UpstreamEvent]] = {
    "AgentComplete": AgentCompleteEvent,
    "AgentRingNoAnswer": AgentRingNoAnswerEvent,
    "QueueMemberStatus": QueueMemberStatusEvent,
}


def parse_event(payload: Mapping[str, Any] | Any) -> UpstreamEvent:
    """Parse one upstream message into the event union.

    Accepts either a ``{"type": ..., "data": {...}}`` envelope or the bare
    ``data`` mapping. Never raises.
    """
    if not isinstance(payload, Mapping):
        return UnrecognizedEvent(malformed=True)
    data = payload.get("data", payload)
    if not isinstance(data, Mapping):
        return UnrecognizedEvent(malformed=True)

    kind = to_text(data.get("Event"))
    event_type = EVENT_TYPES.get(kind)
    if event_type is None:
        return UnrecognizedEvent(kind=kind)
    try:
        return event_type.model_validate(dict(data))
    except ValidationError:
        logger.debug("Dropping malformed %s event", kind, exc_info=True)
        return UnrecognizedEvent(kind=kind, malformed=True)


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


def validate_interface_pattern(pattern: str) -> str:
    """Accept exact labels, ``PREFIX*`` and ``TECH/*``; reject any other wildcard use."""
    if "*" in pattern[:-1]:
        msg = f"Invalid interface pattern {pattern!r}: '*' is only allowed as the last character"
        raise ValueError(msg)
    return pattern


def match_interface_pattern(interface: str, pattern: str) -> bool:
    """Match an interface label against a trailing-wildcard pattern (no regex)."""
    if not pattern or not interface:
        return True
    # "PJSIP/*" -> prefix "PJSIP/", "SIP/10*" -> prefix "SIP/10"
    if pattern.endswith("*"):
        return interface.startswith(pattern[:-1])
    return interface == pattern


def extract_agent_id(interface: str) -> str:
    """``PJSIP/1001`` -> ``1001``. Labels without a slash are returned unchanged."""
    return interface.rsplit("/", 1)[-1] or interface


class EventFilter(BaseModel):
    """Which events belong to the tracked agent."""

    model_config = ConfigDict(frozen=True)

    agent_id: str
    queues: tuple[str, ...] = ()
    interface_pattern: str = ""

    def accepts(self, event: _UpstreamEvent) -> bool:
        if self.queues and event.queue not in self.queues:
            return False
        label = event.agent_label
        if self.interface_pattern and not match_interface_pattern(label, self.interface_pattern):
            return False
        return label == self.agent_id or extract_agent_id(label) == self.agent_id


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def normalize_event(
    event: UpstreamEvent,
    event_filter: EventFilter,
    now: datetime | None = None,
) -> CallRecord | None:
    """Turn a call event into a ``CallRecord`` for the tracked agent, or None.

    Only ``AgentComplete`` and ``AgentRingNoAnswer`` produce records. Events
    without both a unique id and an interface label are malformed and dropped.
    """
    if not isinstance(event, AgentCompleteEvent | AgentRingNoAnswerEvent):
        return None
    if not event.unique_id or not event.agent_label:
        logger.debug("Dropping %s event without Uniqueid/Interface", event.kind)
        return None
    if not event_filter.accepts(event):
        return None

    end = now or utcnow()
    if isinstance(event, AgentCompleteEvent):
        talk = event.talk_time
        wait = event.hold_time
        transferred = event.reason.lower() == "transfer"
        return CallRecord(
            call_id=event.unique_id,
            queue=event.queue or None,
            remote_party=event.channel,
            direction="inbound",
            start_time=end - timedelta(seconds=talk + wait),
            answer_time=end - timedelta(seconds=talk),
            end_time=end,
            wait_time=wait,
            talk_time=talk,
            hold_time=0.0,
            wrap_time=0.0,
            disposition="transferred" if transferred else "answered",
            transferred_to="transfer" if transferred else None,
        )

    # Repeated ring attempts for one queue call count as a single missed call
    ring = event.ring_time
    return CallRecord(
        call_id=f"{event.unique_id}-noanswer",
        queue=event.queue or None,
        remote_party=event.channel,
        direction="inbound",
        start_time=end - timedelta(seconds=ring),
        end_time=end,
        wait_time=ring,
        disposition="missed",
    )
