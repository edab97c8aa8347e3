"""
Stable record types produced from PBX payloads.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ExtensionState(str, Enum):
    """Dashboard-level extension state."""
    IDLE = "idle"
    RINGING = "ringing"
    BUSY = "busy"
    UNAVAILABLE = "unavailable"


class ExtensionCallStatus(str, Enum):
    """Call status derived from an extension's state."""
    IDLE = "idle"
    RINGING = "ringing"
    TALKING = "talking"


class AgentState(str, Enum):
    """Queue agent state."""
    IDLE = "idle"
    BUSY = "busy"
    RINGING = "ringing"
    UNAVAILABLE = "unavailable"


class CallState(str, Enum):
    """Active call state."""
    RINGING = "ringing"
    TALKING = "talking"
    HOLD = "hold"


class CallType(str, Enum):
    """Call class as queried on the PBX."""
    INBOUND = "Inbound"
    OUTBOUND = "Outbound"
    INTERNAL = "Internal"


class DestinationKind(str, Enum):
    """Inbound route destination variants."""
    EXTENSION = "extension"
    QUEUE = "queue"
    IVR = "ivr"
    END_CALL = "end_call"


class MonitorMode(str, Enum):
    """Supervisor monitoring modes."""
    LISTEN = "listen"
    WHISPER = "whisper"
    BARGE = "barge"


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    return value


class _Record:
    """Mixin giving dataclass records a JSON-friendly ``to_dict``."""

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass(frozen=True)
class Extension(_Record):
    id: str
    number: str
    display_name: str = ""
    username: str = ""
    online_status: Dict[str, Any] = field(default_factory=dict)
    presence_status: str = ""


@dataclass(frozen=True)
class Queue(_Record):
    id: str
    name: str = ""


@dataclass(frozen=True)
class IVR(_Record):
    id: str
    name: str = ""


@dataclass(frozen=True)
class RouteDestination(_Record):
    """A single routing target; ``value`` is empty for end_call."""

    kind: Optional[DestinationKind]
    value: str = ""
    raw_kind: str = ""

    @property
    def label(self) -> str:
        kind = self.kind.value if self.kind else self.raw_kind
        if not kind:
            return ""
        return f"{kind}/{self.value}" if self.value else kind

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["label"] = self.label
        return payload


@dataclass(frozen=True)
class InboundRoute(_Record):
    """Normalized inbound route.

    ``is_time_based`` is derived from the raw record at normalization time and
    is only ever as fresh as the record it came from.
    """

    id: str
    name: str = ""
    position: int = 0
    did_patterns: List[str] = field(default_factory=list)
    default_destination: RouteDestination = field(default_factory=lambda: RouteDestination(kind=None))
    business_hours_destination: Optional[RouteDestination] = None
    time_condition: str = ""
    is_time_based: bool = False

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["default_destination"] = self.default_destination.to_dict()
        if self.business_hours_destination is not None:
            payload["business_hours_destination"] = self.business_hours_destination.to_dict()
        return payload


@dataclass(frozen=True)
class ExtensionStatus(_Record):
    ext_id: str
    ext_num: str
    status: ExtensionState
    call_status: ExtensionCallStatus
    display_name: str = ""
    presence_status: str = ""


@dataclass(frozen=True)
class AgentStatus(_Record):
    agent_id: str
    agent_num: str
    agent_name: str
    status: AgentState
    paused: bool = False


@dataclass(frozen=True)
class QueueStatus(_Record):
    queue_id: str
    queue_name: str
    waiting_count: int = 0
    active_count: int = 0
    agents: List[AgentStatus] = field(default_factory=list)


@dataclass(frozen=True)
class ActiveCall(_Record):
    call_id: str
    channel_id: str
    call_from: str
    call_to: str
    status: CallState
    call_type: CallType
    duration: int = 0


@dataclass(frozen=True)
class CallRecord(_Record):
    call_from: str
    call_to: str
    time: str = ""
    disposition: str = ""
    talk_duration: int = 0
    call_type: str = ""


@dataclass(frozen=True)
class CallRecordFilters:
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    ext_num: Optional[str] = None
    disposition: Optional[str] = None

    def as_params(self) -> List[tuple]:
        params = []
        for name in ("start_time", "end_time", "ext_num", "disposition"):
            value = getattr(self, name)
            if value:
                params.append((name, value))
        return params


@dataclass(frozen=True)
class CallRecordPage(_Record):
    records: List[CallRecord]
    page: int
    page_size: int
    has_more: bool
    total: Optional[int] = None


@dataclass(frozen=True)
class CallStatistics(_Record):
    ext_num: str
    ext_name: str = ""
    total_calls: int = 0
    answered_calls: int = 0
    no_answer_calls: int = 0
    busy_calls: int = 0
    failed_calls: int = 0
    voicemail_calls: int = 0
    total_talking_time: int = 0


@dataclass(frozen=True)
class ConnectivityReport(_Record):
    relay_url: str
    reachable: bool
    latency_ms: Optional[float] = None
    message: str = ""
