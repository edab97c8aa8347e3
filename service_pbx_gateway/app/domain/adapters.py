"""
Normalization of loosely-shaped PBX payloads into stable records.

Field names drift across firmware versions. Every logical field is read
through ``FIELD_ALIASES``, which lists the historical names in the order
they are tried. The normalizers never raise on missing optional fields.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .models import (
    AgentState,
    AgentStatus,
    CallRecord,
    CallStatistics,
    DestinationKind,
    Extension,
    InboundRoute,
    IVR,
    Queue,
    RouteDestination,
)


FIELD_ALIASES: Dict[str, Sequence[str]] = {
    # shared identity fields
    "id": ("id",),
    "name": ("name",),
    # extensions
    "ext_id": ("id", "ext_id"),
    "ext_number": ("number", "ext_num", "extension_number"),
    "ext_display_name": ("display_name", "caller_id_name", "ext_name"),
    "ext_username": ("username", "user_name"),
    "online_status": ("online_status",),
    "presence_status": ("presence_status",),
    # queues / ivrs
    "queue_id": ("id", "queue_id"),
    "queue_name": ("name", "queue_name"),
    "ivr_id": ("id", "ivr_id"),
    "ivr_name": ("name", "ivr_name"),
    # inbound routes
    "route_position": ("pos", "position"),
    "default_dest": ("def_dest", "default_destination", "destination"),
    "default_dest_value": (
        "def_dest_value",
        "default_destination_value",
        "default_desination_value",
        "destination_value",
    ),
    "business_hours_dest": ("business_hours_destination", "business_hours_dest"),
    "business_hours_dest_value": ("business_hours_destination_value", "business_hours_dest_value"),
    "time_condition": ("time_condition",),
    "did_patterns": ("did_pattern_list", "did_patterns", "did_list", "patterns"),
    # call detail records
    "cdr_from": ("call_from", "from"),
    "cdr_to": ("call_to", "to"),
    "cdr_time": ("time", "start_time", "timestamp"),
    "cdr_disposition": ("disposition", "status"),
    "cdr_talk_duration": ("talk_duration", "talk_time", "duration"),
    "cdr_call_type": ("call_type", "type"),
    # call statistics
    "stats_ext_num": ("ext_num", "number"),
    "stats_ext_name": ("ext_name", "name"),
    "stats_total": ("total_call_count", "total_calls"),
    "stats_answered": ("answered_calls", "answered_call_count"),
    "stats_no_answer": ("no_answer_calls", "no_answer_call_count"),
    "stats_busy": ("busy_calls", "busy_call_count"),
    "stats_failed": ("failed_calls", "failed_call_count"),
    "stats_voicemail": ("voicemail_calls", "voicemail_call_count"),
    "stats_talking_time": ("total_talking_time", "talking_time"),
    # queue agents
    "agent_id": ("id", "agent_id", "ext_id"),
    "agent_num": ("number", "agent_num", "ext_num"),
    "agent_name": ("name", "agent_name", "ext_name"),
    "agent_call_status": ("call_status", "status"),
    "agent_paused": ("pause_status", "paused", "is_paused"),
    # queue call counts
    "queue_waiting_count": ("waiting_count", "waiting_call_count", "waiting_calls_count"),
    "queue_waiting_list": ("waiting_calls", "waiting_call_list", "waiting_list"),
    "queue_active_count": ("active_count", "active_call_count", "talking_count"),
    "queue_active_list": ("active_calls", "active_call_list", "talking_calls"),
    "queue_ringing_count": ("ringing_count", "ringing_call_count"),
    "queue_ringing_list": ("ringing_calls", "ringing_call_list"),
    # live call legs
    "call_id": ("call_id", "id"),
    "call_members": ("members", "member_list", "legs"),
    "leg_status": ("member_status", "status", "call_status"),
    "leg_channel": ("channel_id", "channelid", "channel"),
    "leg_from": ("from", "call_from", "caller"),
    "leg_to": ("to", "call_to", "callee"),
    "leg_number": ("number", "ext_num", "extension"),
    "call_duration": ("duration", "talk_duration", "call_duration"),
}

AGENT_STATUS_CODES: Dict[int, AgentState] = {
    1: AgentState.IDLE,
    2: AgentState.BUSY,
    3: AgentState.RINGING,
    4: AgentState.BUSY,
    5: AgentState.BUSY,
}

ONLINE_CODE = 1

_TRUTHY = {"1", "true", "yes", "on", "paused"}


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def resolve(record: Mapping[str, Any], field: str, default: Any = None) -> Any:
    """Return the first present value among the aliases of ``field``."""
    for alias in FIELD_ALIASES[field]:
        value = record.get(alias)
        if _present(value):
            return value
    return default


def resolve_str(record: Mapping[str, Any], field: str) -> str:
    """Resolve ``field`` and coerce it to a string; numeric ids become strings."""
    return as_str(resolve(record, field))


def as_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def as_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


def as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return False


def extract_list(payload: Mapping[str, Any], *resource_fields: str) -> List[Dict[str, Any]]:
    """Read a list payload from ``data`` or a resource-specific field."""
    for name in ("data",) + resource_fields:
        value = payload.get(name)
        if isinstance(value, list):
            return [item for item in value if isinstance(item, dict)]
        if isinstance(value, dict):
            # some firmwares nest the list one level down
            for nested in resource_fields + ("list", "data"):
                inner = value.get(nested)
                if isinstance(inner, list):
                    return [item for item in inner if isinstance(item, dict)]
    return []


def extract_record(payload: Mapping[str, Any], *resource_fields: str) -> Optional[Dict[str, Any]]:
    """Read a single-record payload from ``data`` or a resource-specific field."""
    for name in ("data",) + resource_fields:
        value = payload.get(name)
        if isinstance(value, dict):
            return value
        if isinstance(value, list) and value and isinstance(value[0], dict):
            return value[0]
    return None


def extract_total(payload: Mapping[str, Any]) -> Optional[int]:
    """Server-reported total record count, when the response carries one."""
    for name in ("total_number", "total", "total_count"):
        value = payload.get(name)
        if _present(value):
            total = as_int(value, default=-1)
            if total >= 0:
                return total
    return None


def normalize_extension(record: Mapping[str, Any]) -> Extension:
    online = resolve(record, "online_status", {})
    presence = resolve(record, "presence_status")
    if isinstance(presence, Mapping):
        presence = presence.get("status")
    return Extension(
        id=resolve_str(record, "ext_id"),
        number=resolve_str(record, "ext_number"),
        display_name=resolve_str(record, "ext_display_name"),
        username=resolve_str(record, "ext_username"),
        online_status=dict(online) if isinstance(online, Mapping) else {},
        presence_status=as_str(presence),
    )


def is_online(online_status: Mapping[str, Any]) -> bool:
    """True when any registered device reports online code 1."""
    for device in online_status.values():
        code = device.get("status") if isinstance(device, Mapping) else device
        if as_int(code, default=-1) == ONLINE_CODE:
            return True
    return False


def normalize_queue(record: Mapping[str, Any]) -> Queue:
    return Queue(id=resolve_str(record, "queue_id"), name=resolve_str(record, "queue_name"))


def normalize_ivr(record: Mapping[str, Any]) -> IVR:
    return IVR(id=resolve_str(record, "ivr_id"), name=resolve_str(record, "ivr_name"))


def destination_kind(raw: str) -> Optional[DestinationKind]:
    key = raw.strip().lower().replace("-", "_").replace(" ", "_")
    if key in ("endcall", "hangup"):
        key = DestinationKind.END_CALL.value
    try:
        return DestinationKind(key)
    except ValueError:
        return None


def _destination(raw_kind: str, value: str) -> RouteDestination:
    kind = destination_kind(raw_kind) if raw_kind else None
    if kind is DestinationKind.END_CALL:
        value = ""
    return RouteDestination(kind=kind, value=value, raw_kind=raw_kind)


def _did_patterns(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        items: Iterable[Any] = raw.split(",")
    elif isinstance(raw, (list, tuple)):
        items = raw
    else:
        items = [raw]

    patterns = []
    for item in items:
        if isinstance(item, Mapping):
            item = item.get("pattern") or item.get("did")
        text = as_str(item)
        if text:
            patterns.append(text)
    return patterns


def normalize_inbound_route(record: Mapping[str, Any]) -> InboundRoute:
    default = _destination(
        resolve_str(record, "default_dest"),
        resolve_str(record, "default_dest_value"),
    )

    business_kind = resolve_str(record, "business_hours_dest")
    business_value = resolve_str(record, "business_hours_dest_value")
    business = _destination(business_kind, business_value) if (business_kind or business_value) else None

    time_condition = resolve_str(record, "time_condition")
    has_time_flag = bool(time_condition) and time_condition.lower() not in ("0", "false", "no", "off", "none")

    return InboundRoute(
        id=resolve_str(record, "id"),
        name=resolve_str(record, "name"),
        position=as_int(resolve(record, "route_position")),
        did_patterns=_did_patterns(resolve(record, "did_patterns")),
        default_destination=default,
        business_hours_destination=business,
        time_condition=time_condition,
        is_time_based=business is not None or has_time_flag,
    )


def normalize_call_record(record: Mapping[str, Any]) -> CallRecord:
    return CallRecord(
        call_from=resolve_str(record, "cdr_from"),
        call_to=resolve_str(record, "cdr_to"),
        time=resolve_str(record, "cdr_time"),
        disposition=resolve_str(record, "cdr_disposition"),
        talk_duration=as_int(resolve(record, "cdr_talk_duration")),
        call_type=resolve_str(record, "cdr_call_type"),
    )


def normalize_call_statistics(record: Mapping[str, Any]) -> CallStatistics:
    return CallStatistics(
        ext_num=resolve_str(record, "stats_ext_num"),
        ext_name=resolve_str(record, "stats_ext_name"),
        total_calls=as_int(resolve(record, "stats_total")),
        answered_calls=as_int(resolve(record, "stats_answered")),
        no_answer_calls=as_int(resolve(record, "stats_no_answer")),
        busy_calls=as_int(resolve(record, "stats_busy")),
        failed_calls=as_int(resolve(record, "stats_failed")),
        voicemail_calls=as_int(resolve(record, "stats_voicemail")),
        total_talking_time=as_int(resolve(record, "stats_talking_time")),
    )


def agent_state(code: Any) -> AgentState:
    """Map a PBX agent call-status code onto the closed agent states."""
    return AGENT_STATUS_CODES.get(as_int(code, default=-1), AgentState.UNAVAILABLE)


def normalize_agent(record: Mapping[str, Any]) -> AgentStatus:
    return AgentStatus(
        agent_id=resolve_str(record, "agent_id"),
        agent_num=resolve_str(record, "agent_num"),
        agent_name=resolve_str(record, "agent_name"),
        status=agent_state(resolve(record, "agent_call_status")),
        paused=as_bool(resolve(record, "agent_paused", False)),
    )


def route_update_payload(patch: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate a route patch into the field names the PBX accepts on update.

    Canonical keys (``default_destination``/``default_destination_value``)
    and any legacy alias are folded into ``def_dest``/``def_dest_value``.
    """
    payload: Dict[str, Any] = {}
    folded = {
        "default_dest": "def_dest",
        "default_dest_value": "def_dest_value",
        "business_hours_dest": "business_hours_destination",
        "business_hours_dest_value": "business_hours_destination_value",
    }
    consumed = set()
    for field, target in folded.items():
        for alias in FIELD_ALIASES[field]:
            if alias in patch:
                consumed.add(alias)
                if target not in payload:
                    payload[target] = patch[alias]

    for key, value in patch.items():
        if key not in consumed:
            payload[key] = value

    dest = destination_kind(as_str(payload.get("def_dest", "")))
    if dest is DestinationKind.END_CALL:
        payload["def_dest_value"] = ""
    if "id" in payload:
        payload["id"] = as_int(payload["id"], default=payload["id"])
    return payload
