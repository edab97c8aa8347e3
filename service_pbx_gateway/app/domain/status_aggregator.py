"""
Live status aggregation across concurrent PBX queries.

Each aggregation fans out its remote queries with ``asyncio.gather`` and
joins them before merging. ``gather`` returns results in submission order,
so the merge functions below always see inbound, outbound, internal in that
order; precedence rules make the outcome independent of leg order as well.
"""

import asyncio
from typing import Any, Awaitable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from dashboard_shared.errors import DashboardException, UnsupportedError
from dashboard_shared.logging import get_logger

from ..adapters.dispatcher import RequestDispatcher
from ..adapters.error_classifier import ErrorClassifier
from .adapters import (
    as_int,
    as_str,
    extract_list,
    extract_record,
    is_online,
    normalize_agent,
    resolve,
    resolve_str,
)
from .models import (
    ActiveCall,
    CallState,
    CallType,
    Extension,
    ExtensionCallStatus,
    ExtensionState,
    ExtensionStatus,
    Queue,
    QueueStatus,
)


CALL_CLASSES: Tuple[Tuple[str, CallType], ...] = (
    ("inbound", CallType.INBOUND),
    ("outbound", CallType.OUTBOUND),
    ("internal", CallType.INTERNAL),
)

LEG_DIRECTIONS = ("inbound", "outbound")
LEG_KINDS = LEG_DIRECTIONS + ("extension",)

RINGING_TOKENS = ("ring", "alert")
BUSY_TOKENS = ("answer", "talk", "hold")

# Active-call signal priority; higher wins
CALL_STATE_PRIORITY: Dict[CallState, int] = {
    CallState.TALKING: 1,
    CallState.RINGING: 2,
    CallState.HOLD: 3,
}

_CALL_STATUS_BY_STATE = {
    ExtensionState.BUSY: ExtensionCallStatus.TALKING,
    ExtensionState.RINGING: ExtensionCallStatus.RINGING,
}

Leg = Tuple[str, Mapping[str, Any]]


async def gather_all(*aws: Awaitable[Any]) -> List[Any]:
    """Run ``aws`` concurrently and join every one before raising.

    The first failure in submission order is re-raised once all siblings
    have finished, so no branch is left with an unretrieved exception.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


def iter_legs(call: Mapping[str, Any]) -> List[Leg]:
    """Flatten a call's members into ``(kind, leg)`` pairs.

    Members arrive either wrapped by kind (``{"inbound": {...}}``) or flat,
    in which case the kind is empty.
    """
    members = resolve(call, "call_members", [])
    if not isinstance(members, list):
        return []

    legs: List[Leg] = []
    for member in members:
        if not isinstance(member, Mapping):
            continue
        wrapped = False
        for kind in LEG_KINDS:
            leg = member.get(kind)
            if isinstance(leg, Mapping):
                legs.append((kind, leg))
                wrapped = True
        if not wrapped:
            legs.append(("", member))
    return legs


def leg_extension_state(leg: Mapping[str, Any]) -> Optional[ExtensionState]:
    """``ringing`` for ring/alert signals, ``busy`` for answer/talk/hold, else None."""
    raw = as_str(resolve(leg, "leg_status")).lower()
    if not raw:
        return None
    if any(token in raw for token in RINGING_TOKENS):
        return ExtensionState.RINGING
    if any(token in raw for token in BUSY_TOKENS):
        return ExtensionState.BUSY
    return None


def leg_call_state(leg: Mapping[str, Any]) -> Optional[CallState]:
    raw = as_str(resolve(leg, "leg_status")).lower()
    if not raw:
        return None
    if "hold" in raw:
        return CallState.HOLD
    if any(token in raw for token in RINGING_TOKENS):
        return CallState.RINGING
    if any(token in raw for token in ("answer", "talk")):
        return CallState.TALKING
    return None


def merge_extension_states(call_sets: Iterable[Sequence[Mapping[str, Any]]]) -> Dict[str, ExtensionState]:
    """Map extension number to busy/ringing; busy is never downgraded."""
    states: Dict[str, ExtensionState] = {}
    for calls in call_sets:
        for call in calls:
            for kind, leg in iter_legs(call):
                if kind not in ("extension", ""):
                    continue
                number = resolve_str(leg, "leg_number")
                state = leg_extension_state(leg)
                if not number or state is None:
                    continue
                if states.get(number) is ExtensionState.BUSY:
                    continue
                states[number] = state
    return states


def build_extension_statuses(
    extensions: Sequence[Extension],
    states: Mapping[str, ExtensionState],
) -> List[ExtensionStatus]:
    statuses = []
    for ext in extensions:
        if not is_online(ext.online_status):
            state = ExtensionState.UNAVAILABLE
        else:
            state = states.get(ext.number, ExtensionState.IDLE)
        statuses.append(ExtensionStatus(
            ext_id=ext.id,
            ext_num=ext.number,
            status=state,
            call_status=_CALL_STATUS_BY_STATE.get(state, ExtensionCallStatus.IDLE),
            display_name=ext.display_name,
            presence_status=ext.presence_status,
        ))
    return statuses


def merge_active_call(call: Mapping[str, Any], call_type: CallType) -> ActiveCall:
    """Resolve one appliance call into an ActiveCall."""
    legs = iter_legs(call)

    directional = next((leg for kind, leg in legs if kind in LEG_DIRECTIONS), None)
    if directional is not None:
        call_from = resolve_str(directional, "leg_from")
        call_to = resolve_str(directional, "leg_to")
    else:
        numbers = [
            resolve_str(leg, "leg_number") or resolve_str(leg, "leg_from")
            for _, leg in legs
        ]
        numbers = [number for number in numbers if number]
        call_from = numbers[0] if numbers else resolve_str(call, "leg_from")
        if len(numbers) > 1:
            call_to = numbers[1]
        else:
            first = legs[0][1] if legs else call
            call_to = resolve_str(first, "leg_to") or resolve_str(call, "leg_to")

    channel_id = next(
        (channel for channel in (resolve_str(leg, "leg_channel") for _, leg in legs) if channel),
        resolve_str(call, "leg_channel"),
    )

    status: Optional[CallState] = None
    for _, leg in legs:
        signal = leg_call_state(leg)
        if signal is not None and (status is None or CALL_STATE_PRIORITY[signal] > CALL_STATE_PRIORITY[status]):
            status = signal
    if status is None:
        status = leg_call_state(call) or CallState.TALKING

    duration = as_int(resolve(call, "call_duration"))
    if not duration:
        duration = max((as_int(resolve(leg, "call_duration")) for _, leg in legs), default=0)

    call_id = resolve_str(call, "call_id")
    if not call_id:
        call_id = f"{call_type.value}-{channel_id or call_from}-{call_to}"

    return ActiveCall(
        call_id=call_id,
        channel_id=channel_id,
        call_from=call_from,
        call_to=call_to,
        status=status,
        call_type=call_type,
        duration=duration,
    )


def queue_counts(payload: Mapping[str, Any]) -> Tuple[int, int]:
    """``(waiting_count, active_count)`` from a queue call-status payload."""

    def count(count_field: str, list_field: str) -> int:
        explicit = resolve(payload, count_field)
        if explicit is not None:
            return as_int(explicit)
        items = resolve(payload, list_field)
        return len(items) if isinstance(items, list) else 0

    waiting = count("queue_waiting_count", "queue_waiting_list")
    active = count("queue_active_count", "queue_active_list")
    ringing = count("queue_ringing_count", "queue_ringing_list")
    return waiting, active + ringing


class StatusAggregator:
    """Issues concurrent status queries and merges them into dashboard records."""

    def __init__(self, dispatcher: RequestDispatcher, classifier: Optional[ErrorClassifier] = None):
        self.dispatcher = dispatcher
        self.classifier = classifier or dispatcher.classifier
        self.logger = get_logger("pbx_gateway.status_aggregator")

    async def _feature_query(self, endpoint: str) -> Optional[Dict[str, Any]]:
        """Run one per-feature sub-query; unsupported features yield None."""
        try:
            return await self.dispatcher.call(endpoint)
        except DashboardException as exc:
            error = self.classifier.as_unsupported(exc)
            if not isinstance(error, UnsupportedError):
                raise
            self.logger.info(
                "Feature query unsupported, treating as empty",
                endpoint=endpoint,
                remote_code=error.remote_code,
            )
            return None

    async def _call_class(self, query_type: str) -> List[Dict[str, Any]]:
        payload = await self._feature_query(f"call/query?type={query_type}&page_size=1000")
        if payload is None:
            return []
        return extract_list(payload, "call_list", "calls")

    async def query_call_classes(self) -> List[List[Dict[str, Any]]]:
        """Fetch inbound, outbound and internal calls concurrently, in that order."""
        return await gather_all(
            *(self._call_class(query_type) for query_type, _ in CALL_CLASSES)
        )

    async def extension_statuses(
        self,
        extensions: Sequence[Extension],
        ext_ids: Optional[Iterable[str]] = None,
    ) -> List[ExtensionStatus]:
        wanted = {as_str(ext_id) for ext_id in ext_ids} if ext_ids else None
        if wanted is not None:
            extensions = [ext for ext in extensions if ext.id in wanted]

        call_sets = await self.query_call_classes()
        states = merge_extension_states(call_sets)
        statuses = build_extension_statuses(extensions, states)
        self.logger.debug(
            "Extension statuses aggregated",
            extensions=len(statuses),
            active_numbers=len(states),
        )
        return statuses

    async def active_calls(self) -> List[ActiveCall]:
        call_sets = await self.query_call_classes()
        calls: List[ActiveCall] = []
        for (_, call_type), raw_calls in zip(CALL_CLASSES, call_sets):
            calls.extend(merge_active_call(call, call_type) for call in raw_calls)
        return calls

    async def _queue_status(self, queue: Queue) -> QueueStatus:
        counts_payload, agents_payload = await gather_all(
            self._feature_query(f"queue/query_call?id={queue.id}"),
            self._feature_query(f"queue/query_agent_status?id={queue.id}"),
        )

        waiting, active = 0, 0
        if counts_payload is not None:
            record = extract_record(counts_payload, "queue_call", "call_status") or counts_payload
            waiting, active = queue_counts(record)

        agents = []
        if agents_payload is not None:
            agents = [
                normalize_agent(agent)
                for agent in extract_list(agents_payload, "agent_list", "agents", "agent_status_list")
            ]

        return QueueStatus(
            queue_id=queue.id,
            queue_name=queue.name,
            waiting_count=waiting,
            active_count=active,
            agents=agents,
        )

    async def queue_statuses(
        self,
        queues: Sequence[Queue],
        queue_id: Optional[str] = None,
    ) -> List[QueueStatus]:
        if queue_id is not None:
            queues = [queue for queue in queues if queue.id == as_str(queue_id)]
        return await gather_all(*(self._queue_status(queue) for queue in queues))
