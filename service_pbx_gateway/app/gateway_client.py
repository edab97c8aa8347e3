"""
GatewayClient: the single entry point for dashboard operations against the PBX.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, TYPE_CHECKING
from urllib.parse import urlencode

import httpx

from dashboard_shared.config import BaseConfig
from dashboard_shared.errors import ValidationError
from dashboard_shared.logging import get_logger

from .adapters.auth_client import PbxAuthClient
from .adapters.dispatcher import RequestDispatcher
from .auth.token_store import TokenStore
from .caching.result_cache import ResultCache
from .domain.adapters import (
    as_str,
    extract_list,
    extract_record,
    extract_total,
    normalize_call_record,
    normalize_call_statistics,
    normalize_extension,
    normalize_inbound_route,
    normalize_ivr,
    normalize_queue,
    route_update_payload,
)
from .domain.models import (
    ActiveCall,
    CallRecordFilters,
    CallRecordPage,
    CallStatistics,
    ConnectivityReport,
    Extension,
    ExtensionStatus,
    InboundRoute,
    IVR,
    MonitorMode,
    Queue,
    QueueStatus,
)
from .domain.status_aggregator import StatusAggregator

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from dashboard_shared.metrics import MetricsCollector


EXTENSIONS_KEY = "extensions"
QUEUES_KEY = "queues"
IVRS_KEY = "ivrs"
INBOUND_ROUTES_KEY = "inbound_routes"
CDR_KEY_PREFIX = "cdr:"


def has_more_records(page: int, page_size: int, returned: int, total: Optional[int]) -> bool:
    """Pagination rule for call records.

    Without a server total, a full page is taken to mean more records
    follow. That misreports only when the last page is exactly full.
    """
    if total is not None:
        return page * page_size < total
    return returned >= page_size


@dataclass
class ClientContext:
    """Per-session state for one dashboard connection to one PBX."""

    pbx_host: str
    relay_url: str
    token_store: TokenStore = field(default_factory=TokenStore)
    cache: ResultCache = field(default_factory=ResultCache)
    cache_ttl: float = 60.0
    timeout: float = 30.0
    user_agent: str = "PbxDashboardGateway/1.0"

    @classmethod
    def from_config(
        cls,
        config: BaseConfig,
        *,
        session: Optional[Dict[str, str]] = None,
        metrics: Optional["MetricsCollector"] = None,
    ) -> "ClientContext":
        return cls(
            pbx_host=config.pbx_host,
            relay_url=config.relay_url,
            token_store=TokenStore(session, key=config.token_store_key),
            cache=ResultCache(config.cache_ttl_seconds, metrics=metrics),
            cache_ttl=config.cache_ttl_seconds,
            timeout=config.request_timeout_seconds,
            user_agent=config.user_agent,
        )

    def teardown(self) -> None:
        """Forget the token and every cached read."""
        self.token_store.clear()
        self.cache.clear()


class GatewayClient:
    """Facade over dispatcher, cache, adapters and aggregator.

    Reads go through the result cache with a uniform freshness window and
    can bypass it per call. Writes are never cached and invalidate what they
    change. Live status records are computed fresh on every call; only the
    extension and queue lists they are built from are cached.
    """

    def __init__(
        self,
        context: ClientContext,
        *,
        metrics: Optional["MetricsCollector"] = None,
        dispatcher: Optional[RequestDispatcher] = None,
    ):
        self.context = context
        self.metrics = metrics
        self.dispatcher = dispatcher or RequestDispatcher(
            context.relay_url,
            context.pbx_host,
            context.token_store,
            timeout=context.timeout,
            user_agent=context.user_agent,
            metrics=metrics,
        )
        self.auth_client = PbxAuthClient(self.dispatcher, context.token_store)
        self.aggregator = StatusAggregator(self.dispatcher)
        self.logger = get_logger("pbx_gateway.client")

    @property
    def cache(self) -> ResultCache:
        return self.context.cache

    @property
    def is_authenticated(self) -> bool:
        return self.context.token_store.get() is not None

    # Session

    async def authenticate(self, username: str, password: str) -> str:
        """Acquire a fresh token. This is the explicit re-authentication step."""
        if not username or not password:
            raise ValidationError("Username and password are required")
        return await self.auth_client.authenticate(username, password)

    def logout(self) -> None:
        self.context.teardown()
        self.logger.info("Session torn down", pbx_host=self.context.pbx_host)

    # Cached reads

    async def _cached_list(
        self,
        key: str,
        endpoint: str,
        resource_fields: Iterable[str],
        use_cache: bool,
    ) -> List[Dict[str, Any]]:
        if use_cache:
            cached = self.cache.get(key, self.context.cache_ttl)
            if cached is not None:
                return cached

        payload = await self.dispatcher.call(endpoint)
        records = extract_list(payload, *resource_fields)
        self.cache.set(key, records)
        return records

    async def list_extensions(self, use_cache: bool = True) -> List[Extension]:
        records = await self._cached_list(
            EXTENSIONS_KEY, "extension/list?page_size=1000", ("extension_list",), use_cache
        )
        return [normalize_extension(record) for record in records]

    async def list_queues(self, use_cache: bool = True) -> List[Queue]:
        records = await self._cached_list(
            QUEUES_KEY, "queue/list?page_size=100", ("queue_list",), use_cache
        )
        return [normalize_queue(record) for record in records]

    async def list_ivrs(self, use_cache: bool = True) -> List[IVR]:
        records = await self._cached_list(
            IVRS_KEY, "ivr/list?page_size=100", ("ivr_list",), use_cache
        )
        return [normalize_ivr(record) for record in records]

    async def list_inbound_routes(self, use_cache: bool = True) -> List[InboundRoute]:
        # raw records are cached; time-based detection reruns on every read
        records = await self._cached_list(
            INBOUND_ROUTES_KEY,
            "inbound_route/list?page_size=100&sort_by=pos&order_by=asc",
            ("inbound_route_list", "route_list"),
            use_cache,
        )
        return [normalize_inbound_route(record) for record in records]

    async def get_inbound_route(self, route_id: Any) -> Optional[InboundRoute]:
        route_id = as_str(route_id)
        if not route_id:
            raise ValidationError("Inbound route id is required")
        payload = await self.dispatcher.call(f"inbound_route/get?{urlencode({'id': route_id})}")
        record = extract_record(payload, "inbound_route")
        return normalize_inbound_route(record) if record else None

    async def list_call_records(
        self,
        page: int = 1,
        page_size: int = 10,
        filters: Optional[CallRecordFilters] = None,
        use_cache: bool = True,
    ) -> CallRecordPage:
        if page < 1 or page_size < 1:
            raise ValidationError(
                "page and page_size must be positive",
                details={"page": page, "page_size": page_size},
            )

        params = [
            ("page_size", page_size),
            ("sort_by", "time"),
            ("order_by", "desc"),
            ("page", page),
        ]
        if filters is not None:
            params.extend(filters.as_params())
        query = urlencode(params)
        key = f"{CDR_KEY_PREFIX}{query}"

        payload = self.cache.get(key, self.context.cache_ttl) if use_cache else None
        if payload is None:
            payload = await self.dispatcher.call(f"cdr/list?{query}")
            self.cache.set(key, payload)

        records = [normalize_call_record(record) for record in extract_list(payload, "cdr_list")]
        total = extract_total(payload)
        return CallRecordPage(
            records=records,
            page=page,
            page_size=page_size,
            has_more=has_more_records(page, page_size, len(records), total),
            total=total,
        )

    async def call_statistics(
        self,
        ext_ids: Iterable[Any],
        start_time: str,
        end_time: str,
    ) -> List[CallStatistics]:
        ids = [as_str(ext_id) for ext_id in ext_ids if as_str(ext_id)]
        if not ids:
            return []
        query = urlencode([
            ("type", "extcallstatistics"),
            ("start_time", start_time),
            ("end_time", end_time),
            ("ext_id_list", ",".join(ids)),
        ])
        payload = await self.dispatcher.call(f"call_report/list?{query}")
        return [
            normalize_call_statistics(record)
            for record in extract_list(payload, "ext_call_statistics_list")
        ]

    # Live status

    async def extension_statuses(
        self,
        ext_ids: Optional[Iterable[Any]] = None,
        use_cache: bool = True,
    ) -> List[ExtensionStatus]:
        extensions = await self.list_extensions(use_cache)
        return await self.aggregator.extension_statuses(extensions, ext_ids)

    async def queue_statuses(
        self,
        queue_id: Optional[Any] = None,
        use_cache: bool = True,
    ) -> List[QueueStatus]:
        queues = await self.list_queues(use_cache)
        return await self.aggregator.queue_statuses(queues, as_str(queue_id) if queue_id is not None else None)

    async def active_calls(self) -> List[ActiveCall]:
        return await self.aggregator.active_calls()

    # Writes

    async def update_inbound_route(self, patch: Mapping[str, Any]) -> bool:
        if not as_str(patch.get("id")):
            raise ValidationError("Inbound route update requires an id")
        body = route_update_payload(patch)
        await self.dispatcher.call("inbound_route/update", "POST", body)
        self.cache.invalidate(INBOUND_ROUTES_KEY)
        self.logger.info(
            "Inbound route updated",
            route_id=body.get("id"),
            destination=body.get("def_dest"),
        )
        return True

    def _require_channel(self, channel_id: str) -> str:
        channel_id = as_str(channel_id)
        if not channel_id:
            raise ValidationError("channel_id is required")
        return channel_id

    async def hangup(self, channel_id: str) -> bool:
        body = {"channel_id": self._require_channel(channel_id)}
        await self.dispatcher.call("call/hangup", "POST", body)
        return True

    async def transfer(self, channel_id: str, destination: str, dial_permission: str) -> bool:
        channel_id = self._require_channel(channel_id)
        if not as_str(destination):
            raise ValidationError("Transfer destination is required")
        body = {
            "channel_id": channel_id,
            "number": as_str(destination),
            "dial_permission": as_str(dial_permission),
        }
        await self.dispatcher.call("call/transfer", "POST", body)
        return True

    async def park(self, channel_id: str, lot: Optional[str] = None) -> bool:
        body: Dict[str, Any] = {"channel_id": self._require_channel(channel_id)}
        if lot:
            body["park_slot"] = as_str(lot)
        await self.dispatcher.call("call/park", "POST", body)
        return True

    async def monitor(self, ext_num: str, target_channel_id: str, mode: Any) -> bool:
        try:
            mode = MonitorMode(mode)
        except ValueError:
            raise ValidationError(
                f"Unknown monitor mode: {mode}",
                details={"allowed": [item.value for item in MonitorMode]},
            ) from None
        if not as_str(ext_num):
            raise ValidationError("Monitoring extension number is required")
        body = {
            "ext_num": as_str(ext_num),
            "channel_id": self._require_channel(target_channel_id),
        }
        await self.dispatcher.call(f"extension/{mode.value}", "POST", body)
        return True

    # Maintenance

    def invalidate_cache(self) -> None:
        self.cache.clear()

    async def probe_connectivity(
        self,
        relay_url: Optional[str] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> ConnectivityReport:
        """Check the relay's health endpoint; never raises for network failures."""
        base = (relay_url or self.context.relay_url).rstrip("/")
        url = f"{base}/api/health"
        start = clock()
        try:
            async with httpx.AsyncClient(timeout=self.context.timeout) as client:
                response = await client.get(url)
        except httpx.TransportError as exc:
            error = self.dispatcher.classifier.classify_transport(exc, url)
            self.logger.warning("Relay probe failed", url=url, error=error.message)
            return ConnectivityReport(relay_url=base, reachable=False, message=error.message)

        latency_ms = round((clock() - start) * 1000, 2)
        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code == 200 and isinstance(body, dict) and body.get("status") == "ok":
            return ConnectivityReport(relay_url=base, reachable=True, latency_ms=latency_ms, message="ok")

        if body is None:
            message = "Relay returned a non-JSON health response. Check the relay URL."
        else:
            message = f"Relay health check returned HTTP {response.status_code}"
        self.logger.warning("Relay probe unhealthy", url=url, status_code=response.status_code)
        return ConnectivityReport(relay_url=base, reachable=False, latency_ms=latency_ms, message=message)
