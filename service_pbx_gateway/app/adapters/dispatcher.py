"""
Request dispatcher: one authenticated round trip to the PBX through the relay.
"""

import json
import re
import time
from typing import Any, Dict, Optional, TYPE_CHECKING
from urllib.parse import parse_qsl, urlencode, urlsplit

import httpx

from dashboard_shared.errors import AuthExpiredError, DashboardException, UnauthenticatedError, ValidationError
from dashboard_shared.logging import get_logger, sanitize_url

from ..auth.token_store import TokenStore
from .error_classifier import ErrorClassifier

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from dashboard_shared.metrics import MetricsCollector


API_PREFIX = "openapi/v1.0"
DEFAULT_USER_AGENT = "PbxDashboardGateway/1.0"

_DOMAIN_RE = re.compile(r"^([a-z0-9]+(-[a-z0-9]+)*\.)+[a-z]{2,}$", re.IGNORECASE)
_IPV4_RE = re.compile(r"^(\d{1,3}\.){3}\d{1,3}$", re.ASCII)


def normalize_host(host: str) -> str:
    """Return the bare PBX host; the relay always forwards over https."""
    host = host.strip().rstrip("/")
    for scheme in ("https://", "http://"):
        if host.startswith(scheme):
            return host[len(scheme):]
    return host


def validate_pbx_host(host: str) -> str:
    """Return the bare host when it is a domain or IPv4 address, optionally with a port."""
    bare = normalize_host(host or "")
    name, sep, port = bare.partition(":")
    valid_name = bool(_DOMAIN_RE.match(name)) or (
        bool(_IPV4_RE.match(name)) and all(int(octet) <= 255 for octet in name.split("."))
    )
    valid_port = not sep or (port.isdecimal() and 0 < int(port) < 65536)
    if not valid_name or not valid_port:
        raise ValidationError("Invalid PBX host", details={"pbx_host": host})
    return bare


def validate_relay_url(relay_url: str) -> str:
    """Return the relay base URL when it is an absolute http(s) URL."""
    parts = urlsplit((relay_url or "").strip())
    if parts.scheme not in ("http", "https") or not parts.hostname or parts.query or parts.fragment:
        raise ValidationError("Invalid relay URL", details={"relay_url": relay_url})
    return relay_url.strip().rstrip("/")


class RequestDispatcher:
    """Builds relay URLs, performs one round trip and classifies the outcome.

    There is no automatic retry. When the appliance signals an expired token
    the store is cleared and ``AuthExpiredError`` propagates; re-authenticating
    and resubmitting is the caller's decision.
    """

    def __init__(
        self,
        relay_url: str,
        pbx_host: str,
        token_store: TokenStore,
        *,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        classifier: Optional[ErrorClassifier] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.relay_url = relay_url.rstrip("/")
        self.pbx_host = normalize_host(pbx_host)
        self.token_store = token_store
        self.timeout = timeout
        self.user_agent = user_agent
        self.classifier = classifier or ErrorClassifier()
        self.metrics = metrics
        self.logger = get_logger("pbx_gateway.dispatcher")

    def build_url(self, endpoint: str, token: Optional[str] = None) -> str:
        """Compose relay base, target host, versioned path and query string."""
        resource, _, query = endpoint.partition("?")
        params = parse_qsl(query, keep_blank_values=True)
        if token:
            params.append(("access_token", token))
        target = f"{self.pbx_host}/{API_PREFIX}/{resource.lstrip('/')}"
        url = f"{self.relay_url}/api/proxy/{target}"
        return f"{url}?{urlencode(params)}" if params else url

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            "X-Requested-With": "XMLHttpRequest",
        }

    async def call(
        self,
        endpoint: str,
        method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
        *,
        bypass_auth: bool = False,
    ) -> Dict[str, Any]:
        """Perform one request and return the parsed appliance response."""
        token = self.token_store.get()
        if not token and not bypass_auth:
            self.logger.error("No access token available", endpoint=endpoint)
            raise UnauthenticatedError(details={"endpoint": endpoint})

        url = self.build_url(endpoint, token if not bypass_auth else None)
        safe_url = sanitize_url(url)
        resource = endpoint.partition("?")[0]
        start_time = time.time()

        try:
            payload = await self._round_trip(method, url, body, endpoint, bypass_auth)
        except DashboardException as exc:
            self._observe(resource, exc.kind.value, start_time)
            self.logger.warning(
                "PBX request failed",
                endpoint=endpoint,
                url=safe_url,
                method=method,
                kind=exc.kind.value,
                code=exc.code,
                error=exc.message,
            )
            raise

        self._observe(resource, "ok", start_time)
        self.logger.debug("PBX request succeeded", endpoint=endpoint, url=safe_url, method=method)
        return payload

    async def _round_trip(
        self,
        method: str,
        url: str,
        body: Optional[Dict[str, Any]],
        endpoint: str,
        bypass_auth: bool,
    ) -> Dict[str, Any]:
        request_kwargs: Dict[str, Any] = {"headers": self._headers()}
        if body is not None:
            request_kwargs["json"] = body

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, url, **request_kwargs)
        except httpx.TransportError as exc:
            raise self.classifier.classify_transport(exc, sanitize_url(url)) from exc

        text = response.text
        try:
            payload = json.loads(text)
        except ValueError as exc:
            raise self.classifier.classify_body(text, endpoint) from exc
        if not isinstance(payload, dict):
            raise self.classifier.classify_body(text, endpoint)

        error = self.classifier.classify_payload(
            response.status_code,
            payload,
            endpoint,
            bypass_auth=bypass_auth,
            reason=response.reason_phrase,
        )
        if error is None:
            return payload

        if isinstance(error, AuthExpiredError):
            self.token_store.clear()
            self.logger.info("Token expired, need to re-authenticate", endpoint=endpoint)
        raise error

    def _observe(self, resource: str, outcome: str, start_time: float) -> None:
        if self.metrics is not None:
            self.metrics.record_pbx_request(resource, outcome, time.time() - start_time)
