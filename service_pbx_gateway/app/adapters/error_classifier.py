"""
Maps transport, parse and appliance outcomes onto the gateway error kinds.
"""

from typing import Any, Dict, Optional, Union

import httpx

from dashboard_shared.errors import (
    AuthExpiredError,
    DashboardException,
    MalformedResponseError,
    RemoteRejectedError,
    UnreachableError,
    UnsupportedError,
)


TOKEN_EXPIRED_ERRCODE = 10004

# Operator hints for appliance codes seen in the field
ERRCODE_HINTS: Dict[int, str] = {
    10003: "Invalid username/password",
    10004: "Token expired",
    10005: "IP not whitelisted on the PBX",
}

RELAY_DOWN_GUIDANCE = (
    "Cannot reach the CORS relay. Check that the relay is running and the relay URL is correct."
)
NETWORK_GUIDANCE = (
    "Network error talking to the PBX through the relay. Check connectivity and the PBX host."
)

# Appliance codes meaning the interface does not exist on this firmware
FEATURE_UNSUPPORTED_ERRCODES: Dict[int, str] = {
    40001: "Interface not existed",
}

# Relay status for a path the appliance does not serve
FEATURE_UNSUPPORTED_STATUS = 404


def _errcode(payload: Dict[str, Any]) -> Optional[Union[int, str]]:
    """Numeric errcode, or the raw text when it does not parse; None when absent."""
    raw = payload.get("errcode")
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError, OverflowError):
        return str(raw).strip()


class ErrorClassifier:
    """Turns raw outcomes of a relay round trip into typed gateway errors."""

    def classify_transport(self, exc: httpx.TransportError, url: str) -> UnreachableError:
        """Classify a transport failure, separating a dead relay from other network errors."""
        relay_down = isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout))
        return UnreachableError(
            RELAY_DOWN_GUIDANCE if relay_down else NETWORK_GUIDANCE,
            details={
                "url": url,
                "signature": "relay_down" if relay_down else "network",
                "error": str(exc) or exc.__class__.__name__,
            },
        )

    def classify_body(self, text: str, endpoint: str) -> MalformedResponseError:
        """Error for a body that did not parse into a JSON object."""
        return MalformedResponseError(
            "PBX returned non-JSON response. Check CORS proxy configuration.",
            details={"endpoint": endpoint, "body": text[:200]},
        )

    def classify_payload(
        self,
        status_code: int,
        payload: Dict[str, Any],
        endpoint: str,
        *,
        bypass_auth: bool = False,
        reason: str = "",
    ) -> Optional[DashboardException]:
        """Return the error carried by a parsed response, or None on success.

        The token-expired signal wins over any HTTP status, except on the
        authentication call itself where it is an ordinary rejection.
        """
        errcode = _errcode(payload)

        if errcode == TOKEN_EXPIRED_ERRCODE and not bypass_auth:
            return AuthExpiredError(details={"endpoint": endpoint, "remote_code": errcode})

        ok_status = 200 <= status_code < 300
        if ok_status and not errcode:
            return None

        code = errcode if errcode else status_code
        message = (
            payload.get("errmsg")
            or payload.get("message")
            or payload.get("error")
            or ERRCODE_HINTS.get(code)
            or reason
            or "Unknown error"
        )
        details: Dict[str, Any] = {"endpoint": endpoint, "status_code": status_code}
        hint = ERRCODE_HINTS.get(code)
        if hint:
            details["hint"] = hint
        return RemoteRejectedError(code, str(message), details=details)

    def as_unsupported(self, exc: DashboardException) -> DashboardException:
        """Reclassify a failed per-feature sub-query.

        Only an "interface not existed" code, or a bare 404 from the relay,
        means the query type is missing on this firmware. Every other error,
        including other rejections, is returned unchanged and must propagate.
        """
        if self.is_feature_unsupported(exc):
            return UnsupportedError(
                exc.remote_code,
                details={**exc.details, "original_message": exc.message},
            )
        return exc

    def is_feature_unsupported(self, exc: DashboardException) -> bool:
        if not isinstance(exc, RemoteRejectedError):
            return False
        if exc.remote_code in FEATURE_UNSUPPORTED_ERRCODES:
            return True
        return (
            exc.remote_code == FEATURE_UNSUPPORTED_STATUS
            and exc.details.get("status_code") == FEATURE_UNSUPPORTED_STATUS
        )
