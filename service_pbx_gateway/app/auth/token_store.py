"""
Session-scoped store for the PBX access token.
"""

from typing import MutableMapping, Optional

from dashboard_shared.logging import get_logger


DEFAULT_TOKEN_KEY = "yeastar_accessToken"


class TokenStore:
    """Owns the single live access token for a dashboard session.

    The token lives in a session-scoped mapping under a fixed key, so it
    survives across requests for the lifetime of the session and nothing
    longer. Every reader sharing the mapping sees a ``clear()`` at once.
    """

    def __init__(self, session: Optional[MutableMapping[str, str]] = None, key: str = DEFAULT_TOKEN_KEY):
        self._session: MutableMapping[str, str] = session if session is not None else {}
        self.key = key
        self.logger = get_logger("pbx_gateway.token_store")

    def get(self) -> Optional[str]:
        """Return the current token, or None when not authenticated."""
        return self._session.get(self.key) or None

    def set(self, token: str) -> None:
        """Replace the current token."""
        self._session[self.key] = token
        self.logger.debug("Access token stored", key=self.key)

    def clear(self) -> None:
        """Drop the current token."""
        if self._session.pop(self.key, None) is not None:
            self.logger.info("Access token cleared", key=self.key)

    def __bool__(self) -> bool:
        return self.get() is not None
