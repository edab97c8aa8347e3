"""
PBX authentication client.
"""

from dashboard_shared.errors import MalformedResponseError
from dashboard_shared.logging import get_logger

from ..auth.token_store import TokenStore
from .dispatcher import RequestDispatcher


TOKEN_ENDPOINT = "get_token"


class PbxAuthClient:
    """Acquires access tokens from the PBX.

    This is the only call allowed through the dispatcher without a token.
    It is never invoked implicitly; callers re-authenticate explicitly after
    an ``AuthExpiredError``.
    """

    def __init__(self, dispatcher: RequestDispatcher, token_store: TokenStore):
        self.dispatcher = dispatcher
        self.token_store = token_store
        self.logger = get_logger("pbx_gateway.auth_client")

    async def authenticate(self, username: str, password: str) -> str:
        """Exchange API credentials for an access token and store it."""
        result = await self.dispatcher.call(
            TOKEN_ENDPOINT,
            "POST",
            {"username": username, "password": password},
            bypass_auth=True,
        )

        token = result.get("access_token")
        if not token or not isinstance(token, str):
            raise MalformedResponseError(
                "PBX token response carried no access_token",
                details={"endpoint": TOKEN_ENDPOINT},
            )

        self.token_store.set(token)
        self.logger.info(
            "Authentication successful",
            expires_in=result.get("access_token_expire_time"),
        )
        return token

    def logout(self) -> None:
        """Forget the current token."""
        self.token_store.clear()
