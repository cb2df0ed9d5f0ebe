"""
Token-based authentication for the SDK context
"""

from typing import Any, Awaitable, Callable, Dict, Optional
import structlog

logger = structlog.get_logger(__name__)

# Exchanges (game_id, token) for session claims; None means the token was rejected
TokenExchange = Callable[[str, str], Awaitable[Optional[Dict[str, Any]]]]


class TokenAuthProvider:
    """Authenticates a game against the model service with a token.

    The actual token exchange is injected; without one the token is
    accepted as-is, which is enough for local development.
    """

    def __init__(
        self,
        game_id: str,
        token: Optional[str] = None,
        is_developer_token: bool = False,
        exchange: Optional[TokenExchange] = None
    ):
        self.game_id = game_id
        self.token = token
        self.is_developer_token = is_developer_token
        self._exchange = exchange
        self._claims: Optional[Dict[str, Any]] = None

    async def authenticate(self) -> bool:
        """Validate the token and cache the resulting claims"""

        if not self.game_id:
            logger.error("Authentication failed: no game id configured")
            return False

        if not self.token:
            logger.error("Authentication failed: no token provided", game_id=self.game_id)
            return False

        if self.is_developer_token:
            logger.warning(
                "Using a developer token; it is rate limited and must not ship in production",
                game_id=self.game_id
            )

        if self._exchange is None:
            self._claims = {"game_id": self.game_id, "developer": self.is_developer_token}
        else:
            try:
                self._claims = await self._exchange(self.game_id, self.token)
            except Exception as e:
                logger.error("Token exchange failed", game_id=self.game_id, error=str(e))
                self._claims = None

        if self._claims is None:
            logger.error("Authentication rejected", game_id=self.game_id)
            return False

        logger.info("Authenticated", game_id=self.game_id,
                    token_prefix=self.token[:6] if len(self.token) > 6 else "***")
        return True

    def is_authenticated(self) -> bool:
        return self._claims is not None

    def get_claims(self) -> Optional[Dict[str, Any]]:
        return self._claims

    def reset(self):
        self._claims = None
