"""SDK configuration with environment variable support.

Settings load from ``NPC_CHAT_*`` environment variables (and an optional
``.env`` file), e.g.::

    export NPC_CHAT_GAME_ID=my-game
    export NPC_CHAT_DEVELOPER_TOKEN=dev-xxxx
    export NPC_CHAT_DEFAULT_CHAT_MODEL=gpt-4o-mini
"""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SDKSettings(BaseSettings):
    """Configuration for the SDK context and the clients it creates"""

    game_id: str = Field(
        default="",
        description="Game identifier used for authentication"
    )
    developer_token: Optional[str] = Field(
        default=None,
        description="Developer token for local development"
    )
    ignore_developer_token: bool = Field(
        default=False,
        description="Never use the developer token, even when one is configured"
    )
    default_chat_model: Optional[str] = Field(
        default=None,
        description="Chat model used when a client does not name one"
    )

    request_timeout: Optional[float] = Field(
        default=60.0,
        gt=0,
        description="Seconds to wait for a single transport call"
    )
    serialize_turns: bool = Field(
        default=True,
        description="Queue overlapping turns on one conversation instead of interleaving them"
    )

    log_level: Literal["debug", "info", "warning", "error", "critical"] = Field(
        default="info",
        description="Logging level"
    )
    log_format: Literal["json", "console"] = Field(
        default="json",
        description="structlog renderer"
    )
    service_name: str = Field(
        default="npc-chat",
        description="Service name bound to every log entry"
    )

    model_config = SettingsConfigDict(
        env_prefix="NPC_CHAT_",
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    def validate_settings(self) -> Optional[str]:
        """Return an error message when the settings cannot be used, else None"""

        if not self.game_id.strip():
            return "Game ID is not configured. Set NPC_CHAT_GAME_ID."
        return None
