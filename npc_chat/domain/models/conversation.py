from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from enum import Enum

from npc_chat.domain.errors import InvalidArgumentError


class Role(str, Enum):
    """Conversation roles"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        """Resolve a role from an enum member or a case-insensitive name"""

        if isinstance(value, Role):
            return value
        if not isinstance(value, str) or not value.strip():
            raise InvalidArgumentError("Role cannot be empty")
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise InvalidArgumentError(f"Unknown role: {value!r}") from None

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


class NPCStatus(str, Enum):
    """Turn state of a conversation"""
    IDLE = "idle"
    BUSY = "busy"


class Message(BaseModel):
    """A single role-tagged conversation message"""
    model_config = ConfigDict(frozen=True)

    role: Role = Field(description="Who produced the message")
    content: str = Field(min_length=1, description="Message text")

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, value: Any) -> Role:
        try:
            return Role.parse(value)
        except InvalidArgumentError as e:
            raise ValueError(e.message) from None


class ConversationSnapshot(BaseModel):
    """Persisted form of a conversation"""
    model_config = ConfigDict(extra="ignore")

    prompt: Optional[str] = Field(None, description="Active system prompt")
    history: List[Message] = Field(default_factory=list, description="Full message list")

    @field_validator("history", mode="before")
    @classmethod
    def _none_history(cls, value: Any) -> Any:
        return [] if value is None else value


class TextCompletion(BaseModel):
    """Result of a plain text completion"""
    success: bool = False
    text: str = ""
    error: Optional[str] = None
