from typing import Any, AsyncIterator, Mapping, Optional, Protocol, Sequence, runtime_checkable

from npc_chat.domain.models.conversation import Message, TextCompletion
from npc_chat.domain.streaming.events import StreamEvent


@runtime_checkable
class ChatTransport(Protocol):
    """Executes completions against the remote model service"""

    async def complete_text(self, messages: Sequence[Message]) -> TextCompletion:
        """Return the full text completion for a message list"""
        ...

    async def complete_structured_prompt(
        self,
        schema_name: str,
        prompt: str,
        system_prompt: Optional[str] = None
    ) -> Optional[Mapping[str, Any]]:
        """Return a schema-shaped object for a single flattened prompt"""
        ...

    async def complete_structured_messages(
        self,
        schema_name: str,
        messages: Sequence[Message]
    ) -> Optional[Mapping[str, Any]]:
        """Return a schema-shaped object for a message list"""
        ...

    def stream_text(self, messages: Sequence[Message]) -> AsyncIterator[StreamEvent]:
        """Yield TextDelta events in order, then exactly one StreamCompleted"""
        ...


@runtime_checkable
class AuthProvider(Protocol):
    """Authentication and readiness of the SDK"""

    async def authenticate(self) -> bool:
        ...

    def is_authenticated(self) -> bool:
        ...


@runtime_checkable
class ActiveState(Protocol):
    """Lifecycle of whatever hosts an NPC client"""

    def is_active(self) -> bool:
        ...
