"""Shared pytest fixtures: scripted transports, auth providers and clients."""

import asyncio
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

import pytest

from npc_chat.domain.models.conversation import Message, TextCompletion
from npc_chat.domain.orchestration.core.npc_client import NPCClient
from npc_chat.domain.streaming.events import StreamCompleted, TextDelta
from npc_chat.infrastructure.observability.logging import metrics


class ScriptedTransport:
    """ChatTransport double that records calls and replays scripted results.

    ``gate`` (when set) makes every call wait on that event before replying,
    which lets tests hold a turn in flight.
    """

    def __init__(self):
        self.calls: List[Tuple[str, Any]] = []
        self.text_reply: Callable[[Sequence[Message]], TextCompletion] = (
            lambda messages: TextCompletion(success=True, text=f"re: {messages[-1].content}")
        )
        self.structured_reply: Optional[Mapping[str, Any]] = {"talk": "Halt! Who goes there?"}
        self.stream_events: List[Any] = [
            TextDelta(text="a"), TextDelta(text="b"), StreamCompleted(text="ab")
        ]
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None

    async def _before_reply(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error

    async def complete_text(self, messages: Sequence[Message]) -> TextCompletion:
        self.calls.append(("text", list(messages)))
        await self._before_reply()
        return self.text_reply(messages)

    async def complete_structured_prompt(self, schema_name, prompt, system_prompt=None):
        self.calls.append(("structured_prompt", {
            "schema_name": schema_name, "prompt": prompt, "system_prompt": system_prompt
        }))
        await self._before_reply()
        return self.structured_reply

    async def complete_structured_messages(self, schema_name, messages):
        self.calls.append(("structured_messages", {
            "schema_name": schema_name, "messages": list(messages)
        }))
        await self._before_reply()
        return self.structured_reply

    async def stream_text(self, messages: Sequence[Message]):
        self.calls.append(("stream", list(messages)))
        for event in self.stream_events:
            if isinstance(event, Exception):
                raise event
            if isinstance(event, asyncio.Event):
                await event.wait()
                continue
            yield event


class StaticAuthProvider:
    """AuthProvider double with a fixed outcome"""

    def __init__(self, succeed: bool = True, error: Optional[Exception] = None):
        self.succeed = succeed
        self.error = error
        self.attempts = 0
        self._authenticated = False

    async def authenticate(self) -> bool:
        self.attempts += 1
        if self.error is not None:
            raise self.error
        self._authenticated = self.succeed
        return self.succeed

    def is_authenticated(self) -> bool:
        return self._authenticated

    def reset(self):
        self._authenticated = False


class Switch:
    """ActiveState double"""

    def __init__(self, active: bool = True):
        self.active = active

    def is_active(self) -> bool:
        return self.active


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def npc(transport: ScriptedTransport) -> NPCClient:
    """A ready NPC with a character prompt"""
    return NPCClient(name="gate_guard", character_design="You are a gate guard.", transport=transport)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Run without any NPC_CHAT_* variables from the host"""
    for var in [
        "NPC_CHAT_GAME_ID", "NPC_CHAT_DEVELOPER_TOKEN", "NPC_CHAT_IGNORE_DEVELOPER_TOKEN",
        "NPC_CHAT_DEFAULT_CHAT_MODEL", "NPC_CHAT_REQUEST_TIMEOUT", "NPC_CHAT_SERIALIZE_TURNS",
        "NPC_CHAT_LOG_LEVEL", "NPC_CHAT_LOG_FORMAT", "NPC_CHAT_SERVICE_NAME",
    ]:
        monkeypatch.delenv(var, raising=False)
    yield
