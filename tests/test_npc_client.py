"""Tests for NPC turns and history management."""

import asyncio
import json
from typing import Optional

import pytest
from pydantic import BaseModel

from conftest import ScriptedTransport, Switch
from npc_chat.domain.models.conversation import Message, NPCStatus, Role, TextCompletion
from npc_chat.domain.orchestration.core.npc_client import NPCClient
from npc_chat.infrastructure.observability.logging import metrics


class GuardReply(BaseModel):
    talk: str
    mood: Optional[str] = None


def _roles(npc: NPCClient):
    return [m.role for m in npc.get_history()]


class TestTalk:
    """Tests for plain text turns."""

    @pytest.mark.asyncio
    async def test_success_appends_both_turns(self, npc: NPCClient, transport: ScriptedTransport) -> None:
        reply = await npc.talk("Let me in.")

        assert reply == "re: Let me in."
        assert npc.get_history() == [
            Message(role=Role.SYSTEM, content="You are a gate guard."),
            Message(role=Role.USER, content="Let me in."),
            Message(role=Role.ASSISTANT, content="re: Let me in."),
        ]
        assert not npc.is_talking

    @pytest.mark.asyncio
    async def test_transport_gets_full_history(self, npc: NPCClient, transport: ScriptedTransport) -> None:
        await npc.talk("first")
        await npc.talk("second")

        mode, messages = transport.calls[-1]
        assert mode == "text"
        assert [m.content for m in messages] == [
            "You are a gate guard.", "first", "re: first", "second"
        ]

    @pytest.mark.asyncio
    async def test_failure_keeps_user_turn_only(self, npc: NPCClient, transport: ScriptedTransport) -> None:
        transport.text_reply = lambda messages: TextCompletion(success=False, error="quota exceeded")

        assert await npc.talk("Let me in.") is None
        assert _roles(npc) == [Role.SYSTEM, Role.USER]
        assert not npc.is_talking

    @pytest.mark.asyncio
    async def test_empty_reply_is_a_failure(self, npc: NPCClient, transport: ScriptedTransport) -> None:
        transport.text_reply = lambda messages: TextCompletion(success=True, text="")

        assert await npc.talk("Let me in.") is None
        assert _roles(npc) == [Role.SYSTEM, Role.USER]

    @pytest.mark.asyncio
    async def test_transport_exception_is_contained(self, npc: NPCClient, transport: ScriptedTransport) -> None:
        transport.error = ConnectionError("socket closed")

        assert await npc.talk("Let me in.") is None
        assert _roles(npc) == [Role.SYSTEM, Role.USER]
        assert npc.status == NPCStatus.IDLE

    @pytest.mark.asyncio
    async def test_conversation_usable_after_failure(self, npc: NPCClient, transport: ScriptedTransport) -> None:
        transport.error = ConnectionError("socket closed")
        await npc.talk("Let me in.")

        transport.error = None
        assert await npc.talk("Please?") == "re: Please?"

    @pytest.mark.asyncio
    async def test_empty_message(self, npc: NPCClient, transport: ScriptedTransport) -> None:
        assert await npc.talk("") is None
        assert transport.calls == []
        assert npc.history_length == 1

    @pytest.mark.asyncio
    async def test_no_transport(self) -> None:
        npc = NPCClient(name="unwired", character_design="You are a ghost.")

        assert await npc.talk("Boo?") is None
        assert npc.history_length == 1
        assert not npc.is_talking
        assert not npc.is_ready

    @pytest.mark.asyncio
    async def test_closed_client(self, npc: NPCClient, transport: ScriptedTransport) -> None:
        npc.close()

        assert await npc.talk("Let me in.") is None
        assert transport.calls == []
        assert npc.history_length == 1

    @pytest.mark.asyncio
    async def test_inactive_host(self, transport: ScriptedTransport) -> None:
        host = Switch(active=False)
        npc = NPCClient(name="gate_guard", transport=transport, active_state=host)

        assert await npc.talk("Let me in.") is None
        assert npc.history_length == 0

        host.active = True
        assert await npc.talk("Let me in.") == "re: Let me in."

    @pytest.mark.asyncio
    async def test_records_metrics(self, npc: NPCClient, transport: ScriptedTransport) -> None:
        await npc.talk("Let me in.")
        transport.error = ConnectionError("socket closed")
        await npc.talk("Hello?")

        summary = metrics.get_metrics_summary()
        assert summary["turns.succeeded"] == 1
        assert summary["turns.failed"] == 1
        assert summary["latency.turn.text"]["count"] == 2


class TestStructured:
    """Tests for structured turns."""

    @pytest.mark.asyncio
    async def test_flattened_prompt_and_extracted_history(
        self, npc: NPCClient, transport: ScriptedTransport
    ) -> None:
        await npc.talk("hi")
        transport.structured_reply = {"talk": "Move along.", "mood": "bored"}

        result = await npc.talk_structured("Can I pass?", "guard_reply")

        assert result == {"talk": "Move along.", "mood": "bored"}
        mode, call = transport.calls[-1]
        assert mode == "structured_prompt"
        assert call == {
            "schema_name": "guard_reply",
            "prompt": "User: hi\nAssistant: re: hi\n\nUser: Can I pass?",
            "system_prompt": "You are a gate guard.",
        }
        assert npc.get_history()[-2:] == [
            Message(role=Role.USER, content="Can I pass?"),
            Message(role=Role.ASSISTANT, content="Move along."),
        ]

    @pytest.mark.asyncio
    async def test_empty_history_sends_bare_message(
        self, npc: NPCClient, transport: ScriptedTransport
    ) -> None:
        await npc.talk_structured("Can I pass?", "guard_reply")
        assert transport.calls[-1][1]["prompt"] == "Can I pass?"

    @pytest.mark.asyncio
    async def test_system_prompt_not_sent_as_history(
        self, npc: NPCClient, transport: ScriptedTransport
    ) -> None:
        await npc.talk_structured("Can I pass?", "guard_reply")
        assert "gate guard" not in transport.calls[-1][1]["prompt"]

    @pytest.mark.asyncio
    async def test_missing_schema_name(self, npc: NPCClient, transport: ScriptedTransport) -> None:
        assert await npc.talk_structured("Can I pass?", "") is None
        assert transport.calls == []
        assert npc.history_length == 1

    @pytest.mark.asyncio
    async def test_null_result(self, npc: NPCClient, transport: ScriptedTransport) -> None:
        transport.structured_reply = None

        assert await npc.talk_structured("Can I pass?", "guard_reply") is None
        assert _roles(npc) == [Role.SYSTEM, Role.USER]

    @pytest.mark.asyncio
    async def test_unrecognized_payload_kept_as_diagnostic(
        self, npc: NPCClient, transport: ScriptedTransport
    ) -> None:
        transport.structured_reply = {"action": "wave"}

        await npc.talk_structured("Hello!", "gesture")

        content = npc.get_history()[-1].content
        assert "gesture" in content
        assert '{"action":"wave"}' in content

    @pytest.mark.asyncio
    async def test_with_history_sends_message_list(
        self, npc: NPCClient, transport: ScriptedTransport
    ) -> None:
        await npc.talk("hi")
        transport.structured_reply = {"dialogue": "State your business."}

        result = await npc.talk_structured_with_history("Trade.", "guard_reply")

        assert result == {"dialogue": "State your business."}
        mode, call = transport.calls[-1]
        assert mode == "structured_messages"
        assert call["schema_name"] == "guard_reply"
        assert [m.role for m in call["messages"]] == [Role.SYSTEM, Role.USER, Role.ASSISTANT, Role.USER]
        assert call["messages"][-1].content == "Trade."
        assert npc.get_history()[-1] == Message(role=Role.ASSISTANT, content="State your business.")

    @pytest.mark.asyncio
    async def test_with_history_failure(self, npc: NPCClient, transport: ScriptedTransport) -> None:
        transport.error = TimeoutError("upstream")

        assert await npc.talk_structured_with_history("Trade.", "guard_reply") is None
        assert _roles(npc) == [Role.SYSTEM, Role.USER]

    @pytest.mark.asyncio
    async def test_typed_response(self, npc: NPCClient, transport: ScriptedTransport) -> None:
        transport.structured_reply = {"talk": "Halt!", "mood": "alert"}

        result = await npc.talk_structured("Hi", "guard_reply", response_model=GuardReply)

        assert result == GuardReply(talk="Halt!", mood="alert")
        assert npc.get_history()[-1].content == "Halt!"

    @pytest.mark.asyncio
    async def test_typed_response_mismatch(self, npc: NPCClient, transport: ScriptedTransport) -> None:
        transport.structured_reply = {"mood": "alert"}

        assert await npc.talk_structured_with_history("Hi", "guard_reply", response_model=GuardReply) is None
        assert _roles(npc) == [Role.SYSTEM, Role.USER]

    @pytest.mark.asyncio
    async def test_non_mapping_result(self, npc: NPCClient, transport: ScriptedTransport) -> None:
        transport.structured_reply = ["not", "an", "object"]

        assert await npc.talk_structured("Hi", "guard_reply") is None
        assert _roles(npc) == [Role.SYSTEM, Role.USER]


class TestCancellation:
    """Tests for cancel events and timeouts."""

    @pytest.mark.asyncio
    async def test_cancelled_before_dispatch(self, npc: NPCClient, transport: ScriptedTransport) -> None:
        cancel = asyncio.Event()
        cancel.set()

        assert await npc.talk("Let me in.", cancel_event=cancel) is None
        assert transport.calls == []
        assert npc.history_length == 1

    @pytest.mark.asyncio
    async def test_cancelled_during_transport(self, npc: NPCClient, transport: ScriptedTransport) -> None:
        transport.gate = asyncio.Event()
        cancel = asyncio.Event()

        turn = asyncio.create_task(npc.talk_structured("Let me in.", "guard_reply", cancel_event=cancel))
        await asyncio.sleep(0.01)
        assert npc.is_talking

        cancel.set()
        assert await turn is None
        assert not npc.is_talking
        assert _roles(npc) == [Role.SYSTEM, Role.USER]

    @pytest.mark.asyncio
    async def test_timeout(self, transport: ScriptedTransport) -> None:
        transport.gate = asyncio.Event()
        npc = NPCClient(name="slow", transport=transport, request_timeout=0.01)

        assert await npc.talk("Hello?") is None
        assert not npc.is_talking
        assert _roles(npc) == [Role.USER]

    @pytest.mark.asyncio
    async def test_task_cancel_propagates_and_releases(
        self, npc: NPCClient, transport: ScriptedTransport
    ) -> None:
        transport.gate = asyncio.Event()

        turn = asyncio.create_task(npc.talk("Let me in."))
        await asyncio.sleep(0.01)
        turn.cancel()

        with pytest.raises(asyncio.CancelledError):
            await turn
        assert not npc.is_talking


class TestConcurrency:
    """Tests for overlapping turns on one conversation."""

    @pytest.mark.asyncio
    async def test_overlapping_turns_are_serialized(
        self, npc: NPCClient, transport: ScriptedTransport
    ) -> None:
        transport.gate = asyncio.Event()

        first = asyncio.create_task(npc.talk("one"))
        second = asyncio.create_task(npc.talk("two"))
        await asyncio.sleep(0.01)
        assert [m.content for m in npc.get_history()] == ["You are a gate guard.", "one"]

        transport.gate.set()
        assert await asyncio.gather(first, second) == ["re: one", "re: two"]
        assert [m.content for m in npc.get_history()[1:]] == ["one", "re: one", "two", "re: two"]


class TestHistoryManagement:
    """Tests for explicit history calls."""

    @pytest.mark.asyncio
    async def test_revert_history(self, npc: NPCClient) -> None:
        await npc.talk("one")
        before = npc.get_history()
        await npc.talk("two")

        assert npc.revert_history() is True
        assert npc.get_history() == before

    def test_revert_chat_messages(self, npc: NPCClient) -> None:
        npc.append_chat_message("user", "one")
        npc.append_chat_message("assistant", "two")
        assert npc.revert_chat_messages(100) == 3
        assert npc.history_length == 0

    def test_append_chat_message_rejects_empty(self, npc: NPCClient) -> None:
        assert npc.append_chat_message("user", "") is False
        assert npc.append_chat_message("", "hello") is False
        assert npc.append_chat_message("user", "hello") is True
        assert npc.history_length == 2

    def test_set_and_clear_prompt(self, npc: NPCClient) -> None:
        npc.append_chat_message("user", "hello")
        npc.set_system_prompt("You are a retired guard.")
        assert npc.system_prompt == "You are a retired guard."
        assert npc.get_history()[0].content == "You are a retired guard."

        npc.set_system_prompt(None)
        assert _roles(npc) == [Role.USER]

    def test_clear_history_keeps_prompt(self, npc: NPCClient) -> None:
        npc.append_chat_message("user", "hello")
        npc.clear_history()
        assert npc.get_history() == [Message(role=Role.SYSTEM, content="You are a gate guard.")]

    @pytest.mark.asyncio
    async def test_history_transplant(self, npc: NPCClient, transport: ScriptedTransport) -> None:
        await npc.talk("hello")
        twin = NPCClient(name="twin", character_design="You are a twin.", transport=transport)

        assert twin.load_history(npc.save_history()) is True
        assert twin.get_history() == npc.get_history()
        assert twin.system_prompt == "You are a gate guard."

    def test_load_invalid_history(self, npc: NPCClient) -> None:
        npc.append_chat_message("user", "hello")
        before = npc.get_history()

        assert npc.load_history("{broken") is False
        assert npc.get_history() == before

    def test_load_rejects_empty_message(self, npc: NPCClient) -> None:
        before = npc.get_history()

        assert npc.load_history({"history": [{"role": "user", "content": ""}]}) is False
        assert npc.get_history() == before

    def test_save_history_format(self, npc: NPCClient) -> None:
        data = json.loads(npc.save_history())
        assert data == {
            "prompt": "You are a gate guard.",
            "history": [{"role": "system", "content": "You are a gate guard."}],
        }

    def test_build_context_text(self, npc: NPCClient) -> None:
        npc.append_chat_message("user", "hello")
        npc.append_chat_message("assistant", "halt")
        assert npc.build_context_text() == "User: hello\nAssistant: halt"

    def test_print_pretty(self, npc: NPCClient) -> None:
        rendered = npc.print_pretty_chat_messages()
        assert "gate_guard" in rendered
        assert "You are a gate guard." in rendered
