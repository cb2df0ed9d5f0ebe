from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Type
import asyncio
import time
import structlog
from pydantic import BaseModel, ValidationError

from npc_chat.domain.context.memory.message_store import MessageStore
from npc_chat.domain.context.normalizer import extract_utterance
from npc_chat.domain.context.snapshot import SnapshotInput, load_snapshot, save_snapshot
from npc_chat.domain.context.state.turn_guard import TurnGuard, run_cancellable
from npc_chat.domain.errors import (
    InactiveCallerError, InvalidArgumentError, InvalidFormatError,
    NotReadyError, NPCChatError, TransportFailureError, TurnCancelledError
)
from npc_chat.domain.models.conversation import Message, NPCStatus, Role, TextCompletion
from npc_chat.domain.orchestration.protocols import ActiveState, ChatTransport
from npc_chat.domain.streaming.events import StreamCompleted, StreamEvent, TextDelta
from npc_chat.infrastructure.observability.logging import conversation_logger, metrics

logger = structlog.get_logger(__name__)

# (value returned to the caller, content appended as the assistant turn)
TurnOutcome = Tuple[Any, str]

_STREAM_END = object()


class NPCClient:
    """Chat client for one NPC that manages its own conversation history.

    Every turn appends the user message before the transport is called, so
    the record of what was asked survives a failed request. Assistant
    messages are only appended on success. Turn methods never raise SDK
    errors; they log and return None instead.
    """

    def __init__(
        self,
        name: str = "npc",
        character_design: Optional[str] = None,
        chat_model: Optional[str] = None,
        transport: Optional[ChatTransport] = None,
        active_state: Optional[ActiveState] = None,
        serialize_turns: bool = True,
        request_timeout: Optional[float] = None
    ):
        self.name = name
        self.character_design = character_design
        self.chat_model = chat_model
        self.request_timeout = request_timeout
        self._store = MessageStore()
        self._guard = TurnGuard(serialize_turns=serialize_turns)
        self._transport: Optional[ChatTransport] = None
        self._active_state = active_state
        self._closed = False

        if character_design:
            self._store.set_system_prompt(character_design)
        if transport is not None:
            self.setup(transport)

    # ----------------- lifecycle -----------------
    def setup(self, transport: ChatTransport, chat_model: Optional[str] = None):
        """Wire the client to a transport and open the readiness gate"""

        self._transport = transport
        if chat_model:
            self.chat_model = chat_model
        self._guard.mark_ready()

        logger.info("NPC client ready", npc_name=self.name, model=self.chat_model)

    def close(self):
        """Tear the client down; later turns fail as inactive"""

        self._closed = True
        logger.info("NPC client closed", npc_name=self.name)

    def is_active(self) -> bool:
        if self._closed:
            return False
        return self._active_state is None or self._active_state.is_active()

    @property
    def is_ready(self) -> bool:
        return self._guard.is_ready

    @property
    def is_talking(self) -> bool:
        return self._guard.is_busy

    @property
    def status(self) -> NPCStatus:
        return self._guard.status

    # ----------------- turns -----------------
    async def talk(self, message: str, cancel_event: Optional[asyncio.Event] = None) -> Optional[str]:
        """Send a message and get the NPC's text reply"""

        async def dispatch() -> TurnOutcome:
            self._store.append(Role.USER, message)
            completion: TextCompletion = await self._call(
                self._transport.complete_text(self._store.messages), cancel_event
            )
            if not completion.success or not completion.text:
                raise TransportFailureError(completion.error or "Empty text completion", self.name)
            return completion.text, completion.text

        return await self._run_turn("text", message, dispatch, cancel_event)

    async def talk_structured(
        self,
        message: str,
        schema_name: str,
        response_model: Optional[Type[BaseModel]] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Any:
        """Send a message with the history flattened into one prompt and get a structured reply.

        Returns the structured mapping, or an instance of ``response_model``
        when one is given. The assistant history entry is the utterance
        extracted from the result, not the raw payload.
        """

        async def dispatch() -> TurnOutcome:
            context = self._store.build_context_text()
            prompt = f"{context}\n\nUser: {message}" if context else message
            self._store.append(Role.USER, message)
            result = await self._call(
                self._transport.complete_structured_prompt(
                    schema_name, prompt, self._store.system_prompt
                ),
                cancel_event
            )
            return self._normalize_structured(result, schema_name, response_model)

        return await self._run_turn(
            "structured", message, dispatch, cancel_event, schema_name=schema_name
        )

    async def talk_structured_with_history(
        self,
        message: str,
        schema_name: str,
        response_model: Optional[Type[BaseModel]] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Any:
        """Like talk_structured, but the transport receives the real message list"""

        async def dispatch() -> TurnOutcome:
            self._store.append(Role.USER, message)
            result = await self._call(
                self._transport.complete_structured_messages(schema_name, self._store.messages),
                cancel_event
            )
            return self._normalize_structured(result, schema_name, response_model)

        return await self._run_turn(
            "structured_history", message, dispatch, cancel_event, schema_name=schema_name
        )

    async def talk_stream(
        self,
        message: str,
        cancel_event: Optional[asyncio.Event] = None
    ) -> AsyncIterator[StreamEvent]:
        """Stream the NPC's reply.

        Yields every TextDelta from the transport unchanged and as soon as it
        arrives, then exactly one StreamCompleted. The final text is appended
        to the history when it is non-empty. Close the iterator (or consume it
        fully) to release the conversation.
        """

        started = time.perf_counter()
        completed: Optional[StreamCompleted] = None

        try:
            self._check_transport()
            async with self._guard.turn(cancel_event):
                self._check_turn(message)
                if cancel_event is not None and cancel_event.is_set():
                    raise TurnCancelledError("Turn cancelled before dispatch", self.name)

                self._store.append(Role.USER, message)
                stream = self._transport.stream_text(self._store.messages)
                try:
                    while True:
                        event = await self._call(anext(stream, _STREAM_END), cancel_event)
                        if event is _STREAM_END:
                            break

                        if isinstance(event, TextDelta):
                            yield event
                            continue

                        completed = event
                        if completed.text:
                            self._store.append(Role.ASSISTANT, completed.text)
                        break
                finally:
                    aclose = getattr(stream, "aclose", None)
                    if aclose is not None:
                        await aclose()

                if completed is None:
                    raise TransportFailureError("Stream ended without a completion", self.name)

        except NPCChatError as e:
            completed = self._failed_stream(e)
        except asyncio.TimeoutError:
            completed = self._failed_stream(TransportFailureError("Transport timed out", self.name))
        except Exception as e:
            logger.error("Unexpected error in streaming turn", npc_name=self.name, mode="stream",
                         error=str(e), exc_info=True)
            completed = StreamCompleted(text=None, error=str(e))

        self._record_turn("stream", completed.success, started, completed.error)
        yield completed

    # ----------------- history management -----------------
    @property
    def system_prompt(self) -> Optional[str]:
        return self._store.system_prompt

    def set_system_prompt(self, prompt: Optional[str]):
        """Set (or clear, with an empty prompt) the character prompt"""

        self._store.set_system_prompt(prompt)
        conversation_logger.log_history_update(self.name, "set_system_prompt", {"cleared": not prompt})

    def clear_history(self):
        """Start fresh, keeping the character prompt"""

        self._store.clear()
        conversation_logger.log_history_update(self.name, "clear")

    def revert_history(self) -> bool:
        """Remove the last user/assistant exchange"""

        reverted = self._store.revert_last_exchange()
        conversation_logger.log_history_update(self.name, "revert_exchange", {"reverted": reverted})
        return reverted

    def revert_chat_messages(self, count: int) -> int:
        """Remove the last ``count`` messages and return how many were removed"""

        removed = self._store.revert_last(count)
        conversation_logger.log_history_update(
            self.name, "revert_messages", {"removed": removed, "remaining": len(self._store)}
        )
        return removed

    def append_chat_message(self, role: Any, content: str) -> bool:
        """Manually append a message; returns False when role or content is empty"""

        try:
            self._store.append(role, content)
        except InvalidArgumentError as e:
            logger.warning("Cannot append chat message", npc_name=self.name, error=e.message)
            return False
        return True

    def get_history(self) -> List[Message]:
        return self._store.messages

    @property
    def history_length(self) -> int:
        return len(self._store)

    def build_context_text(self) -> str:
        return self._store.build_context_text()

    def save_history(self) -> str:
        """Serialize prompt and history to JSON"""
        return save_snapshot(self._store)

    def load_history(self, data: SnapshotInput) -> bool:
        """Replace prompt and history from a snapshot; the history is untouched on failure"""

        try:
            load_snapshot(self._store, data)
        except InvalidFormatError as e:
            logger.error("Failed to load history", npc_name=self.name, error=e.message)
            return False
        conversation_logger.log_history_update(self.name, "load", {"messages": len(self._store)})
        return True

    def print_pretty_chat_messages(self, title: Optional[str] = None) -> str:
        """Log the history in a readable box and return the rendering"""

        rendered = self._store.format_pretty(title or f"NPC '{self.name}' Conversation History")
        logger.info("Conversation history", npc_name=self.name, history=rendered)
        return rendered

    # ----------------- internals -----------------
    def _check_transport(self):
        if self._transport is None:
            raise NotReadyError(
                "Chat client not initialized. Initialize the SDK and set up the client first.",
                self.name
            )

    def _check_turn(self, message: str, schema_name: Optional[str] = None, needs_schema: bool = False):
        if not self.is_active():
            raise InactiveCallerError("NPC client is not active", self.name)
        if not message:
            raise InvalidArgumentError("Message cannot be empty", self.name)
        if needs_schema and not schema_name:
            raise InvalidArgumentError("Schema name cannot be empty", self.name)

    async def _call(self, awaitable: Awaitable[Any], cancel_event: Optional[asyncio.Event]) -> Any:
        return await run_cancellable(awaitable, cancel_event, self.request_timeout)

    def _normalize_structured(
        self,
        result: Any,
        schema_name: str,
        response_model: Optional[Type[BaseModel]]
    ) -> TurnOutcome:
        if result is None:
            raise TransportFailureError(f"No structured result for schema '{schema_name}'", self.name)

        if isinstance(result, BaseModel):
            result = result.model_dump(mode="json")
        if not isinstance(result, Mapping):
            raise TransportFailureError(
                f"Structured result for '{schema_name}' is {type(result).__name__}, not an object",
                self.name
            )

        if response_model is None:
            payload: Dict[str, Any] = dict(result)
            return payload, extract_utterance(payload, schema_name)

        try:
            parsed = response_model.model_validate(result)
        except ValidationError as e:
            raise TransportFailureError(
                f"Structured result does not match {response_model.__name__}: {e.error_count()} error(s)",
                self.name
            ) from e
        return parsed, extract_utterance(parsed.model_dump(mode="json"), schema_name)

    async def _run_turn(
        self,
        mode: str,
        message: str,
        dispatch: Callable[[], Awaitable[TurnOutcome]],
        cancel_event: Optional[asyncio.Event],
        schema_name: Optional[str] = None
    ) -> Any:
        started = time.perf_counter()
        needs_schema = mode != "text"

        with structlog.contextvars.bound_contextvars(npc_name=self.name):
            try:
                self._check_transport()
                async with self._guard.turn(cancel_event):
                    self._check_turn(message, schema_name, needs_schema)
                    if cancel_event is not None and cancel_event.is_set():
                        raise TurnCancelledError("Turn cancelled before dispatch", self.name)

                    value, content = await dispatch()
                    self._store.append(Role.ASSISTANT, content)

            except TurnCancelledError as e:
                logger.info("Turn cancelled", mode=mode, reason=e.message)
                self._record_turn(mode, False, started, e.message)
                return None
            except NPCChatError as e:
                logger.error("Turn failed", mode=mode, error_type=type(e).__name__, error=e.message)
                self._record_turn(mode, False, started, e.message)
                return None
            except asyncio.TimeoutError:
                logger.error("Turn failed", mode=mode, error_type="Timeout", timeout=self.request_timeout)
                self._record_turn(mode, False, started, "timeout")
                return None
            except Exception as e:
                logger.error("Unexpected error in turn", mode=mode, error=str(e), exc_info=True)
                self._record_turn(mode, False, started, str(e))
                return None

        self._record_turn(mode, True, started)
        return value

    def _failed_stream(self, error: NPCChatError) -> StreamCompleted:
        log = logger.bind(npc_name=self.name, mode="stream")
        cancelled = isinstance(error, TurnCancelledError)
        if cancelled:
            log.info("Streaming turn cancelled", reason=error.message)
        else:
            log.error("Streaming turn failed", error_type=type(error).__name__, error=error.message)
        return StreamCompleted(text=None, cancelled=cancelled, error=error.message)

    def _record_turn(self, mode: str, success: bool, started: float, error: Optional[str] = None):
        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record_latency(f"turn.{mode}", duration_ms)
        metrics.increment_counter("turns.succeeded" if success else "turns.failed", tags={"mode": mode})
        conversation_logger.log_turn_event(mode, self.name, success, duration_ms, error)
