"""
ChatTransport backed by any langchain-core chat model.
"""

from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence
import structlog
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel

from npc_chat.domain.models.conversation import Message, Role, TextCompletion
from npc_chat.domain.streaming.events import StreamCompleted, StreamEvent, TextDelta
from .schema_registry import SchemaRegistry

logger = structlog.get_logger(__name__)


_MESSAGE_TYPES = {
    Role.SYSTEM: SystemMessage,
    Role.USER: HumanMessage,
    Role.ASSISTANT: AIMessage,
}


def to_langchain_messages(messages: Sequence[Message]) -> List[BaseMessage]:
    """Convert conversation messages to langchain-core messages"""
    return [_MESSAGE_TYPES[message.role](content=message.content) for message in messages]


def content_text(content: Any) -> str:
    """Flatten message content (plain string or content blocks) to text"""

    if isinstance(content, str):
        return content

    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class LangChainChatTransport:
    """Runs text, structured and streamed completions through a BaseChatModel.

    Failures are reported the way the ChatTransport contract expects: an
    unsuccessful TextCompletion, a None structured result, or a
    StreamCompleted without text. Nothing is raised to the caller.
    """

    def __init__(self, chat_model: BaseChatModel, schemas: Optional[SchemaRegistry] = None):
        self.chat_model = chat_model
        self.schemas = schemas or SchemaRegistry()

    async def complete_text(self, messages: Sequence[Message]) -> TextCompletion:
        try:
            response = await self.chat_model.ainvoke(to_langchain_messages(messages))
        except Exception as e:
            logger.error("Text completion failed", error=str(e))
            return TextCompletion(success=False, error=str(e))

        text = content_text(response.content)
        if not text:
            return TextCompletion(success=False, error="Empty response")
        return TextCompletion(success=True, text=text)

    async def complete_structured_prompt(
        self,
        schema_name: str,
        prompt: str,
        system_prompt: Optional[str] = None
    ) -> Optional[Mapping[str, Any]]:
        messages: List[BaseMessage] = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=prompt))

        return await self._complete_structured(schema_name, messages)

    async def complete_structured_messages(
        self,
        schema_name: str,
        messages: Sequence[Message]
    ) -> Optional[Mapping[str, Any]]:
        return await self._complete_structured(schema_name, to_langchain_messages(messages))

    async def stream_text(self, messages: Sequence[Message]) -> AsyncIterator[StreamEvent]:
        parts: List[str] = []

        try:
            async for chunk in self.chat_model.astream(to_langchain_messages(messages)):
                text = content_text(chunk.content)
                if text:
                    parts.append(text)
                    yield TextDelta(text=text)
        except Exception as e:
            logger.error("Streaming completion failed", error=str(e), received_chunks=len(parts))
            yield StreamCompleted(text=None, error=str(e))
            return

        yield StreamCompleted(text="".join(parts) or None)

    async def _complete_structured(
        self,
        schema_name: str,
        messages: List[BaseMessage]
    ) -> Optional[Dict[str, Any]]:
        schema = self.schemas.get_schema(schema_name)
        if schema is None:
            logger.error("Unknown response schema", schema=schema_name,
                         available=self.schemas.list_schemas())
            return None

        try:
            runnable = self.chat_model.with_structured_output(schema)
            result = await runnable.ainvoke(messages)
        except Exception as e:
            logger.error("Structured completion failed", schema=schema_name, error=str(e))
            return None

        if isinstance(result, BaseModel):
            return result.model_dump(mode="json")
        if isinstance(result, Mapping):
            return dict(result)

        logger.error("Structured completion returned no object", schema=schema_name,
                     result_type=type(result).__name__)
        return None
