from typing import Iterable, List, Optional
import structlog

from npc_chat.domain.errors import InvalidArgumentError
from npc_chat.domain.models.conversation import Message, Role

logger = structlog.get_logger(__name__)


class MessageStore:
    """Ordered message log for a single conversation.

    The system prompt lives alongside the log and, when set, is mirrored as
    the only system message at index 0. Everything else is kept in append
    order.
    """

    def __init__(self, system_prompt: Optional[str] = None):
        self._messages: List[Message] = []
        self._system_prompt: Optional[str] = None
        if system_prompt:
            self.set_system_prompt(system_prompt)

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def system_prompt(self) -> Optional[str]:
        return self._system_prompt

    @property
    def messages(self) -> List[Message]:
        """Copy of the current history, system message included"""
        return list(self._messages)

    def append(self, role, content: str) -> Message:
        """Append a message at the tail"""

        if not content:
            raise InvalidArgumentError("Role and content cannot be empty")
        message = Message(role=Role.parse(role), content=content)
        self._messages.append(message)
        return message

    def set_system_prompt(self, prompt: Optional[str]) -> None:
        """Replace the system message, or drop it when prompt is empty"""

        self._system_prompt = prompt or None

        # Scan everything; there should only ever be one
        self._messages = [m for m in self._messages if m.role != Role.SYSTEM]

        if self._system_prompt:
            self._messages.insert(0, Message(role=Role.SYSTEM, content=self._system_prompt))

    def clear(self) -> None:
        """Drop the history but keep the character prompt"""

        self._messages = []
        if self._system_prompt:
            self._messages.append(Message(role=Role.SYSTEM, content=self._system_prompt))

    def replace(self, prompt: Optional[str], history: Iterable[Message]) -> None:
        """Swap in a whole conversation; system entries in history are skipped"""

        kept = [m for m in history if m.role != Role.SYSTEM]
        self.clear()
        self.set_system_prompt(prompt)
        self._messages.extend(kept)

    def revert_last_exchange(self) -> bool:
        """Remove the last assistant message and the user message before it"""

        assistant_index = -1
        user_index = -1

        for i in range(len(self._messages) - 1, -1, -1):
            role = self._messages[i].role
            if role == Role.ASSISTANT and assistant_index == -1:
                assistant_index = i
            elif role == Role.USER and assistant_index != -1:
                user_index = i
                break

        if assistant_index == -1 or user_index == -1:
            return False

        # Assistant sits after the user entry, so removing it first keeps user_index valid
        del self._messages[assistant_index]
        del self._messages[user_index]
        return True

    def revert_last(self, count: int) -> int:
        """Remove up to count messages from the tail"""

        if count <= 0:
            return 0

        removed = min(count, len(self._messages))
        del self._messages[len(self._messages) - removed:]

        logger.debug("Reverted messages", removed=removed, remaining=len(self._messages))
        return removed

    def build_context_text(self) -> str:
        """Flatten the non-system history into a 'Role: content' transcript"""

        lines = [
            f"{message.role.display_name}: {message.content}"
            for message in self._messages
            if message.role != Role.SYSTEM
        ]
        return "\n".join(lines).rstrip()

    def format_pretty(self, title: Optional[str] = None) -> str:
        """Render the whole history, system prompt included, as a boxed log"""

        title = title or "Conversation History"
        bar = "=" * max(len(title) + 8, 40)
        lines = [bar, f"    {title}", bar]

        if not self._messages:
            lines.append("  (empty)")

        for index, message in enumerate(self._messages):
            lines.append(f"[{index}] {message.role.display_name}:")
            for content_line in message.content.splitlines() or [""]:
                lines.append(f"    {content_line}")

        lines.append(bar)
        return "\n".join(lines)
