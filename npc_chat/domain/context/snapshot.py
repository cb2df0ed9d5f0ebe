from typing import Any, Mapping, Union
import structlog
from pydantic import ValidationError

from npc_chat.domain.errors import InvalidFormatError
from npc_chat.domain.models.conversation import ConversationSnapshot
from .memory.message_store import MessageStore

logger = structlog.get_logger(__name__)

SnapshotInput = Union[str, bytes, bytearray, Mapping[str, Any], ConversationSnapshot]


def take_snapshot(store: MessageStore) -> ConversationSnapshot:
    """Capture the prompt and full history of a store"""

    return ConversationSnapshot(prompt=store.system_prompt, history=store.messages)


def save_snapshot(store: MessageStore) -> str:
    """Serialize a store to the portable JSON snapshot format"""

    return take_snapshot(store).model_dump_json()


def parse_snapshot(data: SnapshotInput) -> ConversationSnapshot:
    """Parse and validate snapshot data without touching any store"""

    if isinstance(data, ConversationSnapshot):
        return data

    try:
        if isinstance(data, (str, bytes, bytearray)):
            snapshot = ConversationSnapshot.model_validate_json(data)
        elif isinstance(data, Mapping):
            snapshot = ConversationSnapshot.model_validate(dict(data))
        else:
            raise InvalidFormatError(f"Unsupported snapshot type: {type(data).__name__}")
    except ValidationError as e:
        raise InvalidFormatError(f"Invalid conversation snapshot: {e.error_count()} error(s)") from e

    return snapshot


def load_snapshot(store: MessageStore, data: SnapshotInput) -> ConversationSnapshot:
    """Replace the store contents with a snapshot.

    All-or-nothing: the data is fully parsed before the store is touched.
    """

    snapshot = parse_snapshot(data)
    store.replace(snapshot.prompt, snapshot.history)

    logger.debug("Snapshot loaded", prompt_set=bool(snapshot.prompt), messages=len(store))
    return snapshot
