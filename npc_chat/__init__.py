"""Conversation-state SDK for NPC chat against a remote language-model service."""

from npc_chat.application.sdk import NPCChatSDK
from npc_chat.config import SDKSettings
from npc_chat.domain.errors import (
    InactiveCallerError, InvalidArgumentError, InvalidFormatError,
    NotReadyError, NPCChatError, TransportFailureError, TurnCancelledError
)
from npc_chat.domain.models.conversation import ConversationSnapshot, Message, NPCStatus, Role, TextCompletion
from npc_chat.domain.orchestration.core.npc_client import NPCClient
from npc_chat.domain.orchestration.protocols import ActiveState, AuthProvider, ChatTransport
from npc_chat.domain.streaming.events import StreamCompleted, StreamEvent, TextDelta

__version__ = "0.1.0"

__all__ = [
    "NPCChatSDK",
    "NPCClient",
    "SDKSettings",
    "ChatTransport",
    "AuthProvider",
    "ActiveState",
    "Message",
    "Role",
    "NPCStatus",
    "ConversationSnapshot",
    "TextCompletion",
    "StreamEvent",
    "TextDelta",
    "StreamCompleted",
    "NPCChatError",
    "NotReadyError",
    "InvalidArgumentError",
    "InactiveCallerError",
    "TransportFailureError",
    "InvalidFormatError",
    "TurnCancelledError",
]
