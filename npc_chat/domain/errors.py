from typing import Optional


class NPCChatError(Exception):
    """Base class for all SDK errors"""
    
    def __init__(self, message: str, npc_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.npc_name = npc_name


class NotReadyError(NPCChatError):
    """Transport or authentication has not been configured yet"""


class InvalidArgumentError(NPCChatError):
    """Empty message, role or schema name"""


class InactiveCallerError(NPCChatError):
    """The owning client has been torn down"""


class TransportFailureError(NPCChatError):
    """Remote call failed or returned an unusable payload"""


class InvalidFormatError(NPCChatError):
    """A conversation snapshot could not be parsed"""


class TurnCancelledError(NPCChatError):
    """A turn was cancelled before the transport completed"""
