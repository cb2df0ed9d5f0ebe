from typing import Optional, Literal, Union
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum


class StreamEventType(str, Enum):
    """Streaming event types"""
    DELTA = "delta"
    COMPLETED = "completed"


class BaseStreamEvent(BaseModel):
    """Base event for streamed turns"""
    type: StreamEventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TextDelta(BaseStreamEvent):
    """Partial text as it arrives from the transport"""
    type: Literal[StreamEventType.DELTA] = StreamEventType.DELTA
    text: str


class StreamCompleted(BaseStreamEvent):
    """Terminal event carrying the full response, or None on failure"""
    type: Literal[StreamEventType.COMPLETED] = StreamEventType.COMPLETED
    text: Optional[str] = None
    cancelled: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return bool(self.text) and not self.cancelled


StreamEvent = Union[TextDelta, StreamCompleted]
