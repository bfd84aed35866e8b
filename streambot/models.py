"""Pydantic models for chat messages and session events."""

from datetime import datetime
from typing import Dict, Optional, Union

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    """A single chat line received in a joined channel."""

    sender: str = Field(..., description="Login name of the chatter, as sent by the server")
    text: str
    channel: str = Field(..., description="Channel the message was sent to, without '#'")
    display_name: Optional[str] = None
    tags: Dict[str, str] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=datetime.now)


class MessageEvent(BaseModel):
    """A chat message arrived."""

    message: ChatMessage


class QuitEvent(BaseModel):
    """The quit handle was signalled."""


class EofEvent(BaseModel):
    """The server closed the stream."""


class OtherEvent(BaseModel):
    """Any other protocol line. The dispatcher ignores these."""

    command: str
    raw: str = ""


SessionEvent = Union[MessageEvent, QuitEvent, EofEvent, OtherEvent]
