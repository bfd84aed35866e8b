"""Shared fixtures: an in-memory session the dispatcher can be driven with."""

from typing import List, Optional, Set, Tuple

from streambot.exceptions import JoinError, SendError
from streambot.models import ChatMessage, MessageEvent
from streambot.session import Session, Writer


def chat(sender: str, text: str, channel: str = "testchannel") -> MessageEvent:
    return MessageEvent(message=ChatMessage(sender=sender, text=text, channel=channel))


class FakeWriter(Writer):
    """Records sends; fails every send when ``fail`` is set."""

    def __init__(self):
        self.sent: List[Tuple[str, str]] = []
        self.fail = False

    async def send(self, in_reply_to: ChatMessage, text: str) -> None:
        if self.fail:
            raise SendError("writer closed", channel=in_reply_to.channel)
        self.sent.append((in_reply_to.channel, text))


class FakeSession(Session):
    """Session fed from a list of events."""

    def __init__(self, events=(), failing_channels: Optional[Set[str]] = None):
        super().__init__()
        self._fake_writer = FakeWriter()
        self.failing_channels = failing_channels or set()
        self.joined: List[str] = []
        self.connected = False
        self.closed = False
        for event in events:
            self._push(event)

    @property
    def identity(self) -> str:
        return "testbot"

    @property
    def writer(self) -> FakeWriter:
        return self._fake_writer

    async def connect(self) -> None:
        self.connected = True

    async def join(self, channel: str) -> None:
        if channel in self.failing_channels:
            raise JoinError("banned", channel=channel)
        self.joined.append(channel)

    async def close(self) -> None:
        self.closed = True

    def feed(self, event) -> None:
        self._push(event)
