"""Transport-independent chat session interface.

The dispatcher only talks to a Session: it joins channels, polls
``next_event()`` and hands the shared writer and a quit handle clone
to command handlers. Concrete transports (see ``twitch.py``) feed the
inbound queue from their protocol callbacks.

Key classes:
    QuitHandle: Cooperative, cloneable shutdown signal.
    Writer: Outbound message sink used by handlers.
    Session: Base class owning the inbound event queue.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional, Union

import structlog

from .exceptions import StreambotError
from .models import ChatMessage, EofEvent, QuitEvent, SessionEvent

logger = structlog.get_logger("streambot.session")


class QuitHandle:
    """Cooperative quit signal shared between the session and handlers.

    All clones share one ``asyncio.Event``. Signalling does not
    interrupt anything: the session returns a QuitEvent from its
    current or next ``next_event()`` call.
    """

    def __init__(self, event: Optional[asyncio.Event] = None):
        self._event = event if event is not None else asyncio.Event()

    def clone(self) -> "QuitHandle":
        return QuitHandle(self._event)

    def signal(self) -> None:
        if not self._event.is_set():
            logger.info("quit_requested")
        self._event.set()

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class Writer(ABC):
    """Outbound side of a session. Rate limiting is the writer's job."""

    @abstractmethod
    async def send(self, in_reply_to: ChatMessage, text: str) -> None:
        """Send ``text`` to the channel ``in_reply_to`` came from.

        Raises:
            SendError: The message could not be delivered.
        """
        ...


class Session(ABC):
    """Base class for chat sessions.

    Subclasses implement connect/join/close and the writer, and push
    inbound events with ``_push()``. A stream failure is pushed as an
    exception instance and re-raised from ``next_event()``.
    """

    def __init__(self):
        self._inbox: "asyncio.Queue[Union[SessionEvent, StreambotError]]" = asyncio.Queue()
        self._quit = QuitHandle()
        self._finished = False

    @property
    @abstractmethod
    def identity(self) -> str:
        """Login name the session is connected as."""
        ...

    @property
    @abstractmethod
    def writer(self) -> Writer:
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection and authenticate.

        Raises:
            SessionError: Connection or authentication failed.
        """
        ...

    @abstractmethod
    async def join(self, channel: str) -> None:
        """Join one channel.

        Raises:
            JoinError: The channel could not be joined.
        """
        ...

    async def close(self) -> None:
        """Release transport resources. Safe to call more than once."""

    def quit_handle(self) -> QuitHandle:
        return self._quit.clone()

    def _push(self, item: Union[SessionEvent, StreambotError]) -> None:
        self._inbox.put_nowait(item)

    async def next_event(self) -> SessionEvent:
        """Wait for the next inbound event.

        A signalled quit handle wins over anything still queued. Once a
        terminal event has been returned, every later call returns
        EofEvent.

        Raises:
            StreambotError: The transport reported a stream failure.
        """
        if self._finished:
            return EofEvent()
        if self._quit.is_set:
            self._finished = True
            return QuitEvent()

        get_task = asyncio.ensure_future(self._inbox.get())
        quit_task = asyncio.ensure_future(self._quit.wait())
        try:
            await asyncio.wait(
                {get_task, quit_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (get_task, quit_task):
                if not task.done():
                    task.cancel()

        if quit_task.done() or not get_task.done():
            self._finished = True
            return QuitEvent()

        item = get_task.result()
        if isinstance(item, StreambotError):
            self._finished = True
            raise item
        if isinstance(item, EofEvent):
            self._finished = True
        return item
