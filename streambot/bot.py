"""Chat dispatcher for streambot.

Joins the configured channels, then polls the session one event at a
time: permitted chatters can trigger registered actions, every chatter
is noted for the one-time welcome, and a quit or end-of-stream event
ends the run.

Key classes:
    LoopState: Lifecycle states of the dispatcher.
    StreamBot: Owns the registry and membership sets and runs the loop.
"""

from enum import Enum
from typing import Optional, Sequence, Tuple

import structlog

from .actions.base import ActionRegistry, DispatchContext
from .exceptions import JoinError
from .membership import MembershipTracker
from .models import ChatMessage, EofEvent, MessageEvent, QuitEvent
from .session import QuitHandle, Session, Writer
from .welcome import WelcomePolicy

logger = structlog.get_logger("streambot.bot")


class LoopState(str, Enum):
    CONNECTING = "connecting"
    JOINED = "joined"
    RUNNING = "running"
    TERMINATING = "terminating"
    STOPPED = "stopped"


def name_message(text: str, sender: str) -> Tuple[Optional[str], str]:
    """Split a chat line into (command token, sender).

    The token is the first whitespace-delimited word, or None for a
    blank message.
    """
    parts = text.split(maxsplit=1)
    return (parts[0] if parts else None), sender


class StreamBot:
    """Single-task command dispatcher.

    Actions are awaited inline, so a slow action delays the next poll.
    Long work belongs in a detached process (see ``media.spawn_detached``).

    Args:
        registry: Command token -> action; not modified during the run.
        membership: VIP and seen-chatter sets.
        welcome: Played once per new chatter. None disables welcomes.
    """

    def __init__(
        self,
        registry: ActionRegistry,
        membership: MembershipTracker,
        welcome: Optional[WelcomePolicy] = None,
    ):
        self.registry = registry
        self.membership = membership
        self.welcome = welcome
        self.state = LoopState.CONNECTING

    def _set_state(self, state: LoopState) -> None:
        logger.debug("loop_state", previous=self.state.value, state=state.value)
        self.state = state

    async def run(self, session: Session, channels: Sequence[str]) -> None:
        """Connect, join every channel, and dispatch until told to stop.

        Raises:
            SessionError: The session failed to connect or the stream
                broke. The run is over in either case.
        """
        self._set_state(LoopState.CONNECTING)
        try:
            await session.connect()
            logger.info("connected", identity=session.identity)

            for channel in channels:
                logger.info("joining_channel", channel=channel)
                try:
                    await session.join(channel)
                except JoinError as e:
                    logger.error("join_failed", channel=channel, error=str(e))
            self._set_state(LoopState.JOINED)

            logger.info("starting_main_loop", commands=sorted(self.registry.command_names))
            await self.main_loop(session)
        finally:
            await session.close()
            self._set_state(LoopState.STOPPED)
            logger.info("end_of_main_loop")

    async def main_loop(self, session: Session) -> None:
        """Process events in arrival order until a terminal event."""
        writer = session.writer
        quit_handle = session.quit_handle()
        self._set_state(LoopState.RUNNING)

        while True:
            event = await session.next_event()
            if isinstance(event, MessageEvent):
                await self.handle_message(event.message, writer, quit_handle)
            elif isinstance(event, (QuitEvent, EofEvent)):
                logger.info("terminal_event", kind=type(event).__name__)
                break
            # Other protocol events are ignored

        self._set_state(LoopState.TERMINATING)

    async def handle_message(
        self, message: ChatMessage, writer: Writer, quit_handle: QuitHandle
    ) -> None:
        """Dispatch one chat message, then record its sender."""
        token, name = name_message(message.text, message.sender)
        logger.info("chat_message", channel=message.channel, sender=name, text=message.text)

        if token is not None and self.membership.is_permitted(name):
            action = self.registry.get(token)
            if action is not None:
                logger.debug("dispatching", command=token)
                ctx = DispatchContext(
                    message=message, writer=writer, quit=quit_handle.clone()
                )
                try:
                    await action(ctx)
                except Exception as e:
                    logger.error(
                        "action_failed", command=token, error=str(e),
                        exc_type=type(e).__name__,
                    )

        if self.membership.note_seen(name) and self.welcome is not None:
            await self.welcome.welcome(name)
