"""Core chat actions.

Handles: notification sounds (!raid, !follow, !host by default), !sr,
!uptime, !quit.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Dict, Optional

import structlog

from ..config import Config
from ..media import SoundPlayer
from ..song_queue import SongQueue
from .base import Action, ActionRegistry, BaseActionGroup, DispatchContext

logger = structlog.get_logger("streambot.actions")


def format_elapsed(seconds: float, precision: int = 2) -> str:
    """Render a duration with the largest fitting unit, e.g. ``12.34s`` or ``5.00ms``."""
    if seconds >= 1:
        return f"{seconds:.{precision}f}s"
    if seconds >= 1e-3:
        return f"{seconds * 1e3:.{precision}f}ms"
    if seconds >= 1e-6:
        return f"{seconds * 1e6:.{precision}f}µs"
    return f"{seconds * 1e9:.{precision}f}ns"


class CoreActions(BaseActionGroup):
    """Built-in actions for a stream chat.

    Args:
        player: Plays the notification sounds.
        notifications: Command token -> sound file.
        song_queue: Destination for !sr links.
        started_at: ``time.monotonic()`` value the uptime is measured from.
    """

    def __init__(
        self,
        player: SoundPlayer,
        notifications: Dict[str, Path],
        song_queue: SongQueue,
        started_at: Optional[float] = None,
    ):
        self.player = player
        self.notifications = dict(notifications)
        self.song_queue = song_queue
        self.started_at = time.monotonic() if started_at is None else started_at

    def get_commands(self) -> Dict[str, Action]:
        commands: Dict[str, Action] = {
            name: self._notification(sound)
            for name, sound in self.notifications.items()
        }
        commands.update({
            "!sr": self.handle_song_request,
            "!uptime": self.handle_uptime,
            "!quit": self.handle_quit,
        })
        return commands

    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    def _notification(self, sound: Path) -> Action:
        async def play_notification(ctx: DispatchContext) -> None:
            await self.player.play(sound)
        return play_notification

    async def handle_song_request(self, ctx: DispatchContext) -> None:
        """Queue every argument as a song request.

        Chat usage::

            !sr https://youtu.be/abc https://youtu.be/def
        """
        links = ctx.args
        if not links:
            logger.debug("song_request_empty", sender=ctx.message.sender)
            return
        self.song_queue.append(links)

    async def handle_uptime(self, ctx: DispatchContext) -> None:
        """Reply with how long the bot has been running."""
        await ctx.say(f"its been running for {format_elapsed(self.elapsed(), 2)}")

    async def handle_quit(self, ctx: DispatchContext) -> None:
        """Say goodbye, then ask the dispatcher to stop.

        The loop ends on its next poll, not here.
        """
        await ctx.say(
            f"its been at least {format_elapsed(self.elapsed(), 0)}, time to rest! "
        )
        logger.info("quit_command", sender=ctx.message.sender)
        ctx.quit.signal()


def build_registry(
    config: Config,
    player: SoundPlayer,
    started_at: Optional[float] = None,
) -> ActionRegistry:
    """Build the default registry from configuration."""
    core = CoreActions(
        player=player,
        notifications=config.notifications,
        song_queue=SongQueue(config.queue_file),
        started_at=started_at,
    )
    return ActionRegistry().register(core)
