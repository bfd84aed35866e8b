"""Fire-and-forget external processes.

Notification sounds and the queue helper run as unsupervised child
processes. ``spawn_detached`` returns as soon as the process has
started; a background task reaps it so no zombies pile up. A spawn
failure is logged and reported as None, never raised.

Key classes:
    SoundPlayer: Plays a sound file with the configured player argv.

Key functions:
    spawn_detached: Start a process without waiting for it.
    log_task_exception: Done-callback for background tasks.
"""

import asyncio
from pathlib import Path
from typing import List, Optional, Sequence, Set

import structlog

logger = structlog.get_logger("streambot.media")

# Strong references so reaper tasks are not garbage collected mid-flight
_reapers: Set[asyncio.Task] = set()


def log_task_exception(task: asyncio.Task):
    """Log exceptions from fire-and-forget tasks instead of silently swallowing them."""
    _reapers.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc:
        logger.error("background_task_failed", error=str(exc), exc_type=type(exc).__name__)


async def _reap(process: asyncio.subprocess.Process, program: str) -> None:
    returncode = await process.wait()
    logger.debug("process_exited", program=program, pid=process.pid, returncode=returncode)


async def spawn_detached(argv: Sequence[str]) -> Optional[asyncio.subprocess.Process]:
    """Start ``argv`` without waiting for it to finish.

    Output is discarded. Returns the process, or None if it could not
    be started.
    """
    if not argv:
        logger.warning("spawn_skipped_empty_command")
        return None
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        logger.error("spawn_failed", program=argv[0], error=str(e))
        return None

    logger.debug("process_spawned", program=argv[0], pid=process.pid)
    task = asyncio.create_task(_reap(process, argv[0]))
    _reapers.add(task)
    task.add_done_callback(log_task_exception)
    return process


class SoundPlayer:
    """Plays sound files through an external player.

    Args:
        command: Player argv template; every ``{file}`` placeholder is
            replaced with the sound path. If no placeholder is present
            the path is appended.
    """

    def __init__(self, command: Sequence[str]):
        self.command = list(command)

    def build_command(self, sound: Path) -> List[str]:
        if not any("{file}" in part for part in self.command):
            return self.command + [str(sound)]
        return [part.replace("{file}", str(sound)) for part in self.command]

    async def play(self, sound: Path) -> bool:
        """Start playback. Returns False if the player could not be spawned."""
        logger.info("playing_sound", sound=str(sound))
        process = await spawn_detached(self.build_command(sound))
        if process is None:
            logger.error("notification_failed", sound=str(sound))
            return False
        return True
