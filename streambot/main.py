"""Main entry point for streambot.

Initializes logging in two phases (defaults then config-driven),
builds the action registry, membership sets and welcome policy, and
runs the dispatcher against a Twitch session. SIGTERM/SIGINT go
through the same quit handle that ``!quit`` uses, so shutdown is
always observed at the next poll.

Key functions:
    main: Async entry point.
    run: Synchronous wrapper for the ``streambot`` console script.
"""

import asyncio
import signal
import sys
import time

import structlog

from . import __version__
from .logging_config import setup_logging


async def main():
    """Main async entry point."""
    setup_logging()
    logger = structlog.get_logger("streambot")

    logger.info("streambot_starting", version=__version__)
    started_at = time.monotonic()

    # Import here to ensure logging is configured first
    from .actions import build_registry
    from .bot import StreamBot
    from .config import get_config
    from .media import SoundPlayer, spawn_detached
    from .membership import MembershipTracker
    from .twitch import TwitchSession
    from .welcome import WelcomePolicy

    config = get_config()
    config.validate()

    setup_logging(config)

    if config.queue_helper_command:
        await spawn_detached(config.queue_helper_command)

    player = SoundPlayer(config.player_command)
    registry = build_registry(config, player, started_at=started_at)
    membership = MembershipTracker(
        vips=config.vips, known_chatters=config.known_chatters
    )
    welcome = WelcomePolicy(
        player, config.welcome_sounds, buckets=config.welcome_buckets
    )
    bot = StreamBot(registry, membership, welcome)
    session = TwitchSession.from_config(config)

    # Graceful shutdown via the session's quit handle
    quit_handle = session.quit_handle()
    loop = asyncio.get_running_loop()

    def handle_shutdown(sig):
        logger.info("shutdown_signal_received", signal=sig.name)
        quit_handle.signal()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, handle_shutdown, sig)
        except NotImplementedError:
            # Windows: add_signal_handler not supported
            if sig == signal.SIGINT:
                signal.signal(
                    signal.SIGINT,
                    lambda s, f: loop.call_soon_threadsafe(handle_shutdown, signal.SIGINT),
                )

    try:
        await bot.run(session, config.channels)
    except Exception as e:
        logger.error("bot_error", error=str(e), exc_type=type(e).__name__)
        raise
    finally:
        logger.info("streambot_stopped")


def run():
    """Synchronous entry point for the ``streambot`` console script."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    except Exception:
        sys.exit(1)


if __name__ == "__main__":
    run()
