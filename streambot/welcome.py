"""Welcome sound for first-time chatters.

A uniform draw in [0, 1) picks one of five sounds. The default
``legacy`` buckets split the percentage range 21/20/20/20/19
(0-20, 21-40, 41-60, 61-80, 81-99), which is what existing streams
are tuned to. ``even`` switches to plain quintiles.
"""

import random
from pathlib import Path
from typing import Optional, Sequence

import structlog

from .config import BUCKET_MODES
from .media import SoundPlayer

logger = structlog.get_logger("streambot.media")

WELCOME_VARIANTS = 5

# Upper bound (inclusive) of each legacy percentage bucket
_LEGACY_BUCKETS = (20, 40, 60, 80)


def select_variant(draw: float, buckets: str = "legacy") -> int:
    """Map a draw in [0, 1) to a welcome variant index 0-4.

    Raises:
        ValueError: Unknown bucket mode.
    """
    if buckets not in BUCKET_MODES:
        raise ValueError(f"Unknown welcome bucket mode: {buckets!r}")
    if buckets == "even":
        return min(int(draw * WELCOME_VARIANTS), WELCOME_VARIANTS - 1)

    percent = int(draw * 100)
    for variant, upper in enumerate(_LEGACY_BUCKETS):
        if percent <= upper:
            return variant
    return WELCOME_VARIANTS - 1


class WelcomePolicy:
    """Selects and plays a welcome sound.

    Args:
        player: Player used for the fire-and-forget playback.
        sounds: Exactly five sound files, indexed by variant.
        buckets: ``legacy`` or ``even``.
        rng: Random source, injectable for tests.
    """

    def __init__(
        self,
        player: SoundPlayer,
        sounds: Sequence[Path],
        buckets: str = "legacy",
        rng: Optional[random.Random] = None,
    ):
        if len(sounds) != WELCOME_VARIANTS:
            raise ValueError(
                f"Expected {WELCOME_VARIANTS} welcome sounds, got {len(sounds)}"
            )
        if buckets not in BUCKET_MODES:
            raise ValueError(
                f"Unknown welcome bucket mode {buckets!r}, expected one of "
                f"{', '.join(BUCKET_MODES)}"
            )
        self.player = player
        self.sounds = list(sounds)
        self.buckets = buckets
        self._rng = rng or random.Random()

    async def welcome(self, chatter: str) -> int:
        """Play one welcome variant for ``chatter`` and return its index."""
        variant = select_variant(self._rng.random(), self.buckets)
        logger.info("welcoming_chatter", chatter=chatter, variant=variant)
        await self.player.play(self.sounds[variant])
        return variant
