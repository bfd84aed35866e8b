"""Chatter membership tracking.

Two identity sets: permitted (VIP) chatters who may trigger commands,
and every chatter seen since startup. Identities are compared exactly
as the chat server sends them.
"""

from typing import Iterable, Set

import structlog

logger = structlog.get_logger("streambot.bot")


class MembershipTracker:
    """Permission checks and first-sighting detection.

    Owned by the dispatcher loop; there are no concurrent callers, so
    ``note_seen`` needs no lock.

    Args:
        vips: Identities allowed to trigger commands.
        known_chatters: Identities pre-seeded as already seen.
    """

    def __init__(self, vips: Iterable[str] = (), known_chatters: Iterable[str] = ()):
        self._vips: Set[str] = set(vips)
        self._seen: Set[str] = set(known_chatters)

    def is_permitted(self, identity: str) -> bool:
        return identity in self._vips

    def note_seen(self, identity: str) -> bool:
        """Record ``identity``; True only the first time it is observed."""
        if identity in self._seen:
            return False
        self._seen.add(identity)
        logger.info("new_chatter", chatter=identity, total_seen=len(self._seen))
        return True

    @property
    def vips(self) -> frozenset:
        return frozenset(self._vips)

    @property
    def seen(self) -> frozenset:
        return frozenset(self._seen)
