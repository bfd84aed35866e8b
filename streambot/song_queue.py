"""Append-only song request queue.

``!sr`` links are appended to a plain text file, one per line, for an
external player process to consume. The file is the only durable
state the bot writes.
"""

from pathlib import Path
from typing import Iterable

import structlog

logger = structlog.get_logger("streambot.actions")


class SongQueue:
    """Appends song requests to the queue file.

    Args:
        path: Queue file; created on first append if missing.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def append(self, entries: Iterable[str]) -> int:
        """Append each entry as its own line and return how many were written.

        Write failures are logged, not raised; the remaining entries are
        skipped once the file cannot be opened.
        """
        written = 0
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                for entry in entries:
                    f.write(f"{entry}\n")
                    written += 1
        except OSError as e:
            logger.error("song_queue_write_failed", path=str(self.path), error=str(e))
        if written:
            logger.info("song_requests_queued", count=written, path=str(self.path))
        return written
