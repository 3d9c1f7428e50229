"""
Run progress tracking for journalctl output.

``RunProgress`` counts what one sync run did (pages, photos seen, private
photos skipped, messages published / edited / left unchanged) and logs
human-readable progress lines with the photo rate and elapsed time.
"""

from __future__ import annotations

import logging
import time
from typing import Dict

logger = logging.getLogger("syncer.progress")


def _format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples: ``"45s"``, ``"2m 30s"``, ``"1h 15m"``.
    """
    if seconds < 0:
        return "0s"
    total = int(seconds)
    if total < 60:
        return f"{total}s"
    minutes, secs = divmod(total, 60)
    if minutes < 60:
        if secs:
            return f"{minutes}m {secs}s"
        return f"{minutes}m"
    hours, mins = divmod(minutes, 60)
    if mins:
        return f"{hours}h {mins}m"
    return f"{hours}h"


class RunProgress:
    """Counters for a single run.

    Args:
        action: Listing action being synced (``"recentlyUpdated"``).
        run_id: Identifier of the run, prefixed to every log line.
    """

    def __init__(self, action: str, run_id: str = "") -> None:
        self.action = action
        self.run_id = run_id
        self.pages = 0
        self.total_pages = 0
        self.photos_seen = 0
        self.private = 0
        self.published = 0
        self.edited = 0
        self.unchanged = 0
        self._start = time.monotonic()

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self._start

    @property
    def rate(self) -> float:
        """Photos processed per second."""
        elapsed = self.elapsed_seconds
        if elapsed <= 0:
            return 0.0
        return self.photos_seen / elapsed

    def page_done(self, page: int, pages: int, photos: int) -> None:
        self.pages += 1
        self.total_pages = pages
        logger.info(
            "  [%s] %s page %d/%d | %d photos | %d seen so far | %.1f photo/s",
            self.run_id,
            self.action,
            page,
            pages,
            photos,
            self.photos_seen,
            self.rate,
        )

    def record(self, outcome: str) -> None:
        """Count one processed photo by outcome name.

        ``outcome`` is one of ``"private"``, ``"published"``, ``"edited"``,
        ``"unchanged"``.
        """
        self.photos_seen += 1
        if outcome == "private":
            self.private += 1
        elif outcome == "published":
            self.published += 1
        elif outcome == "edited":
            self.edited += 1
        elif outcome == "unchanged":
            self.unchanged += 1
        else:
            raise ValueError(f"Unknown photo outcome: {outcome!r}")

    def as_dict(self) -> Dict[str, int]:
        return {
            "pages": self.pages,
            "photos_seen": self.photos_seen,
            "private": self.private,
            "published": self.published,
            "edited": self.edited,
            "unchanged": self.unchanged,
        }

    def log_complete(self) -> None:
        logger.info(
            "  [%s] Completed %s: %d photos over %d pages | "
            "%d published, %d edited, %d unchanged, %d private | %s",
            self.run_id,
            self.action,
            self.photos_seen,
            self.pages,
            self.published,
            self.edited,
            self.unchanged,
            self.private,
            _format_duration(self.elapsed_seconds),
        )
