"""
Most-recent matches per target.

Each save replaces the whole entry with an immutable tuple, so readers see
either the previous list or the new one, never a mix. The lock only guards
the dictionary slot swap.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from .matcher import Match

logger = logging.getLogger(__name__)


class TargetStatus(Enum):
    UNSEARCHED = "unsearched"
    FOUND = "found"
    NOT_FOUND = "not_found"


class MatchCache:
    """Thread-safe store of the last search result for each target."""

    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[Match, ...]] = {}
        self._lock = threading.Lock()

    def save(self, target_id: str, matches: Iterable[Match]) -> None:
        frozen = tuple(matches)
        with self._lock:
            self._entries[target_id] = frozen
        logger.debug("Saved %d match(es) for %r", len(frozen), target_id)

    def get(self, target_id: str) -> List[Match]:
        return list(self._entries.get(target_id, ()))

    def best(self, target_id: str) -> Optional[Match]:
        matches = self._entries.get(target_id)
        if not matches:
            return None
        return min(matches, key=lambda m: (-m.score, m.y, m.x))

    def clear(self, target_id: str) -> None:
        with self._lock:
            self._entries.pop(target_id, None)

    def clear_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def status(self, target_id: str) -> TargetStatus:
        matches = self._entries.get(target_id)
        if matches is None:
            return TargetStatus.UNSEARCHED
        return TargetStatus.FOUND if matches else TargetStatus.NOT_FOUND

    def __contains__(self, target_id: object) -> bool:
        return target_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
