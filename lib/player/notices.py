"""
Notice log shown under the player.

Each notice is mirrored to `logging`. Notices with a display lifetime expire on
their own (per-item TTL via cachetools.TLRUCache); lifetime <= 0 keeps them.
"""
from __future__ import annotations

import itertools
import json
import logging
import math
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional

from cachetools import TLRUCache

NOTICE_MAXSIZE = int(os.getenv("NOTICE_MAXSIZE", "500"))

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notice:
    id: int
    message: str
    ttl_s: float = 0
    structured: bool = False  # value was not a plain string (rendered highlighted)
    at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "message": self.message,
            "ttl_s": self.ttl_s,
            "structured": self.structured,
            "at": self.at.isoformat(timespec="milliseconds"),
        }


def _time_to_use(_key: int, notice: Notice, now: float) -> float:
    if notice.ttl_s <= 0:
        return math.inf
    return now + max(notice.ttl_s, 1)


class NoticeBoard:
    def __init__(self, maxsize: int = NOTICE_MAXSIZE, timer: Callable[[], float] = time.monotonic):
        self._cache: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_time_to_use, timer=timer)
        self._ids = itertools.count(1)

    def notice(self, value: Any, ttl_seconds: float = 0) -> Optional[Notice]:
        """
        Record a notice.

        Args:
            value: message; non-string values are JSON-encoded and flagged structured
            ttl_seconds: seconds before the notice disappears, <= 0 to keep it
        """
        if value is None:
            return None
        structured = not isinstance(value, str)
        message = json.dumps(value, ensure_ascii=False, default=str) if structured else value
        logger.info(f"[NOTICE] {message}")
        item = Notice(id=next(self._ids), message=message, ttl_s=float(ttl_seconds or 0), structured=structured)
        self._cache[item.id] = item
        return item

    __call__ = notice

    def notices(self) -> List[Notice]:
        """Live notices, oldest first."""
        self._cache.expire()
        live = []
        for key in list(self._cache):
            item = self._cache.get(key)
            if item is not None:
                live.append(item)
        return sorted(live, key=lambda n: n.id)

    def clear(self) -> None:
        self._cache.clear()
