"""
Background repair of playlist entries whose audio source went stale.

Fired when a src fails to load in the audio player: every live entry still
pointing at that src is re-resolved in its own task, and the new src is written
back onto the entry. There is no cancellation; a resolution that already started
may land after the stale condition no longer applies.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable, List, Optional, Protocol, Set

from lib.player.models import PlaylistEntry

logger = logging.getLogger(__name__)


class Resolver(Protocol):
    async def resolve(self, key: str) -> Optional[str]: ...


class StaleSourceReconciler:
    def __init__(self, resolver: Resolver, notice: Callable[..., Any] | None = None):
        self.resolver = resolver
        self.notice = notice
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def reconcile_stale_source(
        self,
        stale_src: Optional[str],
        entries: Iterable[PlaylistEntry],
    ) -> List[asyncio.Task]:
        """Spawn one resolution task per entry whose src equals `stale_src`.

        Must be called from a running event loop. The returned tasks never raise.
        """
        if not stale_src:
            return []
        tasks: List[asyncio.Task] = []
        for entry in entries:
            if entry.src != stale_src:
                continue
            task = asyncio.create_task(self._reconcile_entry(entry), name=f"reconcile:{entry.key}")
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            tasks.append(task)
        logger.info(f"[RECONCILE] stale src={stale_src} matched={len(tasks)}")
        return tasks

    async def _reconcile_entry(self, entry: PlaylistEntry) -> bool:
        try:
            new_src = await self.resolver.resolve(entry.key)
        except Exception as e:
            logger.warning(f"[RECONCILE] error while getting updated src of {entry.key}: {e}")
            self._notice(f"Failed to get updated src of {entry.key}: {e}")
            return False
        # re-read: another resolution may have landed meanwhile
        if new_src and entry.src != new_src:
            entry.src = new_src
            self._notice(f"Updated {entry.key} src to {new_src}!")
            return True
        return False

    async def drain(self) -> None:
        """Wait for every in-flight reconciliation."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _notice(self, message: str) -> None:
        if self.notice is not None:
            self.notice(message)
