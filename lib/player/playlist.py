"""
Playlist retrieval: JSON metadata -> PlaylistEntry list.
"""
from __future__ import annotations

import logging
from typing import Any, List

from cachetools import TTLCache

from core import MalformedResponse, ResilientFetcher
from lib.cache_manager import build_playlist_cache_key, get_playlist_cache
from lib.player.models import PlaylistEntry

logger = logging.getLogger(__name__)


def parse_playlist(data: Any, url: str | None = None) -> List[PlaylistEntry]:
    """Accepts a JSON array of songs, or an object holding one under `songs` / `items`."""
    items = data
    if isinstance(data, dict):
        items = data.get("songs")
        if items is None:
            items = data.get("items")
    if not isinstance(items, list):
        raise MalformedResponse("Playlist body has no song list", url=url, meta={"body_type": type(data).__name__})

    entries: List[PlaylistEntry] = []
    for i, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise MalformedResponse(f"Playlist item {i} is not an object", url=url, meta={"index": i})
        try:
            entries.append(PlaylistEntry.from_dict(raw))
        except ValueError as e:
            raise MalformedResponse(f"Playlist item {i}: {e}", url=url, meta={"index": i}) from e
    return entries


async def load_playlist(
    url: str,
    fetcher: ResilientFetcher,
    refresh: bool = False,
    cache: TTLCache | None = None,
) -> List[PlaylistEntry]:
    """Fetch and parse a playlist; the decoded body is cached per url unless `refresh`."""
    cache = cache if cache is not None else get_playlist_cache()
    cache_key = build_playlist_cache_key(url)
    data = None if refresh else cache.get(cache_key)
    cache_hit = data is not None
    if data is None:
        data = await fetcher.get_json(url)
    entries = parse_playlist(data, url=url)
    if not cache_hit and entries:
        cache[cache_key] = data
    logger.info(f"[PLAYLIST] url={url} entries={len(entries)} cache_hit={'true' if cache_hit else 'false'}")
    return entries
