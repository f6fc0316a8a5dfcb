"""
Playlist state and stale-source repair.

Public API:
  - SourceResolver.resolve(key) -> url | None
  - StaleSourceReconciler.reconcile_stale_source(stale_src, entries) -> [Task]
  - load_playlist(url, fetcher) -> [PlaylistEntry]
"""
from lib.player.models import PlaylistEntry, PlaylistArena
from lib.player.notices import Notice, NoticeBoard
from lib.player.persistent import PersistentStore, LAST_SONG_SRC
from lib.player.playlist import load_playlist, parse_playlist
from lib.player.reconciler import StaleSourceReconciler
from lib.player.resolver import SourceResolver

__all__ = [
    "PlaylistEntry",
    "PlaylistArena",
    "Notice",
    "NoticeBoard",
    "PersistentStore",
    "LAST_SONG_SRC",
    "load_playlist",
    "parse_playlist",
    "StaleSourceReconciler",
    "SourceResolver",
]
