"""
Playlist data model.

The arena is owned by the playback shell; the reconciler only borrows it, so an
entry whose `src` is corrected is immediately visible to the player.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple


@dataclass
class PlaylistEntry:
    """A single playlist song. `key` is stable, `src` is repaired in place."""
    key: str
    src: Optional[str] = None
    name: Optional[str] = None

    def artist_title(self) -> Tuple[Optional[str], Optional[str]]:
        """Split a display name of the form "Artist: Title"."""
        if not self.name:
            return None, None
        if ": " in self.name:
            artist, title = self.name.split(": ", 1)
            return artist, title
        return None, self.name

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "PlaylistEntry":
        key = raw.get("key")
        if not isinstance(key, str) or not key:
            raise ValueError(f"playlist entry needs a non-empty string 'key': {raw!r}")
        src = raw.get("src") or None
        name = raw.get("name") or None
        return cls(key=key, src=str(src) if src is not None else None, name=str(name) if name is not None else None)


class PlaylistArena:
    """Ordered collection of entries, located by key-equality scan."""

    def __init__(self, entries: Iterable[PlaylistEntry] | None = None):
        self._entries: List[PlaylistEntry] = list(entries or [])

    def replace(self, entries: Iterable[PlaylistEntry]) -> None:
        # in place: handles held by in-flight reconciliations stay valid
        self._entries[:] = list(entries)

    def carry_over_sources(self, entries: Iterable[PlaylistEntry]) -> int:
        """Copy the live src of same-key entries onto `entries`; returns how many changed."""
        changed = 0
        for entry in entries:
            current = self.get(entry.key)
            if current is not None and current.src and current.src != entry.src:
                entry.src = current.src
                changed += 1
        return changed

    def get(self, key: str) -> Optional[PlaylistEntry]:
        for entry in self._entries:
            if entry.key == key:
                return entry
        return None

    def with_src(self, src: str) -> List[PlaylistEntry]:
        return [e for e in self._entries if e.src == src]

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self._entries]

    def __iter__(self) -> Iterator[PlaylistEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> PlaylistEntry:
        return self._entries[index]
