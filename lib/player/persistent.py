"""
Namespaced key/value state of the player (quick-start src, volume, ...).

Keys are namespaced by the player path so several players can share one
backend. Values are stored as JSON strings.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any, MutableMapping, Optional

PLAYER_NAMESPACE = os.getenv("PLAYER_NAMESPACE", "/player")

LAST_SONG_SRC = "LAST_SONG_SRC"

# update() modes
DELETE = -1
OVERWRITE = 0
APPEND = 1

logger = logging.getLogger(__name__)


class PersistentStore:
    def __init__(self, namespace: str = PLAYER_NAMESPACE, backend: MutableMapping[str, str] | None = None):
        self.namespace = namespace
        self.backend: MutableMapping[str, str] = backend if backend is not None else {}

    def namespaced_key(self, key: Any) -> str:
        key = str(key)
        prefix = f"{self.namespace}."
        if key.startswith(prefix):
            return key
        return f"{prefix}{key}"

    def update(self, key: Any, data: Any = None, mode: int = OVERWRITE) -> Optional[str]:
        """
        Store `data` under `key`.

        Args:
            mode: -1 delete, 0 overwrite, 1 append (concatenates when the stored value is a list)

        Returns:
            the namespaced key, or None when `key` is None
        """
        if key is None:
            return None
        if mode not in (DELETE, OVERWRITE, APPEND):
            raise ValueError(f"unknown update mode: {mode}")
        full_key = self.namespaced_key(key)
        if mode in (DELETE, OVERWRITE):
            self.backend.pop(full_key, None)
        if mode in (OVERWRITE, APPEND) and data is not None:
            value = data
            if mode == APPEND:
                current = self._decode(full_key)
                if isinstance(current, list):
                    value = current + (data if isinstance(data, list) else [data])
            self.backend[full_key] = json.dumps(value, ensure_ascii=False)
        logger.debug(f"[STORE] update key={full_key} mode={mode}")
        return full_key

    def load(self, key: Any) -> Any:
        if key is None:
            return None
        return self._decode(self.namespaced_key(key))

    def _decode(self, full_key: str) -> Any:
        raw = self.backend.get(full_key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"[STORE] dropping undecodable value at {full_key}")
            return None
