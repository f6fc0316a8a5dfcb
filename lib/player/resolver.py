"""
Audio source resolution: opaque key -> playable URL.
"""
from __future__ import annotations

import logging
import os
from typing import Optional

from core import FETCH_MAX_ATTEMPTS, MalformedResponse, ResilientFetcher

# `{key}` is replaced verbatim; the key is opaque to us.
RESOLVER_ENDPOINT = os.getenv(
    "RESOLVER_ENDPOINT",
    "https://www.dlmixcloud.com/ajax.php/?url=https://www.mixcloud.com{key}",
)

logger = logging.getLogger(__name__)


class SourceResolver:
    def __init__(
        self,
        fetcher: ResilientFetcher,
        endpoint: str = RESOLVER_ENDPOINT,
        max_attempts: int = FETCH_MAX_ATTEMPTS,
    ):
        self.fetcher = fetcher
        self.endpoint = endpoint
        self.max_attempts = max_attempts

    def build_target(self, key: str) -> str:
        return self.endpoint.replace("{key}", key)

    async def resolve(self, key: str) -> Optional[str]:
        """
        Returns the `url` field of the resolver response for `key`.

        None means the endpoint answered but has no source right now.

        Raises:
            MalformedResponse: body is not JSON, not an object, or has no `url`
            FetchError subclasses from the fetch chain
        """
        target = self.build_target(key)
        logger.info(f"[RESOLVE] retrieve_audio_src({key})")
        data = await self.fetcher.get_json(target, max_attempts=self.max_attempts)
        if not isinstance(data, dict) or "url" not in data:
            raise MalformedResponse(
                f"Resolver response for {key} has no 'url' field",
                url=target,
                meta={"key": key, "body_type": type(data).__name__},
            )
        value = data["url"]
        if value is None or value == "":
            logger.info(f"[RESOLVE] {key}: no source currently available")
            return None
        if not isinstance(value, str):
            raise MalformedResponse(
                f"Resolver 'url' for {key} is not a string",
                url=target,
                meta={"key": key, "url_type": type(value).__name__},
            )
        return value
