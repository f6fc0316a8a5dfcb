#!/usr/bin/env python3
"""
Resilient fetch layer for the playlist player.

- ConnectivityMonitor: "is reachable now" flag + "reachability changed" subscription
- ConnectivityProbe: timer-driven source feeding the monitor
- ConnectivityWaiter: suspend until online again or a timeout elapses
- ResilientFetcher: one GET per attempt, retried only across transport failures

HTTP status errors and anything that is not demonstrably a transport failure are
raised as ApplicationError and never retried.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx

FETCH_MAX_ATTEMPTS = int(os.getenv("FETCH_MAX_ATTEMPTS", "10"))
FETCH_HTTP_TIMEOUT_S = float(os.getenv("FETCH_HTTP_TIMEOUT_S", "20"))
CONNECTIVITY_TIMEOUT_S = float(os.getenv("CONNECTIVITY_TIMEOUT_S", "60"))
CONNECTIVITY_PROBE_URL = os.getenv("CONNECTIVITY_PROBE_URL", "https://www.mixcloud.com/")
CONNECTIVITY_PROBE_INTERVAL_S = float(os.getenv("CONNECTIVITY_PROBE_INTERVAL_S", "5"))
# Display lifetime of the "waiting to reconnect" notice (a bit longer than one wait).
WAITING_NOTICE_TTL_S = 65

USER_AGENT = "playlist-player-backend/1.0 (+httpx)"

# Configure logger for this module
logger = logging.getLogger(__name__)

NoticeSink = Callable[[Any, float], Any]

# Transport-level failures: the request never got an answer from the server.
_NETWORK_ERRORS = (httpx.NetworkError, httpx.ConnectTimeout)


# =========================
# Errors
# =========================

class FetchError(Exception):
    """Base error of the fetch chain; carries the url and diagnostic meta."""

    kind = "fetch"

    def __init__(self, message: str, url: str | None = None, meta: dict | None = None):
        super().__init__(message)
        self.url = url
        self.meta = meta or {}


class ApplicationError(FetchError):
    """The server (or the request itself) said no. Never retried."""

    kind = "application"

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None, meta: dict | None = None):
        super().__init__(message, url=url, meta=meta)
        self.status_code = status_code


class NetworkError(FetchError):
    """Transient transport failure (refused/reset connection, DNS, offline)."""

    kind = "network"


class ConnectivityTimeout(FetchError):
    """Offline for longer than the wait budget; fatal for the current fetch chain."""

    kind = "connectivity_timeout"

    def __init__(self, elapsed_s: float, timeout_s: float, url: str | None = None):
        super().__init__(
            f"Timeout exception, offline for too long! (waited {elapsed_s:.1f}s of {timeout_s:g}s)",
            url=url,
            meta={"elapsed_s": elapsed_s, "timeout_s": timeout_s},
        )
        self.elapsed_s = elapsed_s
        self.timeout_s = timeout_s


class FetchExhausted(FetchError):
    kind = "exhausted"

    def __init__(self, url: str, max_attempts: int, last_error: BaseException | None = None):
        super().__init__(
            f"Timed out trying to get {url} after {max_attempts} attempts",
            url=url,
            meta={"max_attempts": max_attempts, "last_error": str(last_error) if last_error else None},
        )
        self.max_attempts = max_attempts
        self.last_error = last_error


class MalformedResponse(FetchError):
    """Body could not be decoded or lacks the expected field. Not a network condition."""

    kind = "malformed"


def classify_error(exc: BaseException) -> str:
    """Return the retry class of an exception raised by the HTTP client."""
    if isinstance(exc, _NETWORK_ERRORS):
        return NetworkError.kind
    return ApplicationError.kind


# =========================
# Connectivity
# =========================

class ConnectivityMonitor:
    """Holds the reachability flag and notifies subscribers when it flips."""

    def __init__(self, online: bool = True):
        self._online = bool(online)
        self._listeners: List[Callable[[bool], Any]] = []

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def set_online(self, value: bool) -> None:
        value = bool(value)
        if value == self._online:
            return
        self._online = value
        logger.info(f"[NET] connectivity changed online={value}")
        for callback in list(self._listeners):
            callback(value)

    def subscribe(self, callback: Callable[[bool], Any]) -> Callable[[], None]:
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(callback)
            except ValueError:
                pass

        return _unsubscribe


class ConnectivityWaiter:
    def __init__(self, monitor: ConnectivityMonitor, probe: "ConnectivityProbe | None" = None):
        self.monitor = monitor
        self.probe = probe

    async def wait_for_connectivity(self, timeout_s: float = CONNECTIVITY_TIMEOUT_S) -> None:
        """Suspend until the monitor reports online, or raise ConnectivityTimeout.

        With a probe, reachability is re-checked first so a transport failure is
        not answered from a stale flag; while offline the probe keeps checking
        (its own loop, or a poller owned by this wait).
        Registers a one-shot listener and lets asyncio.wait_for arm the timer;
        everything is released whichever fires first.
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        if self.probe is not None:
            await self.probe.check_once()
        if self.monitor.is_online:
            return
        back_online: asyncio.Future = loop.create_future()

        def _on_change(online: bool) -> None:
            if online and not back_online.done():
                back_online.set_result(None)

        unsubscribe = self.monitor.subscribe(_on_change)
        poller: Optional[asyncio.Task] = None
        if self.probe is not None and not self.probe.running:
            poller = asyncio.create_task(self.probe.poll_until_online(), name="connectivity-wait-poll")
        try:
            await asyncio.wait_for(back_online, timeout=max(0.0, timeout_s - (loop.time() - started)))
        except asyncio.TimeoutError:
            elapsed = loop.time() - started
            logger.warning(f"[NET] still offline after {elapsed:.1f}s (budget {timeout_s:g}s)")
            raise ConnectivityTimeout(elapsed, timeout_s) from None
        finally:
            unsubscribe()
            if poller is not None:
                poller.cancel()
        logger.info(f"[NET] back online after {loop.time() - started:.1f}s")


class ConnectivityProbe:
    """Periodically checks reachability and feeds the result into the monitor.

    Any HTTP answer, whatever its status, counts as reachable.
    """

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        client: httpx.AsyncClient,
        url: str = CONNECTIVITY_PROBE_URL,
        interval_s: float = CONNECTIVITY_PROBE_INTERVAL_S,
    ):
        self.monitor = monitor
        self.client = client
        self.url = url
        self.interval_s = interval_s
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_once(self) -> bool:
        try:
            await self.client.head(self.url)
            online = True
        except httpx.TransportError as e:
            logger.debug(f"[NET] probe {self.url} failed: {e!r}")
            online = False
        except httpx.HTTPError as e:
            # the server answered (e.g. redirect loop)
            logger.debug(f"[NET] probe {self.url} answered with error: {e!r}")
            online = True
        except httpx.InvalidURL as e:
            logger.warning(f"[NET] probe url {self.url!r} is invalid: {e}; reachability unknown")
            return self.monitor.is_online
        self.monitor.set_online(online)
        return online

    async def poll_until_online(self) -> None:
        """Re-check every interval until the monitor reports online."""
        delay = self.interval_s if self.interval_s > 0 else 1.0
        while not self.monitor.is_online:
            await asyncio.sleep(delay)
            await self.check_once()

    async def _loop(self) -> None:
        while True:
            try:
                await self.check_once()
            except Exception as e:
                logger.warning(f"[NET] probe check failed: {e!r}")
            await asyncio.sleep(self.interval_s)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="connectivity-probe")
        logger.info(f"[NET] probe started url={self.url} interval_s={self.interval_s:g}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[NET] probe stopped")


# =========================
# Resilient fetch
# =========================

@dataclass
class FetchAttempt:
    """Per-call bookkeeping of one fetch; never persisted."""
    attempt: int = 0
    last_error_kind: Optional[str] = None


def build_client(transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(FETCH_HTTP_TIMEOUT_S),
        headers={"User-Agent": USER_AGENT},
        transport=transport,
    )


class ResilientFetcher:
    def __init__(
        self,
        client: httpx.AsyncClient,
        waiter: ConnectivityWaiter,
        notice: NoticeSink | None = None,
        connectivity_timeout_s: float = CONNECTIVITY_TIMEOUT_S,
    ):
        self.client = client
        self.waiter = waiter
        self.notice = notice
        self.connectivity_timeout_s = connectivity_timeout_s

    async def fetch(self, url: str, max_attempts: int = FETCH_MAX_ATTEMPTS) -> httpx.Response:
        """
        GET `url`, waiting for connectivity between attempts that fail at the transport level.

        Raises:
            ApplicationError: HTTP status >= 400 or any non-transport failure (no retry)
            ConnectivityTimeout: offline longer than `connectivity_timeout_s`
            FetchExhausted: `max_attempts` transport failures in a row
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        state = FetchAttempt()
        last_error: BaseException | None = None
        while state.attempt < max_attempts:
            state.attempt += 1
            try:
                resp = await self.client.get(url)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                state.last_error_kind = classify_error(e)
                if state.last_error_kind == NetworkError.kind:
                    last_error = e
                    logger.warning(f"[FETCH] attempt {state.attempt}/{max_attempts} network error for {url}: {e!r}")
                    if state.attempt >= max_attempts:
                        break
                    self._notice(f"get_successful_fetch({url}); //Offline... waiting to reconnect...", WAITING_NOTICE_TTL_S)
                    try:
                        await self.waiter.wait_for_connectivity(self.connectivity_timeout_s)
                    except ConnectivityTimeout as timeout:
                        timeout.url = url
                        timeout.meta["attempt"] = state.attempt
                        raise
                    continue
                raise ApplicationError(
                    f"Request to {url} failed: {e}",
                    url=url,
                    meta={"attempt": state.attempt, "error_type": type(e).__name__},
                ) from e

            if resp.is_error:
                state.last_error_kind = ApplicationError.kind
                raise ApplicationError(
                    f"HTTP {resp.status_code} for {url}",
                    url=url,
                    status_code=resp.status_code,
                    meta={"attempt": state.attempt},
                )
            if state.attempt > 1:
                logger.info(f"[FETCH] {url} succeeded on attempt {state.attempt}/{max_attempts}")
            return resp

        raise FetchExhausted(url, max_attempts, last_error)

    async def get_json(self, url: str, max_attempts: int = FETCH_MAX_ATTEMPTS) -> Any:
        """Extracts JSON from a successful fetch."""
        logger.debug(f"[FETCH] get_json({url})")
        resp = await self.fetch(url, max_attempts=max_attempts)
        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponse(
                f"Response from {url} is not valid JSON: {e}",
                url=url,
                meta={"body_snippet": resp.text[:200]},
            ) from e
        logger.debug(f"[FETCH] get_json({url}) -> {type(data).__name__}")
        return data

    def _notice(self, message: str, ttl_seconds: float) -> None:
        if self.notice is not None:
            self.notice(message, ttl_seconds)


# Module-level default monitor for the one-shot helpers below.
DEFAULT_MONITOR = ConnectivityMonitor()


def _probing_waiter(client: httpx.AsyncClient, monitor: ConnectivityMonitor) -> ConnectivityWaiter:
    return ConnectivityWaiter(monitor, probe=ConnectivityProbe(monitor, client))


async def get_successful_fetch(
    url: str,
    max_attempts: int = FETCH_MAX_ATTEMPTS,
    monitor: ConnectivityMonitor | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.Response:
    """One-shot resilient GET using a short-lived client."""
    async with build_client(transport) as client:
        fetcher = ResilientFetcher(client, _probing_waiter(client, monitor or DEFAULT_MONITOR))
        return await fetcher.fetch(url, max_attempts=max_attempts)


async def get_json(
    url: str,
    monitor: ConnectivityMonitor | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Any:
    async with build_client(transport) as client:
        fetcher = ResilientFetcher(client, _probing_waiter(client, monitor or DEFAULT_MONITOR))
        return await fetcher.get_json(url)


def error_detail(e: FetchError) -> Dict[str, Any]:
    """Structured description of a fetch-chain error for API responses."""
    return {
        "error": str(e),
        "kind": e.kind,
        "url": e.url,
        "meta": e.meta,
    }
