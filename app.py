from __future__ import annotations

import os
import logging
from typing import Any, Dict, List, Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from starlette.middleware.gzip import GZipMiddleware
from pydantic import BaseModel

load_dotenv()

from core import (
    CONNECTIVITY_PROBE_INTERVAL_S,
    ConnectivityMonitor,
    ConnectivityProbe,
    ConnectivityTimeout,
    ConnectivityWaiter,
    FetchError,
    ResilientFetcher,
    build_client,
    error_detail,
)
from html_renderer import render_notices_html
from lib.player import (
    LAST_SONG_SRC,
    NoticeBoard,
    PersistentStore,
    PlaylistArena,
    SourceResolver,
    StaleSourceReconciler,
    load_playlist,
)

# Basic logging configuration to ensure logger outputs appear in the terminal
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("uvicorn.error")
logger.setLevel(logging.INFO)


# =========================
# Pydantic models
# =========================

class EntryModel(BaseModel):
    key: str
    src: Optional[str] = None
    name: Optional[str] = None


class PlaylistResponse(BaseModel):
    playlist_url: Optional[str] = None
    entries: List[EntryModel]


class PlaylistLoadBody(BaseModel):
    url: str
    refresh: Optional[int] = None


class PlaybackSourceBody(BaseModel):
    src: Optional[str] = None


class ResolveResponse(BaseModel):
    key: str
    url: Optional[str] = None


class NoticeModel(BaseModel):
    id: int
    message: str
    ttl_s: float
    structured: bool
    at: str


# =========================
# Player runtime (shared per app)
# =========================

class PlayerRuntime:
    """Everything one player backend shares across requests."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None, online: bool = True):
        self.client = build_client(transport)
        self.monitor = ConnectivityMonitor(online=online)
        self.notices = NoticeBoard()
        self.store = PersistentStore()
        self.arena = PlaylistArena()
        self.playlist_url: Optional[str] = None
        self.probe = ConnectivityProbe(self.monitor, self.client)
        self.fetcher = ResilientFetcher(self.client, ConnectivityWaiter(self.monitor, probe=self.probe), notice=self.notices)
        self.resolver = SourceResolver(self.fetcher)
        self.reconciler = StaleSourceReconciler(self.resolver, notice=self.notices)

    async def aclose(self) -> None:
        await self.reconciler.drain()
        await self.probe.stop()
        await self.client.aclose()


def _runtime(request: Request) -> PlayerRuntime:
    return request.app.state.player


# =========================
# FastAPI app & CORS
# =========================

app = FastAPI(
    title="Playlist Player Backend",
    version="1.0.0",
)

# Add GZip middleware for response compression (playlists can be large)
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.on_event("startup")
def _log_startup():
    logger.info("playlist-player: startup event triggered")


@app.on_event("startup")
async def _init_player_state():
    if getattr(app.state, "player", None) is None:
        app.state.player = PlayerRuntime()
    if CONNECTIVITY_PROBE_INTERVAL_S > 0:
        app.state.player.probe.start()


@app.on_event("shutdown")
async def _shutdown_player_state():
    runtime = getattr(app.state, "player", None)
    if runtime is not None:
        await runtime.aclose()
        app.state.player = None


# デフォルトの許可オリジン
default_origins = [
    "http://localhost:3000",
    "http://localhost:8000",
]

# 環境変数 ALLOWED_ORIGINS があればそれを優先（カンマ区切り）
env_origins = os.getenv("ALLOWED_ORIGINS")
if env_origins:
    origins = [o.strip() for o in env_origins.split(",") if o.strip()]
else:
    origins = default_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =========================
# Health check
# =========================

@app.get("/health", tags=["system"])
def health() -> Dict[str, Any]:
    return {
        "ok": True,
        "status": "ok",
        "build_commit": os.getenv("RENDER_GIT_COMMIT", "local")[:7],
    }


@app.get("/", tags=["system"])
def root() -> Dict[str, Any]:
    return {"ok": True, "status": "ok"}


@app.get("/api/connectivity", tags=["system"])
def connectivity(request: Request) -> Dict[str, Any]:
    runtime = _runtime(request)
    return {"online": runtime.monitor.is_online, "probe_running": runtime.probe.running}


# =========================
# Core helpers
# =========================

def _sanitize_src(raw: Optional[str]) -> Optional[str]:
    """Trim whitespace and surrounding angle brackets / quotes."""
    if not raw:
        return raw
    s = raw.strip()
    if s.startswith('<') and s.endswith('>'):
        s = s[1:-1].strip()
    s = s.strip('\'"')
    return s


def _http_error(e: FetchError) -> HTTPException:
    status_code = 503 if isinstance(e, ConnectivityTimeout) else 502
    return HTTPException(status_code=status_code, detail=error_detail(e))


# =========================
# Endpoints
# =========================

@app.post("/api/playlist/load", response_model=PlaylistResponse)
async def playlist_load(body: PlaylistLoadBody, request: Request):
    """Retrieve the playlist JSON and make it the live entry collection."""
    runtime = _runtime(request)
    url = _sanitize_src(body.url)
    if not url:
        raise HTTPException(status_code=422, detail="url is required")
    try:
        entries = await load_playlist(url, runtime.fetcher, refresh=(body.refresh == 1))
    except FetchError as e:
        logger.error(f"[api/playlist/load] error for url={url}: {e} meta={e.meta}")
        raise _http_error(e)
    if body.refresh != 1 and url == runtime.playlist_url:
        # cached body may predate repairs made since the last load
        carried = runtime.arena.carry_over_sources(entries)
        if carried:
            logger.info(f"[api/playlist/load] kept {carried} repaired src value(s) for url={url}")
    runtime.arena.replace(entries)
    runtime.playlist_url = url
    return {"playlist_url": url, "entries": runtime.arena.to_dicts()}


@app.get("/api/playlist", response_model=PlaylistResponse)
def playlist(request: Request):
    runtime = _runtime(request)
    return {"playlist_url": runtime.playlist_url, "entries": runtime.arena.to_dicts()}


@app.get("/api/resolve", response_model=ResolveResponse)
async def resolve(request: Request, key: str = Query(..., description="Opaque resolver key")):
    runtime = _runtime(request)
    try:
        url = await runtime.resolver.resolve(key)
    except FetchError as e:
        logger.error(f"[api/resolve] error for key={key}: {e} meta={e.meta}")
        raise _http_error(e)
    entry = runtime.arena.get(key)
    if entry is not None and url and entry.src != url:
        entry.src = url
    return {"key": key, "url": url}


@app.post("/api/playback/failed", status_code=202)
async def playback_failed(body: PlaybackSourceBody, request: Request) -> Dict[str, Any]:
    """A src failed to load in the audio player; repair matching entries in the background."""
    runtime = _runtime(request)
    src = _sanitize_src(body.src)
    tasks = runtime.reconciler.reconcile_stale_source(src, runtime.arena)
    return {"src": src, "matched": len(tasks)}


@app.post("/api/playback/started")
def playback_started(body: PlaybackSourceBody, request: Request) -> Dict[str, Any]:
    """Remember a src that started playing, for the quick start next time."""
    runtime = _runtime(request)
    src = _sanitize_src(body.src)
    if not src:
        return {"src": None, "saved": False}
    runtime.store.update(LAST_SONG_SRC, src)
    return {"src": src, "saved": True}


@app.get("/api/playback/quickstart")
def playback_quickstart(request: Request) -> Dict[str, Any]:
    return {"src": _runtime(request).store.load(LAST_SONG_SRC)}


@app.get("/api/notices", response_model=List[NoticeModel])
def notices(request: Request):
    return [n.to_dict() for n in _runtime(request).notices.notices()]


@app.get("/notices", response_class=HTMLResponse)
def notices_html(request: Request):
    return render_notices_html(_runtime(request).notices.notices())


# =========================
# Local dev entrypoint
# =========================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
    )
