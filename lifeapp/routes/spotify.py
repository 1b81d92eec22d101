from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query

from lifeapp import repositories
from lifeapp.auth import require_user_id
from lifeapp.schemas import SpotifyPlayRequest
from lifeapp.services import analytics, spotify_service
from lifeapp.services.spotify_service import SpotifyError

logger = logging.getLogger(__name__)

router = APIRouter()


async def _spotify(user_id: str, method: str, path: str, params: dict | None = None, json: dict | None = None):
    try:
        return await spotify_service.spotify_request(user_id, method, path, params=params, json=json)
    except SpotifyError as exc:
        raise HTTPException(status_code=exc.status, detail=str(exc))
    except httpx.HTTPError as exc:
        logger.exception("Spotify request %s %s failed: %s", method, path, exc)
        raise HTTPException(status_code=500, detail=str(exc) or "Spotify request failed")


@router.get("/v1/spotify/auth")
async def spotify_auth(user_id: str = Depends(require_user_id)):
    try:
        url = spotify_service.build_connect_url(user_id)
    except SpotifyError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    return {"authUrl": url}


@router.get("/v1/spotify/callback")
async def spotify_callback(code: str | None = None, state: str | None = None, error: str | None = None):
    if error:
        raise HTTPException(status_code=400, detail=f"Spotify authorization failed: {error}")
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code or state")
    try:
        await spotify_service.exchange_code_for_tokens(state.strip().lower(), code)
    except SpotifyError as exc:
        raise HTTPException(status_code=exc.status, detail=str(exc))
    return {"ok": True}


@router.post("/v1/spotify/disconnect")
async def spotify_disconnect(user_id: str = Depends(require_user_id)):
    await repositories.delete_spotify_tokens(user_id)
    return {"success": True}


@router.get("/v1/spotify/currently-playing")
async def currently_playing(user_id: str = Depends(require_user_id)):
    data = await _spotify(user_id, "GET", "/me/player/currently-playing")
    if not data:
        return {"isPlaying": False}
    return {"isPlaying": True, **data}


@router.get("/v1/spotify/recently-played")
async def recently_played(limit: int = Query(default=20, ge=1, le=50), user_id: str = Depends(require_user_id)):
    data = await _spotify(user_id, "GET", "/me/player/recently-played", params={"limit": limit})
    return data or {"items": []}


@router.get("/v1/spotify/top-artists")
async def top_artists(
    time_range: str = Query(default="medium_term"),
    limit: int = Query(default=20, ge=1, le=50),
    user_id: str = Depends(require_user_id),
):
    if time_range not in {"short_term", "medium_term", "long_term"}:
        raise HTTPException(status_code=400, detail="Invalid time_range")
    data = await _spotify(user_id, "GET", "/me/top/artists", params={"time_range": time_range, "limit": limit})
    return data or {"items": []}


@router.get("/v1/spotify/playlists")
async def playlists(limit: int = Query(default=50, ge=1, le=50), user_id: str = Depends(require_user_id)):
    data = await _spotify(user_id, "GET", "/me/playlists", params={"limit": limit})
    return data or {"items": []}


@router.get("/v1/spotify/profile")
async def profile(user_id: str = Depends(require_user_id)):
    return await _spotify(user_id, "GET", "/me") or {}


@router.post("/v1/spotify/play")
async def play(payload: SpotifyPlayRequest | None = None, user_id: str = Depends(require_user_id)):
    body = payload.model_dump(exclude_none=True) if payload else {}
    params = {"device_id": body.pop("device_id")} if body.get("device_id") else None
    await _spotify(user_id, "PUT", "/me/player/play", params=params, json=body or None)
    return {"success": True}


@router.post("/v1/spotify/pause")
async def pause(user_id: str = Depends(require_user_id)):
    await _spotify(user_id, "PUT", "/me/player/pause")
    return {"success": True}


@router.post("/v1/spotify/next")
async def next_track(user_id: str = Depends(require_user_id)):
    await _spotify(user_id, "POST", "/me/player/next")
    return {"success": True}


@router.post("/v1/spotify/sync-history")
async def sync_history(user_id: str = Depends(require_user_id)):
    try:
        return await spotify_service.sync_history(user_id)
    except SpotifyError as exc:
        raise HTTPException(status_code=exc.status, detail=str(exc))


@router.get("/v1/spotify/analytics")
async def spotify_analytics(range: str = Query(default="all"), user_id: str = Depends(require_user_id)):
    rows = await repositories.list_spotify_history(user_id, since=analytics.since_for_range(range))
    return {**analytics.spotify_summary(rows), "timeRange": range}
