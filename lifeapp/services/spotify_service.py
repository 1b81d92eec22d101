from __future__ import annotations

import base64
import logging
from datetime import datetime
from urllib.parse import urlencode, urlparse

import httpx

from lifeapp import repositories
from lifeapp.settings import get_settings
from lifeapp.services import http_fetch
from lifeapp.services.token_crypto import decrypt_token, encrypt_token, expires_at, is_fresh

logger = logging.getLogger(__name__)

AUTH_URL = "https://accounts.spotify.com/authorize"
TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_API = "https://api.spotify.com/v1"
SCOPES = [
    "user-read-private",
    "user-read-email",
    "user-read-currently-playing",
    "user-read-playback-state",
    "user-modify-playback-state",
    "user-top-read",
    "user-read-recently-played",
    "playlist-read-private",
    "playlist-read-collaborative",
    "user-library-read",
]
HISTORY_PAGE_SIZE = 50
MAX_HISTORY_PAGES = 20


class SpotifyError(RuntimeError):
    def __init__(self, message: str, status: int = 500):
        super().__init__(message)
        self.status = status


def redirect_uri() -> str:
    uri = get_settings().spotify_redirect_uri or ""
    host = urlparse(uri).hostname or ""
    # Spotify only accepts plain http for loopback redirect URIs.
    if host in {"localhost", "127.0.0.1"} and uri.startswith("https://"):
        uri = "http://" + uri[len("https://") :]
    return uri


def build_connect_url(user_id: str) -> str:
    settings = get_settings()
    if not settings.spotify_client_id or not settings.spotify_redirect_uri:
        raise SpotifyError("Spotify OAuth credentials not configured")
    params = {
        "response_type": "code",
        "client_id": settings.spotify_client_id,
        "scope": " ".join(SCOPES),
        "redirect_uri": redirect_uri(),
        "state": user_id,
        "show_dialog": "true",
    }
    return f"{AUTH_URL}?{urlencode(params)}"


def _basic_auth() -> str:
    settings = get_settings()
    if not settings.spotify_client_id or not settings.spotify_client_secret:
        raise SpotifyError("Spotify OAuth credentials not configured")
    raw = f"{settings.spotify_client_id}:{settings.spotify_client_secret}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


async def _token_request(payload: dict) -> dict:
    async with http_fetch.build_client(20) as client:
        response = await client.post(TOKEN_URL, data=payload, headers={"Authorization": _basic_auth()})
    if not response.is_success:
        raise SpotifyError(f"Spotify token request failed ({response.status_code}): {response.text}", status=400)
    return response.json()


async def exchange_code_for_tokens(user_id: str, code: str) -> None:
    token_data = await _token_request(
        {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri()}
    )
    refresh_token = token_data.get("refresh_token")
    if not refresh_token:
        existing = await repositories.get_spotify_tokens(user_id)
        if existing and existing.get("refresh_token_enc"):
            refresh_token = decrypt_token(existing["refresh_token_enc"])
        else:
            raise SpotifyError("Spotify OAuth did not return refresh_token", status=400)
    await repositories.store_spotify_tokens(
        user_id,
        encrypt_token(refresh_token),
        access_token=token_data.get("access_token"),
        expires_at=expires_at(token_data),
        scope=token_data.get("scope"),
    )


async def _refresh_access_token(user_id: str, token_row: dict) -> str | None:
    refresh_token = decrypt_token(token_row["refresh_token_enc"])
    try:
        token_data = await _token_request({"grant_type": "refresh_token", "refresh_token": refresh_token})
    except (SpotifyError, httpx.HTTPError) as exc:
        logger.warning("Refreshing Spotify token for %s failed: %s", user_id, exc)
        return None
    access_token = token_data.get("access_token")
    if not access_token:
        return None
    # Spotify may omit the refresh token on refresh; keep the stored one then.
    new_refresh = token_data.get("refresh_token")
    await repositories.store_spotify_tokens(
        user_id,
        encrypt_token(new_refresh) if new_refresh else token_row["refresh_token_enc"],
        access_token=access_token,
        expires_at=expires_at(token_data),
        scope=token_data.get("scope") or token_row.get("scope"),
    )
    return access_token


async def get_access_token(user_id: str) -> str | None:
    token_row = await repositories.get_spotify_tokens(user_id)
    if not token_row:
        return None
    if is_fresh(token_row):
        return token_row["access_token"]
    return await _refresh_access_token(user_id, token_row)


async def spotify_request(
    user_id: str,
    method: str,
    path: str,
    params: dict | None = None,
    json: dict | None = None,
) -> dict | None:
    access_token = await get_access_token(user_id)
    if not access_token:
        raise SpotifyError("Spotify not connected", status=401)
    url = path if path.startswith("http") else f"{SPOTIFY_API}{path}"
    async with http_fetch.build_client(20) as client:
        response = await client.request(
            method,
            url,
            params=params,
            json=json,
            headers={"Authorization": f"Bearer {access_token}"},
        )
    if not response.is_success:
        try:
            message = (response.json().get("error") or {}).get("message")
        except (ValueError, AttributeError):
            message = None
        detail = message or response.text or response.reason_phrase
        raise SpotifyError(f"Spotify API error ({response.status_code}): {detail}", status=response.status_code)
    if response.status_code == 204 or not response.content:
        return None
    return response.json()


def history_record(item: dict) -> dict | None:
    track = item.get("track") or {}
    if not track.get("id") or not item.get("played_at"):
        return None
    images = (track.get("album") or {}).get("images") or []
    return {
        "track_id": track["id"],
        "track_name": track.get("name") or "",
        "artist_names": [artist.get("name") for artist in track.get("artists") or [] if artist.get("name")],
        "album_name": (track.get("album") or {}).get("name") or "",
        "album_image_url": images[0].get("url") if images else None,
        "played_at": item["played_at"],
        "duration_ms": track.get("duration_ms"),
        "popularity": track.get("popularity"),
    }


async def fetch_recent_history(user_id: str) -> list[dict]:
    items: list[dict] = []
    path = "/me/player/recently-played"
    params: dict | None = {"limit": HISTORY_PAGE_SIZE}
    for _ in range(MAX_HISTORY_PAGES):
        data = await spotify_request(user_id, "GET", path, params=params) or {}
        page = data.get("items") or []
        if not page:
            break
        items.extend(page)
        if data.get("next"):
            path, params = data["next"], None
        elif len(page) == HISTORY_PAGE_SIZE:
            oldest = datetime.fromisoformat(page[-1]["played_at"].replace("Z", "+00:00"))
            params = {"limit": HISTORY_PAGE_SIZE, "before": int(oldest.timestamp() * 1000) - 1}
        else:
            break
    return items


async def sync_history(user_id: str) -> dict:
    items = await fetch_recent_history(user_id)
    records = [record for record in (history_record(item) for item in items) if record]
    if not records:
        return {"message": "No tracks to sync", "synced": 0, "total": 0}
    synced = await repositories.insert_spotify_history(user_id, records)
    return {"synced": synced, "total": len(records)}
