import asyncio
import base64
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from lifeapp import repositories
from lifeapp.services import spotify_service as spotify
from lifeapp.settings import reset_settings


@pytest.fixture
def spotify_env(monkeypatch):
    monkeypatch.setenv("SPOTIFY_CLIENT_ID", "client-id")
    monkeypatch.setenv("SPOTIFY_CLIENT_SECRET", "client-secret")
    monkeypatch.setenv("SPOTIFY_REDIRECT_URI", "https://localhost:8000/v1/spotify/callback")
    reset_settings()


def test_tokens_round_trip_and_are_opaque():
    encrypted = spotify.encrypt_token("refresh-123")
    assert "refresh-123" not in encrypted
    assert spotify.decrypt_token(encrypted) == "refresh-123"


def test_redirect_uri_uses_http_for_loopback(spotify_env):
    assert spotify.redirect_uri() == "http://localhost:8000/v1/spotify/callback"


def test_redirect_uri_keeps_https_elsewhere(spotify_env, monkeypatch):
    monkeypatch.setenv("SPOTIFY_REDIRECT_URI", "https://life.example.com/v1/spotify/callback")
    reset_settings()
    assert spotify.redirect_uri() == "https://life.example.com/v1/spotify/callback"


def test_connect_url_carries_state(spotify_env):
    url = spotify.build_connect_url("reader@example.com")
    query = parse_qs(urlparse(url).query)

    assert url.startswith(spotify.AUTH_URL)
    assert query["state"] == ["reader@example.com"]
    assert query["client_id"] == ["client-id"]
    assert "user-read-recently-played" in query["scope"][0].split(" ")


def test_connect_url_requires_credentials():
    with pytest.raises(spotify.SpotifyError, match="not configured"):
        spotify.build_connect_url("reader@example.com")


def test_history_record():
    item = {
        "played_at": "2024-03-01T10:00:00.000Z",
        "track": {
            "id": "t1",
            "name": "Song",
            "artists": [{"name": "A"}, {"name": "B"}],
            "album": {"name": "Album", "images": [{"url": "big.jpg"}, {"url": "small.jpg"}]},
            "duration_ms": 180000,
            "popularity": 70,
        },
    }

    assert spotify.history_record(item) == {
        "track_id": "t1",
        "track_name": "Song",
        "artist_names": ["A", "B"],
        "album_name": "Album",
        "album_image_url": "big.jpg",
        "played_at": "2024-03-01T10:00:00.000Z",
        "duration_ms": 180000,
        "popularity": 70,
    }
    assert spotify.history_record({"track": {"name": "x"}, "played_at": "2024"}) is None


def test_valid_access_token_is_reused(monkeypatch):
    future = (datetime.now(timezone.utc) + timedelta(minutes=10)).isoformat()

    async def tokens(user_id):
        return {"access_token": "cached", "expires_at": future, "refresh_token_enc": "unused"}

    monkeypatch.setattr(repositories, "get_spotify_tokens", tokens)

    assert asyncio.run(spotify.get_access_token("reader@example.com")) == "cached"


def test_refresh_keeps_stored_refresh_token(spotify_env, monkeypatch, mock_http):
    stored_refresh = spotify.encrypt_token("refresh-1")
    saved, seen = [], []

    async def tokens(user_id):
        return {"access_token": "old", "expires_at": "2020-01-01T00:00:00+00:00", "refresh_token_enc": stored_refresh}

    async def store(user_id, refresh_token_enc, access_token=None, expires_at=None, scope=None):
        saved.append((refresh_token_enc, access_token))

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"access_token": "fresh", "expires_in": 3600})

    monkeypatch.setattr(repositories, "get_spotify_tokens", tokens)
    monkeypatch.setattr(repositories, "store_spotify_tokens", store)
    mock_http(handler)

    assert asyncio.run(spotify.get_access_token("reader@example.com")) == "fresh"

    assert saved == [(stored_refresh, "fresh")]
    request = seen[0]
    assert str(request.url) == spotify.TOKEN_URL
    expected = "Basic " + base64.b64encode(b"client-id:client-secret").decode("ascii")
    assert request.headers["Authorization"] == expected
    assert parse_qs(request.content.decode()) == {"grant_type": ["refresh_token"], "refresh_token": ["refresh-1"]}


def test_failed_refresh_returns_none(spotify_env, monkeypatch, mock_http):
    async def tokens(user_id):
        return {"refresh_token_enc": spotify.encrypt_token("refresh-1")}

    monkeypatch.setattr(repositories, "get_spotify_tokens", tokens)
    mock_http(lambda request: httpx.Response(400, json={"error": "invalid_grant"}))

    assert asyncio.run(spotify.get_access_token("reader@example.com")) is None


def test_request_without_connection(monkeypatch):
    async def tokens(user_id):
        return None

    monkeypatch.setattr(repositories, "get_spotify_tokens", tokens)

    with pytest.raises(spotify.SpotifyError) as excinfo:
        asyncio.run(spotify.spotify_request("reader@example.com", "GET", "/me"))
    assert excinfo.value.status == 401


@pytest.mark.parametrize("status", [401, 503])
def test_error_with_empty_body_raises(monkeypatch, mock_http, status):
    async def token(user_id):
        return "access"

    monkeypatch.setattr(spotify, "get_access_token", token)
    mock_http(lambda request: httpx.Response(status))

    with pytest.raises(spotify.SpotifyError) as excinfo:
        asyncio.run(spotify.spotify_request("reader@example.com", "PUT", "/me/player/pause"))
    assert excinfo.value.status == status


def test_no_content_returns_none(monkeypatch, mock_http):
    async def token(user_id):
        return "access"

    monkeypatch.setattr(spotify, "get_access_token", token)
    mock_http(lambda request: httpx.Response(204))

    assert asyncio.run(spotify.spotify_request("reader@example.com", "GET", "/me/player/currently-playing")) is None


def played(index):
    stamp = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc) - timedelta(minutes=index)
    return {"played_at": stamp.isoformat().replace("+00:00", "Z"), "track": {"id": f"t{index}", "name": "x"}}


def test_sync_history_pages_backwards(monkeypatch, mock_http):
    async def token(user_id):
        return "access"

    inserted = []

    async def insert(user_id, records):
        inserted.extend(records)
        return len(records)

    requests = []

    def handler(request):
        requests.append(request)
        if "before" in request.url.params:
            return httpx.Response(200, json={"items": [played(50), played(51)], "next": None})
        return httpx.Response(200, json={"items": [played(i) for i in range(50)], "next": None})

    monkeypatch.setattr(spotify, "get_access_token", token)
    monkeypatch.setattr(repositories, "insert_spotify_history", insert)
    mock_http(handler)

    result = asyncio.run(spotify.sync_history("reader@example.com"))

    assert result == {"synced": 52, "total": 52}
    assert len(requests) == 2
    oldest_first_page = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc) - timedelta(minutes=49)
    assert requests[1].url.params["before"] == str(int(oldest_first_page.timestamp() * 1000) - 1)
    assert requests[0].headers["Authorization"] == "Bearer access"


def test_sync_history_nothing_played(monkeypatch, mock_http):
    async def token(user_id):
        return "access"

    monkeypatch.setattr(spotify, "get_access_token", token)
    mock_http(lambda request: httpx.Response(200, json={"items": []}))

    assert asyncio.run(spotify.sync_history("reader@example.com")) == {
        "message": "No tracks to sync",
        "synced": 0,
        "total": 0,
    }
