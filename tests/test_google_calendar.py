import asyncio
import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from lifeapp import repositories
from lifeapp.main import app
from lifeapp.services import google_calendar_service as gcal
from lifeapp.services.token_crypto import encrypt_token
from lifeapp.settings import reset_settings

HEADERS = {"X-User-Email": "reader@example.com", "X-Backend-Token": "test-secret"}
USER = "reader@example.com"


def returning(value):
    async def fake(*args, **kwargs):
        return value

    return fake


@pytest.fixture
def google_env(monkeypatch):
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "google-id")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "google-secret")
    monkeypatch.setenv("GOOGLE_REDIRECT_URI", "http://localhost:8000/v1/calendar/callback")
    reset_settings()


@pytest.fixture
def connected(monkeypatch):
    monkeypatch.setattr(gcal, "get_access_token", returning("access"))


@pytest.fixture
def no_calendars(monkeypatch):
    monkeypatch.setattr(repositories, "get_google_calendar", returning(None))
    monkeypatch.setattr(repositories, "list_google_calendars", returning([]))
    monkeypatch.setattr(repositories, "list_settings_with_prefix", returning({}))


@pytest.fixture
def client():
    return TestClient(app)


def timed(event_id, start, end, **extra):
    return {"id": event_id, "summary": event_id.title(), "start": {"dateTime": start}, "end": {"dateTime": end}, **extra}


def test_connect_url_asks_for_offline_access(google_env):
    query = parse_qs(urlparse(gcal.build_connect_url(USER)).query)

    assert query["state"] == [USER]
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert "https://www.googleapis.com/auth/calendar.events" in query["scope"][0].split(" ")


def test_connect_url_requires_credentials():
    with pytest.raises(gcal.CalendarError, match="not configured"):
        gcal.build_connect_url(USER)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2024-03-01", datetime(2024, 3, 1, tzinfo=timezone.utc)),
        ("2024-03-01T10:30:00Z", datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc)),
        ("2024-03-01T10:30:00", datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc)),
        ("not a date", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_time(value, expected):
    assert gcal.parse_time(value) == expected


def test_format_time_converts_to_utc():
    moment = datetime(2024, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    assert gcal.format_time(moment) == "2024-03-01T10:00:00Z"


def test_colors():
    assert gcal.event_color("11", "#000000") == "#dc2127"
    assert gcal.event_color(None, "#000000") == "#000000"
    assert gcal.event_color("99", "#000000") == "#000000"
    assert gcal.normalize_color("9fc6e7") == "#9fc6e7"
    assert gcal.normalize_color(None) == gcal.DEFAULT_COLOR


def test_all_day_event_ends_on_its_last_day():
    event = {"id": "trip", "summary": "Trip", "start": {"date": "2024-03-01"}, "end": {"date": "2024-03-04"}}

    record = gcal.event_record(event, "primary", "#123456")

    assert record["is_all_day"] is True
    assert record["start_time"] == "2024-03-01T00:00:00Z"
    assert record["end_time"] == "2024-03-03T23:59:59Z"
    assert record["end_date"] == "2024-03-04"
    assert record["color"] == "#123456"


def test_timed_event_record_and_response():
    event = timed(
        "standup",
        "2024-03-01T09:00:00+01:00",
        "2024-03-01T09:15:00+01:00",
        colorId="2",
        organizer={"email": "boss@example.com", "displayName": "Boss"},
    )

    record = gcal.event_record(event, "work", "#123456")
    response = gcal.event_response(record)

    assert record["start_time"] == "2024-03-01T08:00:00Z"
    assert record["end_time"] == "2024-03-01T08:15:00Z"
    assert response["color"] == "#7ae7bf"
    assert response["calendarId"] == "work"
    assert response["isAllDay"] is False
    assert response["organizer"] == {"email": "boss@example.com", "displayName": "Boss"}


def test_cancelled_or_undated_events_are_dropped():
    assert gcal.event_record({"id": "x", "status": "cancelled", "start": {"date": "2024-03-01"}}, "p", "#fff") is None
    assert gcal.event_record({"id": "x", "start": {}}, "p", "#fff") is None


def test_missing_connection_is_400(monkeypatch):
    monkeypatch.setattr(repositories, "get_google_tokens", returning(None))

    with pytest.raises(gcal.CalendarAuthError) as excinfo:
        asyncio.run(gcal.get_access_token(USER))
    assert excinfo.value.status == 400


def test_failed_refresh_is_401(google_env, monkeypatch, mock_http):
    monkeypatch.setattr(repositories, "get_google_tokens", returning({"refresh_token_enc": encrypt_token("refresh-1")}))
    mock_http(lambda request: httpx.Response(400, json={"error": "invalid_grant"}))

    with pytest.raises(gcal.CalendarAuthError) as excinfo:
        asyncio.run(gcal.get_access_token(USER))
    assert excinfo.value.status == 401


def test_refresh_stores_new_access_token(google_env, monkeypatch, mock_http):
    stored_refresh = encrypt_token("refresh-1")
    saved, seen = [], []

    async def store(user_id, refresh_token_enc, access_token=None, expires_at=None, scope=None):
        saved.append((refresh_token_enc, access_token))

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"access_token": "fresh", "expires_in": 3600})

    monkeypatch.setattr(
        repositories,
        "get_google_tokens",
        returning({"access_token": "old", "expires_at": "2020-01-01T00:00:00+00:00", "refresh_token_enc": stored_refresh}),
    )
    monkeypatch.setattr(repositories, "store_google_tokens", store)
    mock_http(handler)

    assert asyncio.run(gcal.get_access_token(USER)) == "fresh"

    assert saved == [(stored_refresh, "fresh")]
    body = parse_qs(seen[0].content.decode())
    assert body["grant_type"] == ["refresh_token"]
    assert body["refresh_token"] == ["refresh-1"]
    assert body["client_id"] == ["google-id"]


def test_error_with_empty_body_raises(connected, mock_http):
    mock_http(lambda request: httpx.Response(503))

    with pytest.raises(gcal.CalendarError) as excinfo:
        asyncio.run(gcal.calendar_request(USER, "GET", "/users/me/calendarList"))
    assert excinfo.value.status == 503


def test_calendar_ids_are_path_encoded(connected, mock_http):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"items": []})

    mock_http(handler)

    asyncio.run(gcal.fetch_events(USER, "team#work@group.calendar.google.com", "a", "b"))

    assert "/calendars/team%23work" in seen[0].url.raw_path.decode()


def test_fetch_events_follows_pages(connected, mock_http):
    seen = []

    def handler(request):
        seen.append(request)
        if request.url.params.get("pageToken") == "next":
            return httpx.Response(200, json={"items": [{"id": "b"}]})
        return httpx.Response(200, json={"items": [{"id": "a"}], "nextPageToken": "next"})

    mock_http(handler)

    items = asyncio.run(gcal.fetch_events(USER, "primary", "2024-03-01T00:00:00Z", "2024-03-31T23:59:59Z"))

    assert [item["id"] for item in items] == ["a", "b"]
    assert seen[0].url.params["singleEvents"] == "true"
    assert seen[0].url.params["orderBy"] == "startTime"


def test_list_calendars_uses_fresh_cache(monkeypatch, mock_http):
    row = {
        "calendar_id": "primary",
        "summary": "Me",
        "background_color": "#9fc6e7",
        "selected": True,
        "primary_calendar": True,
        "last_synced_at": datetime.now(timezone.utc).isoformat(),
    }
    monkeypatch.setattr(repositories, "list_google_calendars", returning([row]))
    monkeypatch.setattr(repositories, "list_settings_with_prefix", returning({"primary": "false"}))

    def handler(request):
        raise AssertionError("calendar list should come from the cache")

    mock_http(handler)

    result = asyncio.run(gcal.list_calendars(USER))

    assert result == {
        "calendars": [{"id": "primary", "summary": "Me", "color": "#9fc6e7", "primary": True, "selected": False}],
        "fromCache": True,
    }


def test_list_calendars_refetches_stale_cache(connected, monkeypatch, mock_http):
    stale = {"calendar_id": "old", "summary": "Old", "last_synced_at": "2020-01-01T00:00:00+00:00"}
    replaced = []

    async def replace(user_id, records):
        replaced.extend(records)
        return len(records)

    monkeypatch.setattr(repositories, "list_google_calendars", returning([stale]))
    monkeypatch.setattr(repositories, "list_settings_with_prefix", returning({}))
    monkeypatch.setattr(repositories, "replace_google_calendars", replace)
    mock_http(
        lambda request: httpx.Response(
            200, json={"items": [{"id": "work", "summary": "Work", "backgroundColor": "#ff0000", "accessRole": "owner"}]}
        )
    )

    result = asyncio.run(gcal.list_calendars(USER))

    assert result["fromCache"] is False
    assert result["calendars"] == [{"id": "work", "summary": "Work", "color": "#ff0000", "primary": False, "selected": True}]
    assert replaced[0]["calendar_id"] == "work"


def test_selected_calendars_fall_back_to_primary(no_calendars):
    assert asyncio.run(gcal.selected_calendar_ids(USER)) == ["primary"]


def test_selected_calendars_respect_preferences(monkeypatch):
    rows = [
        {"calendar_id": "primary", "selected": True},
        {"calendar_id": "holidays", "selected": True},
        {"calendar_id": "shared", "selected": False},
    ]
    monkeypatch.setattr(repositories, "list_google_calendars", returning(rows))
    monkeypatch.setattr(repositories, "list_settings_with_prefix", returning({"holidays": "false", "shared": "true"}))

    assert asyncio.run(gcal.selected_calendar_ids(USER)) == ["primary", "shared"]


def test_list_events_serves_cached_rows(monkeypatch, mock_http):
    row = {
        "calendar_id": "primary",
        "event_id": "standup",
        "title": "Standup",
        "start_time": "2024-03-01T09:00:00Z",
        "end_time": "2024-03-01T09:15:00Z",
        "is_all_day": False,
        "event": {"id": "standup"},
    }
    calls = []

    async def cached(user_id, time_min, time_max, calendar_ids=None):
        calls.append((time_min, time_max, calendar_ids))
        return [row]

    monkeypatch.setattr(repositories, "list_calendar_events", cached)

    def handler(request):
        raise AssertionError("events should come from the cache")

    mock_http(handler)

    result = asyncio.run(
        gcal.list_events(USER, datetime(2024, 3, 1, tzinfo=timezone.utc), datetime(2024, 3, 2, tzinfo=timezone.utc))
    )

    assert result["fromCache"] is True
    assert [event["id"] for event in result["events"]] == ["standup"]
    assert calls == [("2024-03-01T00:00:00Z", "2024-03-02T00:00:00Z", None)]


def test_list_events_fetches_and_skips_failing_calendars(connected, no_calendars, monkeypatch, mock_http):
    replaced = {}

    async def replace(user_id, calendar_id, records, time_min=None, time_max=None):
        replaced[calendar_id] = (len(records), time_min, time_max)
        return len(records)

    def handler(request):
        if "/calendars/broken/" in request.url.path:
            return httpx.Response(403, json={"error": {"message": "Forbidden"}})
        if "/calendars/work/" in request.url.path:
            return httpx.Response(200, json={"items": [timed("late", "2024-03-01T15:00:00Z", "2024-03-01T16:00:00Z")]})
        return httpx.Response(200, json={"items": [timed("early", "2024-03-01T08:00:00Z", "2024-03-01T09:00:00Z")]})

    monkeypatch.setattr(repositories, "list_calendar_events", returning([]))
    monkeypatch.setattr(repositories, "replace_calendar_events", replace)
    mock_http(handler)

    result = asyncio.run(
        gcal.list_events(
            USER,
            datetime(2024, 3, 1, tzinfo=timezone.utc),
            datetime(2024, 3, 2, tzinfo=timezone.utc),
            calendar_ids=["work", "broken", "primary"],
        )
    )

    assert result["fromCache"] is False
    assert [event["id"] for event in result["events"]] == ["early", "late"]
    assert set(replaced) == {"work", "primary"}
    assert replaced["work"] == (1, "2024-03-01T00:00:00Z", "2024-03-02T00:00:00Z")


def test_list_events_propagates_missing_connection(no_calendars, monkeypatch):
    monkeypatch.setattr(repositories, "list_calendar_events", returning([]))
    monkeypatch.setattr(repositories, "get_google_tokens", returning(None))

    with pytest.raises(gcal.CalendarAuthError):
        asyncio.run(
            gcal.list_events(USER, datetime(2024, 3, 1, tzinfo=timezone.utc), datetime(2024, 3, 2, tzinfo=timezone.utc))
        )


def test_refresh_falls_back_to_primary(connected, no_calendars, monkeypatch, mock_http):
    replaced = []

    async def replace(user_id, calendar_id, records, time_min=None, time_max=None):
        replaced.append((calendar_id, len(records), time_min))
        return len(records)

    def handler(request):
        if "/calendars/primary/" in request.url.path:
            return httpx.Response(200, json={"items": [timed("a", "2024-03-01T08:00:00Z", "2024-03-01T09:00:00Z")]})
        return httpx.Response(404, json={"error": {"message": "Not Found"}})

    monkeypatch.setattr(repositories, "replace_calendar_events", replace)
    mock_http(handler)

    result = asyncio.run(gcal.refresh_calendar(USER, "reader@example.com", years_back=1, years_forward=1))

    assert result["eventsCount"] == 1
    assert replaced == [("reader@example.com", 1, None)]


def test_refresh_skips_unknown_calendar(connected, no_calendars, monkeypatch, mock_http):
    monkeypatch.setattr(repositories, "replace_calendar_events", returning(0))
    mock_http(lambda request: httpx.Response(404, json={"error": {"message": "Not Found"}}))

    result = asyncio.run(gcal.refresh_calendar(USER, "primary"))

    assert result["skipped"] is True
    assert result["eventsCount"] == 0


def test_create_event_posts_utc_times(connected, no_calendars, monkeypatch, mock_http):
    seen, cached = [], []

    async def upsert(user_id, record):
        cached.append(record)

    def handler(request):
        seen.append(json.loads(request.content))
        body = json.loads(request.content)
        return httpx.Response(200, json={"id": "new", **body})

    monkeypatch.setattr(repositories, "upsert_calendar_event", upsert)
    mock_http(handler)

    event = asyncio.run(
        gcal.create_event(
            USER,
            "primary",
            "Lunch",
            datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
            datetime(2024, 3, 1, 13, 0, tzinfo=timezone.utc),
        )
    )

    assert seen[0]["start"] == {"dateTime": "2024-03-01T12:00:00Z", "timeZone": "UTC"}
    assert event["id"] == "new"
    assert event["title"] == "Lunch"
    assert cached[0]["event_id"] == "new"


def test_move_event_keeps_time_zone(connected, no_calendars, monkeypatch, mock_http):
    existing = {
        "id": "meet",
        "summary": "Meet",
        "location": "Room 1",
        "start": {"dateTime": "2024-03-01T09:00:00+01:00", "timeZone": "Europe/Paris"},
        "end": {"dateTime": "2024-03-01T10:00:00+01:00", "timeZone": "Europe/Paris"},
    }
    sent = []

    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, json=existing)
        body = json.loads(request.content)
        sent.append(body)
        return httpx.Response(200, json=body)

    monkeypatch.setattr(repositories, "upsert_calendar_event", returning(None))
    mock_http(handler)

    event = asyncio.run(
        gcal.move_event(
            USER,
            "primary",
            "meet",
            datetime(2024, 3, 2, 8, 0, tzinfo=timezone.utc),
            datetime(2024, 3, 2, 9, 0, tzinfo=timezone.utc),
        )
    )

    assert sent[0]["start"] == {"dateTime": "2024-03-02T08:00:00Z", "timeZone": "Europe/Paris"}
    assert sent[0]["location"] == "Room 1"
    assert event["start"] == "2024-03-02T08:00:00Z"


def test_move_event_missing_event_is_404(connected, mock_http):
    mock_http(lambda request: httpx.Response(404, json={"error": {"message": "Not Found"}}))

    with pytest.raises(gcal.CalendarError) as excinfo:
        asyncio.run(
            gcal.move_event(
                USER,
                "primary",
                "gone",
                datetime(2024, 3, 2, 8, 0, tzinfo=timezone.utc),
                datetime(2024, 3, 2, 9, 0, tzinfo=timezone.utc),
            )
        )
    assert excinfo.value.status == 404


def test_create_route_requires_fields(client):
    response = client.post("/v1/calendar/events", json={"title": "Lunch"}, headers=HEADERS)

    assert response.status_code == 400


def test_create_route_rejects_reversed_times(client):
    payload = {
        "title": "Lunch",
        "calendar_id": "primary",
        "start_time": "2024-03-01T13:00:00Z",
        "end_time": "2024-03-01T12:00:00Z",
    }
    response = client.post("/v1/calendar/events", json=payload, headers=HEADERS)

    assert response.status_code == 400
    assert response.json() == {"error": "Start time must be before end time"}


def test_events_route_rejects_bad_dates(client):
    response = client.get("/v1/calendar/events", params={"timeMin": "yesterday"}, headers=HEADERS)

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid date format"}


def test_events_route_not_connected(client, no_calendars, monkeypatch):
    monkeypatch.setattr(repositories, "list_calendar_events", returning([]))
    monkeypatch.setattr(repositories, "get_google_tokens", returning(None))

    response = client.get("/v1/calendar/events", headers=HEADERS)

    assert response.status_code == 400
    assert response.json() == {"error": "Google Calendar not connected"}


def test_events_route_splits_calendar_ids(client, monkeypatch):
    calls = []

    async def list_events(user_id, start, end, calendar_ids=None, force_refresh=False):
        calls.append((calendar_ids, force_refresh))
        return {"events": [], "fromCache": True}

    monkeypatch.setattr(gcal, "list_events", list_events)

    response = client.get(
        "/v1/calendar/events", params={"calendarIds": "primary, work", "forceRefresh": "true"}, headers=HEADERS
    )

    assert response.status_code == 200
    assert calls == [(["primary", "work"], True)]


def test_preference_route(client, monkeypatch):
    stored = []

    async def set_setting(user_id, key, value, scoped=True):
        stored.append((user_id, key, value))

    monkeypatch.setattr(repositories, "set_setting", set_setting)

    missing = client.post("/v1/calendar/calendars/preferences", json={"calendar_id": "work"}, headers=HEADERS)
    response = client.post(
        "/v1/calendar/calendars/preferences", json={"calendar_id": "work", "selected": False}, headers=HEADERS
    )

    assert missing.status_code == 400
    assert response.json() == {"success": True}
    assert stored == [(USER, "calendar_pref::work", "false")]


def test_disconnect_route(client, monkeypatch):
    deleted = []

    async def delete(user_id):
        deleted.append(user_id)

    monkeypatch.setattr(repositories, "delete_google_tokens", delete)

    assert client.post("/v1/calendar/disconnect", headers=HEADERS).json() == {"success": True}
    assert deleted == [USER]
