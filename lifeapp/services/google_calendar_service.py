"""Google Calendar client with a per-user cache of calendars and events.

Tokens follow the same encrypted refresh-token scheme as Spotify. Calendar
lists are served from the cache for an hour; event reads use cached rows
overlapping the requested window and fall back to the API when none exist.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from urllib.parse import quote, urlencode

import httpx
from sqlalchemy.exc import SQLAlchemyError

from lifeapp import repositories
from lifeapp.settings import get_settings
from lifeapp.services import http_fetch
from lifeapp.services.token_crypto import decrypt_token, encrypt_token, expires_at, is_fresh

logger = logging.getLogger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
CALENDAR_API = "https://www.googleapis.com/calendar/v3"
SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]
DEFAULT_COLOR = "#4285f4"
# Google's fixed event colour palette, keyed by colorId.
EVENT_COLORS = {
    "1": "#a4bdfc",
    "2": "#7ae7bf",
    "3": "#dbadff",
    "4": "#ff887c",
    "5": "#fbd75b",
    "6": "#ffb878",
    "7": "#46d6db",
    "8": "#e1e1e1",
    "9": "#5484ed",
    "10": "#51b749",
    "11": "#dc2127",
}
CALENDAR_CACHE_TTL = timedelta(hours=1)
DEFAULT_WINDOW_DAYS = 30
EVENTS_PAGE_SIZE = 2500
MAX_EVENT_PAGES = 100
PREFERENCE_PREFIX = "calendar_pref::"


class CalendarError(RuntimeError):
    def __init__(self, message: str, status: int = 500):
        super().__init__(message)
        self.status = status


class CalendarAuthError(CalendarError):
    """The user has no usable Google credentials."""


def format_time(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_time(value: str | None) -> datetime | None:
    """Parse ``YYYY-MM-DD`` or an ISO timestamp; naive values are taken as UTC."""
    if not value or not str(value).strip():
        return None
    text = str(value).strip()
    try:
        if len(text) == 10:
            parsed = datetime.combine(date.fromisoformat(text), time.min)
        else:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def default_window(now: datetime | None = None) -> tuple[datetime, datetime]:
    now = now or datetime.now(timezone.utc)
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    end = (start + timedelta(days=DEFAULT_WINDOW_DAYS)).replace(hour=23, minute=59, second=59)
    return start, end


def _shift_years(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        return moment.replace(year=moment.year + years, day=28)


def normalize_color(value: str | None, fallback: str = DEFAULT_COLOR) -> str:
    if not value:
        return fallback
    return value if value.startswith("#") else f"#{value}"


def event_color(color_id: str | None, calendar_color: str) -> str:
    return EVENT_COLORS.get(str(color_id), calendar_color) if color_id else calendar_color


def build_connect_url(user_id: str) -> str:
    settings = get_settings()
    if not settings.google_client_id or not settings.google_redirect_uri:
        raise CalendarError("Google OAuth credentials not configured")
    params = {
        "client_id": settings.google_client_id,
        "redirect_uri": settings.google_redirect_uri,
        "response_type": "code",
        "scope": " ".join(SCOPES),
        "access_type": "offline",
        "include_granted_scopes": "true",
        "prompt": "consent",
        "state": user_id,
    }
    return f"{AUTH_URL}?{urlencode(params)}"


async def _token_request(payload: dict) -> dict:
    settings = get_settings()
    if not settings.google_client_id or not settings.google_client_secret:
        raise CalendarError("Google OAuth credentials not configured")
    payload = {**payload, "client_id": settings.google_client_id, "client_secret": settings.google_client_secret}
    async with http_fetch.build_client(20) as client:
        response = await client.post(TOKEN_URL, data=payload)
    if not response.is_success:
        raise CalendarError(f"Google token request failed ({response.status_code}): {response.text}", status=400)
    return response.json()


async def exchange_code_for_tokens(user_id: str, code: str) -> None:
    token_data = await _token_request(
        {"code": code, "redirect_uri": get_settings().google_redirect_uri, "grant_type": "authorization_code"}
    )
    refresh_token = token_data.get("refresh_token")
    if not refresh_token:
        existing = await repositories.get_google_tokens(user_id)
        if existing and existing.get("refresh_token_enc"):
            refresh_token = decrypt_token(existing["refresh_token_enc"])
        else:
            raise CalendarError("Google OAuth did not return refresh_token", status=400)
    await repositories.store_google_tokens(
        user_id,
        encrypt_token(refresh_token),
        access_token=token_data.get("access_token"),
        expires_at=expires_at(token_data),
        scope=token_data.get("scope"),
    )


async def _refresh_access_token(user_id: str, token_row: dict) -> str | None:
    refresh_token = decrypt_token(token_row["refresh_token_enc"])
    try:
        token_data = await _token_request({"refresh_token": refresh_token, "grant_type": "refresh_token"})
    except (CalendarError, httpx.HTTPError) as exc:
        logger.warning("Refreshing Google token for %s failed: %s", user_id, exc)
        return None
    access_token = token_data.get("access_token")
    if not access_token:
        return None
    await repositories.store_google_tokens(
        user_id,
        token_row["refresh_token_enc"],
        access_token=access_token,
        expires_at=expires_at(token_data),
        scope=token_data.get("scope") or token_row.get("scope"),
    )
    return access_token


async def get_access_token(user_id: str) -> str:
    token_row = await repositories.get_google_tokens(user_id)
    if not token_row:
        raise CalendarAuthError("Google Calendar not connected", status=400)
    if is_fresh(token_row):
        return token_row["access_token"]
    access_token = await _refresh_access_token(user_id, token_row)
    if not access_token:
        raise CalendarAuthError("Failed to refresh access token", status=401)
    return access_token


async def calendar_request(
    user_id: str,
    method: str,
    path: str,
    params: dict | None = None,
    json: dict | None = None,
) -> dict | None:
    access_token = await get_access_token(user_id)
    async with http_fetch.build_client(25) as client:
        response = await client.request(
            method,
            f"{CALENDAR_API}{path}",
            params=params,
            json=json,
            headers={"Authorization": f"Bearer {access_token}"},
        )
    if not response.is_success:
        try:
            payload = response.json()
            message = (payload.get("error") or {}).get("message") or payload.get("message")
        except (ValueError, AttributeError):
            message = None
        detail = message or response.text or response.reason_phrase
        raise CalendarError(f"Google Calendar API error ({response.status_code}): {detail}", status=response.status_code)
    if response.status_code == 204 or not response.content:
        return None
    return response.json()


def _events_path(calendar_id: str, event_id: str | None = None) -> str:
    path = f"/calendars/{quote(calendar_id, safe='')}/events"
    return f"{path}/{quote(event_id, safe='')}" if event_id else path


# Calendars


def calendar_record(item: dict) -> dict:
    return {
        "calendar_id": item["id"],
        "summary": item.get("summary") or "Untitled Calendar",
        "description": item.get("description"),
        "time_zone": item.get("timeZone"),
        "background_color": item.get("backgroundColor"),
        "foreground_color": item.get("foregroundColor"),
        "access_role": item.get("accessRole"),
        "selected": item.get("selected") is not False,
        "primary_calendar": item.get("primary") is True,
    }


def _calendar_response(row: dict, preferences: dict) -> dict:
    calendar_id = row["calendar_id"]
    return {
        "id": calendar_id,
        "summary": row.get("summary"),
        "color": row.get("background_color"),
        "primary": bool(row.get("primary_calendar")),
        "selected": preferences.get(calendar_id, bool(row.get("selected"))),
    }


def _cache_is_fresh(rows: list[dict], now: datetime | None = None) -> bool:
    now = now or datetime.now(timezone.utc)
    for row in rows:
        synced = parse_time(row.get("last_synced_at"))
        if synced is None or now - synced > CALENDAR_CACHE_TTL:
            return False
    return bool(rows)


async def calendar_preferences(user_id: str) -> dict:
    raw = await repositories.list_settings_with_prefix(user_id, PREFERENCE_PREFIX)
    return {calendar_id: value == "true" for calendar_id, value in raw.items()}


async def set_calendar_preference(user_id: str, calendar_id: str, selected: bool) -> None:
    await repositories.set_setting(user_id, f"{PREFERENCE_PREFIX}{calendar_id}", "true" if selected else "false")


async def list_calendars(user_id: str, force_refresh: bool = False) -> dict:
    preferences = await calendar_preferences(user_id)
    if not force_refresh:
        cached = await repositories.list_google_calendars(user_id)
        if _cache_is_fresh(cached):
            return {"calendars": [_calendar_response(row, preferences) for row in cached], "fromCache": True}

    try:
        data = await calendar_request(user_id, "GET", "/users/me/calendarList", params={"minAccessRole": "reader"})
    except CalendarAuthError:
        raise
    except CalendarError as exc:
        raise CalendarError(f"Failed to fetch calendars: {exc}", status=500) from exc
    records = [calendar_record(item) for item in (data or {}).get("items") or [] if item.get("id")]
    if records:
        await repositories.replace_google_calendars(user_id, records)
    return {"calendars": [_calendar_response(record, preferences) for record in records], "fromCache": False}


async def selected_calendar_ids(user_id: str) -> list[str]:
    """Calendars to show: cached calendars filtered by preference, else preferred ids, else primary."""
    preferences = await calendar_preferences(user_id)
    cached = await repositories.list_google_calendars(user_id)
    if cached:
        chosen = [
            row["calendar_id"]
            for row in cached
            if preferences.get(row["calendar_id"], bool(row.get("selected")))
        ]
    else:
        chosen = [calendar_id for calendar_id, selected in preferences.items() if selected]
    return chosen or ["primary"]


async def _calendar_color(user_id: str, calendar_id: str) -> str:
    row = await repositories.get_google_calendar(user_id, calendar_id)
    return normalize_color((row or {}).get("background_color"))


# Events


def event_record(event: dict, calendar_id: str, calendar_color: str) -> dict | None:
    """Map a Google event to a cache row; all-day events end at 23:59:59 of their last day."""
    start = event.get("start") or {}
    end = event.get("end") or {}
    if not event.get("id") or event.get("status") == "cancelled":
        return None
    is_all_day = not start.get("dateTime") and bool(start.get("date"))
    start_date = end_date = None
    if is_all_day:
        start_date = start["date"]
        end_date = end.get("date") or start_date
        try:
            first = date.fromisoformat(start_date)
            last = max(date.fromisoformat(end_date) - timedelta(days=1), first)
        except ValueError:
            return None
        start_time = format_time(datetime.combine(first, time.min, tzinfo=timezone.utc))
        end_time = format_time(datetime.combine(last, time(23, 59, 59), tzinfo=timezone.utc))
    else:
        start_dt = parse_time(start.get("dateTime"))
        end_dt = parse_time(end.get("dateTime")) or start_dt
        if start_dt is None:
            return None
        start_time, end_time = format_time(start_dt), format_time(end_dt)
    return {
        "calendar_id": calendar_id,
        "event_id": event["id"],
        "title": event.get("summary") or "No Title",
        "start_time": start_time,
        "end_time": end_time,
        "start_date": start_date,
        "end_date": end_date,
        "is_all_day": is_all_day,
        "color": event_color(event.get("colorId"), calendar_color),
        "description": event.get("description"),
        "location": event.get("location"),
        "status": event.get("status"),
        "html_link": event.get("htmlLink"),
        "hangout_link": event.get("hangoutLink"),
        "event": event,
    }


def event_response(record: dict) -> dict:
    event = record.get("event") or {}
    organizer = event.get("organizer")
    return {
        "id": record["event_id"],
        "title": record["title"],
        "start": record["start_time"],
        "end": record["end_time"],
        "startDate": record.get("start_date"),
        "endDate": record.get("end_date"),
        "isAllDay": bool(record.get("is_all_day")),
        "color": record.get("color"),
        "calendarId": record["calendar_id"],
        "description": record.get("description"),
        "location": record.get("location"),
        "status": record.get("status"),
        "htmlLink": record.get("html_link"),
        "hangoutLink": record.get("hangout_link"),
        "organizer": {"email": organizer.get("email"), "displayName": organizer.get("displayName")} if organizer else None,
        "attendees": event.get("attendees"),
        "reminders": event.get("reminders"),
        "recurrence": event.get("recurrence"),
        "conferenceData": event.get("conferenceData"),
        "created": event.get("created"),
        "updated": event.get("updated"),
    }


async def fetch_events(user_id: str, calendar_id: str, time_min: str, time_max: str) -> list[dict]:
    items: list[dict] = []
    page_token = None
    for _ in range(MAX_EVENT_PAGES):
        params = {
            "timeMin": time_min,
            "timeMax": time_max,
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": EVENTS_PAGE_SIZE,
        }
        if page_token:
            params["pageToken"] = page_token
        data = await calendar_request(user_id, "GET", _events_path(calendar_id), params=params) or {}
        items.extend(data.get("items") or [])
        page_token = data.get("nextPageToken")
        if not page_token:
            break
    return items


def _records(items: list[dict], calendar_id: str, color: str) -> list[dict]:
    records = []
    for item in items:
        record = event_record(item, calendar_id, color)
        if record:
            records.append(record)
    return records


async def list_events(
    user_id: str,
    time_min: datetime,
    time_max: datetime,
    calendar_ids: list[str] | None = None,
    force_refresh: bool = False,
) -> dict:
    window_min, window_max = format_time(time_min), format_time(time_max)
    if not force_refresh:
        cached = await repositories.list_calendar_events(user_id, window_min, window_max, calendar_ids or None)
        if cached:
            return {"events": [event_response(row) for row in cached], "fromCache": True}

    calendar_ids = calendar_ids or await selected_calendar_ids(user_id)
    records: list[dict] = []
    for calendar_id in calendar_ids:
        try:
            items = await fetch_events(user_id, calendar_id, window_min, window_max)
        except CalendarAuthError:
            raise
        except (CalendarError, httpx.HTTPError) as exc:
            logger.warning("Fetching events for calendar %s failed, skipping: %s", calendar_id, exc)
            continue
        calendar_records = _records(items, calendar_id, await _calendar_color(user_id, calendar_id))
        try:
            await repositories.replace_calendar_events(user_id, calendar_id, calendar_records, window_min, window_max)
        except SQLAlchemyError as exc:
            logger.warning("Caching events for calendar %s failed: %s", calendar_id, exc)
        records.extend(calendar_records)
    records.sort(key=lambda record: record["start_time"])
    return {"events": [event_response(record) for record in records], "fromCache": False}


async def refresh_calendar(user_id: str, calendar_id: str, years_back: int = 10, years_forward: int = 10) -> dict:
    """Replace every cached event of one calendar with a wide re-fetch."""
    now = datetime.now(timezone.utc)
    window_min = format_time(_shift_years(now, -years_back).replace(hour=0, minute=0, second=0, microsecond=0))
    window_max = format_time(_shift_years(now, years_forward).replace(hour=23, minute=59, second=59, microsecond=0))

    # The primary calendar may be addressed by the owner's email, which the API can reject.
    candidates = [calendar_id] if calendar_id == "primary" else [calendar_id, "primary"]
    for candidate in candidates:
        try:
            items = await fetch_events(user_id, candidate, window_min, window_max)
            break
        except CalendarAuthError:
            raise
        except CalendarError as exc:
            if exc.status != 404:
                raise
            logger.info("Calendar %s not found while refreshing: %s", candidate, exc)
    else:
        return {
            "success": True,
            "eventsCount": 0,
            "calendarId": calendar_id,
            "skipped": True,
            "warning": "Calendar not found or does not support event fetching",
        }

    records = _records(items, calendar_id, await _calendar_color(user_id, calendar_id))
    await repositories.replace_calendar_events(user_id, calendar_id, records)
    return {
        "success": True,
        "eventsCount": len(records),
        "calendarId": calendar_id,
        "timeRange": {"from": window_min, "to": window_max},
    }


def _event_time(moment: datetime, all_day: bool, time_zone: str | None = None) -> dict:
    if all_day:
        return {"date": moment.astimezone(timezone.utc).date().isoformat()}
    return {"dateTime": format_time(moment), "timeZone": time_zone or "UTC"}


async def _cache_event(user_id: str, record: dict) -> None:
    try:
        await repositories.upsert_calendar_event(user_id, record)
    except SQLAlchemyError as exc:
        logger.warning("Caching event %s failed: %s", record["event_id"], exc)


async def create_event(
    user_id: str,
    calendar_id: str,
    title: str,
    start: datetime,
    end: datetime,
    is_all_day: bool = False,
    description: str | None = None,
    location: str | None = None,
) -> dict:
    body = {
        "summary": title,
        "start": _event_time(start, is_all_day),
        "end": _event_time(end, is_all_day),
    }
    if description:
        body["description"] = description
    if location:
        body["location"] = location
    try:
        created = await calendar_request(user_id, "POST", _events_path(calendar_id), json=body) or {}
    except CalendarAuthError:
        raise
    except CalendarError as exc:
        raise CalendarError(f"Failed to create event in Google Calendar: {exc}", status=500) from exc

    record = event_record(created, calendar_id, await _calendar_color(user_id, calendar_id))
    if record is None:
        raise CalendarError("Google Calendar returned an unreadable event", status=502)
    await _cache_event(user_id, record)
    return event_response(record)


async def move_event(
    user_id: str,
    calendar_id: str,
    event_id: str,
    start: datetime,
    end: datetime,
    is_all_day: bool | None = None,
) -> dict:
    """Reschedule an event, keeping its other fields and time zones."""
    path = _events_path(calendar_id, event_id)
    try:
        existing = await calendar_request(user_id, "GET", path) or {}
    except CalendarAuthError:
        raise
    except CalendarError as exc:
        raise CalendarError("Failed to fetch event from Google Calendar", status=404) from exc

    old_start = existing.get("start") or {}
    old_end = existing.get("end") or {}
    all_day = is_all_day if is_all_day is not None else bool(old_start.get("date"))
    updated = {
        **existing,
        "start": _event_time(start, all_day, old_start.get("timeZone")),
        "end": _event_time(end, all_day, old_end.get("timeZone")),
    }
    try:
        saved = await calendar_request(user_id, "PUT", path, json=updated) or {}
    except CalendarAuthError:
        raise
    except CalendarError as exc:
        raise CalendarError(f"Failed to update event in Google Calendar: {exc}", status=500) from exc

    record = event_record(saved, calendar_id, await _calendar_color(user_id, calendar_id))
    if record is None:
        raise CalendarError("Google Calendar returned an unreadable event", status=502)
    await _cache_event(user_id, record)
    return event_response(record)
