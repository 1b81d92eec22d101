from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query

from lifeapp import repositories
from lifeapp.auth import require_user_id
from lifeapp.schemas import CalendarEventCreate, CalendarEventMove, CalendarPreference
from lifeapp.services import google_calendar_service as gcal
from lifeapp.services.google_calendar_service import CalendarError

logger = logging.getLogger(__name__)

router = APIRouter()


async def _calendar(call, *args, **kwargs):
    try:
        return await call(*args, **kwargs)
    except CalendarError as exc:
        raise HTTPException(status_code=exc.status, detail=str(exc))
    except httpx.HTTPError as exc:
        logger.exception("Google Calendar request failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc) or "Google Calendar request failed")


def _window(time_min: str | None, time_max: str | None):
    default_min, default_max = gcal.default_window()
    start = gcal.parse_time(time_min) if time_min else default_min
    end = gcal.parse_time(time_max) if time_max else default_max
    if start is None or end is None:
        raise HTTPException(status_code=400, detail="Invalid date format")
    return start, end


def _times(start_time: str | None, end_time: str | None):
    start = gcal.parse_time(start_time)
    end = gcal.parse_time(end_time)
    if start is None or end is None:
        raise HTTPException(status_code=400, detail="Invalid date format")
    if start > end:
        raise HTTPException(status_code=400, detail="Start time must be before end time")
    return start, end


@router.get("/v1/calendar/auth")
async def calendar_auth(user_id: str = Depends(require_user_id)):
    try:
        url = gcal.build_connect_url(user_id)
    except CalendarError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    return {"authUrl": url}


@router.get("/v1/calendar/callback")
async def calendar_callback(code: str | None = None, state: str | None = None, error: str | None = None):
    if error:
        raise HTTPException(status_code=400, detail=f"Google authorization failed: {error}")
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code or state")
    await _calendar(gcal.exchange_code_for_tokens, state.strip().lower(), code)
    return {"ok": True}


@router.post("/v1/calendar/disconnect")
async def calendar_disconnect(user_id: str = Depends(require_user_id)):
    await repositories.delete_google_tokens(user_id)
    return {"success": True}


@router.get("/v1/calendar/calendars")
async def list_calendars(
    force_refresh: bool = Query(default=False, alias="forceRefresh"),
    user_id: str = Depends(require_user_id),
):
    return await _calendar(gcal.list_calendars, user_id, force_refresh=force_refresh)


@router.post("/v1/calendar/calendars/preferences")
async def set_preference(payload: CalendarPreference, user_id: str = Depends(require_user_id)):
    if not payload.calendar_id or payload.selected is None:
        raise HTTPException(status_code=400, detail="calendar_id and selected are required")
    await gcal.set_calendar_preference(user_id, payload.calendar_id, payload.selected)
    return {"success": True}


@router.get("/v1/calendar/events")
async def list_events(
    time_min: str | None = Query(default=None, alias="timeMin"),
    time_max: str | None = Query(default=None, alias="timeMax"),
    calendar_ids: str | None = Query(default=None, alias="calendarIds"),
    force_refresh: bool = Query(default=False, alias="forceRefresh"),
    user_id: str = Depends(require_user_id),
):
    start, end = _window(time_min, time_max)
    ids = [part.strip() for part in (calendar_ids or "").split(",") if part.strip()]
    return await _calendar(gcal.list_events, user_id, start, end, calendar_ids=ids or None, force_refresh=force_refresh)


@router.post("/v1/calendar/events")
async def create_event(payload: CalendarEventCreate, user_id: str = Depends(require_user_id)):
    title = (payload.title or "").strip()
    if not title or not payload.start_time or not payload.end_time or not payload.calendar_id:
        raise HTTPException(status_code=400, detail="title, start_time, end_time and calendar_id are required")
    start, end = _times(payload.start_time, payload.end_time)
    event = await _calendar(
        gcal.create_event,
        user_id,
        payload.calendar_id,
        title,
        start,
        end,
        is_all_day=payload.is_all_day,
        description=payload.description,
        location=payload.location,
    )
    return {"event": event, "success": True}


@router.patch("/v1/calendar/events/{event_id}")
async def move_event(event_id: str, payload: CalendarEventMove, user_id: str = Depends(require_user_id)):
    if not payload.calendar_id or not payload.start_time or not payload.end_time:
        raise HTTPException(status_code=400, detail="calendar_id, start_time and end_time are required")
    start, end = _times(payload.start_time, payload.end_time)
    event = await _calendar(
        gcal.move_event, user_id, payload.calendar_id, event_id, start, end, is_all_day=payload.is_all_day
    )
    return {"event": event, "success": True}


@router.post("/v1/calendar/events/refresh")
async def refresh_events(
    calendar_id: str = Query(default="primary", alias="calendarId"),
    years_back: int = Query(default=10, ge=0, le=50, alias="yearsBack"),
    years_forward: int = Query(default=10, ge=0, le=50, alias="yearsForward"),
    user_id: str = Depends(require_user_id),
):
    return await _calendar(
        gcal.refresh_calendar, user_id, calendar_id, years_back=years_back, years_forward=years_forward
    )
