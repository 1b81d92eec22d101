from __future__ import annotations

from typing import Optional, List

from pydantic import BaseModel, Field


class MediaFromLink(BaseModel):
    url: Optional[str] = None


class MediaPatch(BaseModel):
    name: Optional[str] = None
    ai_synopsis: Optional[str] = None
    status: Optional[str] = None


class PersonCreate(BaseModel):
    name: Optional[str] = None
    star_sign: Optional[str] = None
    occupation: Optional[str] = None
    currently_at: Optional[str] = None
    from_location: Optional[str] = None
    contact_freq: Optional[str] = None
    birth_date: Optional[str] = None
    tier: List[str] = Field(default_factory=list)
    origin_of_connection: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None


class TodoCreate(BaseModel):
    title: Optional[str] = None
    status: Optional[str] = "To-Do"
    priority: Optional[str] = None
    do_date: Optional[str] = None
    due_date: Optional[str] = None
    mega_tags: List[str] = Field(default_factory=list)


class TodoPatch(BaseModel):
    title: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    do_date: Optional[str] = None
    due_date: Optional[str] = None
    mega_tags: Optional[List[str]] = None


class ConnectionPut(BaseModel):
    database_id: str


class EnrichRequest(BaseModel):
    limit: int = 500


class SpotifyPlayRequest(BaseModel):
    context_uri: Optional[str] = None
    uris: Optional[List[str]] = None
    device_id: Optional[str] = None


class CalendarPreference(BaseModel):
    calendar_id: Optional[str] = None
    selected: Optional[bool] = None


class CalendarEventCreate(BaseModel):
    title: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    calendar_id: Optional[str] = None
    is_all_day: bool = False
    description: Optional[str] = None
    location: Optional[str] = None


class CalendarEventMove(BaseModel):
    calendar_id: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_all_day: Optional[bool] = None
