from __future__ import annotations

import logging
from datetime import datetime

import httpx

from lifeapp.services import google_books_service, http_fetch, omdb_service
from lifeapp.services import notion_properties as props
from lifeapp.services import notion_service

logger = logging.getLogger(__name__)

SCREEN_CATEGORIES = {"Movie", "Series"}
LOOKUP_ERRORS = (
    omdb_service.OMDbError,
    google_books_service.BookLookupError,
    http_fetch.ExternalFetchError,
    httpx.HTTPError,
)
_DATE_FORMATS = ("%Y-%m-%d", "%d %b %Y", "%Y-%m", "%Y")


class InvalidMediaLinkError(ValueError):
    pass


def normalize_status(status: str | None) -> str | None:
    if status == "To-do":
        return "Not started"
    return status


def to_iso_date(value: str | None) -> str | None:
    if not value:
        return None
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def create_icon(category: str | None) -> dict | None:
    if category in SCREEN_CATEGORIES:
        return notion_service.icon("clapperboard")
    if category == "Book":
        return notion_service.icon("bookmark")
    return None


def status_icon(category: str | None, status: str | None) -> dict | None:
    if category != "Book" or not status:
        return None
    return notion_service.icon("book" if status == "Done" else "bookmark", fmt="png")


async def resolve_link_metadata(url: str) -> dict:
    lowered = url.lower()
    if "imdb.com" in lowered:
        imdb_id = omdb_service.extract_imdb_id(url)
        if not imdb_id:
            raise InvalidMediaLinkError("Invalid IMDb URL")
        return await omdb_service.fetch_imdb_data(imdb_id)
    if "goodreads.com" in lowered:
        goodreads_id = google_books_service.extract_goodreads_id(url)
        if not goodreads_id:
            raise InvalidMediaLinkError("Invalid Goodreads URL")
        return await google_books_service.fetch_goodreads_data(goodreads_id)
    raise InvalidMediaLinkError("URL must be from IMDb or Goodreads")


async def lookup_description(media: dict) -> str | None:
    """Fetch a synopsis for an existing media row.

    Raises InvalidMediaLinkError when the row cannot be looked up at all.
    """
    url = media.get("url") or ""
    lowered = url.lower()
    if "imdb.com" in lowered:
        imdb_id = omdb_service.extract_imdb_id(url)
        if not imdb_id:
            raise InvalidMediaLinkError("Invalid IMDb URL")
        return await omdb_service.fetch_imdb_synopsis(imdb_id)
    if "goodreads.com" in lowered or media.get("category") == "Book":
        if not media.get("name"):
            raise InvalidMediaLinkError("Book name is required to fetch description")
        return await google_books_service.fetch_book_description(media["name"])
    raise InvalidMediaLinkError("URL must be from IMDb or Goodreads, or entry must be a Book")


def build_media_properties(
    metadata: dict,
    url: str | None,
    schema: dict | None,
    mapping: dict,
    thumbnail_upload_id: str | None = None,
    include_synopsis: bool = True,
) -> dict:
    properties: dict = {}

    def put(field: str, value, default_type: str) -> None:
        key = props.resolve_property(schema, mapping, field)
        if not key:
            return
        properties[key] = props.build_property_value(value, props.property_type(schema, key, default_type))

    put("name", metadata.get("name") or "Untitled", "title")
    if url:
        put("url", url, "url")
    if metadata.get("category"):
        put("category", metadata["category"], "select")
    if metadata.get("by"):
        put("by", metadata["by"], "multi_select")
    if include_synopsis and metadata.get("ai_synopsis"):
        put("synopsis", metadata["ai_synopsis"], "rich_text")
    created = to_iso_date(metadata.get("created"))
    if created:
        put("created", created, "date")
    if thumbnail_upload_id:
        key = props.resolve_property(schema, mapping, "thumbnail")
        if key:
            properties[key] = props.files_from_upload(thumbnail_upload_id)
    return properties


PATCH_FIELDS = {"name": ("name", "title"), "ai_synopsis": ("synopsis", "rich_text"), "status": ("status", "status")}


def build_patch_properties(patch: dict, schema: dict | None, mapping: dict) -> dict:
    properties: dict = {}
    for column, (field, default_type) in PATCH_FIELDS.items():
        if column not in patch:
            continue
        key = props.resolve_property(schema, mapping, field)
        if not key:
            logger.warning("Media database has no property mapped for %s; skipping it.", field)
            continue
        properties[key] = props.build_property_value(patch[column], props.property_type(schema, key, default_type))
    return properties


def media_row_from_page(page: dict, database_id: str, mapping: dict) -> dict:
    values = props.read_mapped(page, mapping)
    thumbnail = values.get("thumbnail") or []
    return {
        "notion_page_id": page["id"],
        "notion_database_id": database_id,
        "name": values.get("name") or props.page_title(page) or "Untitled",
        "category": values.get("category"),
        "status": values.get("status"),
        "url": values.get("url"),
        "by": values.get("by") or [],
        "topic": values.get("topic") or [],
        "thumbnail": thumbnail,
        "ai_synopsis": values.get("synopsis") or None,
        "created": values.get("created") or page.get("created_time"),
    }


def thumbnail_files(url: str | None) -> list:
    if not url:
        return []
    return [{"type": "external", "name": "thumbnail", "external": {"url": url}}]
