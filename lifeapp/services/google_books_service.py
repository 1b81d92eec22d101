from __future__ import annotations

import html
import logging
import re

import httpx

from lifeapp.settings import get_settings
from lifeapp.services import http_fetch

logger = logging.getLogger(__name__)

GOOGLE_BOOKS_API = "https://www.googleapis.com/books/v1/volumes"
GOODREADS_BOOK_URL = "https://www.goodreads.com/book/show/{goodreads_id}"
GOODREADS_ID_RE = re.compile(r"goodreads\.com/book/show/(\d+)")
OG_TITLE_RE = re.compile(r'<meta[^>]*property="og:title"[^>]*content="([^"]+)"', re.IGNORECASE)
H1_TITLE_RE = re.compile(r'<h1[^>]*data-testid="bookTitle"[^>]*>([^<]+)<', re.IGNORECASE)
TRAILING_PARENS_RE = re.compile(r"\s*\([^)]*\)\s*$")
TAG_RE = re.compile(r"<[^>]+>")
SPACE_RE = re.compile(r"\s+")
BROWSER_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
DESCRIPTION_LIMIT = 1000
SHORT_DESCRIPTION_LIMIT = 500
THUMBNAIL_KEYS = ("thumbnail", "smallThumbnail", "medium", "large")


class BookLookupError(RuntimeError):
    pass


def extract_goodreads_id(url: str) -> str | None:
    match = GOODREADS_ID_RE.search(url or "")
    return match.group(1) if match else None


def clean_text(value: str) -> str:
    return SPACE_RE.sub(" ", TAG_RE.sub("", value or "")).strip()


def strip_trailing_parenthetical(title: str) -> str:
    return TRAILING_PARENS_RE.sub("", title or "").strip()


async def extract_book_title_from_goodreads(goodreads_id: str) -> str | None:
    try:
        response = await http_fetch.fetch_with_timeout(
            GOODREADS_BOOK_URL.format(goodreads_id=goodreads_id),
            headers={"User-Agent": BROWSER_USER_AGENT},
        )
    except (http_fetch.ExternalFetchError, httpx.HTTPError) as exc:
        logger.warning("Failed to extract title from Goodreads: %s", exc)
        return None
    if not response.is_success:
        return None
    page = response.text
    match = OG_TITLE_RE.search(page)
    if match:
        title = html.unescape(match.group(1)).split(" by ")[0].strip()
        return title or None
    match = H1_TITLE_RE.search(page)
    if match:
        return SPACE_RE.sub(" ", html.unescape(match.group(1))).strip() or None
    return None


async def search_goodreads_id(title: str) -> str | None:
    try:
        response = await http_fetch.fetch_with_timeout(
            "https://www.goodreads.com/search",
            params={"q": title},
            headers={"User-Agent": BROWSER_USER_AGENT},
        )
    except (http_fetch.ExternalFetchError, httpx.HTTPError) as exc:
        logger.warning("Goodreads search for %r failed: %s", title, exc)
        return None
    if not response.is_success:
        return None
    match = re.search(r"/book/show/(\d+)", response.text)
    return match.group(1) if match else None


def _api_key() -> str | None:
    settings = get_settings()
    if not settings.google_books_api_key:
        if settings.is_production:
            raise BookLookupError("GOOGLE_BOOKS_API_KEY is required in production")
        logger.warning("GOOGLE_BOOKS_API_KEY not set; Google Books requests are unauthenticated.")
    return settings.google_books_api_key


async def search_volumes(query: str, max_results: int) -> list[dict]:
    params = {"q": query, "maxResults": max_results}
    api_key = _api_key()
    if api_key:
        params["key"] = api_key
    response = await http_fetch.fetch_with_retry(GOOGLE_BOOKS_API, params=params, service="Google Books API")
    data = response.json()
    if data.get("error"):
        error = data["error"]
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise BookLookupError(f"Google Books API error: {message}")
    return data.get("items") or []


def best_match(items: list[dict], title: str) -> dict | None:
    if not items:
        return None
    wanted = title.strip().lower()
    for item in items:
        candidate = ((item.get("volumeInfo") or {}).get("title") or "").strip().lower()
        if candidate and (candidate == wanted or wanted in candidate or candidate in wanted):
            return item
    return items[0]


async def fetch_book_description(title: str) -> str | None:
    search_title = strip_trailing_parenthetical(title)
    items = await search_volumes(search_title, max_results=5)
    if not items:
        raise BookLookupError(f'No book found for "{search_title}"')
    volume = best_match(items, search_title).get("volumeInfo") or {}
    description = volume.get("description") or volume.get("subtitle")
    if not description:
        return None
    description = clean_text(description)
    if len(description) > DESCRIPTION_LIMIT:
        description = description[:DESCRIPTION_LIMIT] + "..."
    return description


def map_volume(volume: dict) -> dict:
    published = volume.get("publishedDate")
    year = published.split("-")[0] if published else None
    title = volume.get("title") or ""
    images = volume.get("imageLinks") or {}
    thumbnail = next((images[key] for key in THUMBNAIL_KEYS if images.get(key)), None)
    if thumbnail:
        thumbnail = thumbnail.replace("http://", "https://")
    description = volume.get("description")
    return {
        "name": f"{title} ({year})" if year else title,
        "category": "Book",
        "by": list(volume.get("authors") or []),
        "thumbnail": thumbnail,
        "ai_synopsis": clean_text(description)[:SHORT_DESCRIPTION_LIMIT] if description else None,
        "created": published or None,
    }


async def fetch_book_by_title(title: str) -> dict:
    items = await search_volumes(title, max_results=1)
    if not items:
        raise BookLookupError(f'No book found for "{title}"')
    return map_volume(items[0].get("volumeInfo") or {})


async def fetch_goodreads_data(goodreads_id: str) -> dict:
    title = await extract_book_title_from_goodreads(goodreads_id)
    if not title:
        raise BookLookupError("Could not extract book title from Goodreads URL")
    return await fetch_book_by_title(title)
