from __future__ import annotations

import logging
import re

from lifeapp.settings import get_settings
from lifeapp.services import http_fetch

logger = logging.getLogger(__name__)

OMDB_API = "https://www.omdbapi.com/"
IMDB_ID_RE = re.compile(r"imdb\.com/title/(tt\d+)")


class OMDbError(RuntimeError):
    pass


def extract_imdb_id(url: str) -> str | None:
    match = IMDB_ID_RE.search(url or "")
    return match.group(1) if match else None


def _value(data: dict, key: str) -> str | None:
    value = data.get(key)
    if not value or value == "N/A":
        return None
    return value


def _split_names(value: str | None) -> list[str]:
    return [name.strip() for name in (value or "").split(",") if name.strip()]


async def _omdb_get(params: dict) -> dict:
    api_key = get_settings().omdb_api_key
    if not api_key:
        raise OMDbError("OMDB_API_KEY not configured. Please set the OMDB_API_KEY environment variable.")
    response = await http_fetch.fetch_with_timeout(OMDB_API, params={**params, "apikey": api_key})
    if not response.is_success:
        raise OMDbError(f"OMDB API request failed: {response.status_code} {response.reason_phrase}")
    return response.json()


def _raise_for_omdb(data: dict, fallback: str) -> None:
    if data.get("Response") != "False":
        return
    message = data.get("Error") or fallback
    if "API key" in message:
        raise OMDbError(
            "Invalid OMDB API key. Please check your OMDB_API_KEY environment variable. "
            "You can get a free API key at http://www.omdbapi.com/apikey.aspx"
        )
    raise OMDbError(message)


def map_omdb_title(data: dict) -> dict:
    year = _value(data, "Year")
    title = data.get("Title") or ""
    by = _split_names(_value(data, "Director")) or _split_names(_value(data, "Writer"))
    return {
        "name": f"{title} ({year})" if year else title,
        "category": "Series" if data.get("Type") == "series" else "Movie",
        "by": by,
        "thumbnail": _value(data, "Poster"),
        "ai_synopsis": _value(data, "Plot"),
        "created": _value(data, "Released"),
    }


async def fetch_imdb_data(imdb_id: str) -> dict:
    data = await _omdb_get({"i": imdb_id})
    _raise_for_omdb(data, "Failed to fetch IMDb data")
    return map_omdb_title(data)


async def fetch_imdb_synopsis(imdb_id: str) -> str | None:
    data = await _omdb_get({"i": imdb_id})
    _raise_for_omdb(data, "Failed to fetch IMDb data")
    return _value(data, "Plot")


async def search_imdb_id(title: str) -> str | None:
    data = await _omdb_get({"s": title})
    if data.get("Response") == "False":
        logger.info("OMDb search found nothing for %r: %s", title, data.get("Error"))
        return None
    results = data.get("Search") or []
    return results[0].get("imdbID") if results else None
