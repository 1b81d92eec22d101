from __future__ import annotations

import asyncio
import json
import logging
import re
from urllib.parse import quote_plus

from lifeapp.services import ai_gateway, google_books_service, omdb_service
from lifeapp.services.media_service import LOOKUP_ERRORS

logger = logging.getLogger(__name__)

CATEGORIES = ("Book", "Movie", "Series")
PER_CATEGORY = 10
LIBRARY_SAMPLE = 20
ARRAY_RE = re.compile(r"\[[\s\S]*\]")
CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*(\[[\s\S]*?\])\s*```")
OBJECT_RE = re.compile(r"\{[^{}]*\"title\"[^{}]*\}")
YEAR_RE = re.compile(r"\s*\(\d{4}\)\s*")
SPACE_RE = re.compile(r"\s+")

SYSTEM_PROMPT = "You are a helpful media recommendation assistant. You provide recommendations in JSON format only."

PROMPT_TEMPLATE = """Based on the following media library, suggest exactly 30 recommendations:
- 10 Books
- 10 Movies
- 10 Series

Consider the user's preferences based on what they already have. Aim for variety within each category.

Library:
{library}

For each recommendation, provide:
1. The exact title (as it appears on IMDB for movies/series, or as it appears on Goodreads for books)
2. Whether it's a "Book", "Movie", or "Series"
3. The author (for books) or director (for movies/series) if known

Format your response as a JSON array of objects, each with:
- "title": "exact title"
- "type": "Book" | "Movie" | "Series"
- "creator": "author or director name" (optional)

Return ONLY the JSON array, no other text."""


class RecommendationParseError(ValueError):
    pass


def normalize_name(name: str) -> str:
    return SPACE_RE.sub(" ", YEAR_RE.sub("", name or "").lower().strip())


def build_prompt(library: list[dict]) -> str:
    lines = []
    for category, label in (("Book", "Books"), ("Movie", "Movies"), ("Series", "Series")):
        names = [item.get("name") for item in library if item.get("category") == category][:LIBRARY_SAMPLE]
        lines.append(f"{label} in library ({len(names)}): {', '.join(n for n in names if n)}")
    return PROMPT_TEMPLATE.format(library="\n".join(lines))


def parse_recommendations(text: str) -> list[dict]:
    parsed = None
    match = ARRAY_RE.search(text or "")
    candidates = [match.group(0)] if match else []
    block = CODE_BLOCK_RE.search(text or "")
    if block:
        candidates.append(block.group(1))
    candidates.append((text or "").strip())
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
            break
        except ValueError:
            continue
    if parsed is None:
        objects = []
        for raw in OBJECT_RE.findall(text or ""):
            try:
                objects.append(json.loads(raw))
            except ValueError:
                continue
        if not objects:
            raise RecommendationParseError("Could not parse AI response as JSON")
        parsed = objects
    if not isinstance(parsed, list):
        raise RecommendationParseError("AI response is not an array")

    valid = [
        item
        for item in parsed
        if isinstance(item, dict) and item.get("title") and item.get("type") in CATEGORIES
    ]
    capped: list[dict] = []
    for category in CATEGORIES:
        capped.extend([item for item in valid if item["type"] == category][:PER_CATEGORY])
    return capped


def _fallback(rec: dict) -> dict:
    return {
        "name": rec["title"],
        "category": rec["type"],
        "by": [rec["creator"]] if rec.get("creator") else None,
        "thumbnail": None,
        "ai_synopsis": None,
        "created": None,
        "url": None,
        "searchTitle": rec["title"],
    }


async def lookup_recommendation(rec: dict) -> dict:
    title = rec["title"]
    try:
        if rec["type"] == "Book":
            goodreads_id = await google_books_service.search_goodreads_id(title)
            if goodreads_id:
                url = google_books_service.GOODREADS_BOOK_URL.format(goodreads_id=goodreads_id)
            else:
                url = f"https://www.goodreads.com/search?q={quote_plus(title)}"
            data = await google_books_service.fetch_book_by_title(title)
            return {**data, "url": url, "searchTitle": title}
        imdb_id = await omdb_service.search_imdb_id(title)
        if imdb_id:
            data = await omdb_service.fetch_imdb_data(imdb_id)
            return {**data, "url": f"https://www.imdb.com/title/{imdb_id}", "searchTitle": title}
    except LOOKUP_ERRORS as exc:
        logger.warning("Lookup for recommendation %r failed: %s", title, exc)
    return _fallback(rec)


def drop_owned(items: list[dict], library: list[dict]) -> list[dict]:
    owned: dict[str, set[str]] = {category: set() for category in CATEGORIES}
    for media in library:
        if media.get("category") in owned and media.get("name"):
            owned[media["category"]].add(normalize_name(media["name"]))
    kept = []
    for item in items:
        names = owned.get(item.get("category"))
        if names is not None and normalize_name(item.get("name") or "") in names:
            continue
        kept.append(item)
    return kept


async def recommend(library: list[dict]) -> dict:
    text = await ai_gateway.chat_completion(
        [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_prompt(library)},
        ],
        temperature=0.8,
        max_tokens=2000,
    )
    recs = parse_recommendations(text)
    enriched = await asyncio.gather(*(lookup_recommendation(rec) for rec in recs))
    kept = drop_owned(list(enriched), library)
    return {category: [item for item in kept if item.get("category") == category] for category in CATEGORIES}
