from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlparse

import httpx

from lifeapp import repositories
from lifeapp.settings import get_settings
from lifeapp.services import http_fetch

logger = logging.getLogger(__name__)

YOUTUBE_API = "https://www.googleapis.com/youtube/v3/videos"
THUMBNAIL_URL = "https://img.youtube.com/vi/{video_id}/maxresdefault.jpg"
ENRICH_BATCH_SIZE = 50
MAX_ENRICH_LIMIT = 5000
DURATION_RE = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")


class YouTubeAPIError(RuntimeError):
    pass


def parse_duration(value: str | None) -> int:
    match = DURATION_RE.match(value or "")
    if not match:
        return 0
    hours, minutes, seconds = (int(part or 0) for part in match.groups())
    return hours * 3600 + minutes * 60 + seconds


def _video_id(url: str) -> str | None:
    values = parse_qs(urlparse(url).query).get("v")
    return values[0] if values else None


def parse_takeout_item(item: dict) -> dict | None:
    """Map one Google Takeout watch-history entry to a history record.

    Returns None for entries that are not YouTube video views.
    """
    if item.get("header") != "YouTube":
        return None
    url = item.get("titleUrl") or ""
    if "youtube.com" not in url:
        return None
    video_id = _video_id(url)
    if not video_id or not item.get("time"):
        return None
    title = item.get("title") or ""
    if title.startswith("Watched "):
        title = title[len("Watched ") :]
    subtitles = item.get("subtitles") or []
    channel = subtitles[0] if subtitles else {}
    return {
        "video_id": video_id,
        "video_title": title or video_id,
        "channel_name": channel.get("name"),
        "channel_url": channel.get("url"),
        "video_url": url,
        "watched_at": item["time"],
        "thumbnail_url": THUMBNAIL_URL.format(video_id=video_id),
    }


def _parse_time(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


async def import_watch_history(user_id: str, items: list) -> dict:
    records = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        record = parse_takeout_item(item)
        if record:
            records.append(record)
    if not records:
        return {"synced": 0, "total": 0, "errors": 0, "dateRange": None}

    synced = await repositories.insert_youtube_history(user_id, records)
    times = []
    for record in records:
        try:
            times.append(_parse_time(record["watched_at"]))
        except ValueError:
            continue
    date_range = None
    if times:
        oldest, newest = min(times), max(times)
        date_range = {
            "oldest": oldest.isoformat(),
            "newest": newest.isoformat(),
            "daysBack": (datetime.now(timezone.utc) - oldest).days,
        }
    return {
        "synced": synced,
        "total": len(records),
        "errors": 0,
        "skipped": len(records) - synced,
        "dateRange": date_range,
    }


def video_record(video: dict) -> dict:
    snippet = video.get("snippet") or {}
    statistics = video.get("statistics") or {}
    content = video.get("contentDetails") or {}
    thumbnails = snippet.get("thumbnails") or {}
    thumbnail = next(
        (thumbnails[size]["url"] for size in ("maxres", "high", "medium") if (thumbnails.get(size) or {}).get("url")),
        None,
    )

    def count(key: str) -> int | None:
        value = statistics.get(key)
        return int(value) if value not in (None, "") else None

    channel_id = snippet.get("channelId")
    return {
        "video_id": video["id"],
        "title": snippet.get("title") or video["id"],
        "channel_name": snippet.get("channelTitle"),
        "channel_id": channel_id,
        "channel_url": f"https://www.youtube.com/channel/{channel_id}" if channel_id else None,
        "thumbnail_url": thumbnail,
        "duration_seconds": parse_duration(content.get("duration")) if content.get("duration") else None,
        "view_count": count("viewCount"),
        "like_count": count("likeCount"),
        "comment_count": count("commentCount"),
        "published_at": snippet.get("publishedAt"),
        "description": snippet.get("description"),
        "category_id": snippet.get("categoryId"),
        "tags": snippet.get("tags"),
    }


async def fetch_videos(video_ids: list[str]) -> list[dict]:
    api_key = get_settings().youtube_api_key
    if not api_key:
        raise YouTubeAPIError("YOUTUBE_API_KEY environment variable is not set")
    response = await http_fetch.fetch_with_retry(
        YOUTUBE_API,
        params={
            "part": "snippet,statistics,contentDetails",
            "id": ",".join(video_ids),
            "maxResults": ENRICH_BATCH_SIZE,
            "key": api_key,
        },
        service="YouTube Data API",
    )
    return response.json().get("items") or []


async def enrich_pending(user_id: str, limit: int = MAX_ENRICH_LIMIT) -> dict:
    limit = max(1, min(int(limit or MAX_ENRICH_LIMIT), MAX_ENRICH_LIMIT))
    pending = await repositories.list_unenriched_video_ids(user_id, limit)
    if not pending:
        return {"message": "All videos are already enriched", "enriched": 0, "total": 0, "errors": [], "apiCalls": 0}

    enriched = 0
    api_calls = 0
    errors: list[str] = []
    for start in range(0, len(pending), ENRICH_BATCH_SIZE):
        batch = pending[start : start + ENRICH_BATCH_SIZE]
        api_calls += 1
        try:
            videos = await fetch_videos(batch)
        except YouTubeAPIError:
            raise
        except (http_fetch.ExternalFetchError, httpx.HTTPError) as exc:
            logger.warning("YouTube batch starting at %s failed: %s", batch[0], exc)
            errors.append(f"Batch {start // ENRICH_BATCH_SIZE + 1}: {exc}")
            continue
        records = []
        for video in videos:
            if not video.get("id"):
                continue
            try:
                records.append(video_record(video))
            except (TypeError, ValueError) as exc:
                errors.append(f"{video.get('id')}: {exc}")
        enriched += await repositories.upsert_youtube_videos(records)
        returned = {video.get("id") for video in videos}
        missing = [video_id for video_id in batch if video_id not in returned]
        if missing:
            logger.info("Marking %s YouTube videos unavailable", len(missing))
            await repositories.mark_youtube_videos_unavailable(missing)
    return {"enriched": enriched, "total": len(pending), "errors": errors, "apiCalls": api_calls}
