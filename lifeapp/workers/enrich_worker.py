from __future__ import annotations

import asyncio
import logging

import httpx

from lifeapp import repositories
from lifeapp.services import youtube_service
from lifeapp.services.http_fetch import ExternalFetchError

logger = logging.getLogger(__name__)

IDLE_SECONDS = 300
MAX_BACKOFF_SECONDS = 3600


async def enrich_pending_once(limit: int = 500) -> int:
    """Enrich up to ``limit`` pending videos for every user with watch history."""
    enriched = 0
    for user_id in await repositories.list_youtube_users():
        try:
            result = await youtube_service.enrich_pending(user_id, limit)
        except (ExternalFetchError, httpx.HTTPError) as exc:
            logger.warning("Enrichment for %s failed: %s", user_id, exc)
            continue
        enriched += int(result.get("enriched") or 0)
        for error in result.get("errors") or []:
            logger.info("Enrichment for %s: %s", user_id, error)
    return enriched


async def run_forever(limit: int = 500) -> None:
    failures = 0
    while True:
        try:
            enriched = await enrich_pending_once(limit=limit)
            failures = 0
        except youtube_service.YouTubeAPIError as exc:
            # No API key; nothing will succeed until it is configured.
            logger.error("%s", exc)
            enriched = 0
            failures += 1
        if enriched:
            logger.info("Enriched %s videos", enriched)
            continue
        delay = min(MAX_BACKOFF_SECONDS, IDLE_SECONDS * 2 ** min(failures, 4))
        await asyncio.sleep(delay)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    asyncio.run(run_forever())
