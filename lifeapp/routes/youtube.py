from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from lifeapp import repositories
from lifeapp.auth import require_user_id
from lifeapp.schemas import EnrichRequest
from lifeapp.services import analytics, youtube_service
from lifeapp.services.http_fetch import ExternalFetchError
from lifeapp.services.youtube_service import YouTubeAPIError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/v1/youtube/sync-history")
async def sync_history(payload: Any = Body(default=None), user_id: str = Depends(require_user_id)):
    """Import a Google Takeout ``watch-history.json`` posted as the request body.

    Accepts the raw array or ``{"items": [...]}``.
    """
    items = payload.get("items") if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise HTTPException(status_code=400, detail="Invalid JSON file. Expected an array of watch history items.")
    result = await youtube_service.import_watch_history(user_id, items)
    if not result["total"]:
        return {**result, "message": "No valid YouTube videos found in the file"}
    return result


@router.get("/v1/youtube/recently-watched")
async def recently_watched(limit: int = Query(default=20, ge=1, le=200), user_id: str = Depends(require_user_id)):
    return {"items": await repositories.list_recent_youtube(user_id, limit)}


@router.post("/v1/youtube/enrich")
async def enrich(payload: EnrichRequest | None = None, user_id: str = Depends(require_user_id)):
    limit = payload.limit if payload else youtube_service.MAX_ENRICH_LIMIT
    try:
        return await youtube_service.enrich_pending(user_id, limit)
    except YouTubeAPIError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    except ExternalFetchError as exc:
        logger.exception("YouTube enrichment failed for %s", user_id)
        raise HTTPException(status_code=502, detail=str(exc))


@router.get("/v1/youtube/enrichment-stats")
async def enrichment_stats(user_id: str = Depends(require_user_id)):
    return await repositories.youtube_enrichment_stats(user_id)


@router.get("/v1/youtube/analytics")
async def youtube_analytics(range: str = Query(default="all"), user_id: str = Depends(require_user_id)):
    rows = await repositories.list_youtube_history(user_id, since=analytics.since_for_range(range))
    return {**analytics.youtube_summary(rows), "timeRange": range}
