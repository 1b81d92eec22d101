from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder

from lifeapp import repositories
from lifeapp.auth import require_user_id
from lifeapp.settings import TRACKING_PERIODS
from lifeapp.services import notion_sync
from lifeapp.services import notion_properties as props
from lifeapp.services.notion_service import NotionAPIError

logger = logging.getLogger(__name__)

router = APIRouter()


def _check_period(period: str) -> str:
    if period not in TRACKING_PERIODS:
        raise HTTPException(status_code=400, detail="Invalid period")
    return period


def tracking_row_from_page(page: dict, database_id: str, period: str) -> dict:
    properties = page.get("properties") or {}
    return {
        "notion_page_id": page["id"],
        "notion_database_id": database_id,
        "period": period,
        "title": props.page_title(page) or "Untitled",
        "properties": {
            name: {"type": prop.get("type"), "value": props.get_property_value(prop)}
            for name, prop in properties.items()
        },
        "created_at": page.get("created_time"),
    }


@router.get("/v1/tracking/{period}")
async def list_tracking(
    period: str,
    start: str | None = Query(default=None, alias="startDate"),
    end: str | None = Query(default=None, alias="endDate"),
    limit: int | None = Query(default=None),
    user_id: str = Depends(require_user_id),
):
    _check_period(period)
    entries = await repositories.list_tracking_entries(period, user_id, start=start, end=end, limit=limit)
    return {"entries": jsonable_encoder(entries)}


@router.post("/v1/tracking/{period}/sync")
async def sync_tracking(period: str, user_id: str = Depends(require_user_id)):
    _check_period(period)
    try:
        database_id = await notion_sync.resolve_database_id(user_id, f"tracking_{period}")
    except notion_sync.MissingConnectionError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    try:
        result = await notion_sync.sync_database(
            repositories.TRACKING_TABLES[period],
            user_id,
            database_id,
            lambda page: tracking_row_from_page(page, database_id, period),
        )
    except (NotionAPIError, httpx.HTTPError) as exc:
        logger.exception("Tracking sync for %s failed: %s", period, exc)
        raise HTTPException(status_code=500, detail=str(exc))
    return {"success": True, "period": period, **result}
