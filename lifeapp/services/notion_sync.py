"""Mirror a Notion database into one of the synced tables."""
from __future__ import annotations

import logging
from typing import Callable

from lifeapp import repositories
from lifeapp.settings import get_settings
from lifeapp.services import notion_service

logger = logging.getLogger(__name__)


class MissingConnectionError(LookupError):
    pass


async def resolve_database_id(user_id: str, kind: str) -> str:
    database_id = await repositories.get_database_id(user_id, kind)
    if not database_id:
        database_id = get_settings().default_database_id(kind)
    if not database_id:
        raise MissingConnectionError(f"No Notion database connected for {kind}")
    return database_id


async def sync_database(
    table: str,
    user_id: str,
    database_id: str,
    build_row: Callable[[dict], dict],
) -> dict:
    pages = await notion_service.query_database(database_id)
    existing = await repositories.list_synced_page_ids(table, user_id, database_id)
    rows = [build_row(page) for page in pages if not page.get("archived")]
    live_ids = {row["notion_page_id"] for row in rows}
    removed = [page_id for page_id in existing if page_id not in live_ids]
    await repositories.upsert_synced_rows(table, user_id, rows)
    await repositories.delete_synced_rows(table, user_id, removed)
    added = len(live_ids - set(existing))
    logger.info(
        "Synced %s for %s: %d pages, %d added, %d removed",
        table,
        user_id,
        len(rows),
        added,
        len(removed),
    )
    return {"added": added, "updated": len(rows) - added, "removed": len(removed), "total": len(rows)}
