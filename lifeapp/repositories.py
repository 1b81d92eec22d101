from __future__ import annotations

import json
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import text as sql_text, bindparam

from lifeapp.db import get_sessionmaker
from lifeapp.settings import TRACKING_PERIODS

SETTINGS_TABLE = "settings"
MEDIA_TABLE = "media"
PEOPLE_TABLE = "people"
TODOS_TABLE = "todos"
SPOTIFY_TOKENS_TABLE = "spotify_tokens"
SPOTIFY_HISTORY_TABLE = "spotify_listening_history"
YOUTUBE_HISTORY_TABLE = "youtube_watch_history"
YOUTUBE_VIDEOS_TABLE = "youtube_videos"
GOOGLE_TOKENS_TABLE = "google_tokens"
GOOGLE_CALENDARS_TABLE = "google_calendars"
GOOGLE_EVENTS_TABLE = "google_calendar_events"
TRACKING_TABLES = {period: f"tracking_{period}" for period in TRACKING_PERIODS}

MEDIA_COLUMNS = [
    "notion_page_id",
    "notion_database_id",
    "name",
    "category",
    "status",
    "url",
    "by_json",
    "topic_json",
    "thumbnail_json",
    "ai_synopsis",
    "created",
]
PEOPLE_COLUMNS = [
    "notion_page_id",
    "notion_database_id",
    "name",
    "origin_of_connection_json",
    "star_sign",
    "image_json",
    "currently_at",
    "tier_json",
    "occupation",
    "contact_freq",
    "from_location",
    "birth_date",
    "last_edited_time",
]
TODO_COLUMNS = [
    "notion_page_id",
    "notion_database_id",
    "title",
    "status",
    "priority",
    "do_date",
    "due_date",
    "mega_tags_json",
    "gcal_id",
    "properties_json",
]
TRACKING_COLUMNS = ["notion_page_id", "notion_database_id", "period", "title", "properties_json", "created_at"]
CALENDAR_COLUMNS = [
    "calendar_id",
    "summary",
    "description",
    "time_zone",
    "background_color",
    "foreground_color",
    "access_role",
    "selected",
    "primary_calendar",
]
CALENDAR_EVENT_COLUMNS = [
    "calendar_id",
    "event_id",
    "title",
    "start_time",
    "end_time",
    "start_date",
    "end_date",
    "is_all_day",
    "color",
    "description",
    "location",
    "status",
    "html_link",
    "hangout_link",
    "event_json",
]

SYNCED_COLUMNS = {
    MEDIA_TABLE: MEDIA_COLUMNS,
    PEOPLE_TABLE: PEOPLE_COLUMNS,
    TODOS_TABLE: TODO_COLUMNS,
    **{table: TRACKING_COLUMNS for table in TRACKING_TABLES.values()},
}


def _new_id() -> str:
    return uuid4().hex


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def encode_record(record: dict) -> dict:
    """Serialize list/dict values into their ``*_json`` text columns."""
    encoded = {}
    for key, value in record.items():
        if key.endswith("_json"):
            encoded[key] = value
        elif isinstance(value, (list, dict)):
            encoded[f"{key}_json"] = json.dumps(value)
        else:
            encoded[key] = value
    return encoded


def decode_row(row) -> dict:
    """Turn a DB row mapping into an API dict, expanding ``*_json`` columns."""
    decoded = {}
    for key, value in dict(row).items():
        if key.endswith("_json"):
            try:
                decoded[key[: -len("_json")]] = json.loads(value) if value else None
            except ValueError:
                decoded[key[: -len("_json")]] = None
        else:
            decoded[key] = value
    return decoded


async def get_setting(user_id: str, key: str, scoped: bool = True) -> str | None:
    setting_key = f"{user_id}::{key}" if scoped else key
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(f"SELECT value FROM {SETTINGS_TABLE} WHERE key = :key"),
            {"key": setting_key},
        )).fetchone()
    return row[0] if row else None


async def set_setting(user_id: str, key: str, value: str, scoped: bool = True) -> None:
    setting_key = f"{user_id}::{key}" if scoped else key
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"INSERT INTO {SETTINGS_TABLE} (key, value) VALUES (:key, :value) "
                "ON CONFLICT(key) DO UPDATE SET value=EXCLUDED.value"
            ),
            {"key": setting_key, "value": value},
        )
        await session.commit()


async def list_settings_with_prefix(user_id: str, prefix: str) -> dict:
    like = f"{user_id}::{prefix}%"
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(f"SELECT key, value FROM {SETTINGS_TABLE} WHERE key LIKE :like"),
            {"like": like},
        )).fetchall()
    strip = len(f"{user_id}::{prefix}")
    return {row[0][strip:]: row[1] for row in rows}


async def get_database_id(user_id: str, kind: str) -> str | None:
    return await get_setting(user_id, f"notion_db::{kind}")


async def set_database_id(user_id: str, kind: str, database_id: str) -> None:
    await set_setting(user_id, f"notion_db::{kind}", database_id)


async def list_database_ids(user_id: str) -> dict:
    return await list_settings_with_prefix(user_id, "notion_db::")


# Rows mirrored from Notion databases (media, people, todos, tracking_*).


async def list_synced_page_ids(table: str, user_id: str, database_id: str) -> dict:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"SELECT id, notion_page_id FROM {table} "
                "WHERE user_id = :user_id AND notion_database_id = :database_id"
            ),
            {"user_id": user_id, "database_id": database_id},
        )).fetchall()
    return {row[1]: row[0] for row in rows}


async def upsert_synced_rows(table: str, user_id: str, records: list[dict]) -> int:
    if not records:
        return 0
    columns = SYNCED_COLUMNS[table]
    insert_cols = ["id", "user_id", *columns, "updated_at", "last_synced_at"]
    if "created_at" not in insert_cols:
        insert_cols.append("created_at")
    updates = ", ".join(f"{col}=EXCLUDED.{col}" for col in [*columns, "updated_at", "last_synced_at"])
    stmt = sql_text(
        f"INSERT INTO {table} ({', '.join(insert_cols)}) "
        f"VALUES ({', '.join(':' + col for col in insert_cols)}) "
        f"ON CONFLICT(user_id, notion_page_id) DO UPDATE SET {updates}"
    )
    now = _now_iso()
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        for record in records:
            encoded = encode_record(record)
            params = {col: encoded.get(col) for col in columns}
            params.update({"id": _new_id(), "user_id": user_id, "updated_at": now, "last_synced_at": now})
            params.setdefault("created_at", None)
            if params["created_at"] is None:
                params["created_at"] = now
            await session.execute(stmt, params)
        await session.commit()
    return len(records)


async def delete_synced_rows(table: str, user_id: str, page_ids: list[str]) -> int:
    if not page_ids:
        return 0
    stmt = sql_text(
        f"DELETE FROM {table} WHERE user_id = :user_id AND notion_page_id IN :page_ids"
    ).bindparams(bindparam("page_ids", expanding=True))
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        result = await session.execute(stmt, {"user_id": user_id, "page_ids": list(page_ids)})
        await session.commit()
    return int(result.rowcount or 0)


async def _insert_row(table: str, user_id: str, columns: list[str], record: dict) -> dict:
    encoded = encode_record(record)
    now = _now_iso()
    params = {col: encoded.get(col) for col in columns}
    params.update({"id": _new_id(), "user_id": user_id, "created_at": now, "updated_at": now, "last_synced_at": now})
    cols = ["id", "user_id", *columns, "created_at", "updated_at", "last_synced_at"]
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(
                f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({', '.join(':' + c for c in cols)}) RETURNING *"
            ),
            params,
        )).mappings().fetchone()
        await session.commit()
    return decode_row(row)


async def _get_row(table: str, user_id: str, row_id: str) -> dict | None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(f"SELECT * FROM {table} WHERE id = :id AND user_id = :user_id"),
            {"id": row_id, "user_id": user_id},
        )).mappings().fetchone()
    return decode_row(row) if row else None


async def _update_row(table: str, user_id: str, row_id: str, columns: list[str], patch: dict) -> dict | None:
    encoded = {k: v for k, v in encode_record(patch).items() if k in columns}
    if not encoded:
        return await _get_row(table, user_id, row_id)
    encoded["updated_at"] = _now_iso()
    assignments = ", ".join(f"{col} = :{col}" for col in encoded)
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(f"UPDATE {table} SET {assignments} WHERE id = :id AND user_id = :user_id RETURNING *"),
            {**encoded, "id": row_id, "user_id": user_id},
        )).mappings().fetchone()
        await session.commit()
    return decode_row(row) if row else None


async def _delete_row(table: str, user_id: str, row_id: str) -> bool:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        result = await session.execute(
            sql_text(f"DELETE FROM {table} WHERE id = :id AND user_id = :user_id"),
            {"id": row_id, "user_id": user_id},
        )
        await session.commit()
    return bool(result.rowcount)


async def list_media(user_id: str) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(f"SELECT * FROM {MEDIA_TABLE} WHERE user_id = :user_id ORDER BY created DESC NULLS LAST"),
            {"user_id": user_id},
        )).mappings().fetchall()
    return [decode_row(row) for row in rows]


async def get_media(user_id: str, media_id: str) -> dict | None:
    return await _get_row(MEDIA_TABLE, user_id, media_id)


async def insert_media(user_id: str, record: dict) -> dict:
    return await _insert_row(MEDIA_TABLE, user_id, MEDIA_COLUMNS, record)


async def update_media(user_id: str, media_id: str, patch: dict) -> dict | None:
    return await _update_row(MEDIA_TABLE, user_id, media_id, MEDIA_COLUMNS, patch)


async def delete_media(user_id: str, media_id: str) -> bool:
    return await _delete_row(MEDIA_TABLE, user_id, media_id)


async def list_people(user_id: str) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(f"SELECT * FROM {PEOPLE_TABLE} WHERE user_id = :user_id ORDER BY name ASC"),
            {"user_id": user_id},
        )).mappings().fetchall()
    return [decode_row(row) for row in rows]


async def insert_person(user_id: str, record: dict) -> dict:
    return await _insert_row(PEOPLE_TABLE, user_id, PEOPLE_COLUMNS, record)


async def list_todos(user_id: str) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(f"SELECT * FROM {TODOS_TABLE} WHERE user_id = :user_id ORDER BY do_date ASC NULLS LAST"),
            {"user_id": user_id},
        )).mappings().fetchall()
    return [decode_row(row) for row in rows]


async def get_todo(user_id: str, todo_id: str) -> dict | None:
    return await _get_row(TODOS_TABLE, user_id, todo_id)


async def insert_todo(user_id: str, record: dict) -> dict:
    return await _insert_row(TODOS_TABLE, user_id, TODO_COLUMNS, record)


async def update_todo(user_id: str, todo_id: str, patch: dict) -> dict | None:
    return await _update_row(TODOS_TABLE, user_id, todo_id, TODO_COLUMNS, patch)


async def delete_todo(user_id: str, todo_id: str) -> bool:
    return await _delete_row(TODOS_TABLE, user_id, todo_id)


async def list_tracking_entries(
    period: str,
    user_id: str,
    start: str | None = None,
    end: str | None = None,
    limit: int | None = None,
) -> list[dict]:
    table = TRACKING_TABLES[period]
    clauses = ["user_id = :user_id"]
    params: dict = {"user_id": user_id}
    if start:
        clauses.append("created_at >= :start")
        params["start"] = start
    if end:
        clauses.append("created_at <= :end")
        params["end"] = end
    query = f"SELECT * FROM {table} WHERE {' AND '.join(clauses)} ORDER BY created_at DESC"
    if limit and limit > 0:
        query += " LIMIT :limit"
        params["limit"] = int(limit)
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(sql_text(query), params)).mappings().fetchall()
    return [decode_row(row) for row in rows]


# OAuth tokens, one row per user and provider table.


async def _get_tokens(table: str, user_id: str) -> dict | None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(f"SELECT * FROM {table} WHERE user_id = :user_id"),
            {"user_id": user_id},
        )).mappings().fetchone()
    return dict(row) if row else None


async def _store_tokens(
    table: str,
    user_id: str,
    refresh_token_enc: str,
    access_token: str | None,
    expires_at: str | None,
    scope: str | None,
) -> None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"""
                INSERT INTO {table} (user_id, refresh_token_enc, access_token, expires_at, scope, updated_at)
                VALUES (:user_id, :refresh_token_enc, :access_token, :expires_at, :scope, :updated_at)
                ON CONFLICT(user_id) DO UPDATE SET
                    refresh_token_enc=EXCLUDED.refresh_token_enc,
                    access_token=EXCLUDED.access_token,
                    expires_at=EXCLUDED.expires_at,
                    scope=EXCLUDED.scope,
                    updated_at=EXCLUDED.updated_at
                """
            ),
            {
                "user_id": user_id,
                "refresh_token_enc": refresh_token_enc,
                "access_token": access_token,
                "expires_at": expires_at,
                "scope": scope,
                "updated_at": _now_iso(),
            },
        )
        await session.commit()


async def _delete_tokens(table: str, user_id: str) -> None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(sql_text(f"DELETE FROM {table} WHERE user_id = :user_id"), {"user_id": user_id})
        await session.commit()


async def get_spotify_tokens(user_id: str) -> dict | None:
    return await _get_tokens(SPOTIFY_TOKENS_TABLE, user_id)


async def store_spotify_tokens(
    user_id: str,
    refresh_token_enc: str,
    access_token: str | None,
    expires_at: str | None,
    scope: str | None,
) -> None:
    await _store_tokens(SPOTIFY_TOKENS_TABLE, user_id, refresh_token_enc, access_token, expires_at, scope)


async def delete_spotify_tokens(user_id: str) -> None:
    await _delete_tokens(SPOTIFY_TOKENS_TABLE, user_id)


async def get_google_tokens(user_id: str) -> dict | None:
    return await _get_tokens(GOOGLE_TOKENS_TABLE, user_id)


async def store_google_tokens(
    user_id: str,
    refresh_token_enc: str,
    access_token: str | None,
    expires_at: str | None,
    scope: str | None,
) -> None:
    await _store_tokens(GOOGLE_TOKENS_TABLE, user_id, refresh_token_enc, access_token, expires_at, scope)


async def delete_google_tokens(user_id: str) -> None:
    await _delete_tokens(GOOGLE_TOKENS_TABLE, user_id)


async def insert_spotify_history(user_id: str, records: list[dict]) -> int:
    stmt = sql_text(
        f"""
        INSERT INTO {SPOTIFY_HISTORY_TABLE}
            (id, user_id, track_id, track_name, artist_names_json, album_name, album_image_url, played_at, duration_ms, popularity)
        VALUES
            (:id, :user_id, :track_id, :track_name, :artist_names_json, :album_name, :album_image_url, :played_at, :duration_ms, :popularity)
        ON CONFLICT(user_id, track_id, played_at) DO NOTHING
        """
    )
    inserted = 0
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        for record in records:
            params = {
                "id": _new_id(),
                "user_id": user_id,
                "track_id": record["track_id"],
                "track_name": record["track_name"],
                "artist_names_json": json.dumps(record.get("artist_names") or []),
                "album_name": record.get("album_name") or "",
                "album_image_url": record.get("album_image_url"),
                "played_at": record["played_at"],
                "duration_ms": record.get("duration_ms"),
                "popularity": record.get("popularity"),
            }
            result = await session.execute(stmt, params)
            inserted += int(result.rowcount or 0)
        await session.commit()
    return inserted


async def list_spotify_history(user_id: str, since: str | None = None) -> list[dict]:
    query = f"SELECT * FROM {SPOTIFY_HISTORY_TABLE} WHERE user_id = :user_id"
    params = {"user_id": user_id}
    if since:
        query += " AND played_at >= :since"
        params["since"] = since
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(sql_text(query + " ORDER BY played_at DESC"), params)).mappings().fetchall()
    return [decode_row(row) for row in rows]


async def insert_youtube_history(user_id: str, records: list[dict]) -> int:
    stmt = sql_text(
        f"""
        INSERT INTO {YOUTUBE_HISTORY_TABLE}
            (id, user_id, video_id, video_title, channel_name, channel_url, video_url, watched_at, thumbnail_url)
        VALUES
            (:id, :user_id, :video_id, :video_title, :channel_name, :channel_url, :video_url, :watched_at, :thumbnail_url)
        ON CONFLICT(user_id, video_id, watched_at) DO NOTHING
        """
    )
    inserted = 0
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        for record in records:
            params = {
                "id": _new_id(),
                "user_id": user_id,
                "video_id": record["video_id"],
                "video_title": record["video_title"],
                "channel_name": record.get("channel_name"),
                "channel_url": record.get("channel_url"),
                "video_url": record["video_url"],
                "watched_at": record["watched_at"],
                "thumbnail_url": record.get("thumbnail_url"),
            }
            result = await session.execute(stmt, params)
            inserted += int(result.rowcount or 0)
        await session.commit()
    return inserted


async def list_recent_youtube(user_id: str, limit: int = 20) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"SELECT * FROM {YOUTUBE_HISTORY_TABLE} WHERE user_id = :user_id "
                "ORDER BY watched_at DESC LIMIT :limit"
            ),
            {"user_id": user_id, "limit": int(limit)},
        )).mappings().fetchall()
    return [dict(row) for row in rows]


async def list_youtube_history(user_id: str, since: str | None = None) -> list[dict]:
    query = f"SELECT * FROM {YOUTUBE_HISTORY_TABLE} WHERE user_id = :user_id"
    params = {"user_id": user_id}
    if since:
        query += " AND watched_at >= :since"
        params["since"] = since
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(sql_text(query + " ORDER BY watched_at DESC"), params)).mappings().fetchall()
    return [dict(row) for row in rows]


async def list_unenriched_video_ids(user_id: str, limit: int) -> list[str]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"""
                SELECT DISTINCT h.video_id
                FROM {YOUTUBE_HISTORY_TABLE} h
                LEFT JOIN {YOUTUBE_VIDEOS_TABLE} v ON v.video_id = h.video_id
                WHERE h.user_id = :user_id
                  AND (v.video_id IS NULL OR (v.view_count IS NULL AND NOT v.unavailable))
                LIMIT :limit
                """
            ),
            {"user_id": user_id, "limit": int(limit)},
        )).fetchall()
    return [row[0] for row in rows]


async def upsert_youtube_videos(records: list[dict]) -> int:
    if not records:
        return 0
    columns = [
        "video_id",
        "title",
        "channel_name",
        "channel_id",
        "channel_url",
        "thumbnail_url",
        "duration_seconds",
        "view_count",
        "like_count",
        "comment_count",
        "description",
        "category_id",
        "tags_json",
        "published_at",
        "updated_at",
    ]
    updates = ", ".join(f"{col}=EXCLUDED.{col}" for col in columns if col != "video_id")
    stmt = sql_text(
        f"INSERT INTO {YOUTUBE_VIDEOS_TABLE} ({', '.join(columns)}) "
        f"VALUES ({', '.join(':' + col for col in columns)}) "
        f"ON CONFLICT(video_id) DO UPDATE SET {updates}"
    )
    now = _now_iso()
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        for record in records:
            encoded = encode_record(record)
            params = {col: encoded.get(col) for col in columns}
            params["updated_at"] = now
            await session.execute(stmt, params)
        await session.commit()
    return len(records)


async def mark_youtube_videos_unavailable(video_ids: list[str]) -> int:
    """Flag deleted or private videos so enrichment stops requesting them."""
    if not video_ids:
        return 0
    stmt = sql_text(
        f"INSERT INTO {YOUTUBE_VIDEOS_TABLE} (video_id, title, unavailable, updated_at) "
        "VALUES (:video_id, :video_id, TRUE, :updated_at) "
        "ON CONFLICT(video_id) DO UPDATE SET unavailable = TRUE, updated_at = EXCLUDED.updated_at"
    )
    now = _now_iso()
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        for video_id in video_ids:
            await session.execute(stmt, {"video_id": video_id, "updated_at": now})
        await session.commit()
    return len(video_ids)


async def youtube_enrichment_stats(user_id: str) -> dict:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(
                f"""
                SELECT
                    COUNT(DISTINCT h.video_id) AS total_videos,
                    COUNT(DISTINCT CASE WHEN v.view_count IS NOT NULL THEN h.video_id END) AS enriched_videos,
                    COUNT(DISTINCT CASE WHEN v.unavailable THEN h.video_id END) AS unavailable_videos
                FROM {YOUTUBE_HISTORY_TABLE} h
                LEFT JOIN {YOUTUBE_VIDEOS_TABLE} v ON v.video_id = h.video_id
                WHERE h.user_id = :user_id
                """
            ),
            {"user_id": user_id},
        )).mappings().fetchone()
    total = int(row["total_videos"] or 0) if row else 0
    enriched = int(row["enriched_videos"] or 0) if row else 0
    unavailable = int(row["unavailable_videos"] or 0) if row else 0
    return {
        "total": total,
        "enriched": enriched,
        "unavailable": unavailable,
        "pending": max(total - enriched - unavailable, 0),
    }


async def list_youtube_users() -> list[str]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(f"SELECT DISTINCT user_id FROM {YOUTUBE_HISTORY_TABLE}")
        )).fetchall()
    return [row[0] for row in rows]


# Google Calendar cache. Times are stored as UTC "YYYY-MM-DDTHH:MM:SSZ" text so they compare as strings.


async def list_google_calendars(user_id: str) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"SELECT * FROM {GOOGLE_CALENDARS_TABLE} WHERE user_id = :user_id "
                "ORDER BY primary_calendar DESC, summary ASC"
            ),
            {"user_id": user_id},
        )).mappings().fetchall()
    return [dict(row) for row in rows]


async def get_google_calendar(user_id: str, calendar_id: str) -> dict | None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(f"SELECT * FROM {GOOGLE_CALENDARS_TABLE} WHERE user_id = :user_id AND calendar_id = :calendar_id"),
            {"user_id": user_id, "calendar_id": calendar_id},
        )).mappings().fetchone()
    return dict(row) if row else None


async def replace_google_calendars(user_id: str, records: list[dict]) -> int:
    cols = ["user_id", *CALENDAR_COLUMNS, "last_synced_at"]
    now = _now_iso()
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(f"DELETE FROM {GOOGLE_CALENDARS_TABLE} WHERE user_id = :user_id"),
            {"user_id": user_id},
        )
        stmt = sql_text(
            f"INSERT INTO {GOOGLE_CALENDARS_TABLE} ({', '.join(cols)}) "
            f"VALUES ({', '.join(':' + col for col in cols)})"
        )
        for record in records:
            params = {col: record.get(col) for col in CALENDAR_COLUMNS}
            params.update({"user_id": user_id, "last_synced_at": now})
            await session.execute(stmt, params)
        await session.commit()
    return len(records)


async def list_calendar_events(
    user_id: str,
    time_min: str,
    time_max: str,
    calendar_ids: list[str] | None = None,
) -> list[dict]:
    """Cached events overlapping ``[time_min, time_max]``."""
    query = (
        f"SELECT * FROM {GOOGLE_EVENTS_TABLE} "
        "WHERE user_id = :user_id AND start_time <= :time_max AND end_time >= :time_min"
    )
    params = {"user_id": user_id, "time_min": time_min, "time_max": time_max}
    if calendar_ids:
        query += " AND calendar_id IN :calendar_ids"
        params["calendar_ids"] = list(calendar_ids)
    stmt = sql_text(query + " ORDER BY start_time ASC")
    if calendar_ids:
        stmt = stmt.bindparams(bindparam("calendar_ids", expanding=True))
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(stmt, params)).mappings().fetchall()
    return [decode_row(row) for row in rows]


def _event_upsert_stmt():
    cols = ["id", "user_id", *CALENDAR_EVENT_COLUMNS, "last_synced_at"]
    updates = ", ".join(f"{col}=EXCLUDED.{col}" for col in [*CALENDAR_EVENT_COLUMNS, "last_synced_at"])
    return sql_text(
        f"INSERT INTO {GOOGLE_EVENTS_TABLE} ({', '.join(cols)}) "
        f"VALUES ({', '.join(':' + col for col in cols)}) "
        f"ON CONFLICT(user_id, calendar_id, event_id) DO UPDATE SET {updates}"
    )


def _event_params(user_id: str, record: dict, now: str) -> dict:
    encoded = encode_record(record)
    params = {col: encoded.get(col) for col in CALENDAR_EVENT_COLUMNS}
    params.update({"id": _new_id(), "user_id": user_id, "last_synced_at": now})
    return params


async def upsert_calendar_event(user_id: str, record: dict) -> None:
    stmt = _event_upsert_stmt()
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(stmt, _event_params(user_id, record, _now_iso()))
        await session.commit()


async def replace_calendar_events(
    user_id: str,
    calendar_id: str,
    records: list[dict],
    time_min: str | None = None,
    time_max: str | None = None,
) -> int:
    """Swap the cached events of one calendar, limited to a window when one is given."""
    delete = f"DELETE FROM {GOOGLE_EVENTS_TABLE} WHERE user_id = :user_id AND calendar_id = :calendar_id"
    params = {"user_id": user_id, "calendar_id": calendar_id}
    if time_min and time_max:
        delete += " AND start_time >= :time_min AND end_time <= :time_max"
        params.update({"time_min": time_min, "time_max": time_max})
    stmt = _event_upsert_stmt()
    now = _now_iso()
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(sql_text(delete), params)
        for record in records:
            await session.execute(stmt, _event_params(user_id, record, now))
        await session.commit()
    return len(records)
