from __future__ import annotations

from sqlalchemy import text as sql_text

from lifeapp.db import get_engine
from lifeapp.repositories import (
    GOOGLE_CALENDARS_TABLE,
    GOOGLE_EVENTS_TABLE,
    GOOGLE_TOKENS_TABLE,
    MEDIA_TABLE,
    PEOPLE_TABLE,
    SETTINGS_TABLE,
    SPOTIFY_HISTORY_TABLE,
    SPOTIFY_TOKENS_TABLE,
    TODOS_TABLE,
    TRACKING_TABLES,
    YOUTUBE_HISTORY_TABLE,
    YOUTUBE_VIDEOS_TABLE,
)


def _tracking_table_ddl(table: str, period: str) -> str:
    return f"""
    CREATE TABLE IF NOT EXISTS {table} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        notion_page_id TEXT NOT NULL,
        notion_database_id TEXT NOT NULL,
        period TEXT NOT NULL DEFAULT '{period}',
        title TEXT NOT NULL DEFAULT 'Untitled',
        properties_json TEXT NOT NULL DEFAULT '{{}}',
        created_at TEXT,
        updated_at TEXT,
        last_synced_at TEXT,
        UNIQUE (user_id, notion_page_id)
    )
    """


STATEMENTS = [
    f"""
    CREATE TABLE IF NOT EXISTS {SETTINGS_TABLE} (
        key TEXT PRIMARY KEY,
        value TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {MEDIA_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        notion_page_id TEXT NOT NULL,
        notion_database_id TEXT NOT NULL,
        name TEXT NOT NULL,
        category TEXT,
        status TEXT,
        url TEXT,
        by_json TEXT,
        topic_json TEXT,
        thumbnail_json TEXT,
        ai_synopsis TEXT,
        created TEXT,
        created_at TEXT,
        updated_at TEXT,
        last_synced_at TEXT,
        UNIQUE (user_id, notion_page_id)
    )
    """,
    f"CREATE INDEX IF NOT EXISTS idx_media_user_id ON {MEDIA_TABLE}(user_id)",
    f"""
    CREATE TABLE IF NOT EXISTS {PEOPLE_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        notion_page_id TEXT NOT NULL,
        notion_database_id TEXT NOT NULL,
        name TEXT NOT NULL,
        origin_of_connection_json TEXT,
        star_sign TEXT,
        image_json TEXT,
        currently_at TEXT,
        tier_json TEXT,
        occupation TEXT,
        contact_freq TEXT,
        from_location TEXT,
        birth_date TEXT,
        last_edited_time TEXT,
        created_at TEXT,
        updated_at TEXT,
        last_synced_at TEXT,
        UNIQUE (user_id, notion_page_id)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {TODOS_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        notion_page_id TEXT NOT NULL,
        notion_database_id TEXT NOT NULL,
        title TEXT NOT NULL DEFAULT 'Untitled',
        status TEXT,
        priority TEXT,
        do_date TEXT,
        due_date TEXT,
        mega_tags_json TEXT NOT NULL DEFAULT '[]',
        gcal_id TEXT,
        properties_json TEXT NOT NULL DEFAULT '{{}}',
        created_at TEXT,
        updated_at TEXT,
        last_synced_at TEXT,
        UNIQUE (user_id, notion_page_id)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {SPOTIFY_TOKENS_TABLE} (
        user_id TEXT PRIMARY KEY,
        refresh_token_enc TEXT NOT NULL,
        access_token TEXT,
        expires_at TEXT,
        scope TEXT,
        updated_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {SPOTIFY_HISTORY_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        track_id TEXT NOT NULL,
        track_name TEXT NOT NULL,
        artist_names_json TEXT NOT NULL,
        album_name TEXT NOT NULL,
        album_image_url TEXT,
        played_at TEXT NOT NULL,
        duration_ms INTEGER,
        popularity INTEGER,
        UNIQUE (user_id, track_id, played_at)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {YOUTUBE_HISTORY_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        video_id TEXT NOT NULL,
        video_title TEXT NOT NULL,
        channel_name TEXT,
        channel_url TEXT,
        video_url TEXT NOT NULL,
        watched_at TEXT NOT NULL,
        thumbnail_url TEXT,
        UNIQUE (user_id, video_id, watched_at)
    )
    """,
    f"CREATE INDEX IF NOT EXISTS idx_youtube_history_user_watched ON {YOUTUBE_HISTORY_TABLE}(user_id, watched_at)",
    f"""
    CREATE TABLE IF NOT EXISTS {YOUTUBE_VIDEOS_TABLE} (
        video_id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        channel_name TEXT,
        channel_id TEXT,
        channel_url TEXT,
        thumbnail_url TEXT,
        duration_seconds INTEGER,
        view_count BIGINT,
        like_count BIGINT,
        comment_count BIGINT,
        description TEXT,
        category_id TEXT,
        tags_json TEXT,
        published_at TEXT,
        unavailable BOOLEAN NOT NULL DEFAULT FALSE,
        updated_at TEXT
    )
    """,
    f"ALTER TABLE {YOUTUBE_VIDEOS_TABLE} ADD COLUMN IF NOT EXISTS unavailable BOOLEAN NOT NULL DEFAULT FALSE",
    f"""
    CREATE TABLE IF NOT EXISTS {GOOGLE_TOKENS_TABLE} (
        user_id TEXT PRIMARY KEY,
        refresh_token_enc TEXT NOT NULL,
        access_token TEXT,
        expires_at TEXT,
        scope TEXT,
        updated_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {GOOGLE_CALENDARS_TABLE} (
        user_id TEXT NOT NULL,
        calendar_id TEXT NOT NULL,
        summary TEXT NOT NULL,
        description TEXT,
        time_zone TEXT,
        background_color TEXT,
        foreground_color TEXT,
        access_role TEXT,
        selected BOOLEAN NOT NULL DEFAULT TRUE,
        primary_calendar BOOLEAN NOT NULL DEFAULT FALSE,
        last_synced_at TEXT,
        PRIMARY KEY (user_id, calendar_id)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {GOOGLE_EVENTS_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        calendar_id TEXT NOT NULL,
        event_id TEXT NOT NULL,
        title TEXT NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        start_date TEXT,
        end_date TEXT,
        is_all_day BOOLEAN NOT NULL DEFAULT FALSE,
        color TEXT,
        description TEXT,
        location TEXT,
        status TEXT,
        html_link TEXT,
        hangout_link TEXT,
        event_json TEXT,
        last_synced_at TEXT,
        UNIQUE (user_id, calendar_id, event_id)
    )
    """,
    f"CREATE INDEX IF NOT EXISTS idx_google_events_user_start ON {GOOGLE_EVENTS_TABLE}(user_id, start_time)",
    *[_tracking_table_ddl(table, period) for period, table in TRACKING_TABLES.items()],
]


async def init_db():
    engine = get_engine()
    async with engine.begin() as conn:
        for statement in STATEMENTS:
            await conn.execute(sql_text(statement))
