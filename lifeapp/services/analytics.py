"""Listening and watching statistics computed with pandas over history rows."""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pandas as pd

TOP_N = 10
STREAK_WINDOW_DAYS = 365


def since_for_range(range_value: str | None, now: datetime | None = None) -> str | None:
    """``all`` (or anything non-numeric) means no lower bound; otherwise a day count."""
    if not range_value or range_value == "all":
        return None
    try:
        days = int(range_value)
    except ValueError:
        return None
    now = now or datetime.now(timezone.utc)
    return (now - timedelta(days=days)).isoformat()


def _frame(rows: list[dict], time_col: str) -> pd.DataFrame:
    frame = pd.DataFrame(rows)
    if frame.empty:
        return frame
    frame[time_col] = pd.to_datetime(frame[time_col], utc=True, errors="coerce", format="ISO8601")
    return frame.dropna(subset=[time_col])


def _by_hour(times: pd.Series) -> list[int]:
    return [int(v) for v in times.dt.hour.value_counts().reindex(range(24), fill_value=0)]


def _by_weekday(times: pd.Series) -> list[int]:
    # Sunday first.
    sunday_first = (times.dt.dayofweek + 1) % 7
    return [int(v) for v in sunday_first.value_counts().reindex(range(7), fill_value=0)]


def streak_days(times: pd.Series, today: date) -> int:
    days = set(times.dt.date)
    streak = 0
    for offset in range(STREAK_WINDOW_DAYS):
        if today - timedelta(days=offset) in days:
            streak += 1
        else:
            break
    return streak


def spotify_summary(rows: list[dict], today: date | None = None) -> dict:
    today = today or datetime.now(timezone.utc).date()
    frame = _frame(rows, "played_at")
    if frame.empty:
        return {
            "totalMinutes": 0,
            "totalPlays": 0,
            "uniqueTracks": 0,
            "streak": 0,
            "topTracks": [],
            "topArtists": [],
            "listeningByHour": [0] * 24,
            "listeningByDay": [0] * 7,
        }

    if "duration_ms" in frame:
        durations = pd.to_numeric(frame["duration_ms"], errors="coerce").fillna(0)
    else:
        durations = pd.Series(0, index=frame.index)
    grouped = (
        frame.groupby("track_id")
        .agg(
            count=("track_id", "size"),
            name=("track_name", "first"),
            artists=("artist_names", "first"),
            image=("album_image_url", "first"),
            last_played=("played_at", "max"),
        )
        .sort_values(["count", "last_played"], ascending=[False, False])
        .head(TOP_N)
    )
    top_tracks = [
        {
            "count": int(row["count"]),
            "track": {"id": track_id, "name": row["name"], "artists": row["artists"] or [], "image": row["image"]},
            "lastPlayed": row["last_played"].isoformat(),
        }
        for track_id, row in grouped.iterrows()
    ]
    artists = frame["artist_names"].explode().dropna()
    artist_counts = artists.value_counts().head(TOP_N)
    return {
        "totalMinutes": int(round(durations.sum() / 60000)),
        "totalPlays": int(len(frame)),
        "uniqueTracks": int(frame["track_id"].nunique()),
        "streak": streak_days(frame["played_at"], today),
        "topTracks": top_tracks,
        "topArtists": [{"name": name, "count": int(count)} for name, count in artist_counts.items()],
        "listeningByHour": _by_hour(frame["played_at"]),
        "listeningByDay": _by_weekday(frame["played_at"]),
    }


def youtube_summary(rows: list[dict], today: date | None = None) -> dict:
    today = today or datetime.now(timezone.utc).date()
    frame = _frame(rows, "watched_at")
    if frame.empty:
        return {
            "totalVideos": 0,
            "uniqueVideos": 0,
            "uniqueChannels": 0,
            "streak": 0,
            "topVideos": [],
            "topChannels": [],
            "watchingByHour": [0] * 24,
            "watchingByDay": [0] * 7,
            "monthlyTrends": {},
            "yearlyTrends": {},
            "dateRange": None,
        }

    videos = (
        frame.groupby("video_id")
        .agg(
            count=("video_id", "size"),
            title=("video_title", "first"),
            channel_name=("channel_name", "first"),
            thumbnail_url=("thumbnail_url", "first"),
            video_url=("video_url", "first"),
            last_watched=("watched_at", "max"),
        )
        .sort_values(["count", "last_watched"], ascending=[False, False])
        .head(TOP_N)
    )
    top_videos = [
        {
            "count": int(row["count"]),
            "video": {
                "id": video_id,
                "title": row["title"],
                "channel_name": row["channel_name"],
                "thumbnail_url": row["thumbnail_url"],
                "video_url": row["video_url"],
            },
            "lastWatched": row["last_watched"].isoformat(),
        }
        for video_id, row in videos.iterrows()
    ]

    with_channel = frame.dropna(subset=["channel_name"])
    channels = (
        with_channel.groupby("channel_name")
        .agg(count=("channel_name", "size"), channel_url=("channel_url", "first"))
        .sort_values("count", ascending=False)
        .head(TOP_N)
    )
    top_channels = [
        {"name": name, "count": int(row["count"]), "channel_url": row["channel_url"]}
        for name, row in channels.iterrows()
    ]

    watched = frame["watched_at"]
    monthly = watched.dt.strftime("%Y-%m").value_counts().sort_index()
    yearly = watched.dt.strftime("%Y").value_counts().sort_index()
    return {
        "totalVideos": int(len(frame)),
        "uniqueVideos": int(frame["video_id"].nunique()),
        "uniqueChannels": int(with_channel["channel_name"].nunique()),
        "streak": streak_days(watched, today),
        "topVideos": top_videos,
        "topChannels": top_channels,
        "watchingByHour": _by_hour(watched),
        "watchingByDay": _by_weekday(watched),
        "monthlyTrends": {key: int(value) for key, value in monthly.items()},
        "yearlyTrends": {key: int(value) for key, value in yearly.items()},
        "dateRange": {"oldest": watched.min().isoformat(), "newest": watched.max().isoformat()},
    }
