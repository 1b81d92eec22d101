from datetime import date, datetime, timezone

from lifeapp.services import analytics


def play(track_id, played_at, artists=("Artist",), duration_ms=60000):
    return {
        "track_id": track_id,
        "track_name": f"Track {track_id}",
        "artist_names": list(artists),
        "album_image_url": None,
        "played_at": played_at,
        "duration_ms": duration_ms,
    }


def watch(video_id, watched_at, channel="Chan"):
    return {
        "video_id": video_id,
        "video_title": f"Video {video_id}",
        "channel_name": channel,
        "channel_url": f"https://www.youtube.com/channel/{channel}" if channel else None,
        "thumbnail_url": None,
        "video_url": f"https://www.youtube.com/watch?v={video_id}",
        "watched_at": watched_at,
    }


def test_since_for_range():
    now = datetime(2024, 3, 10, tzinfo=timezone.utc)
    assert analytics.since_for_range("all", now) is None
    assert analytics.since_for_range(None, now) is None
    assert analytics.since_for_range("forever", now) is None
    assert analytics.since_for_range("7", now) == "2024-03-03T00:00:00+00:00"


def test_spotify_summary_empty():
    summary = analytics.spotify_summary([])
    assert summary["totalPlays"] == 0
    assert summary["listeningByHour"] == [0] * 24
    assert summary["listeningByDay"] == [0] * 7


def test_spotify_summary():
    rows = [
        play("a", "2024-03-10T08:15:00Z", artists=("X", "Y")),
        play("a", "2024-03-09T08:45:00Z", artists=("X", "Y")),
        play("b", "2024-03-07T21:00:00Z", artists=("Z",), duration_ms=120000),
    ]

    summary = analytics.spotify_summary(rows, today=date(2024, 3, 10))

    assert summary["totalPlays"] == 3
    assert summary["uniqueTracks"] == 2
    assert summary["totalMinutes"] == 4
    assert summary["streak"] == 2
    assert summary["topTracks"][0]["track"]["id"] == "a"
    assert summary["topTracks"][0]["count"] == 2
    assert sorted(summary["topArtists"], key=lambda a: a["name"]) == [
        {"name": "X", "count": 2},
        {"name": "Y", "count": 2},
        {"name": "Z", "count": 1},
    ]
    assert summary["listeningByHour"][8] == 2
    assert summary["listeningByHour"][21] == 1
    # 2024-03-10 is a Sunday.
    assert summary["listeningByDay"][0] == 1
    assert summary["listeningByDay"][6] == 1
    assert summary["listeningByDay"][4] == 1


def test_streak_breaks_on_gap():
    rows = [play("a", "2024-03-10T08:00:00Z"), play("a", "2024-03-08T08:00:00Z")]
    assert analytics.spotify_summary(rows, today=date(2024, 3, 10))["streak"] == 1
    assert analytics.spotify_summary(rows, today=date(2024, 3, 11))["streak"] == 0


def test_youtube_summary():
    rows = [
        watch("v1", "2024-01-31T23:00:00Z"),
        watch("v1", "2024-02-01T10:00:00Z"),
        watch("v2", "2023-12-25T10:00:00Z", channel="Other"),
        watch("v3", "2024-02-01T11:00:00Z", channel=None),
        watch("v4", "not a date"),
    ]

    summary = analytics.youtube_summary(rows, today=date(2024, 2, 1))

    assert summary["totalVideos"] == 4
    assert summary["uniqueVideos"] == 3
    assert summary["uniqueChannels"] == 2
    assert summary["streak"] == 2
    assert summary["topVideos"][0]["video"]["id"] == "v1"
    assert summary["topChannels"][0] == {
        "name": "Chan",
        "count": 2,
        "channel_url": "https://www.youtube.com/channel/Chan",
    }
    assert summary["monthlyTrends"] == {"2023-12": 1, "2024-01": 1, "2024-02": 2}
    assert summary["yearlyTrends"] == {"2023": 1, "2024": 3}
    assert summary["dateRange"]["oldest"].startswith("2023-12-25")


def test_youtube_summary_empty():
    summary = analytics.youtube_summary([])
    assert summary["totalVideos"] == 0
    assert summary["dateRange"] is None
