import asyncio

import httpx
import pytest

from lifeapp.services import omdb_service as omdb
from lifeapp.settings import reset_settings


@pytest.fixture
def omdb_key(monkeypatch):
    monkeypatch.setenv("OMDB_API_KEY", "omdb-key")
    reset_settings()


def test_extract_imdb_id():
    assert omdb.extract_imdb_id("https://www.imdb.com/title/tt0111161/?ref_=nv") == "tt0111161"
    assert omdb.extract_imdb_id("https://www.imdb.com/name/nm0000151/") is None


def test_map_movie():
    mapped = omdb.map_omdb_title(
        {
            "Title": "The Shawshank Redemption",
            "Year": "1994",
            "Type": "movie",
            "Director": "Frank Darabont",
            "Writer": "Stephen King, Frank Darabont",
            "Poster": "https://m.media-amazon.com/poster.jpg",
            "Plot": "Two imprisoned men bond.",
            "Released": "14 Oct 1994",
        }
    )

    assert mapped == {
        "name": "The Shawshank Redemption (1994)",
        "category": "Movie",
        "by": ["Frank Darabont"],
        "thumbnail": "https://m.media-amazon.com/poster.jpg",
        "ai_synopsis": "Two imprisoned men bond.",
        "created": "14 Oct 1994",
    }


def test_map_series_uses_writers_and_drops_placeholders():
    mapped = omdb.map_omdb_title(
        {
            "Title": "Dark",
            "Year": "2017–2020",
            "Type": "series",
            "Director": "N/A",
            "Writer": "Baran bo Odar, Jantje Friese",
            "Poster": "N/A",
            "Plot": "N/A",
        }
    )

    assert mapped["category"] == "Series"
    assert mapped["by"] == ["Baran bo Odar", "Jantje Friese"]
    assert mapped["thumbnail"] is None
    assert mapped["ai_synopsis"] is None


def test_fetch_sends_id_and_key(mock_http, omdb_key):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"Response": "True", "Title": "Heat", "Year": "1995", "Type": "movie"})

    mock_http(handler)

    data = asyncio.run(omdb.fetch_imdb_data("tt0113277"))

    assert data["name"] == "Heat (1995)"
    assert seen[0].url.params["i"] == "tt0113277"
    assert seen[0].url.params["apikey"] == "omdb-key"


def test_invalid_key_message(mock_http, omdb_key):
    mock_http(lambda request: httpx.Response(200, json={"Response": "False", "Error": "Invalid API key!"}))

    with pytest.raises(omdb.OMDbError, match="Invalid OMDB API key"):
        asyncio.run(omdb.fetch_imdb_data("tt0113277"))


def test_not_found_message(mock_http, omdb_key):
    mock_http(lambda request: httpx.Response(200, json={"Response": "False", "Error": "Incorrect IMDb ID."}))

    with pytest.raises(omdb.OMDbError, match="Incorrect IMDb ID."):
        asyncio.run(omdb.fetch_imdb_synopsis("tt0000000"))


def test_missing_key():
    with pytest.raises(omdb.OMDbError, match="OMDB_API_KEY not configured"):
        asyncio.run(omdb.fetch_imdb_data("tt0113277"))


def test_search_returns_first_hit(mock_http, omdb_key):
    mock_http(
        lambda request: httpx.Response(
            200, json={"Response": "True", "Search": [{"imdbID": "tt0133093"}, {"imdbID": "tt0234215"}]}
        )
    )

    assert asyncio.run(omdb.search_imdb_id("The Matrix")) == "tt0133093"


def test_search_without_hits(mock_http, omdb_key):
    mock_http(lambda request: httpx.Response(200, json={"Response": "False", "Error": "Movie not found!"}))

    assert asyncio.run(omdb.search_imdb_id("zzzz")) is None
