import logging
import threading

import pytest
import requests

from lifeapp_dashboard import api_client, logging_config, polling


class FakeResponse:
    def __init__(self, status=200, body=None, text="", reason="OK"):
        self.status_code = status
        self._body = body
        self.text = text
        self.reason = reason
        self.content = text.encode() if body is None else b"{}"

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.response


@pytest.fixture
def session(monkeypatch):
    monkeypatch.setenv("API_BASE_URL", "https://api.test/")
    monkeypatch.setenv("BACKEND_SESSION_SECRET", "test-secret")
    api_client.configure(user_getter=lambda: "reader@example.com")
    fake = FakeSession(FakeResponse(body={"media": []}))
    monkeypatch.setattr(api_client, "_SESSION", fake)
    yield fake
    api_client.configure()


def test_request_sends_identity_headers(session):
    assert api_client.get("/v1/media", params={"q": "x"}) == {"media": []}

    method, url, kwargs = session.calls[0]
    assert (method, url) == ("GET", "https://api.test/v1/media")
    assert kwargs["headers"] == {"X-User-Email": "reader@example.com", "X-Backend-Token": "test-secret"}
    assert kwargs["params"] == {"q": "x"}
    assert kwargs["timeout"] == 10


def test_setting_getter_wins_over_environment(session):
    api_client.configure(
        setting_getter=lambda name, default: {"API_BASE_URL": "https://secrets.test"}.get(name, default),
        user_getter=lambda: "reader@example.com",
    )
    api_client.post("/v1/todos", json={"title": "x"})

    method, url, kwargs = session.calls[0]
    assert url == "https://secrets.test/v1/todos"
    assert kwargs["json"] == {"title": "x"}
    assert api_client.is_enabled()


def test_error_body_is_surfaced(session):
    session.response = FakeResponse(status=404, body={"error": "Todo not found"})

    with pytest.raises(RuntimeError, match="API error 404: Todo not found"):
        api_client.get("/v1/todos/x")


def test_error_without_json_uses_text(session):
    session.response = FakeResponse(status=502, text="Bad gateway", reason="Bad Gateway")

    with pytest.raises(RuntimeError, match="API error 502: Bad gateway"):
        api_client.get("/v1/todos")


def test_empty_response_is_none(session):
    session.response = FakeResponse(status=204, text="")
    assert api_client.request("DELETE", "/v1/todos/x") is None


def test_missing_configuration(monkeypatch):
    monkeypatch.delenv("API_BASE_URL", raising=False)
    monkeypatch.setenv("BACKEND_SESSION_SECRET", "test-secret")
    api_client.configure(user_getter=lambda: "reader@example.com")
    try:
        with pytest.raises(RuntimeError, match="API_BASE_URL not configured"):
            api_client.get("/v1/media")
        monkeypatch.setenv("API_BASE_URL", "https://api.test")
        api_client.configure(user_getter=lambda: None)
        with pytest.raises(RuntimeError, match="Missing user email"):
            api_client.get("/v1/media")
    finally:
        api_client.configure()


def test_session_retries_gateway_errors():
    adapter = api_client._build_session().get_adapter("https://api.test")
    assert adapter.max_retries.total == 2
    assert 503 in adapter.max_retries.status_forcelist


def test_poll_once_keeps_last_value_on_failure():
    results = iter([{"playing": True}])
    seen = []

    def fetch():
        try:
            return next(results)
        except StopIteration:
            raise RuntimeError("API error 502: down")

    poller = polling.Poller(fetch, interval=60, on_result=seen.append)

    assert poller.poll_once() == {"playing": True}
    assert poller.poll_once() == {"playing": True}
    assert isinstance(poller.last_error, RuntimeError)
    assert seen == [{"playing": True}]


def test_poll_once_propagates_unexpected_errors():
    def fetch():
        raise KeyError("bug")

    with pytest.raises(KeyError):
        polling.Poller(fetch, interval=60).poll_once()


def test_poller_thread_starts_and_stops():
    fetched = threading.Event()
    poller = polling.Poller(lambda: fetched.set() or "ok", interval=0.01)

    poller.start()
    assert fetched.wait(2)
    assert poller.running
    poller.stop()

    assert not poller.running
    assert poller.latest == "ok"


def test_recently_watched_poller_uses_api(monkeypatch):
    calls = []
    monkeypatch.setattr(api_client, "get", lambda path, **kwargs: calls.append((path, kwargs)) or {"items": []})

    poller = polling.recently_watched_poller(limit=5)

    assert poller.interval == polling.RECENTLY_WATCHED_INTERVAL
    assert poller.poll_once() == {"items": []}
    assert calls == [("/v1/youtube/recently-watched", {"params": {"limit": 5}})]


def test_configure_logging_quiets_http_libraries(monkeypatch):
    monkeypatch.setenv("DASHBOARD_LOG_LEVEL", "debug")
    logging_config.configure_logging()
    assert logging.getLogger("urllib3").level == logging.WARNING
    assert logging.getLogger("requests").level == logging.WARNING


def test_requests_errors_are_os_errors():
    # Network failures from the session are caught by the poller.
    assert issubclass(requests.ConnectionError, OSError)
