from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from lifeapp_dashboard import api_client

logger = logging.getLogger(__name__)

CURRENTLY_PLAYING_INTERVAL = 5.0
RECENTLY_WATCHED_INTERVAL = 10.0


class Poller:
    """Calls ``fetch`` every ``interval`` seconds on a daemon thread and keeps the latest result."""

    def __init__(self, fetch: Callable[[], Any], interval: float, on_result: Callable[[Any], None] | None = None):
        self.fetch = fetch
        self.interval = interval
        self.on_result = on_result
        self.latest: Any = None
        self.last_error: Exception | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def poll_once(self) -> Any:
        try:
            result = self.fetch()
        except (RuntimeError, OSError) as exc:
            # Keep the last good value; the next tick retries.
            self.last_error = exc
            logger.warning("Polling failed: %s", exc)
            return self.latest
        self.latest = result
        self.last_error = None
        if self.on_result:
            self.on_result(result)
        return result

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.poll_once()
            self._stop.wait(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        self._thread = None


def currently_playing_poller(on_result=None) -> Poller:
    return Poller(lambda: api_client.get("/v1/spotify/currently-playing"), CURRENTLY_PLAYING_INTERVAL, on_result)


def recently_watched_poller(limit: int = 20, on_result=None) -> Poller:
    return Poller(
        lambda: api_client.get("/v1/youtube/recently-watched", params={"limit": limit}),
        RECENTLY_WATCHED_INTERVAL,
        on_result,
    )
