import os
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

_SETTING_GETTER = None
_USER_GETTER = None


def _build_session():
    session = requests.Session()
    retry = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(502, 503, 504),
        allowed_methods=("GET", "POST", "PUT", "PATCH", "DELETE"),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


_SESSION = _build_session()


def configure(setting_getter=None, user_getter=None):
    """Install lookups for configuration values and the signed-in user's email.

    ``setting_getter(name, default)`` is consulted before the environment.
    """
    global _SETTING_GETTER, _USER_GETTER
    _SETTING_GETTER = setting_getter
    _USER_GETTER = user_getter


def _setting(name, default=None):
    value = _SETTING_GETTER(name, None) if _SETTING_GETTER else None
    return value or os.getenv(name) or default


def api_base_url():
    return _setting("API_BASE_URL", "")


def backend_token():
    return _setting("BACKEND_SESSION_SECRET", "")


def is_enabled():
    return bool(api_base_url() and backend_token())


def _error_message(response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return str(body)


def request(method: str, path: str, params: dict | None = None, json: Any = None, timeout: int = 10) -> Any:
    base = api_base_url().rstrip("/")
    if not base:
        raise RuntimeError("API_BASE_URL not configured")
    token = backend_token()
    if not token:
        raise RuntimeError("BACKEND_SESSION_SECRET not configured")
    user_email = _USER_GETTER() if _USER_GETTER else None
    if not user_email:
        raise RuntimeError("Missing user email for API request")
    headers = {
        "X-User-Email": user_email,
        "X-Backend-Token": token,
    }
    response = _SESSION.request(method, f"{base}{path}", params=params, json=json, headers=headers, timeout=timeout)
    if not response.ok:
        raise RuntimeError(f"API error {response.status_code}: {_error_message(response)}")
    if response.status_code == 204 or not response.content:
        return None
    return response.json()


def get(path: str, **kwargs) -> Any:
    return request("GET", path, **kwargs)


def post(path: str, json: Any = None, **kwargs) -> Any:
    return request("POST", path, json=json, **kwargs)
