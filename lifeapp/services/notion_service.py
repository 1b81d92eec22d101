from __future__ import annotations

import asyncio
import logging
import re
from urllib.parse import urlparse

import httpx

from lifeapp.settings import get_settings
from lifeapp.services import http_fetch

logger = logging.getLogger(__name__)

NOTION_API = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"
NOTION_TIMEOUT = 20
PAGE_SIZE = 100
MAX_QUERY_PAGES = 1000
UPLOAD_POLL_ATTEMPTS = 5
UPLOAD_POLL_INTERVAL = 0.5
BROWSER_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
ICON_BASE = "https://api.iconify.design/lucide"


class NotionAPIError(RuntimeError):
    def __init__(self, message: str, status: int | None = None, code: str | None = None):
        super().__init__(message)
        self.status = status
        self.code = code

    @property
    def is_property_error(self) -> bool:
        return self.code in {"object_invalid", "validation_error"}


def icon(name: str, fmt: str = "svg") -> dict:
    if fmt == "png":
        url = f"{ICON_BASE}/{name}.png?width=280&height=280"
    else:
        url = f"{ICON_BASE}/{name}.svg"
    return {"type": "external", "external": {"url": url}}


def _headers(content_type: str | None = "application/json") -> dict:
    api_key = get_settings().notion_api_key
    if not api_key:
        raise NotionAPIError("NOTION_API_KEY not configured")
    headers = {"Authorization": f"Bearer {api_key}", "Notion-Version": NOTION_VERSION}
    if content_type:
        headers["Content-Type"] = content_type
    return headers


def _raise_for_notion(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    message = payload.get("message") or response.text or response.reason_phrase
    raise NotionAPIError(
        f"Notion API error ({response.status_code}): {message}",
        status=response.status_code,
        code=payload.get("code"),
    )


async def _request(method: str, path: str, json: dict | None = None, params: dict | None = None) -> dict:
    headers = _headers()
    async with http_fetch.build_client(NOTION_TIMEOUT) as client:
        response = await client.request(method, f"{NOTION_API}{path}", json=json, params=params, headers=headers)
    _raise_for_notion(response)
    return response.json()


async def retrieve_database(database_id: str) -> dict:
    return await _request("GET", f"/databases/{database_id}")


async def database_schema(database_id: str) -> dict | None:
    """Property schema of a database, or None when it cannot be retrieved."""
    try:
        database = await retrieve_database(database_id)
    except (NotionAPIError, httpx.HTTPError) as exc:
        logger.warning("Could not retrieve Notion database %s schema: %s", database_id, exc)
        return None
    return database.get("properties") or {}


async def query_database(database_id: str, filter: dict | None = None, sorts: list | None = None) -> list[dict]:
    pages: list[dict] = []
    cursor: str | None = None
    seen_cursors: set[str] = set()
    for _ in range(MAX_QUERY_PAGES):
        body: dict = {"page_size": PAGE_SIZE}
        if cursor:
            body["start_cursor"] = cursor
        if filter:
            body["filter"] = filter
        if sorts:
            body["sorts"] = sorts
        payload = await _request("POST", f"/databases/{database_id}/query", json=body)
        pages.extend(payload.get("results") or [])
        if not payload.get("has_more"):
            return pages
        cursor = payload.get("next_cursor")
        if not cursor or cursor in seen_cursors:
            logger.warning("Notion query for %s returned a repeated cursor; stopping.", database_id)
            return pages
        seen_cursors.add(cursor)
    logger.warning("Notion query for %s hit the %d page guard.", database_id, MAX_QUERY_PAGES)
    return pages


async def create_page(database_id: str, properties: dict, page_icon: dict | None = None) -> dict:
    body: dict = {"parent": {"database_id": database_id}, "properties": properties}
    if page_icon:
        body["icon"] = page_icon
    return await _request("POST", "/pages", json=body)


async def update_page(
    page_id: str,
    properties: dict | None = None,
    page_icon: dict | None = None,
    archived: bool | None = None,
) -> dict:
    body: dict = {}
    if properties:
        body["properties"] = properties
    if page_icon:
        body["icon"] = page_icon
    if archived is not None:
        body["archived"] = archived
    return await _request("PATCH", f"/pages/{page_id}", json=body)


async def archive_page(page_id: str) -> dict:
    return await update_page(page_id, archived=True)


async def upload_file(
    content: bytes,
    filename: str,
    content_type: str,
    sleep=asyncio.sleep,
) -> str | None:
    """Upload bytes through Notion's single-part file upload.

    Returns the file_upload id once Notion reports it as ``uploaded``, or None
    on any failure.
    """
    try:
        created = await _request(
            "POST",
            "/file_uploads",
            json={
                "mode": "single_part",
                "filename": filename,
                "content_type": content_type,
                "content_length": len(content),
            },
        )
        upload_id = created.get("id")
        if not upload_id:
            logger.error("Notion returned no file upload id for %s", filename)
            return None

        async with http_fetch.build_client(NOTION_TIMEOUT) as client:
            response = await client.post(
                f"{NOTION_API}/file_uploads/{upload_id}/send",
                headers=_headers(content_type=None),
                files={"file": (filename, content, content_type)},
            )
        if not response.is_success:
            logger.error("Failed to send file to Notion: %s %s", response.status_code, response.reason_phrase)
            return None
        sent = response.json()

        status = sent.get("status") or created.get("status")
        attempts = 0
        while status != "uploaded" and attempts < UPLOAD_POLL_ATTEMPTS:
            await sleep(UPLOAD_POLL_INTERVAL)
            status = (await _request("GET", f"/file_uploads/{upload_id}")).get("status")
            if status in {"failed", "expired"}:
                logger.error("Notion file upload %s ended as %s", upload_id, status)
                return None
            attempts += 1
        if status != "uploaded":
            logger.error("Notion file upload %s did not complete in time, status: %s", upload_id, status)
            return None
        return upload_id
    except (NotionAPIError, httpx.HTTPError) as exc:
        logger.error("Error uploading file to Notion: %s", exc)
        return None


def _image_extension(url: str, content_type: str) -> str:
    match = re.search(r"\.(jpg|jpeg|png|gif|webp)$", urlparse(url).path, re.IGNORECASE)
    if match:
        return match.group(1).lower()
    if "png" in content_type:
        return "png"
    if "gif" in content_type:
        return "gif"
    if "webp" in content_type:
        return "webp"
    return "jpg"


async def upload_image_url(image_url: str, name: str) -> str | None:
    try:
        response = await http_fetch.fetch_with_timeout(
            image_url,
            headers={"User-Agent": BROWSER_USER_AGENT},
        )
    except (http_fetch.ExternalFetchError, httpx.HTTPError) as exc:
        logger.warning("Could not download image %s: %s", image_url, exc)
        return None
    if not response.is_success:
        logger.warning("Image download for %s returned %s", image_url, response.status_code)
        return None
    content_type = response.headers.get("content-type", "").split(";")[0].strip()
    if not content_type.startswith("image/"):
        logger.warning("Image download for %s returned %s, not an image", image_url, content_type or "no type")
        return None
    extension = _image_extension(image_url, content_type)
    safe_name = re.sub(r"[^A-Za-z0-9_-]+", "-", name).strip("-")[:80] or "image"
    return await upload_file(response.content, f"{safe_name}.{extension}", content_type)
