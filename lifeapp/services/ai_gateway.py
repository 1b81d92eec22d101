from __future__ import annotations

import logging

import httpx

from lifeapp.settings import get_settings
from lifeapp.services import http_fetch

logger = logging.getLogger(__name__)

AI_TIMEOUT = 60


class AIGatewayError(RuntimeError):
    pass


async def chat_completion(
    messages: list[dict],
    model: str | None = None,
    temperature: float = 0.7,
    max_tokens: int | None = None,
) -> str:
    """Send an OpenAI-compatible chat completion through the gateway and return the text."""
    settings = get_settings()
    if not settings.ai_gateway_api_key:
        raise AIGatewayError("AI_GATEWAY_API_KEY is not configured")
    body: dict = {
        "model": model or settings.ai_gateway_model,
        "messages": messages,
        "temperature": temperature,
    }
    if max_tokens:
        body["max_tokens"] = max_tokens
    url = f"{settings.ai_gateway_base_url.rstrip('/')}/chat/completions"
    try:
        async with http_fetch.build_client(AI_TIMEOUT) as client:
            response = await client.post(
                url,
                json=body,
                headers={"Authorization": f"Bearer {settings.ai_gateway_api_key}"},
            )
    except httpx.HTTPError as exc:
        raise AIGatewayError(f"AI Gateway request failed: {exc}") from exc
    if not response.is_success:
        try:
            message = (response.json().get("error") or {}).get("message")
        except (ValueError, AttributeError):
            message = None
        raise AIGatewayError(f"AI Gateway request failed ({response.status_code}): {message or response.text}")
    choices = response.json().get("choices") or []
    if not choices:
        raise AIGatewayError("AI Gateway returned no choices")
    return (choices[0].get("message") or {}).get("content") or ""
