"""Gateway that forwards AI chat conversations to the hosted LLM and streams tokens back."""
from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Header
from fastapi.responses import JSONResponse, Response, StreamingResponse

from ..config import get_settings, is_placeholder
from ..schemas.ai_chat import AIChatRequest, AssistantMode

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["ai"])

RATE_LIMITED_MESSAGE = "Rate limit exceeded. Please try again in a moment."
QUOTA_EXHAUSTED_MESSAGE = "AI credits exhausted. Please contact the administrator."
UNAVAILABLE_MESSAGE = "AI service temporarily unavailable."

_SYSTEM_PROMPTS: dict[str, str] = {
    "student": (
        "You are UniBot, the assistant of UniConnect Hub, a university social and study platform. "
        "Help students with questions about the platform, research, study techniques and campus life. "
        "Keep answers clear, friendly and concise."
    ),
    "admin": (
        "You are the UniBot admin assistant for UniConnect Hub. Help platform administrators with "
        "moderation practice, user management and interpreting platform activity. Be professional and practical."
    ),
}

_gateway_transport: httpx.AsyncBaseTransport | None = None


def set_gateway_transport(transport: httpx.AsyncBaseTransport | None) -> None:
    """Override the upstream HTTP transport (used by tests)."""

    global _gateway_transport
    _gateway_transport = transport


def build_system_prompt(role: AssistantMode) -> str:
    return _SYSTEM_PROMPTS.get(role, _SYSTEM_PROMPTS["student"])


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _authorized(authorization: str | None, expected: str | None) -> bool:
    if is_placeholder(expected):
        return True
    scheme, _, token = (authorization or "").partition(" ")
    return scheme.lower() == "bearer" and token.strip() == (expected or "").strip()


@router.post("/ai-chat")
async def ai_chat(payload: AIChatRequest, authorization: str | None = Header(default=None)) -> Response:
    settings = get_settings()
    if not _authorized(authorization, settings.ai_chat_public_key):
        return _error("Unauthorized", 401)
    if is_placeholder(settings.ai_gateway_api_key):
        logger.error("AI_GATEWAY_API_KEY is not configured")
        return _error("AI_GATEWAY_API_KEY is not configured", 500)

    request_payload = {
        "model": settings.ai_model,
        "messages": [
            {"role": "system", "content": build_system_prompt(payload.role)},
            *[turn.model_dump() for turn in payload.messages],
        ],
        "stream": True,
    }
    headers = {"Authorization": f"Bearer {settings.ai_gateway_api_key}"}

    client = httpx.AsyncClient(timeout=settings.ai_timeout, transport=_gateway_transport)
    stream_ctx = client.stream("POST", settings.ai_gateway_url, json=request_payload, headers=headers)
    try:
        upstream = await stream_ctx.__aenter__()
    except httpx.HTTPError:
        await client.aclose()
        logger.exception("Failed to reach AI gateway at %s", settings.ai_gateway_url)
        return _error(UNAVAILABLE_MESSAGE, 500)

    if not upstream.is_success:
        body = await upstream.aread()
        await stream_ctx.__aexit__(None, None, None)
        await client.aclose()
        if upstream.status_code == 429:
            return _error(RATE_LIMITED_MESSAGE, 429)
        if upstream.status_code == 402:
            return _error(QUOTA_EXHAUSTED_MESSAGE, 402)
        logger.error("AI gateway error: status=%s body=%s", upstream.status_code, body[:500])
        return _error(UNAVAILABLE_MESSAGE, 500)

    async def relay():
        try:
            async for chunk in upstream.aiter_bytes():
                if chunk:
                    yield chunk
        except httpx.HTTPError as exc:  # pragma: no cover - stream failure path
            logger.error("Streaming from AI gateway failed: %s", exc)
        finally:
            await stream_ctx.__aexit__(None, None, None)
            await client.aclose()

    return StreamingResponse(relay(), media_type="text/event-stream")


__all__ = ["router", "set_gateway_transport", "build_system_prompt"]
