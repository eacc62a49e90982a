"""SSE delta parsing and the client-side AI chat session against a mocked gateway."""
from __future__ import annotations

import json

import httpx
import pytest

from uniconnect.errors import ValidationError
from uniconnect.services.ai_chat import DEFAULT_ERROR_MESSAGE, AIChatClient, AIChatSession, SSEDeltaParser

ENDPOINT = "http://gateway.test/functions/v1/ai-chat"


def _frame(content: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]}) + "\n"


def test_parser_joins_frames_split_across_chunks():
    parser = SSEDeltaParser()
    frame = _frame("Hello")

    assert parser.feed(frame[:20]) == []
    assert parser.feed(frame[20:] + _frame(" world")) == ["Hello", " world"]


def test_parser_skips_comments_blank_lines_and_role_only_frames():
    parser = SSEDeltaParser()
    chunk = ": keep-alive\n\r\n" + 'data: {"choices":[{"delta":{"role":"assistant"}}]}\r\n' + _frame("Hi")

    assert parser.feed(chunk) == ["Hi"]


def test_parser_waits_when_a_frame_is_not_yet_valid_json():
    parser = SSEDeltaParser()

    assert parser.feed('data: {"choices":[{"delta":\n') == []
    assert parser.feed(_frame("later")) == []


def test_parser_stops_at_done():
    parser = SSEDeltaParser()

    assert parser.feed(_frame("last") + "data: [DONE]\n" + _frame("ignored")) == ["last"]
    assert parser.done
    assert parser.feed(_frame("more")) == []
    assert parser.flush() == []


def test_flush_parses_a_trailing_frame_without_newline():
    parser = SSEDeltaParser()

    assert parser.feed(_frame("a") + _frame("b").rstrip("\n")) == ["a"]
    assert parser.flush() == ["b"]


def _session(handler) -> AIChatSession:
    client = AIChatClient(endpoint=ENDPOINT, api_key="public-key", transport=httpx.MockTransport(handler))
    return AIChatSession("student", client=client)


def _sse(*parts: str) -> httpx.Response:
    body = "".join(_frame(part) for part in parts) + "data: [DONE]\n"
    return httpx.Response(200, content=body.encode(), headers={"content-type": "text/event-stream"})


async def test_session_streams_reply_and_sends_history():
    requests: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append({"body": json.loads(request.content), "auth": request.headers.get("authorization")})
        return _sse("Spaced ", "repetition ", "works.")

    session = _session(handler)
    updates = 0

    def listener() -> None:
        nonlocal updates
        updates += 1

    session.add_listener(listener)
    reply = await session.send_message("  How do I revise?  ")

    assert reply.content == "Spaced repetition works."
    assert reply.error is None
    assert [(m.role, m.content) for m in session.messages] == [
        ("user", "How do I revise?"),
        ("assistant", "Spaced repetition works."),
    ]
    assert not session.is_loading
    assert updates >= 4
    assert requests[0]["body"] == {"messages": [{"role": "user", "content": "How do I revise?"}], "role": "student"}
    assert requests[0]["auth"] == "Bearer public-key"

    await session.send_message("Thanks")
    assert [turn["role"] for turn in requests[1]["body"]["messages"]] == ["user", "assistant", "user"]


@pytest.mark.parametrize(
    ("status", "body", "kind", "message"),
    [
        (429, {"error": "Rate limit exceeded. Please try again in a moment."}, "rate_limited",
         "Rate limit exceeded. Please try again in a moment."),
        (402, {"error": "AI credits exhausted. Please contact the administrator."}, "quota_exhausted",
         "AI credits exhausted. Please contact the administrator."),
        (500, {}, "failed", "Error 500"),
    ],
)
async def test_gateway_errors_become_error_bubbles(status, body, kind, message):
    session = _session(lambda request: httpx.Response(status, json=body))

    reply = await session.send_message("hello")

    assert reply.error == kind
    assert reply.content == f"⚠️ {message}"
    assert session.messages[-1] is reply
    assert not session.is_loading


async def test_non_json_error_body_uses_default_message():
    session = _session(lambda request: httpx.Response(502, content=b"<html>bad gateway</html>"))

    reply = await session.send_message("hello")

    assert reply.content == f"⚠️ {DEFAULT_ERROR_MESSAGE}"


async def test_transport_failure_becomes_error_bubble():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    reply = await _session(handler).send_message("hello")

    assert reply.error == "failed"
    assert reply.content == f"⚠️ {DEFAULT_ERROR_MESSAGE}"


async def test_error_bubbles_are_left_out_of_history():
    calls: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content))
        if len(calls) == 1:
            return httpx.Response(429, json={"error": "slow down"})
        return _sse("ok")

    session = _session(handler)
    await session.send_message("first")
    await session.send_message("second")

    assert calls[1]["messages"] == [
        {"role": "user", "content": "first"},
        {"role": "user", "content": "second"},
    ]


async def test_empty_message_and_clear():
    session = _session(lambda request: _sse("hi"))

    with pytest.raises(ValidationError):
        await session.send_message("   ")

    await session.send_message("hello")
    session.clear_messages()
    assert session.messages == []
