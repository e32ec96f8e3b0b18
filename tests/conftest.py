"""Shared fixtures and helpers for gateway tests."""

from __future__ import annotations

import json
from typing import Any, Iterable

import httpx
import pytest

from config import Settings

UPSTREAM_URL = "http://upstream.local/chatkit"


def delta_event(delta: str, wrapped: bool = True) -> dict[str, Any]:
    """Build a chatkit text delta event in either accepted shape."""
    part = {"type": "assistant_message.content_part.text_delta", "delta": delta}
    return {"type": "thread.item_updated", "update": {"entry": part} if wrapped else part}


def sse_bytes(events: Iterable[Any]) -> bytes:
    """Encode events (dicts or raw strings) as an SSE body."""
    out = []
    for event in events:
        payload = event if isinstance(event, str) else json.dumps(event)
        out.append(f"data: {payload}\n\n")
    return "".join(out).encode("utf-8")


def sse_transport(
    chunks: Iterable[bytes] | None = None,
    *,
    status_code: int = 200,
    error: Exception | None = None,
    seen: list[httpx.Request] | None = None,
) -> httpx.MockTransport:
    """Fake upstream that replays ``chunks`` as separate body reads.

    ``error`` is raised after the last chunk to simulate a broken connection.
    ``seen`` collects the requests the transport received.
    """
    chunks = list(chunks or [])

    async def body():
        for chunk in chunks:
            yield chunk
        if error is not None:
            raise error

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if status_code >= 400:
            return httpx.Response(status_code, json={"error": "unavailable"})
        return httpx.Response(
            status_code,
            headers={"content-type": "text/event-stream"},
            content=body(),
        )

    return httpx.MockTransport(handler)


def parse_frames(body: str) -> list[str]:
    """Split an SSE response body into frame payloads."""
    frames = []
    for block in body.split("\n\n"):
        if block.startswith("data: "):
            frames.append(block[len("data: "):])
    return frames


@pytest.fixture
def settings() -> Settings:
    return Settings(upstream_url=UPSTREAM_URL, queue_size=4)


@pytest.fixture
def gateway(settings):
    """Build a TestClient for the gateway with an injected upstream transport."""
    from fastapi.testclient import TestClient

    from app import create_app

    clients = []

    def _make(transport: httpx.AsyncBaseTransport, **kwargs) -> TestClient:
        client = TestClient(create_app(settings, upstream_transport=transport), **kwargs)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)
