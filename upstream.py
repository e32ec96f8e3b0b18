"""Client for the GPT-OSS chatkit upstream.

The upstream answers a ``threads.create`` call with its own SSE envelope.
Text arrives in ``thread.item_updated`` events; everything else on the wire
(thread bookkeeping, reasoning, ``[DONE]``) is ignored here.
"""

import json
import logging
from typing import AsyncIterator

import httpx
from pydantic import ValidationError

from config import Settings
from errors import UpstreamError
from models import (
    EnvelopeParams,
    InputTextPart,
    ItemUpdatedEvent,
    Message,
    UpstreamEnvelope,
    UpstreamInput,
)

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
ITEM_UPDATED = "thread.item_updated"


def extract_last_user_message(messages: list[Message]) -> str:
    """Extract content from the last user message."""
    for msg in reversed(messages):
        if msg.role == "user":
            return msg.text()
    return ""


def build_envelope(text: str) -> dict:
    """Wrap user text in the threads.create envelope.

    The upstream rejects the call unless the text is sent both plain and as
    content parts, alongside empty quoted_text and attachments.
    """
    envelope = UpstreamEnvelope(
        params=EnvelopeParams(
            input=UpstreamInput(text=text, content=[InputTextPart(text=text)])
        )
    )
    return envelope.model_dump()


def build_headers(model: str) -> dict[str, str]:
    return {
        "accept": "text/event-stream",
        "x-reasoning-effort": "high",
        "x-selected-model": model,
        "x-show-reasoning": "true",
    }


class SSELineDecoder:
    """Reassemble newline-delimited SSE lines from arbitrary text chunks.

    Lines longer than ``max_line_length`` are dropped whole, however the
    transport happened to split them.
    """

    def __init__(self, max_line_length: int = 1024 * 1024) -> None:
        self.max_line_length = max_line_length
        self._buffer = ""
        self._discarding = False

    def _drop(self) -> None:
        logger.warning(
            "Dropping SSE line longer than %d characters", self.max_line_length
        )

    def feed(self, text: str) -> list[str]:
        if not text:
            return []

        parts = (self._buffer + text).split("\n")
        self._buffer = parts.pop()

        lines = []
        for part in parts:
            if self._discarding:
                # Tail of an oversized line, already reported.
                self._discarding = False
                continue
            if len(part) > self.max_line_length:
                self._drop()
                continue
            lines.append(part.rstrip("\r"))

        if len(self._buffer) > self.max_line_length:
            if not self._discarding:
                self._drop()
            self._buffer = ""
            self._discarding = True
        return lines

    def flush(self) -> list[str]:
        """Return whatever is left once the stream has ended."""
        tail = self._buffer
        self._buffer = ""
        if self._discarding or not tail:
            self._discarding = False
            return []
        return [tail.rstrip("\r")]


def parse_sse_line(line: str) -> str | None:
    """Return the text delta carried by one SSE line, if any.

    Malformed JSON is logged and skipped so a bad frame never ends the stream.
    """
    if not line.startswith("data:"):
        return None

    payload = line[5:].strip()
    if not payload or payload == DONE_SENTINEL:
        return None

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        logger.warning("Error parsing SSE data: %s (%r)", exc, payload[:200])
        return None

    if not isinstance(data, dict) or data.get("type") != ITEM_UPDATED:
        return None

    try:
        event = ItemUpdatedEvent.model_validate(data)
    except ValidationError:
        return None
    return event.part.delta


class UpstreamClient:
    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self._client = client
        self.settings = settings

    @property
    def timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            self.settings.upstream_timeout,
            connect=self.settings.upstream_connect_timeout,
        )

    async def connect(self, model: str, messages: list[Message]) -> httpx.Response:
        """Open the upstream stream and check its status.

        The returned response is still streaming; hand it to ``iter_deltas``,
        which closes it.
        """
        text = extract_last_user_message(messages)
        request = self._client.build_request(
            "POST",
            self.settings.upstream_url,
            json=build_envelope(text),
            headers=build_headers(model),
            timeout=self.timeout,
        )

        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Error in GPT-OSS communication: {exc!r}") from exc

        if not response.is_success:
            await response.aclose()
            raise UpstreamError(
                f"API request failed with status {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def iter_deltas(self, response: httpx.Response) -> AsyncIterator[str]:
        """Decode the upstream SSE body into text deltas, in arrival order."""
        decoder = SSELineDecoder(self.settings.max_line_length)
        if response.charset_encoding is None:
            # SSE bodies are UTF-8 whatever the content-type omits.
            response.encoding = "utf-8"
        try:
            async for chunk in response.aiter_text():
                for line in decoder.feed(chunk):
                    delta = parse_sse_line(line)
                    if delta is not None:
                        yield delta
            for line in decoder.flush():
                delta = parse_sse_line(line)
                if delta is not None:
                    yield delta
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Error in GPT-OSS communication: {exc!r}") from exc
        finally:
            await response.aclose()

    async def chat_completion(
        self, model: str, messages: list[Message], stream: bool = True
    ) -> AsyncIterator[str]:
        """Send one chat request upstream and yield its text deltas.

        The upstream always streams; ``stream`` only matters to the caller
        deciding how to present the deltas.
        """
        response = await self.connect(model, messages)
        async for delta in self.iter_deltas(response):
            yield delta
