"""Re-encode upstream text deltas as OpenAI chat completion responses."""

import asyncio
import logging
import time
import uuid
from typing import AsyncGenerator, AsyncIterator

from models import (
    AssistantMessage,
    ChatCompletion,
    ChatCompletionChunk,
    Choice,
    DeltaMessage,
    StreamChoice,
    Usage,
)

logger = logging.getLogger(__name__)

SSE_DONE_FRAME = "data: [DONE]\n\n"

_END = object()


class _Failure:
    def __init__(self, exc: BaseException) -> None:
        self.exc = exc


class DeltaChannel:
    """Bounded queue between the upstream reader task and the response writer.

    The reader runs as its own task so upstream bytes keep being decoded while
    the writer is suspended on the client, up to ``maxsize`` pending deltas.
    Leaving the context cancels the reader and closes the source.
    """

    def __init__(self, source: AsyncGenerator[str, None], maxsize: int = 64) -> None:
        self._source = source
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task | None = None

    async def __aenter__(self) -> "DeltaChannel":
        self._task = asyncio.create_task(self._pump())
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _pump(self) -> None:
        try:
            async for delta in self._source:
                await self._queue.put(delta)
        except Exception as exc:
            await self._queue.put(_Failure(exc))
            return
        finally:
            # Runs in this task, so cleanup survives the writer being cancelled.
            await self._source.aclose()
        await self._queue.put(_END)

    async def __aiter__(self) -> AsyncIterator[str]:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, _Failure):
                raise item.exc
            yield item

    async def aclose(self) -> None:
        if self._task is None:
            await self._source.aclose()
        elif not self._task.done():
            self._task.cancel()
            await asyncio.wait([self._task])


def new_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4()}"


def format_sse(payload: ChatCompletionChunk) -> str:
    return f"data: {payload.model_dump_json()}\n\n"


class ResponseTranslator:
    """Build buffered or streamed OpenAI responses from a delta sequence."""

    async def aggregate(self, deltas: AsyncIterator[str], model: str) -> ChatCompletion:
        """Collect every delta into one chat.completion object.

        Nothing is returned until the source is exhausted; if it fails the
        error propagates and the partial text is dropped.
        """
        parts = []
        async for delta in deltas:
            parts.append(delta)

        return ChatCompletion(
            id=new_completion_id(),
            created=int(time.time()),
            model=model,
            choices=[
                Choice(
                    index=0,
                    message=AssistantMessage(content="".join(parts)),
                    finish_reason="stop",
                )
            ],
            usage=Usage(),
        )

    async def stream_chunks(
        self, deltas: AsyncIterator[str], model: str
    ) -> AsyncIterator[str]:
        """Yield one SSE frame per delta, then the stop chunk and [DONE].

        A failing source propagates out of this generator without any further
        frames, so the client sees the stream cut short rather than a [DONE].
        """
        completion_id = new_completion_id()
        created = int(time.time())

        def chunk(delta: DeltaMessage, finish_reason: str | None) -> str:
            return format_sse(
                ChatCompletionChunk(
                    id=completion_id,
                    created=created,
                    model=model,
                    choices=[
                        StreamChoice(index=0, delta=delta, finish_reason=finish_reason)
                    ],
                )
            )

        count = 0
        async for delta in deltas:
            count += 1
            yield chunk(DeltaMessage(content=delta), None)

        logger.debug("Stream %s finished after %d deltas", completion_id, count)
        yield chunk(DeltaMessage(), "stop")
        yield SSE_DONE_FRAME
