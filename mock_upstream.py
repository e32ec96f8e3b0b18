import asyncio
import json
import os
import uuid
from typing import Optional

from fastapi import FastAPI, Header
from fastapi.responses import JSONResponse, StreamingResponse

from models import UpstreamEnvelope

# Config from environment
MOCK_PORT = int(os.getenv("MOCK_PORT", "8081"))

TEXT_DELTA = "assistant_message.content_part.text_delta"


def sse(event) -> str:
    payload = event if isinstance(event, str) else json.dumps(event)
    return f"data: {payload}\n\n"


async def char_stream(text: str, thread_id: str, send_done: bool = True):
    """Generate chatkit SSE events for a reply, one character at a time.

    Deltas alternate between the wrapped ``update.entry`` shape and the bare
    ``update`` shape, and are surrounded by events the gateway should ignore.
    """
    item_id = f"msg_{uuid.uuid4().hex[:12]}"
    yield sse({"type": "thread.created", "thread": {"id": thread_id}})
    yield sse({"type": "thread.item_added", "item": {"id": item_id, "type": "assistant_message"}})
    for i, char in enumerate(text):
        part = {"type": TEXT_DELTA, "content_index": 0, "delta": char}
        update = {"entry": part} if i % 2 == 0 else part
        yield sse({"type": "thread.item_updated", "item_id": item_id, "update": update})
        await asyncio.sleep(0)  # yield to event loop
    yield sse({"type": "thread.item_done", "item": {"id": item_id}})
    if send_done:
        yield sse("[DONE]")


def build_mock_app(status_code: int = 200, send_done: bool = True) -> FastAPI:
    """Mock chatkit upstream that answers "Mock: <user text>".

    A non-2xx ``status_code`` makes every call fail with that status.
    """
    mock = FastAPI()

    @mock.get("/healthz")
    async def healthz():
        """Health check endpoint."""
        return {"status": "ok"}

    @mock.post("/chatkit")
    async def chatkit(
        envelope: UpstreamEnvelope,
        selected_model: Optional[str] = Header(None, alias="x-selected-model"),
    ):
        if status_code >= 400:
            return JSONResponse({"error": "mock failure"}, status_code=status_code)
        if not selected_model:
            return JSONResponse({"error": "missing x-selected-model"}, status_code=400)

        thread_id = f"thr_{uuid.uuid4().hex[:12]}"
        text = f"Mock: {envelope.params.input.text}"
        return StreamingResponse(
            char_stream(text, thread_id, send_done=send_done),
            media_type="text/event-stream",
        )

    return mock


app = build_mock_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=MOCK_PORT)
