import logging
from contextlib import asynccontextmanager
from typing import Mapping, Optional

import httpx
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from starlette.background import BackgroundTask
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import DEFAULT_MODEL, Settings, build_model_registry, load_settings, setup_logging
from errors import GatewayError, InvalidRequestError, NotFoundError, UpstreamError
from middleware import CORSHeadersMiddleware
from models import ChatRequest, ErrorResponse, Message, ModelCard, ModelList
from translator import DeltaChannel, ResponseTranslator
from upstream import UpstreamClient

logger = logging.getLogger(__name__)

ENDPOINTS = ["GET /", "GET /v1/models", "POST /v1/chat/completions"]

router = APIRouter()


def parse_messages(items: list) -> list[Message]:
    """Keep the items that look like chat messages.

    Anything else is dropped rather than rejected; it can never be the user
    text sent upstream.
    """
    messages = []
    for item in items:
        try:
            messages.append(Message.model_validate(item))
        except ValidationError:
            logger.debug("Ignoring malformed message item %r", item)
    return messages


def parse_chat_request(body, models: Mapping[str, ModelCard]) -> ChatRequest:
    """Validate a raw chat completions body against the model registry."""
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object")

    model = body.get("model") or DEFAULT_MODEL
    if not isinstance(model, str) or model not in models:
        raise InvalidRequestError(f"Model '{model}' not found")

    messages = body.get("messages")
    if not isinstance(messages, list) or not messages:
        raise InvalidRequestError("Messages must be a non-empty array")

    return ChatRequest(
        model=model,
        messages=parse_messages(messages),
        stream=bool(body.get("stream") or False),
    )


async def read_json_body(request: Request):
    try:
        return await request.json()
    except ValueError as exc:
        raise InvalidRequestError("Request body must be a JSON object") from exc


@router.get("/")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "message": "GPT-OSS API Proxy is running",
        "endpoints": ENDPOINTS,
    }


@router.get("/v1/models")
async def list_models(request: Request):
    models = request.app.state.models
    return ModelList(data=list(models.values())).model_dump()


@router.post("/v1/chat/completions")
async def chat_completions(request: Request):
    """
    Relay a chat completion to the upstream.
    Streams OpenAI chunks when stream=true, otherwise returns one completion.
    """
    state = request.app.state
    chat_request = parse_chat_request(await read_json_body(request), state.models)
    model = chat_request.model
    logger.info(
        "Chat completion: model=%s stream=%s messages=%d",
        model,
        chat_request.stream,
        len(chat_request.messages),
    )

    upstream: UpstreamClient = state.upstream
    translator: ResponseTranslator = state.translator
    queue_size = state.settings.queue_size

    # Connect before answering so upstream failures still get a proper 500.
    upstream_response = await upstream.connect(model, chat_request.messages)

    if chat_request.stream:

        async def event_generator():
            deltas = upstream.iter_deltas(upstream_response)
            try:
                async with DeltaChannel(deltas, maxsize=queue_size) as channel:
                    async for frame in translator.stream_chunks(channel, model):
                        yield frame
            except UpstreamError as exc:
                logger.error("Upstream stream failed: %s", exc.message)
                raise

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            background=BackgroundTask(upstream_response.aclose),
        )

    deltas = upstream.iter_deltas(upstream_response)
    async with DeltaChannel(deltas, maxsize=queue_size) as channel:
        completion = await translator.aggregate(channel, model)
    return JSONResponse(content=completion.model_dump())


async def handle_gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    body = ErrorResponse.build(exc.public_message, exc.error_type)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Unknown paths and unsupported methods are both reported as 404.
    if exc.status_code in (404, 405):
        return await handle_gateway_error(request, NotFoundError(request.url.path))
    body = ErrorResponse.build(str(exc.detail), "invalid_request_error")
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


def create_app(
    settings: Optional[Settings] = None,
    upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the gateway application.

    ``upstream_transport`` replaces the network transport of the upstream
    client, e.g. with ``httpx.MockTransport`` or an ASGI app.
    """
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan: create and cleanup httpx client."""
        app.state.client = httpx.AsyncClient(transport=upstream_transport)
        app.state.upstream = UpstreamClient(app.state.client, settings)
        logger.info("Relaying to upstream %s", settings.upstream_url)
        yield
        await app.state.client.aclose()

    app = FastAPI(title="GPT-OSS API Proxy", lifespan=lifespan)
    app.state.settings = settings
    app.state.models = build_model_registry()
    app.state.translator = ResponseTranslator()

    app.include_router(router)
    app.add_exception_handler(GatewayError, handle_gateway_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_middleware(CORSHeadersMiddleware)
    return app


app = create_app()


def main() -> None:
    import uvicorn

    settings: Settings = app.state.settings
    setup_logging(settings.log_level)
    logger.info("Server starting on port %d...", settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
