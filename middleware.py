import logging

from starlette.datastructures import MutableHeaders
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from models import ErrorResponse

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


class CORSHeadersMiddleware:
    """Permissive CORS on every response, preflight answered directly.

    Also the last line of defence: anything the routes let escape becomes a
    generic 500 that still carries the CORS headers. Once a response has
    started the error is re-raised so the server aborts the connection.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if scope["method"] == "OPTIONS":
            await Response(status_code=204, headers=CORS_HEADERS)(scope, receive, send)
            return

        response_started = False

        async def send_with_cors(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
                headers = MutableHeaders(scope=message)
                for name, value in CORS_HEADERS.items():
                    headers[name] = value
            await send(message)

        try:
            await self.app(scope, receive, send_with_cors)
        except Exception:
            if response_started:
                logger.error("Response to %s aborted mid-stream", scope["path"], exc_info=True)
                raise
            logger.exception("Unhandled error serving %s %s", scope["method"], scope["path"])
            body = ErrorResponse.build("Internal server error", "server_error")
            response = JSONResponse(body.model_dump(), status_code=500, headers=CORS_HEADERS)
            await response(scope, receive, send)
