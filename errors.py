"""Gateway exceptions and how they map onto OpenAI-style error responses."""


class GatewayError(Exception):
    """Base exception for gateway errors."""

    status_code = 500
    error_type = "server_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def public_message(self) -> str:
        return self.message


class InvalidRequestError(GatewayError):
    """Raised when an incoming request fails validation."""

    status_code = 400
    error_type = "invalid_request_error"


class NotFoundError(GatewayError):
    """Raised for paths or methods the gateway does not serve."""

    status_code = 404
    error_type = "invalid_request_error"

    def __init__(self, path: str) -> None:
        super().__init__(f"Path {path} not found")
        self.path = path


class UpstreamError(GatewayError):
    """Raised when the upstream service fails or cannot be reached.

    The message is kept for logs only; clients receive a generic 500.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.upstream_status = status_code

    @property
    def public_message(self) -> str:
        return "Internal server error"
