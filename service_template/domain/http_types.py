"""Shared HTTP type definitions to avoid circular imports."""

from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Callable

REQUEST_ID_HEADER = "X-Request-ID"


@dataclass
class HttpRequest:
    """Represents a parsed HTTP request."""

    method: str
    path: str
    headers: dict[str, str]
    body: bytes = b""
    version: str = "HTTP/1.1"
    client: str = "-"


@dataclass
class HttpResponse:
    """Represents an HTTP response to be sent to a client."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    close_connection: bool = False

    @property
    def status_line(self) -> str:
        """Return the status line; unregistered codes get an empty reason phrase."""
        try:
            phrase = HTTPStatus(self.status).phrase
        except ValueError:
            phrase = ""
        return f"HTTP/1.1 {self.status} {phrase}"


Handler = Callable[[HttpRequest], HttpResponse]
Middleware = Callable[[Handler], Handler]


def should_close(request: HttpRequest) -> bool:
    """Determine whether the connection should be closed after responding."""
    connection = request.headers.get("connection", "").lower()
    if connection == "close":
        return True
    if request.version == "HTTP/1.0":
        return connection != "keep-alive"
    return False
