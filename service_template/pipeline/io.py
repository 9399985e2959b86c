"""HTTP input/output over blocking sockets."""

import socket
import time
import urllib.parse
from typing import Callable, Optional, Tuple

from service_template.domain.http_types import (
    REQUEST_ID_HEADER,
    HttpRequest,
    HttpResponse,
)
from service_template.domain.request_context import get_logger, get_request_id
from service_template.errors import MalformedRequest, RequestEntityTooLarge

IO_LOGGER = get_logger("pipeline.io")

HEADER_DELIMITER = b"\r\n\r\n"
RECV_SIZE = 4096
MAX_HEADER_BYTES = 16 * 1024
MAX_BODY_BYTES = 1024 * 1024
SUPPORTED_VERSIONS = {"HTTP/1.0", "HTTP/1.1"}


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Convert raw header lines into a lowercase-keyed dictionary."""
    parsed = {}
    for line in lines:
        if not line:
            continue
        name, separator, value = line.partition(":")
        if not separator or not name.strip():
            raise MalformedRequest(f"Invalid header line: {line!r}")
        parsed[name.strip().lower()] = value.strip()
    return parsed


def parse_request_line(request_line: str) -> Tuple[str, str, str]:
    """Parse the method, decoded path and protocol version from the request line."""
    parts = request_line.split(" ")
    if len(parts) != 3:
        raise MalformedRequest("Invalid request line")
    method, target, version = parts
    if not method.isalpha() or version not in SUPPORTED_VERSIONS:
        raise MalformedRequest("Invalid request line")
    if not target.startswith("/"):
        raise MalformedRequest("Invalid request target")

    path = urllib.parse.unquote(urllib.parse.urlsplit(target).path)
    return method.upper(), path, version


def determine_content_length(headers: dict[str, str]) -> int:
    """Validate and return the declared Content-Length for the request."""
    header_value = headers.get("content-length")
    if header_value is None:
        return 0
    try:
        content_length = int(header_value)
    except ValueError as exc:
        raise MalformedRequest("Invalid Content-Length") from exc
    if content_length < 0:
        raise MalformedRequest("Negative Content-Length")
    if content_length > MAX_BODY_BYTES:
        raise RequestEntityTooLarge
    return content_length


def _recv_chunk(
    client_socket: socket.socket,
    awaiting_request: bool,
    deadline: float,
    stop_waiting: Callable[[], bool],
) -> Optional[bytes]:
    """Receive one chunk, polling on the socket timeout.

    Returns None when the connection is idle between requests and
    ``stop_waiting`` asks for it to be released.
    """
    while True:
        try:
            return client_socket.recv(RECV_SIZE)
        except socket.timeout:
            if awaiting_request and stop_waiting():
                return None
            if time.monotonic() >= deadline:
                raise TimeoutError("Client idle timeout exceeded") from None


def receive_request(
    client_socket: socket.socket,
    buffer: bytes,
    client: str,
    idle_timeout: float,
    stop_waiting: Callable[[], bool] = lambda: False,
) -> Tuple[Optional[HttpRequest], bytes]:
    """Read bytes from the socket until a complete request is available.

    Returns ``(None, b"")`` when the peer disconnects or when the connection
    is idle and ``stop_waiting`` returns True.
    """
    deadline = time.monotonic() + idle_timeout
    while HEADER_DELIMITER not in buffer:
        if len(buffer) > MAX_HEADER_BYTES:
            raise MalformedRequest("Header block too large")
        chunk = _recv_chunk(client_socket, not buffer, deadline, stop_waiting)
        if not chunk:
            return None, b""
        buffer += chunk

    header_block, remainder = buffer.split(HEADER_DELIMITER, 1)
    try:
        header_lines = header_block.decode("iso-8859-1").split("\r\n")
    except UnicodeDecodeError as exc:
        raise MalformedRequest("Undecodable header block") from exc
    method, path, version = parse_request_line(header_lines[0])
    headers = parse_headers(header_lines[1:])
    content_length = determine_content_length(headers)

    while len(remainder) < content_length:
        chunk = _recv_chunk(client_socket, False, deadline, stop_waiting)
        if not chunk:
            return None, b""
        remainder += chunk

    body = remainder[:content_length]
    leftover = remainder[content_length:]
    IO_LOGGER.debug(
        "Parsed request", extra={"method": method, "path": path, "client": client}
    )
    return HttpRequest(method, path, headers, body, version, client), leftover


def send_response(client_socket: socket.socket, response: HttpResponse) -> None:
    """Serialize and send the HTTP response over the socket."""
    headers = dict(response.headers)

    request_id = get_request_id()
    if request_id and REQUEST_ID_HEADER not in headers:
        headers[REQUEST_ID_HEADER] = request_id

    headers["Content-Length"] = str(len(response.body))
    if response.close_connection:
        headers["Connection"] = "close"
    header_lines = [response.status_line]
    header_lines.extend(f"{name}: {value}" for name, value in headers.items())
    header_block = "\r\n".join(header_lines).encode("iso-8859-1") + HEADER_DELIMITER
    client_socket.sendall(header_block + response.body)
    IO_LOGGER.debug("Sent response", extra={"status_code": response.status})
