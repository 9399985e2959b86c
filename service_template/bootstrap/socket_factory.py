"""Listening socket creation."""

import socket

from service_template.domain.request_context import get_logger
from service_template.errors import BindError

SOCKET_LOGGER = get_logger("bootstrap.socket")
ACCEPT_POLL_SECONDS = 0.5


def create_server_socket(address: str, port: int) -> socket.socket:
    """Bind and listen on ``address:port``.

    Raises:
        BindError: Raised when the address cannot be bound.
    """
    try:
        server_socket = socket.create_server((address, port))
    except OSError as error:
        raise BindError(f"failed to bind {address}:{port}: {error}") from error
    server_socket.settimeout(ACCEPT_POLL_SECONDS)
    SOCKET_LOGGER.debug(
        "Listening socket bound",
        extra={"event": "socket_bound", "host": address, "port": port},
    )
    return server_socket
