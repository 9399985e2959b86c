"""Worker thread logic for handling individual client connections."""

import logging
import socket
from typing import Optional

from service_template.domain.http_types import HttpRequest, HttpResponse
from service_template.domain.request_context import clear_request_context, get_logger
from service_template.domain.response_builders import (
    bad_request_response,
    entity_too_large_response,
)
from service_template.errors import MalformedRequest, RequestEntityTooLarge
from service_template.pipeline.io import receive_request, send_response
from service_template.transport.context import WorkerContext

WORKER_LOGGER = get_logger("transport.worker")

POLL_INTERVAL_SECONDS = 0.5


def _send(
    client_socket: socket.socket, response: HttpResponse, timeout: float
) -> None:
    client_socket.settimeout(timeout)
    try:
        send_response(client_socket, response)
    finally:
        client_socket.settimeout(POLL_INTERVAL_SECONDS)


def _read_request(
    client_socket: socket.socket,
    buffer: bytes,
    client: str,
    context: WorkerContext,
) -> tuple[Optional[HttpRequest], bytes]:
    """Read the next request, answering unparseable input with 400/413."""
    try:
        return receive_request(
            client_socket, buffer, client, context.idle_timeout, context.is_draining
        )
    except RequestEntityTooLarge:
        WORKER_LOGGER.warning(
            "Request body size exceeded limit",
            extra={"event": "body_size_exceeded", "client": client},
        )
        _send(client_socket, entity_too_large_response(), context.idle_timeout)
    except MalformedRequest as error:
        WORKER_LOGGER.warning(
            "Malformed request received",
            extra={"event": "malformed_request", "client": client, "error": str(error)},
        )
        _send(client_socket, bad_request_response(), context.idle_timeout)
    return None, b""


def _close_socket(client_socket: socket.socket, client: str) -> None:
    try:
        client_socket.shutdown(socket.SHUT_WR)
    except OSError:
        pass
    client_socket.close()
    if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
        WORKER_LOGGER.debug(
            "Socket closed", extra={"event": "socket_closed", "client": client}
        )


def handle_connection(
    client_socket: socket.socket,
    client_address: tuple,
    context: WorkerContext,
) -> None:
    """Serve requests on a client socket until it closes or the server drains."""
    buffer = b""
    client = f"{client_address[0]}:{client_address[1]}"
    client_socket.settimeout(POLL_INTERVAL_SECONDS)

    try:
        while True:
            request, buffer = _read_request(client_socket, buffer, client, context)
            if request is None:
                break

            response = context.handler(request)
            if context.is_draining():
                response.close_connection = True
            _send(client_socket, response, context.idle_timeout)
            clear_request_context()

            if response.close_connection:
                break
    except (ConnectionError, TimeoutError, OSError) as error:
        WORKER_LOGGER.info(
            "Client connection ended",
            extra={
                "event": "connection_error",
                "client": client,
                "error_type": type(error).__name__,
            },
        )
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Unexpected error in worker",
            extra={
                "event": "worker_error",
                "client": client,
                "error_type": type(error).__name__,
                "error": str(error),
            },
            exc_info=True,
        )
    finally:
        clear_request_context()
        try:
            _close_socket(client_socket, client)
        finally:
            context.release(client_socket)
