"""Listening socket, accept loop and active-connection tracking."""

import errno
import socket
import threading
import time
from enum import Enum
from typing import Callable, Optional

from service_template.bootstrap.socket_factory import create_server_socket
from service_template.domain.http_types import Handler
from service_template.domain.request_context import get_logger
from service_template.errors import ShutdownError
from service_template.transport.context import WorkerContext
from service_template.transport.worker import handle_connection

LISTENER_LOGGER = get_logger("transport.listener")

ACCEPT_JOIN_SECONDS = 2.0
MAX_ACCEPT_BACKOFF_SECONDS = 1.0
# accept() failing with these means the listening socket itself is gone.
FATAL_ACCEPT_ERRNOS = {errno.EBADF, errno.EINVAL, errno.ENOTSOCK}


class ListenerState(Enum):
    SERVING = "serving"
    DRAINING = "draining"
    STOPPED = "stopped"


class HttpListener:
    """Owns the listening socket and the set of active client connections.

    Only the lifecycle controller drives state changes: ``start`` begins
    serving, ``stop_accepting`` closes the listening socket,
    ``wait_for_connections`` waits for in-flight requests and
    ``force_close`` tears down whatever is left.
    """

    def __init__(
        self,
        address: str,
        port: int,
        handler: Handler,
        socket_timeout: float = 60.0,
        on_failure: Optional[Callable[[BaseException], None]] = None,
    ) -> None:
        self._address = address
        self._port = port
        self._on_failure = on_failure
        self._lock = threading.Lock()
        self._state = ListenerState.STOPPED
        self._server_socket: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._connections: dict[socket.socket, threading.Thread] = {}
        self._context = WorkerContext(
            handler=handler,
            idle_timeout=socket_timeout,
            is_draining=self.is_draining,
            release=self._release,
        )

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def server_address(self) -> tuple:
        """Return the bound (host, port); useful when binding port 0."""
        if self._server_socket is None:
            raise RuntimeError("listener is not started")
        return self._server_socket.getsockname()[:2]

    def is_draining(self) -> bool:
        return self._state is not ListenerState.SERVING

    def active_connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def start(self) -> None:
        """Bind the socket and run the accept loop on a background thread.

        Raises:
            BindError: Raised when the address cannot be bound.
        """
        self._server_socket = create_server_socket(self._address, self._port)
        self._state = ListenerState.SERVING
        self._accept_thread = threading.Thread(
            target=self._accept_loop,
            args=(self._server_socket,),
            name="http-accept",
            daemon=True,
        )
        self._accept_thread.start()
        host, port = self.server_address
        LISTENER_LOGGER.info(
            "Server listening for connections",
            extra={"event": "server_listening", "host": host, "port": port},
        )

    def _accept_loop(self, server_socket: socket.socket) -> None:
        backoff = 0.0
        try:
            while self._state is ListenerState.SERVING:
                try:
                    client_socket, client_address = server_socket.accept()
                except socket.timeout:
                    continue
                except OSError as error:
                    if self._state is not ListenerState.SERVING:
                        break
                    if error.errno in FATAL_ACCEPT_ERRNOS:
                        raise
                    backoff = min(max(backoff * 2, 0.005), MAX_ACCEPT_BACKOFF_SECONDS)
                    LISTENER_LOGGER.error(
                        "Socket accept failed",
                        extra={
                            "event": "accept_error",
                            "error_type": type(error).__name__,
                            "error": str(error),
                        },
                    )
                    time.sleep(backoff)
                    continue
                backoff = 0.0
                self._spawn_worker(client_socket, client_address)
        except Exception as error:  # pylint: disable=broad-except
            LISTENER_LOGGER.error(
                "Accept loop terminated unexpectedly",
                extra={"event": "accept_loop_failed", "error": str(error)},
                exc_info=True,
            )
            if self._on_failure is not None:
                self._on_failure(error)

    def _spawn_worker(self, client_socket: socket.socket, client_address: tuple) -> None:
        LISTENER_LOGGER.debug(
            "Client connection accepted",
            extra={
                "event": "client_accepted",
                "client": f"{client_address[0]}:{client_address[1]}",
            },
        )
        thread = threading.Thread(
            target=handle_connection,
            args=(client_socket, client_address, self._context),
            daemon=True,
        )
        with self._lock:
            self._connections[client_socket] = thread
        thread.start()

    def _release(self, client_socket: socket.socket) -> None:
        with self._lock:
            self._connections.pop(client_socket, None)

    def stop_accepting(self) -> None:
        """Close the listening socket so new connection attempts are refused."""
        with self._lock:
            if self._state is not ListenerState.SERVING:
                return
            self._state = ListenerState.DRAINING
            server_socket = self._server_socket

        if server_socket is not None:
            try:
                server_socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            server_socket.close()
        if self._accept_thread is not None:
            self._accept_thread.join(timeout=ACCEPT_JOIN_SECONDS)
        LISTENER_LOGGER.info(
            "Stopped accepting connections",
            extra={
                "event": "listener_draining",
                "remaining_connections": self.active_connection_count(),
            },
        )

    def wait_for_connections(self, timeout: float) -> bool:
        """Wait for in-flight connections to finish within ``timeout`` seconds."""
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                self._connections = {
                    sock: worker
                    for sock, worker in self._connections.items()
                    if worker.is_alive()
                }
                active_workers = list(self._connections.values())
            if not active_workers:
                self._state = ListenerState.STOPPED
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                LISTENER_LOGGER.warning(
                    "Drain deadline exceeded",
                    extra={
                        "event": "drain_timeout",
                        "remaining_connections": len(active_workers),
                    },
                )
                return False
            for worker in active_workers:
                worker.join(timeout=min(0.1, remaining))
                if time.monotonic() >= deadline:
                    break

    def force_close(self) -> None:
        """Close every remaining client connection.

        Raises:
            ShutdownError: Raised when a connection cannot be closed.
        """
        with self._lock:
            remaining = list(self._connections)
        failures = []
        for client_socket in remaining:
            try:
                client_socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            try:
                client_socket.close()
            except OSError as error:
                failures.append(error)
        self._state = ListenerState.STOPPED
        LISTENER_LOGGER.warning(
            "Connections force-closed",
            extra={"event": "connections_closed", "remaining_connections": len(remaining)},
        )
        if failures:
            raise ShutdownError(
                f"failed to close {len(failures)} connection(s): {failures[0]}"
            )
