"""Startup and shutdown orchestration for the service process."""

import queue
import signal
import threading
from typing import Callable, Optional, Union

from service_template.bootstrap.config import (
    DEFAULT_ENV_FILE,
    DEFAULT_SOCKET_TIMEOUT,
    DRAIN_TIMEOUT_SECONDS,
    ServerSettings,
    load_settings,
)
from service_template.bootstrap.logging_setup import configure_logging
from service_template.domain.request_context import get_logger
from service_template.errors import (
    BindError,
    ConfigError,
    LoggingSetupError,
    ShutdownError,
)
from service_template.handlers.health import HealthResponder
from service_template.lifecycle.state import (
    LifecycleState,
    ListenerFailed,
    ServerLifecycle,
    ShutdownRequested,
)
from service_template.pipeline.middleware import DEFAULT_MIDDLEWARE, compose
from service_template.pipeline.router import Router
from service_template.transport.listener import HttpListener

CONTROLLER_LOGGER = get_logger("lifecycle.controller")

EXIT_OK = 0
EXIT_FAILURE = 1
SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)
MESSAGE_POLL_SECONDS = 0.5

LifecycleMessage = Union[ShutdownRequested, ListenerFailed]


class LifecycleController:
    """Runs the process from configuration load through graceful shutdown.

    ``run`` loads settings, configures logging, starts the listener, then
    blocks until a shutdown message arrives. SIGINT and SIGTERM are turned
    into ``ShutdownRequested`` messages; nothing else observes signals.
    """

    def __init__(
        self,
        env_file: Optional[str] = DEFAULT_ENV_FILE,
        log_destination: Optional[str] = None,
        drain_timeout: float = DRAIN_TIMEOUT_SECONDS,
        socket_timeout: float = DEFAULT_SOCKET_TIMEOUT,
        health_responder: Optional[HealthResponder] = None,
        install_signal_handlers: bool = True,
        settings_loader: Callable[[Optional[str]], ServerSettings] = load_settings,
    ) -> None:
        self.lifecycle = ServerLifecycle()
        self.settings: Optional[ServerSettings] = None
        self.listener: Optional[HttpListener] = None
        self.router: Optional[Router] = None
        self._env_file = env_file
        self._log_destination = log_destination
        self._drain_timeout = drain_timeout
        self._socket_timeout = socket_timeout
        self._health_responder = health_responder or HealthResponder()
        self._install_signal_handlers = install_signal_handlers
        self._settings_loader = settings_loader
        self._messages: "queue.SimpleQueue[LifecycleMessage]" = queue.SimpleQueue()

    def request_shutdown(self, reason: str = "request") -> None:
        """Ask a running controller to drain and stop."""
        self._messages.put(ShutdownRequested(reason))

    def _on_signal(self, signum: int, _frame) -> None:
        self._messages.put(ShutdownRequested(signal.Signals(signum).name))

    def _on_listener_failure(self, error: BaseException) -> None:
        self._messages.put(ListenerFailed(error))

    def _build_router(self, settings: ServerSettings) -> Router:
        router = Router(release_mode=settings.is_prod)
        self._health_responder.register_routes(router)
        return router

    def _start(self) -> None:
        """Load settings and bind the listener.

        Raises:
            LoggingSetupError: Raised when the log destination cannot be opened.
            ConfigError: Raised when settings are invalid.
            BindError: Raised when the port cannot be bound.
        """
        configure_logging("info", self._log_destination)
        settings = self._settings_loader(self._env_file)
        self.settings = settings
        configure_logging(settings.log_level, self._log_destination)
        CONTROLLER_LOGGER.info(
            "Configuration loaded",
            extra={"event": "config_loaded", "config": settings.to_log_dict()},
        )

        self.router = self._build_router(settings)
        handler = compose(self.router.dispatch, DEFAULT_MIDDLEWARE)
        self.listener = HttpListener(
            settings.bind_address,
            settings.port,
            handler,
            socket_timeout=self._socket_timeout,
            on_failure=self._on_listener_failure,
        )
        self.listener.start()

    def _abort(self, message: str, event: str, error: BaseException) -> int:
        self.lifecycle.transition(LifecycleState.ABORTED)
        CONTROLLER_LOGGER.critical(
            message,
            extra={
                "event": event,
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
        return EXIT_FAILURE

    def _register_signals(self) -> dict:
        if not self._install_signal_handlers:
            return {}
        if threading.current_thread() is not threading.main_thread():
            CONTROLLER_LOGGER.warning(
                "Signal handlers can only be installed from the main thread",
                extra={"event": "signals_skipped"},
            )
            return {}
        previous = {}
        for signum in SHUTDOWN_SIGNALS:
            previous[signum] = signal.signal(signum, self._on_signal)
        return previous

    def _wait_for_message(self) -> LifecycleMessage:
        while True:
            try:
                return self._messages.get(timeout=MESSAGE_POLL_SECONDS)
            except queue.Empty:
                continue

    @staticmethod
    def _restore_signals(previous: dict) -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    def run(self) -> int:
        """Run until shutdown; return the process exit code.

        Signal handlers stay installed until draining finishes, so a second
        SIGINT or SIGTERM during the drain is absorbed.
        """
        try:
            self._start()
        except LoggingSetupError as error:
            configure_logging("info")
            return self._abort("Startup failed", "startup_failed", error)
        except (ConfigError, BindError) as error:
            return self._abort("Startup failed", "startup_failed", error)

        self.lifecycle.transition(LifecycleState.RUNNING)
        previous_handlers = self._register_signals()
        try:
            message = self._wait_for_message()
            if isinstance(message, ListenerFailed):
                self.listener.stop_accepting()
                return self._abort("Listener failed", "listener_failed", message.error)
            return self._shutdown(message)
        finally:
            self._restore_signals(previous_handlers)

    def _shutdown(self, message: ShutdownRequested) -> int:
        self.lifecycle.transition(LifecycleState.DRAINING)
        CONTROLLER_LOGGER.info(
            "Shutting down server",
            extra={
                "event": "shutdown_started",
                "signal": message.signal_name,
                "grace_seconds": self._drain_timeout,
            },
        )
        self.listener.stop_accepting()

        if not self.listener.wait_for_connections(self._drain_timeout):
            CONTROLLER_LOGGER.error(
                "In-flight requests did not finish before the shutdown deadline",
                extra={
                    "event": "shutdown_timeout",
                    "remaining_connections": self.listener.active_connection_count(),
                    "grace_seconds": self._drain_timeout,
                },
            )
            try:
                self.listener.force_close()
            except ShutdownError as error:
                return self._abort("Failed to shut down server", "shutdown_failed", error)

        self.lifecycle.transition(LifecycleState.STOPPED)
        CONTROLLER_LOGGER.info("Server stopped", extra={"event": "server_stopped"})
        return EXIT_OK
