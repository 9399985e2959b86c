"""Process lifecycle states and the transitions allowed between them."""

import threading
from dataclasses import dataclass
from enum import Enum

from service_template.domain.request_context import get_logger
from service_template.errors import LifecycleError

LIFECYCLE_LOGGER = get_logger("lifecycle.state")


class LifecycleState(Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"
    ABORTED = "aborted"


ALLOWED_TRANSITIONS = {
    LifecycleState.INITIALIZING: {LifecycleState.RUNNING, LifecycleState.ABORTED},
    LifecycleState.RUNNING: {LifecycleState.DRAINING, LifecycleState.ABORTED},
    LifecycleState.DRAINING: {LifecycleState.STOPPED, LifecycleState.ABORTED},
    LifecycleState.STOPPED: set(),
    LifecycleState.ABORTED: set(),
}


@dataclass(frozen=True)
class ShutdownRequested:
    """Message posted when the process is asked to stop."""

    signal_name: str


@dataclass(frozen=True)
class ListenerFailed:
    """Message posted when the accept loop dies while serving."""

    error: BaseException


class ServerLifecycle:
    """Tracks the current lifecycle state."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = LifecycleState.INITIALIZING
        self._running = threading.Event()
        self._finished = threading.Event()

    @property
    def state(self) -> LifecycleState:
        return self._state

    def is_running(self) -> bool:
        return self._state is LifecycleState.RUNNING

    def is_finished(self) -> bool:
        return self._finished.is_set()

    def transition(self, target: LifecycleState) -> None:
        """Move to ``target``.

        Raises:
            LifecycleError: Raised when the transition is not allowed.
        """
        with self._lock:
            current = self._state
            if target not in ALLOWED_TRANSITIONS[current]:
                raise LifecycleError(
                    f"cannot transition from {current.value} to {target.value}"
                )
            self._state = target
        if target is LifecycleState.RUNNING:
            self._running.set()
        if target in (LifecycleState.STOPPED, LifecycleState.ABORTED):
            self._finished.set()
        LIFECYCLE_LOGGER.debug(
            "Lifecycle transition",
            extra={"event": "lifecycle_transition", "state": target.value},
        )

    def wait_until_running(self, timeout: float) -> bool:
        """Block until RUNNING is reached; False on timeout."""
        return self._running.wait(timeout)
