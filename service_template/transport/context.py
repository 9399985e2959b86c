"""Context object shared across worker threads."""

import socket
from dataclasses import dataclass
from typing import Callable

from service_template.domain.http_types import Handler


@dataclass(frozen=True)
class WorkerContext:
    """Dependencies shared across connection threads."""

    handler: Handler
    idle_timeout: float
    is_draining: Callable[[], bool]
    release: Callable[[socket.socket], None]
