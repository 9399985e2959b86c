"""Per-request logging context stored in a contextvar."""

import contextvars
import logging
import uuid
from dataclasses import dataclass
from typing import Any, MutableMapping, Optional

LOGGER_PREFIX = "service_template."


@dataclass(frozen=True)
class RequestContext:
    """Identity of the request currently handled by this thread."""

    request_id: str
    method: str = "-"
    path: str = "-"
    client: str = "-"


_request_context_var: contextvars.ContextVar[Optional[RequestContext]] = (
    contextvars.ContextVar("request_context", default=None)
)


def generate_request_id() -> str:
    """Generate a new request ID using UUID4."""
    return str(uuid.uuid4())


def get_request_context() -> Optional[RequestContext]:
    """Return the context bound to the current request, if any."""
    return _request_context_var.get()


def get_request_id() -> Optional[str]:
    context = _request_context_var.get()
    return context.request_id if context is not None else None


def bind_request_context(context: RequestContext) -> None:
    """Bind a request context to the current thread."""
    _request_context_var.set(context)


def clear_request_context() -> None:
    """Drop any request context bound to the current thread."""
    _request_context_var.set(None)


class RequestContextLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects request_id and component into log records."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        if "extra" not in kwargs:
            kwargs["extra"] = {}
        else:
            kwargs["extra"] = dict(kwargs["extra"])

        request_id = get_request_id()
        kwargs["extra"]["request_id"] = request_id if request_id is not None else "-"

        logger_name = self.logger.name
        if logger_name.startswith(LOGGER_PREFIX):
            component = logger_name[len(LOGGER_PREFIX) :]
        else:
            component = logger_name
        kwargs["extra"]["component"] = component

        return msg, kwargs


def get_logger(component: str) -> RequestContextLoggerAdapter:
    """Return the adapter for a named component under the service logger."""
    return RequestContextLoggerAdapter(logging.getLogger(LOGGER_PREFIX + component), {})
