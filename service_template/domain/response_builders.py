"""Pure HTTP response builders."""

import json
from typing import Any, Iterable, Optional

from service_template.domain.http_types import HttpRequest, HttpResponse, should_close

JSON_CONTENT_TYPE = "application/json; charset=utf-8"


def _closes(request: Optional[HttpRequest]) -> bool:
    return should_close(request) if request is not None else True


def empty_response(request: HttpRequest, status: int = 200) -> HttpResponse:
    """Return a response with no body."""
    return HttpResponse(status, {}, b"", should_close(request))


def json_response(
    payload: Any, request: Optional[HttpRequest], status: int = 200
) -> HttpResponse:
    """Serialize ``payload`` as a compact JSON body."""
    body = json.dumps(payload, separators=(",", ":")).encode()
    return HttpResponse(
        status, {"Content-Type": JSON_CONTENT_TYPE}, body, _closes(request)
    )


def error_response(
    message: str, request: Optional[HttpRequest], status: int = 500
) -> HttpResponse:
    """Return a JSON ``{"error": message}`` body with the given status."""
    return json_response({"error": message}, request, status)


def internal_error_response(request: Optional[HttpRequest]) -> HttpResponse:
    """Produce the 500 answered when a handler raises."""
    return error_response("internal server error", request, 500)


def not_found_response(request: HttpRequest) -> HttpResponse:
    """Return a 404 response reusing the connection preference."""
    return error_response("not found", request, 404)


def method_not_allowed_response(
    request: HttpRequest, allowed_methods: Iterable[str]
) -> HttpResponse:
    """Produce a 405 response enumerating the supported HTTP methods."""
    response = error_response("method not allowed", request, 405)
    response.headers["Allow"] = ", ".join(sorted(set(allowed_methods)))
    return response


def bad_request_response() -> HttpResponse:
    """Produce a 400 response for input that could not be parsed."""
    return error_response("bad request", None, 400)


def entity_too_large_response() -> HttpResponse:
    """Produce a 413 response that always closes the connection."""
    return error_response("payload too large", None, 413)
