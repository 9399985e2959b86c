"""Liveness and readiness probe handlers."""

import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional

from service_template.domain.http_types import HttpRequest, HttpResponse
from service_template.domain.request_context import get_logger
from service_template.domain.response_builders import (
    empty_response,
    error_response,
    json_response,
)
from service_template.errors import HealthCheckError

HEALTH_LOGGER = get_logger("handlers.health")

HealthCheck = Callable[[], bool]


@dataclass
class HealthResult:
    """Outcome of a readiness probe, keyed by dependency name."""

    checks: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        if not self.checks:
            return {}
        return {"checks": dict(self.checks)}


class HealthResponder:
    """Answers liveness and readiness probes.

    Readiness runs each registered check in order. A check passes by
    returning True; returning False or raising fails the probe, and the
    remaining checks are skipped.
    """

    def __init__(self, checks: Optional[Mapping[str, HealthCheck]] = None) -> None:
        self._checks: dict[str, HealthCheck] = dict(checks or {})

    def check_health(self) -> HealthResult:
        """Run every readiness check.

        Raises:
            HealthCheckError: Raised by the first failing check.
        """
        result = HealthResult()
        for name, check in self._checks.items():
            try:
                healthy = check()
            except HealthCheckError:
                raise
            except Exception as error:  # pylint: disable=broad-except
                raise HealthCheckError(f"{name}: {error}") from error
            if not healthy:
                raise HealthCheckError(f"{name}: check failed")
            result.checks[name] = "ok"
        return result

    def liveness(self, request: HttpRequest) -> HttpResponse:
        """Report that the process is running."""
        if HEALTH_LOGGER.logger.isEnabledFor(logging.DEBUG):
            HEALTH_LOGGER.debug("Liveness probe", extra={"event": "liveness_probe"})
        return empty_response(request)

    def readiness(self, request: HttpRequest) -> HttpResponse:
        """Report whether the process can serve traffic."""
        try:
            result = self.check_health()
        except HealthCheckError as error:
            HEALTH_LOGGER.error(
                "Readiness check failed",
                extra={"event": "readiness_failed", "error": str(error)},
            )
            return error_response(str(error), request, 500)
        HEALTH_LOGGER.debug(
            "Readiness probe",
            extra={"event": "readiness_probe", "checks": result.checks},
        )
        return json_response(result.to_dict(), request)

    def register_routes(self, router, prefix: str = "/health") -> None:
        group = router.group(prefix)
        group.get("/ready", self.readiness)
        group.get("/live", self.liveness)
