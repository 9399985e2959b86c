"""HTTP service entrypoint: health probes with graceful shutdown."""

import sys
from typing import Optional

from service_template.bootstrap.config import parse_cli_args
from service_template.lifecycle.controller import LifecycleController


def main(argv: Optional[list[str]] = None) -> int:
    """Run the service until SIGINT/SIGTERM and return the exit code."""
    args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    controller = LifecycleController(
        env_file=args.env_file,
        log_destination=args.log_destination,
        drain_timeout=args.shutdown_grace_seconds,
        socket_timeout=args.socket_timeout,
    )
    return controller.run()


if __name__ == "__main__":
    sys.exit(main())
