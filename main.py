"""HTTPS server that answers every request with the caller's IP address."""

import sys
from typing import Optional

from ipecho.bootstrap.config import parse_cli_args
from ipecho.bootstrap.logging_setup import configure_logging
from ipecho.bootstrap.service import run_service
from ipecho.domain.errors import IpEchoError


def main(argv: Optional[list[str]] = None) -> int:
    """Parse arguments, configure logging and run the server."""
    args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    logger = configure_logging(
        args.log_level, args.log_destination, use_json=args.log_format == "json"
    )

    logger.info(
        "Starting IP echo server",
        extra={
            "event": "server_starting",
            "bind": ",".join(args.bind),
            "log_interval": args.log_interval,
            "http2_only": args.http2_only,
            "log_level": args.log_level,
            "log_destination": args.log_destination,
            "socket_timeout": args.socket_timeout,
            "shutdown_grace_seconds": args.shutdown_grace_seconds,
        },
    )
    try:
        return run_service(args)
    except IpEchoError as error:
        logger.critical(
            f"Fatal: {error}",
            extra={"event": "fatal_error", "error_type": type(error).__name__},
        )
        return 1


if __name__ == "__main__":
    sys.exit(main())
