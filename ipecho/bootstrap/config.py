"""Server configuration and CLI argument parsing."""

import argparse
import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value is not None else default


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value else default


DEFAULT_PORT = 11313
DEFAULT_BINDS = [f"127.0.0.1:{DEFAULT_PORT}", f"[::1]:{DEFAULT_PORT}"]
DEFAULT_LOG_INTERVAL = _env_int("IP_ECHO_LOG_INTERVAL", 60)
DEFAULT_SOCKET_TIMEOUT = _env_int("IP_ECHO_SOCKET_TIMEOUT", 60)
DEFAULT_SHUTDOWN_GRACE_SECONDS = _env_int("IP_ECHO_SHUTDOWN_GRACE_SECONDS", 30)

POLL_INTERVAL_SECONDS = 0.5
MAX_HEADER_BYTES = 64 * 1024
MAX_BODY_BYTES = 1024 * 1024
HEADER_DELIMITER = b"\r\n\r\n"

SECURITY_HEADERS = {
    "Strict-Transport-Security": "max-age=63072000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
}


@dataclass(frozen=True)
class ServerConfig:
    """Runtime settings shared by listeners, workers and the telemetry loop."""

    log_interval: int
    socket_timeout: int
    shutdown_grace_seconds: int
    http2_only: bool = False


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid integer value: {value!r}") from exc
    if number <= 0:
        raise argparse.ArgumentTypeError(f"value must be positive: {value!r}")
    return number


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments for server configuration."""
    parser = argparse.ArgumentParser(
        description="A HTTPS server that echoes the client's IP address"
    )
    parser.add_argument(
        "-b",
        "--bind",
        action="append",
        default=None,
        help=(
            "Address to bind to, with optional port (can be provided multiple "
            f"times, default: {' '.join(DEFAULT_BINDS)})"
        ),
    )
    parser.add_argument(
        "-c", "--cert-path", required=True, help="Certificate file path"
    )
    parser.add_argument("-k", "--key-path", required=True, help="Key file path")
    parser.add_argument(
        "-i",
        "--log-interval",
        type=_positive_int,
        default=DEFAULT_LOG_INTERVAL,
        help="Log interval in seconds",
    )
    parser.add_argument(
        "-2",
        "--http2-only",
        action="store_true",
        default=False,
        help="Use HTTP/2 only",
    )
    default_log_level = _env_str("IP_ECHO_LOG_LEVEL", "INFO").upper()
    default_destination = _env_str("IP_ECHO_LOG_DESTINATION", "stdout")
    default_log_format = _env_str("IP_ECHO_LOG_FORMAT", "json").lower()
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-destination",
        default=default_destination,
        help="stdout or a file path",
    )
    parser.add_argument(
        "--log-format",
        default=default_log_format,
        choices=["json", "text"],
        type=str.lower,
    )
    parser.add_argument(
        "--socket-timeout",
        type=_positive_int,
        default=DEFAULT_SOCKET_TIMEOUT,
        help="Idle timeout in seconds for client connections",
    )
    parser.add_argument(
        "--shutdown-grace-seconds",
        type=_positive_int,
        default=DEFAULT_SHUTDOWN_GRACE_SECONDS,
        help="Grace period in seconds for in-flight connections on shutdown",
    )
    args = parser.parse_args(argv)
    if not args.bind:
        args.bind = list(DEFAULT_BINDS)
    return args


def build_server_config(args: argparse.Namespace) -> ServerConfig:
    """Collect runtime settings from parsed CLI arguments."""
    return ServerConfig(
        log_interval=args.log_interval,
        socket_timeout=args.socket_timeout,
        shutdown_grace_seconds=args.shutdown_grace_seconds,
        http2_only=args.http2_only,
    )
