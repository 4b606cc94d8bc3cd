"""Worker thread logic for handling individual client connections."""

import logging
import socket
import ssl
import threading
from dataclasses import dataclass
from typing import Optional

from h2.exceptions import ProtocolError

from ipecho.bootstrap.config import SECURITY_HEADERS
from ipecho.bootstrap.transport_context import HTTP2_ALPN
from ipecho.domain.correlation_id import (
    CorrelationLoggerAdapter,
    clear_correlation_id,
    generate_correlation_id,
    set_correlation_id,
)
from ipecho.domain.response_builders import bad_request_response, ip_echo_response
from ipecho.lifecycle.workers import WorkerRegistry
from ipecho.pipeline.http2 import serve_http2
from ipecho.pipeline.io import receive_request, send_response
from ipecho.transport.context import WorkerContext

WORKER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("ip_echo.transport.worker"), {}
)


def format_client(client_address: tuple) -> str:
    """Render a peer address tuple as ``host:port`` for logs."""
    if len(client_address) >= 2:
        return f"{client_address[0]}:{client_address[1]}"
    return repr(client_address)


def serve_http1(
    connection: socket.socket,
    body: bytes,
    context: WorkerContext,
    stop_event: Optional[threading.Event] = None,
) -> None:
    """Answer HTTP/1.1 requests on ``connection`` until it closes."""
    timeout = context.config.socket_timeout
    buffer = b""
    while True:
        try:
            request, buffer = receive_request(connection, buffer, timeout, stop_event)
        except ValueError:
            WORKER_LOGGER.warning(
                "Malformed request received",
                extra={"event": "malformed_request", "status_code": 400},
            )
            send_response(
                connection, bad_request_response(SECURITY_HEADERS), timeout
            )
            return

        if request is None:
            if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
                WORKER_LOGGER.debug(
                    "Client disconnected or listener stopping",
                    extra={"event": "client_disconnected"},
                )
            return

        draining = stop_event is not None and stop_event.is_set()
        response = ip_echo_response(body, request, SECURITY_HEADERS, draining)
        context.counter.increment()
        send_response(connection, response, timeout)
        if response.close_connection:
            return


def _establish_tls(
    client_socket: socket.socket, context: WorkerContext
) -> ssl.SSLSocket:
    client_socket.settimeout(context.config.socket_timeout)
    return context.tls_context.wrap_socket(client_socket, server_side=True)


def _select_protocol(tls_socket: ssl.SSLSocket, http2_only: bool) -> str:
    if http2_only or tls_socket.selected_alpn_protocol() == HTTP2_ALPN:
        return "h2"
    return "http/1.1"


@dataclass
class _WorkerResources:
    thread: threading.Thread
    connection: socket.socket
    client_addr_str: str


def _cleanup_worker(
    workers: Optional[WorkerRegistry], resources: _WorkerResources
) -> None:
    if workers is not None:
        workers.cleanup_worker(resources.thread)
    try:
        resources.connection.close()
    except OSError:
        pass
    if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
        WORKER_LOGGER.debug(
            "Socket closed",
            extra={"event": "socket_closed", "client": resources.client_addr_str},
        )
    clear_correlation_id()


def handle_client(
    client_socket: socket.socket,
    client_address: tuple,
    context: WorkerContext,
    stop_event: Optional[threading.Event] = None,
    workers: Optional[WorkerRegistry] = None,
) -> None:
    """Complete the TLS handshake and serve the connection until it closes."""
    current_thread = threading.current_thread()
    if workers is not None:
        workers.register_worker(current_thread)
    set_correlation_id(generate_correlation_id())
    client_addr_str = format_client(client_address)
    resources = _WorkerResources(current_thread, client_socket, client_addr_str)

    try:
        body = context.handler(client_address)
        resources.connection = _establish_tls(client_socket, context)
        protocol = _select_protocol(resources.connection, context.config.http2_only)
        if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            WORKER_LOGGER.debug(
                "TLS session established",
                extra={
                    "event": "tls_established",
                    "client": client_addr_str,
                    "protocol": protocol,
                },
            )
        if protocol == "h2":
            serve_http2(resources.connection, body, context, stop_event)
        else:
            serve_http1(resources.connection, body, context, stop_event)
    except TimeoutError:
        if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            WORKER_LOGGER.debug(
                "Connection timed out",
                extra={"event": "connection_timeout", "client": client_addr_str},
            )
    except (ConnectionError, OSError, ValueError, ProtocolError) as error:
        WORKER_LOGGER.error(
            "Error handling client connection",
            extra={
                "event": "connection_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Unexpected error in worker",
            extra={
                "event": "worker_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
                "error": str(error),
            },
            exc_info=True,
        )
    finally:
        _cleanup_worker(workers, resources)
