"""HTTP/2 serving for connections that negotiated ``h2``."""

from __future__ import annotations

import logging
import socket
import threading
import time
from typing import TYPE_CHECKING, Optional

from h2.config import H2Configuration
from h2.connection import H2Connection
from h2.events import ConnectionTerminated, DataReceived, RequestReceived
from h2.exceptions import ProtocolError

from ipecho.bootstrap.config import SECURITY_HEADERS
from ipecho.domain.correlation_id import CorrelationLoggerAdapter
from ipecho.pipeline.io import recv_with_deadline

if TYPE_CHECKING:
    from ipecho.transport.context import WorkerContext

HTTP2_LOGGER = CorrelationLoggerAdapter(logging.getLogger("ip_echo.http2"), {})


def _response_headers(body: bytes) -> list[tuple[str, str]]:
    headers = [
        (":status", "200"),
        ("content-type", "text/plain; charset=utf-8"),
        ("content-length", str(len(body))),
    ]
    headers.extend((name.lower(), value) for name, value in SECURITY_HEADERS.items())
    return headers


def _flush(tls_socket: socket.socket, h2_conn: H2Connection) -> None:
    outbound = h2_conn.data_to_send()
    if outbound:
        tls_socket.sendall(outbound)


def serve_http2(
    tls_socket: socket.socket,
    body: bytes,
    context: WorkerContext,
    stop_event: Optional[threading.Event] = None,
) -> None:
    """Answer every stream on the connection with ``body`` until it ends.

    A stop request observed while waiting for frames sends GOAWAY and
    returns; streams already answered are unaffected.
    """
    h2_conn = H2Connection(
        config=H2Configuration(client_side=False, header_encoding="utf-8")
    )
    h2_conn.initiate_connection()
    _flush(tls_socket, h2_conn)
    timeout_ns = context.config.socket_timeout * 1_000_000_000

    while True:
        deadline_ns = time.monotonic_ns() + timeout_ns
        data = recv_with_deadline(tls_socket, deadline_ns, stop_event)
        if data is None:
            h2_conn.close_connection()
            _flush(tls_socket, h2_conn)
            return
        if not data:
            return

        try:
            events = h2_conn.receive_data(data)
        except ProtocolError as error:
            HTTP2_LOGGER.warning(
                "HTTP/2 protocol error",
                extra={"event": "protocol_error", "error_type": type(error).__name__},
            )
            _flush(tls_socket, h2_conn)
            return

        terminated = False
        for event in events:
            if isinstance(event, RequestReceived):
                context.counter.increment()
                h2_conn.send_headers(event.stream_id, _response_headers(body))
                h2_conn.send_data(event.stream_id, body, end_stream=True)
            elif isinstance(event, DataReceived):
                h2_conn.acknowledge_received_data(
                    event.flow_controlled_length, event.stream_id
                )
            elif isinstance(event, ConnectionTerminated):
                terminated = True
        _flush(tls_socket, h2_conn)
        if terminated:
            return
