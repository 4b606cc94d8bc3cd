"""HTTP/1.1 input/output over an established TLS connection."""

import logging
import re
import socket
import threading
import time
from typing import Optional, Tuple

from ipecho.bootstrap.config import (
    HEADER_DELIMITER,
    MAX_BODY_BYTES,
    MAX_HEADER_BYTES,
    POLL_INTERVAL_SECONDS,
)
from ipecho.domain.correlation_id import CorrelationLoggerAdapter
from ipecho.domain.http_types import HttpRequest, HttpResponse

IO_LOGGER = CorrelationLoggerAdapter(logging.getLogger("ip_echo.io"), {})

RECV_BUFFER_SIZE = 65536

CHUNK_SIZE_PATTERN = re.compile(rb"[0-9A-Fa-f]+")


class IncompleteRequest(Exception):
    """Raised when the peer closes the connection part-way through a body."""


def recv_with_deadline(
    client_socket: socket.socket,
    deadline_ns: int,
    stop_event: Optional[threading.Event] = None,
) -> Optional[bytes]:
    """Receive data before ``deadline_ns``, polling so a stop request is noticed.

    Returns None when ``stop_event`` is set before any data arrives and
    raises TimeoutError once the deadline passes.
    """
    while True:
        if stop_event is not None and stop_event.is_set():
            return None
        remaining_ns = deadline_ns - time.monotonic_ns()
        if remaining_ns <= 0:
            raise TimeoutError("Request deadline exceeded")
        client_socket.settimeout(
            min(POLL_INTERVAL_SECONDS, remaining_ns / 1_000_000_000)
        )
        try:
            return client_socket.recv(RECV_BUFFER_SIZE)
        except socket.timeout:
            continue


def _recv_more(client_socket: socket.socket, buffer: bytes, deadline_ns: int) -> bytes:
    chunk = recv_with_deadline(client_socket, deadline_ns)
    if not chunk:
        raise IncompleteRequest
    return buffer + chunk


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Convert raw header lines into a lowercase-keyed dictionary."""
    parsed = {}
    for line in lines:
        if ":" in line:
            name, value = line.split(":", 1)
            parsed[name.strip().lower()] = value.strip()
    return parsed


def parse_request_line(request_line: str) -> Tuple[str, str, str]:
    """Split the request line into method, target and protocol version."""
    try:
        method, target, version = request_line.split(" ", 2)
    except ValueError as exc:
        raise ValueError("Invalid request line") from exc
    if not method or not target or not version.startswith("HTTP/"):
        raise ValueError("Invalid request line")
    return method, target, version


def determine_content_length(headers: dict[str, str]) -> Optional[int]:
    """Return the declared body length, or None when the body is chunked.

    A ``Transfer-Encoding`` header takes precedence over ``Content-Length``
    and must end in ``chunked``; anything else cannot be framed.
    """
    transfer_encoding = headers.get("transfer-encoding")
    if transfer_encoding is not None:
        codings = [coding.strip().lower() for coding in transfer_encoding.split(",")]
        if codings[-1] != "chunked":
            raise ValueError("Unsupported Transfer-Encoding")
        return None
    header_value = headers.get("content-length")
    if header_value is None:
        return 0
    if not (header_value.isascii() and header_value.isdigit()):
        raise ValueError("Invalid Content-Length")
    return int(header_value)


def parse_chunk_size(line: bytes) -> int:
    """Read the hex size from a chunk header line, ignoring extensions."""
    size_text = line.split(b";", 1)[0].strip()
    if not CHUNK_SIZE_PATTERN.fullmatch(size_text):
        raise ValueError("Invalid chunk size")
    return int(size_text, 16)


def _read_line(
    client_socket: socket.socket, buffer: bytes, deadline_ns: int
) -> Tuple[bytes, bytes]:
    while b"\r\n" not in buffer:
        if len(buffer) > MAX_HEADER_BYTES:
            raise ValueError("Chunk framing line too long")
        buffer = _recv_more(client_socket, buffer, deadline_ns)
    line, rest = buffer.split(b"\r\n", 1)
    return line, rest


def read_fixed_body(
    client_socket: socket.socket,
    buffer: bytes,
    length: int,
    deadline_ns: int,
    keep: bool = True,
) -> Tuple[bytes, bytes]:
    """Consume ``length`` body bytes and return ``(body, leftover)``.

    With ``keep`` false the bytes are read and dropped, so bodies of any
    size can be skipped without buffering them.
    """
    kept = []
    remaining = length
    while True:
        taken = buffer[:remaining]
        buffer = buffer[len(taken):]
        remaining -= len(taken)
        if keep:
            kept.append(taken)
        if remaining == 0:
            return b"".join(kept), buffer
        buffer = _recv_more(client_socket, buffer, deadline_ns)


def read_chunked_body(
    client_socket: socket.socket, buffer: bytes, deadline_ns: int
) -> Tuple[bytes, bytes]:
    """Decode a chunked body and its trailers, returning ``(body, leftover)``.

    Only the first ``MAX_BODY_BYTES`` are retained; once a body grows past
    that the rest is still consumed but the returned body is empty.
    """
    kept = []
    total = 0
    while True:
        line, buffer = _read_line(client_socket, buffer, deadline_ns)
        size = parse_chunk_size(line)
        if size == 0:
            break
        total += size
        data, buffer = read_fixed_body(
            client_socket, buffer, size, deadline_ns, total <= MAX_BODY_BYTES
        )
        if total <= MAX_BODY_BYTES:
            kept.append(data)
        terminator, buffer = _read_line(client_socket, buffer, deadline_ns)
        if terminator:
            raise ValueError("Chunk data longer than declared size")

    # Trailer section ends with an empty line.
    while True:
        trailer, buffer = _read_line(client_socket, buffer, deadline_ns)
        if not trailer:
            break
    body = b"".join(kept) if total <= MAX_BODY_BYTES else b""
    return body, buffer


def receive_request(
    client_socket: socket.socket,
    buffer: bytes,
    timeout_seconds: float,
    stop_event: Optional[threading.Event] = None,
) -> Tuple[Optional[HttpRequest], bytes]:
    """Read bytes from the socket until a complete request is available.

    Returns ``(None, b"")`` when the peer closes the connection, or when
    ``stop_event`` is set while no partial request is buffered. Bodies are
    always consumed so the connection stays usable; bodies larger than
    ``MAX_BODY_BYTES`` are skipped and reported as empty.
    """
    deadline_ns = time.monotonic_ns() + int(timeout_seconds * 1_000_000_000)
    while HEADER_DELIMITER not in buffer:
        # Only an idle connection may be interrupted by a stop request.
        chunk = recv_with_deadline(
            client_socket, deadline_ns, None if buffer else stop_event
        )
        if not chunk:
            return None, b""
        buffer += chunk
        if len(buffer) > MAX_HEADER_BYTES and HEADER_DELIMITER not in buffer:
            raise ValueError("Request header block too large")

    header_block, remainder = buffer.split(HEADER_DELIMITER, 1)
    header_lines = header_block.decode("latin-1").split("\r\n")
    method, path, version = parse_request_line(header_lines[0])
    headers = parse_headers(header_lines[1:])
    content_length = determine_content_length(headers)

    try:
        if content_length is None:
            body, leftover = read_chunked_body(client_socket, remainder, deadline_ns)
        else:
            body, leftover = read_fixed_body(
                client_socket,
                remainder,
                content_length,
                deadline_ns,
                content_length <= MAX_BODY_BYTES,
            )
    except IncompleteRequest:
        return None, b""

    if IO_LOGGER.logger.isEnabledFor(logging.DEBUG):
        IO_LOGGER.debug("Parsed request", extra={"method": method, "path": path})
    return HttpRequest(method, path, headers, body, version), leftover


def send_response(
    client_socket: socket.socket,
    response: HttpResponse,
    timeout_seconds: Optional[float] = None,
) -> None:
    """Serialize and send the HTTP/1.1 response over the socket."""
    headers = dict(response.headers)
    headers["Content-Length"] = str(len(response.body))
    if response.close_connection:
        headers["Connection"] = "close"
    header_lines = [response.status_line]
    header_lines.extend(f"{name}: {value}" for name, value in headers.items())
    header_block = "\r\n".join(header_lines).encode() + HEADER_DELIMITER
    if timeout_seconds is not None:
        client_socket.settimeout(timeout_seconds)
    client_socket.sendall(header_block + response.body)
    if IO_LOGGER.logger.isEnabledFor(logging.DEBUG):
        IO_LOGGER.debug(
            "Sent response",
            extra={"status_code": response.status_code},
        )
