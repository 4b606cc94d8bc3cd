"""Shared HTTP type definitions to avoid circular imports."""

from dataclasses import dataclass


@dataclass
class HttpRequest:
    """Represents a parsed HTTP/1.x request."""

    method: str
    path: str
    headers: dict[str, str]
    body: bytes
    version: str = "HTTP/1.1"


@dataclass
class HttpResponse:
    """Represents an HTTP response to be sent to a client."""

    status_code: int
    reason: str
    headers: dict[str, str]
    body: bytes
    close_connection: bool

    @property
    def status_line(self) -> str:
        """Return the HTTP/1.1 status line for this response."""
        return f"HTTP/1.1 {self.status_code} {self.reason}"


def connection_tokens(headers: dict[str, str]) -> set[str]:
    """Return the lowercased options listed in the Connection header."""
    value = headers.get("connection", "")
    return {token.strip().lower() for token in value.split(",") if token.strip()}


def should_close(headers: dict[str, str], version: str = "HTTP/1.1") -> bool:
    """Determine whether the connection should be closed after responding.

    HTTP/1.1 connections persist unless the client sends ``close``;
    HTTP/1.0 connections close unless the client asks for ``keep-alive``.
    """
    tokens = connection_tokens(headers)
    if "close" in tokens:
        return True
    if version == "HTTP/1.0":
        return "keep-alive" not in tokens
    return False
