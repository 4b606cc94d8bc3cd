"""Pure HTTP response builders."""

from typing import Optional

from ipecho.domain.http_types import HttpRequest, HttpResponse, should_close


def ip_echo_response(
    body: bytes,
    request: Optional[HttpRequest],
    security_headers: dict[str, str],
    draining: bool = False,
) -> HttpResponse:
    """Return a 200 text/plain response carrying the echoed peer address."""
    headers = {"Content-Type": "text/plain; charset=utf-8", **security_headers}
    close = draining or (
        request is not None and should_close(request.headers, request.version)
    )
    if not close and request is not None and request.version == "HTTP/1.0":
        # HTTP/1.0 clients only reuse the connection when told explicitly.
        headers["Connection"] = "keep-alive"
    return HttpResponse(200, "OK", headers, body, close)


def bad_request_response(security_headers: dict[str, str]) -> HttpResponse:
    """Produce a 400 response that always closes the connection."""
    return HttpResponse(400, "Bad Request", security_headers.copy(), b"", True)
