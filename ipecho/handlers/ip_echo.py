"""The single request handler: answer with the peer's IP address."""

import ipaddress
import logging

from ipecho.domain.correlation_id import CorrelationLoggerAdapter

HANDLER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("ip_echo.handlers.ip_echo"), {}
)


def peer_ip_text(peer_address: tuple) -> str:
    """Return the textual IP of a socket peer address, port excluded.

    ``peer_address`` is the tuple returned by ``socket.accept()``: two
    items for IPv4, four for IPv6. Raises ``ValueError`` when the host
    part is not an IP address.
    """
    if not peer_address:
        raise ValueError("Empty peer address")
    host = peer_address[0]
    if not isinstance(host, str):
        raise ValueError(f"Malformed peer address: {peer_address!r}")
    return str(ipaddress.ip_address(host))


def respond_with_peer_ip(peer_address: tuple) -> bytes:
    """Build the response body for a request arriving from ``peer_address``."""
    body = peer_ip_text(peer_address).encode("utf-8")
    if HANDLER_LOGGER.logger.isEnabledFor(logging.DEBUG):
        HANDLER_LOGGER.debug(
            "Peer address echoed",
            extra={"event": "ip_echoed", "content_length": len(body)},
        )
    return body
