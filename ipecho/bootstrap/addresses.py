"""Resolution of user-supplied bind strings into socket addresses."""

import ipaddress
import socket
from dataclasses import dataclass
from typing import Iterable, Union

from ipecho.domain.errors import AddressParseError

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


@dataclass(frozen=True)
class BindTarget:
    """A validated socket address one listener binds to."""

    ip: IPAddress
    port: int

    @property
    def family(self) -> socket.AddressFamily:
        """Return the socket family matching the IP version."""
        return socket.AF_INET if self.ip.version == 4 else socket.AF_INET6

    @property
    def label(self) -> str:
        """Return ``IPv4`` or ``IPv6``."""
        return f"IPv{self.ip.version}"

    @property
    def socket_address(self) -> tuple:
        """Return the address tuple accepted by ``socket.bind``."""
        if self.ip.version == 4:
            return (str(self.ip), self.port)
        scope_id = self.ip.scope_id
        host = str(self.ip).split("%", 1)[0]
        if scope_id is None:
            return (host, self.port, 0, 0)
        if scope_id.isdigit():
            return (host, self.port, 0, int(scope_id))
        return (host, self.port, 0, socket.if_nametoindex(scope_id))

    def __str__(self) -> str:
        if self.ip.version == 4:
            return f"{self.ip}:{self.port}"
        return f"[{self.ip}]:{self.port}"

    @property
    def url(self) -> str:
        """Return the https URL clients use to reach this address."""
        return f"https://{self}"


def _parse_port(text: str) -> int:
    if not text or not text.isascii() or not text.isdigit():
        raise ValueError(f"invalid port: {text!r}")
    port = int(text)
    if port > 65535:
        raise ValueError(f"port out of range: {port}")
    return port


def parse_socket_address(text: str) -> BindTarget:
    """Parse ``a.b.c.d:port`` or ``[v6]:port`` into a :class:`BindTarget`.

    Raises ``ValueError`` for anything else, including IPv6 without
    brackets and a missing or empty port.
    """
    if text.startswith("["):
        host, separator, port = text[1:].rpartition("]:")
        if not separator:
            raise ValueError(f"missing port: {text!r}")
        return BindTarget(ipaddress.IPv6Address(host), _parse_port(port))

    host, separator, port = text.rpartition(":")
    if not separator:
        raise ValueError(f"missing port: {text!r}")
    return BindTarget(ipaddress.IPv4Address(host), _parse_port(port))


def resolve_bind_address(bind: str, default_port: int) -> BindTarget:
    """Resolve a single bind string, applying ``default_port`` when none is given."""
    # A single colon or a bracketed "]:" means the port was given explicitly.
    if bind.count(":") == 1 or "]:" in bind:
        try:
            return parse_socket_address(bind)
        except ValueError as exc:
            raise AddressParseError(
                f"failed to parse bind IP address including port: {bind}"
            ) from exc

    for candidate in (f"{bind}:{default_port}", f"[{bind}]:{default_port}"):
        try:
            return parse_socket_address(candidate)
        except ValueError:
            continue
    raise AddressParseError(f"failed to parse bind IP address: {bind}")


def resolve_bind_addresses(
    binds: Iterable[str], default_port: int
) -> list[BindTarget]:
    """Resolve every bind string in order, failing on the first malformed one."""
    return [resolve_bind_address(bind, default_port) for bind in binds]
