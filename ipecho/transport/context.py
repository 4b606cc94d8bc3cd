"""Context object shared across listeners and their worker threads."""

import ssl
from dataclasses import dataclass
from typing import Callable

from ipecho.bootstrap.config import ServerConfig
from ipecho.domain.counter import RequestCounter


@dataclass(frozen=True)
class WorkerContext:
    """Dependencies shared by every listener; built once at startup."""

    tls_context: ssl.SSLContext
    counter: RequestCounter
    handler: Callable[[tuple], bytes]
    config: ServerConfig
