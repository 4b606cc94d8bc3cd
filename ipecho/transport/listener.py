"""One TLS listener per bind address, each with its own accept loop thread."""

import errno
import logging
import socket
import threading
from typing import Optional

from ipecho.bootstrap.addresses import BindTarget
from ipecho.bootstrap.config import POLL_INTERVAL_SECONDS
from ipecho.domain.correlation_id import CorrelationLoggerAdapter
from ipecho.domain.errors import BindError
from ipecho.lifecycle.workers import WorkerRegistry
from ipecho.transport.context import WorkerContext
from ipecho.transport.worker import format_client, handle_client

LISTENER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("ip_echo.transport.listener"), {}
)

# accept() failures that affect one pending connection, not the socket.
TRANSIENT_ACCEPT_ERRNOS = frozenset(
    {
        errno.ECONNABORTED,
        errno.EMFILE,
        errno.ENFILE,
        errno.ENOBUFS,
        errno.ENOMEM,
        errno.EPROTO,
    }
)


def create_listening_socket(target: BindTarget) -> socket.socket:
    """Bind and listen on ``target``; raise BindError if the address is unusable."""
    try:
        server_socket = socket.create_server(
            target.socket_address, family=target.family
        )
    except OSError as exc:
        raise BindError(f"failed to bind {target}: {exc.strerror or exc}") from exc
    server_socket.settimeout(POLL_INTERVAL_SECONDS)
    return server_socket


class Listener:
    """Accepts TLS connections on one address and hands each to a worker thread.

    ``bind()`` must succeed for every listener before any of them is
    started. ``stop()`` is cooperative: the accept loop notices it within
    one poll interval, closes the socket, then drains in-flight workers
    for at most the configured grace period.
    """

    def __init__(self, target: BindTarget, context: WorkerContext) -> None:
        self.target = target
        self._context = context
        self._stop_event = threading.Event()
        self._workers = WorkerRegistry()
        self._socket: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self.failed = False

    @property
    def name(self) -> str:
        """Return a readable identifier for logs and thread names."""
        return f"listener-{self.target}"

    @property
    def bound_address(self) -> tuple:
        """Return the address the socket is actually bound to."""
        if self._socket is None:
            raise RuntimeError(f"{self.name} is not bound")
        return self._socket.getsockname()

    def bind(self) -> None:
        """Create the listening socket."""
        self._socket = create_listening_socket(self.target)

    def start(self) -> None:
        """Run the accept loop on a dedicated thread."""
        if self._socket is None:
            self.bind()
        self._thread = threading.Thread(target=self.run, name=self.name, daemon=True)
        self._thread.start()
        LISTENER_LOGGER.info(
            f"Starting to serve {self.target.label} on {self.target.url}",
            extra={
                "event": "listener_started",
                "bind": str(self.target),
                "family": self.target.label,
                "url": self.target.url,
            },
        )

    def stop(self) -> None:
        """Request the accept loop to stop and drain."""
        self._stop_event.set()

    def close(self) -> None:
        """Release the socket of a listener that was bound but never started."""
        if self._socket is not None and self._thread is None:
            self._socket.close()
            self._socket = None

    def is_stopping(self) -> bool:
        """Check if stop has been requested."""
        return self._stop_event.is_set()

    def is_alive(self) -> bool:
        """Return True while the accept loop thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the accept loop to finish; return True if it has."""
        if self._thread is not None:
            self._thread.join(timeout)
        return not self.is_alive()

    def active_connections(self) -> int:
        """Return the number of connections still being served."""
        return self._workers.active_worker_count()

    def _dispatch(self, client_socket: socket.socket, client_address: tuple) -> None:
        if LISTENER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            LISTENER_LOGGER.debug(
                "Client connection accepted",
                extra={
                    "event": "client_accepted",
                    "client": format_client(client_address),
                    "bind": str(self.target),
                },
            )
        thread = threading.Thread(
            target=handle_client,
            args=(
                client_socket,
                client_address,
                self._context,
                self._stop_event,
                self._workers,
            ),
            daemon=True,
        )
        self._workers.register_worker(thread)
        thread.start()

    def run(self) -> None:
        """Accept connections until stopped or the socket fails."""
        if self._socket is None:
            self.bind()
        server_socket = self._socket
        try:
            while not self._stop_event.is_set():
                try:
                    client_socket, client_address = server_socket.accept()
                except socket.timeout:
                    continue
                except OSError as error:
                    if self._stop_event.is_set():
                        break
                    transient = error.errno in TRANSIENT_ACCEPT_ERRNOS
                    LISTENER_LOGGER.error(
                        "Socket accept failed",
                        extra={
                            "event": "accept_error",
                            "bind": str(self.target),
                            "error_type": type(error).__name__,
                            "errno": error.errno,
                        },
                    )
                    if transient:
                        self._stop_event.wait(POLL_INTERVAL_SECONDS)
                        continue
                    self.failed = True
                    break
                self._dispatch(client_socket, client_address)
        finally:
            server_socket.close()
            grace = self._context.config.shutdown_grace_seconds
            LISTENER_LOGGER.info(
                "Waiting for active connections to complete",
                extra={
                    "event": "shutdown_waiting",
                    "bind": str(self.target),
                    "grace_seconds": grace,
                    "remaining_workers": self._workers.active_worker_count(),
                },
            )
            self._workers.wait_for_workers(grace)
            LISTENER_LOGGER.info(
                "Listener stopped",
                extra={"event": "listener_stopped", "bind": str(self.target)},
            )
