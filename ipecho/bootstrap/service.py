"""Startup orchestration: load, resolve, bind every address, then serve."""

import argparse
import logging
from typing import Sequence

from ipecho.bootstrap.addresses import BindTarget, resolve_bind_addresses
from ipecho.bootstrap.config import DEFAULT_PORT, build_server_config
from ipecho.bootstrap.transport_context import build_ssl_context, load_transport_context
from ipecho.domain.correlation_id import CorrelationLoggerAdapter
from ipecho.domain.counter import RequestCounter
from ipecho.domain.errors import BindError
from ipecho.handlers.ip_echo import respond_with_peer_ip
from ipecho.lifecycle.shutdown import ShutdownCoordinator
from ipecho.lifecycle.state import ServerLifecycle
from ipecho.telemetry.loop import TelemetryLoop
from ipecho.transport.context import WorkerContext
from ipecho.transport.listener import Listener

SERVICE_LOGGER = CorrelationLoggerAdapter(logging.getLogger("ip_echo.service"), {})


def bind_all(targets: Sequence[BindTarget], context: WorkerContext) -> list[Listener]:
    """Bind one listener per target; if any bind fails, release the rest and raise.

    A partially bound server is a misconfiguration, so no listener is
    returned unless every address is available.
    """
    listeners: list[Listener] = []
    try:
        for target in targets:
            listener = Listener(target, context)
            listener.bind()
            listeners.append(listener)
    except BindError:
        for listener in listeners:
            listener.close()
        raise
    return listeners


def build_context(args: argparse.Namespace) -> WorkerContext:
    """Load the transport context and assemble the shared worker dependencies."""
    config = build_server_config(args)
    transport = load_transport_context(args.cert_path, args.key_path)
    tls_context = build_ssl_context(transport, config.http2_only)
    return WorkerContext(
        tls_context=tls_context,
        counter=RequestCounter(),
        handler=respond_with_peer_ip,
        config=config,
    )


def run_service(args: argparse.Namespace) -> int:
    """Run the server until a termination signal and return the exit code.

    Configuration, certificate and bind failures raise before any
    listener accepts a connection.
    """
    context = build_context(args)
    targets = resolve_bind_addresses(args.bind, DEFAULT_PORT)
    listeners = bind_all(targets, context)

    lifecycle = ServerLifecycle()
    telemetry = TelemetryLoop(context.counter, context.config.log_interval)
    coordinator = ShutdownCoordinator(
        lifecycle,
        listeners,
        telemetry,
        context.config.shutdown_grace_seconds,
    )
    coordinator.install_signal_handlers()
    exit_code = coordinator.run()
    SERVICE_LOGGER.info(
        "Server exiting", extra={"event": "server_exit", "exit_code": exit_code}
    )
    return exit_code
