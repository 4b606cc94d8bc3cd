"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Generator, TypedDict

import pytest

from tests.utils.http import reserve_port, wait_for_port
from tests.utils.logs import wait_for_log_event
from tests.utils.process import PROJECT_ROOT, server_command
from tests.utils.tls import write_certificate_pair

if TYPE_CHECKING:
    from _pytest.tmpdir import TempPathFactory


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    process: subprocess.Popen[str]
    log_file: Path


class CertificatePair(TypedDict):
    """Paths to a matching certificate and key on disk."""

    cert: Path
    key: Path


def launch_server(
    certificates: CertificatePair,
    host: str,
    port: int,
    log_file: Path,
    extra_args: list[str] | None = None,
) -> Generator[ServerProcessInfo, None, None]:
    """Start the server as a subprocess and stop it when the caller is done."""
    args = server_command(
        certificates["cert"],
        certificates["key"],
        [f"{host}:{port}"],
        ["--log-destination", str(log_file), *(extra_args or [])],
    )
    with subprocess.Popen(
        args,
        cwd=PROJECT_ROOT,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    ) as process:
        try:
            wait_for_port(host, port)
            wait_for_log_event(log_file, "server_started")
        except Exception:
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nServer stdout:\n{stdout}")
            print(f"\nServer stderr:\n{stderr}")
            raise

        yield {
            "base_url": f"https://{host}:{port}",
            "host": host,
            "port": port,
            "process": process,
            "log_file": log_file,
        }

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=10)
            except subprocess.TimeoutExpired:
                process.kill()


@pytest.fixture(scope="session", name="certificates")
def _certificates(tmp_path_factory: "TempPathFactory") -> CertificatePair:
    """Write a self-signed EC certificate and key shared by the session."""

    directory = tmp_path_factory.mktemp("certs")
    cert, key = write_certificate_pair(directory)
    return {"cert": cert, "key": key}


@pytest.fixture(name="server_process")
def _server_process(
    certificates: CertificatePair, tmp_path_factory: "TempPathFactory"
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the server in a background process for integration tests."""

    host = "127.0.0.1"
    port = reserve_port(host)
    log_file = tmp_path_factory.mktemp("server-logs") / "server.log"
    yield from launch_server(
        certificates,
        host,
        port,
        log_file,
        ["--log-interval", "1", "--shutdown-grace-seconds", "3"],
    )
