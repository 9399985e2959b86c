"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Generator, Optional, TypedDict

import pytest

from tests.utils.http import reserve_port, wait_for_port
from tests.utils.process import HOST, PROJECT_ROOT, launch_server, server_environment


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    process: subprocess.Popen
    log_file: Path


def _run_server(
    work_dir: Path, extra_args: Optional[list[str]] = None
) -> Generator[ServerProcessInfo, None, None]:
    port = reserve_port(HOST)
    env = server_environment(
        SERVER_ADDRESS=HOST,
        SERVER_PORT=str(port),
        SERVER_ENV="local",
        SERVER_LOG_LEVEL="debug",
    )
    process = launch_server(env, work_dir, extra_args)
    try:
        wait_for_port(HOST, port)
    except Exception:
        process.kill()
        stdout, stderr = process.communicate(timeout=5)
        print(f"\nServer stdout:\n{stdout!r}")
        print(f"\nServer stderr:\n{stderr!r}")
        raise

    yield {
        "base_url": f"http://{HOST}:{port}",
        "host": HOST,
        "port": port,
        "process": process,
        "log_file": work_dir / "server.log",
    }

    if process.poll() is None:
        process.terminate()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait(timeout=5)
    process.communicate()


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""

    return PROJECT_ROOT


@pytest.fixture(name="server_process")
def _server_process(tmp_path: Path) -> Generator[ServerProcessInfo, None, None]:
    """Launch the service in a background process for integration tests."""

    yield from _run_server(tmp_path)


@pytest.fixture(name="short_grace_server_process")
def _short_grace_server_process(
    tmp_path: Path,
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the service with a one second drain deadline."""

    yield from _run_server(tmp_path, ["--shutdown-grace-seconds", "1"])


@pytest.fixture()
def base_url(server_process: ServerProcessInfo) -> str:
    """Expose the running server base URL to integration tests."""

    return server_process["base_url"]
