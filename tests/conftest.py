"""Shared pytest fixtures for integration tests."""

from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path
from typing import Dict, Generator, TypedDict

import pytest

from tests.utils.http import reserve_port, wait_for_port
from tests.utils.upstream import STUB_ORG, STUB_TOKEN, StubUpstream

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"
TEST_VERSION = "test-version"


class ServerProcessInfo(TypedDict):
    """Metadata describing a running portal process."""

    base_url: str
    host: str
    port: int
    process: subprocess.Popen[str]
    log_file: Path


def portal_env(upstream: StubUpstream, port: int, log_file: Path, **overrides: str) -> Dict[str, str]:
    """Build the environment for a portal process talking to ``upstream``."""
    env = dict(os.environ)
    env.update(
        {
            "PORT": str(port),
            "LISTEN_HOST": "127.0.0.1",
            "PANGOLIN_TOKEN": STUB_TOKEN,
            "PANGOLIN_HOST": upstream.base_url,
            "PANGOLIN_ORG": STUB_ORG,
            "VERSION": TEST_VERSION,
            "LOG_LEVEL": "DEBUG",
            "LOG_DESTINATION": str(log_file),
        }
    )
    env.update(overrides)
    return env


def launch_portal(env: Dict[str, str], log_file: Path) -> Generator[ServerProcessInfo, None, None]:
    """Start ``main.py`` with ``env`` and stop it when the caller is done."""
    host = env["LISTEN_HOST"]
    port = int(env["PORT"])
    with subprocess.Popen(
        [sys.executable, str(SERVER_ENTRYPOINT)],
        cwd=PROJECT_ROOT,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    ) as process:
        try:
            wait_for_port(host, port)
        except Exception:
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nPortal stdout:\n{stdout}")
            print(f"\nPortal stderr:\n{stderr}")
            raise

        yield {
            "base_url": f"http://{host}:{port}",
            "host": host,
            "port": port,
            "process": process,
            "log_file": log_file,
        }

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=15)
            except subprocess.TimeoutExpired:
                process.kill()


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""
    return PROJECT_ROOT


@pytest.fixture(name="upstream")
def _upstream() -> Generator[StubUpstream, None, None]:
    """Run a stub access-control API for the duration of a test."""
    stub = StubUpstream().start()
    yield stub
    stub.stop()


@pytest.fixture(name="server_process")
def _server_process(upstream: StubUpstream, tmp_path: Path) -> Generator[ServerProcessInfo, None, None]:
    """Launch the portal in a background process against the stub upstream."""
    log_file = tmp_path / "portal.log"
    env = portal_env(upstream, reserve_port(), log_file)
    yield from launch_portal(env, log_file)


@pytest.fixture()
def base_url(server_process: ServerProcessInfo) -> str:
    """Expose the running portal base URL to integration tests."""
    return server_process["base_url"]
