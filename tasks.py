"""Developer tasks for the agent UI relay, powered by Invoke."""

from __future__ import annotations

import os
import pathlib
import subprocess
from typing import Iterable

from invoke import task

ROOT = pathlib.Path(__file__).parent.resolve()
ENV = {**os.environ, "UV_PROJECT_ENVIRONMENT": os.environ.get("UV_PROJECT_ENVIRONMENT", ".venv")}
RESULTS_DIR = ROOT / "results"


def _run(command: Iterable[str] | str) -> None:
    cmd = command if isinstance(command, str) else " ".join(command)
    subprocess.run(cmd, shell=True, check=True, cwd=ROOT, env=ENV)


@task
def tests(_context, unit_only=False):
    """Run the test suite (``--unit-only`` skips the MCP tool tests)."""
    target = "tests/unit" if unit_only else "tests/"
    _run(["uv", "run", "--extra", "test", "pytest", target])


@task
def coverage(_context):
    """Run tests under coverage and write reports to results/."""
    RESULTS_DIR.mkdir(exist_ok=True)
    _run(["uv", "run", "--extra", "test", "coverage", "erase"])
    _run(
        [
            "uv", "run", "--extra", "test", "coverage", "run", "--source", "src/agentui",
            "-m", "pytest", "tests/", "--junitxml=results/pytest.xml",
        ]
    )
    _run(["uv", "run", "--extra", "test", "coverage", "report"])
    _run(["uv", "run", "--extra", "test", "coverage", "html", "-d", "results/htmlcov"])


@task
def lint(_context):
    """Run formatting and type checks."""
    _run(["uv", "run", "--extra", "dev", "black", "--check", "src", "tests"])
    _run(["uv", "run", "--extra", "dev", "mypy", "src/agentui"])


@task
def serve(_context, transport="stdio", bridge_port=7420, log_level="INFO"):
    """Start the relay MCP server with the shim HTTP bridge enabled."""
    _run(
        [
            "uv", "run", "agentui", "--transport", transport, "--bridge",
            "--bridge-port", str(bridge_port), "--log-level", log_level,
        ]
    )


@task
def build(_context):
    """Build distribution artifacts."""
    _run(["uv", "build"])
