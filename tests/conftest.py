"""Pytest configuration and shared fixtures."""

import json
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

from eget_wasm.exec.sandbox import SandboxProvider
from eget_wasm.models import AuditEvent, ExecutionResult, FetchResult
from eget_wasm.observability.audit import AuditSink


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def cache_root(temp_dir: Path) -> Path:
    """Directory standing in for the network."""
    root = temp_dir / "cache"
    root.mkdir()
    return root


@pytest.fixture
def destination(temp_dir: Path) -> Path:
    """Caller's destination directory."""
    dest = temp_dir / "dest"
    dest.mkdir()
    return dest


@pytest.fixture(autouse=True)
def clean_eget_env(monkeypatch):
    """Keep the host's EGET_* settings out of the tests."""
    for name in ("EGET_BIN", "EGET_CACHE_DIR", "EGET_WASM_PATH", "EGET_TIMEOUT_S"):
        monkeypatch.delenv(name, raising=False)


def missing(url: str, error: str = "missing") -> ExecutionResult:
    """Failed run whose diagnostic names a missing URL."""
    return ExecutionResult(
        exit_code=1,
        stdout="",
        stderr=json.dumps({"url": url, "error": error}),
        duration_ms=1,
    )


def succeeded() -> ExecutionResult:
    return ExecutionResult(exit_code=0, stdout="", stderr="", duration_ms=1)


class ScriptedSandbox(SandboxProvider):
    """Sandbox double driven by a per-call function.

    ``script(attempt, workspace_root, cache_root)`` returns the
    ExecutionResult for that call and may write files into the workspace.
    """

    def __init__(self, script: Callable[[int, Path, Path], ExecutionResult]):
        self.script = script
        self.calls: list[dict] = []

    def execute(self, args, workspace_root, cache_root, env):
        self.calls.append(
            {
                "args": list(args),
                "workspace_root": Path(workspace_root),
                "cache_root": Path(cache_root),
                "env": dict(env),
            }
        )
        return self.script(len(self.calls), Path(workspace_root), Path(cache_root))


class StubFetcher:
    """Fetcher double that "downloads" by writing fixed bytes."""

    def __init__(self, content: bytes = b"payload", error: Exception | None = None):
        self.content = content
        self.error = error
        self.calls: list[tuple[str, Path]] = []

    def fetch(self, url, destination, on_progress=None, timeout_s=None):
        self.calls.append((url, Path(destination)))
        if self.error is not None:
            raise self.error
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        if on_progress:
            on_progress(url, 0, len(self.content))
        destination.write_bytes(self.content)
        if on_progress:
            on_progress(url, len(self.content), len(self.content))
        return FetchResult(url=url, path=destination, bytes=len(self.content), sha256="0" * 64)


class MemoryAuditSink(AuditSink):
    """Audit sink that keeps events in memory."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    def log(self, event: AuditEvent) -> None:
        self.events.append(event)

    @property
    def kinds(self) -> list[str]:
        return [event.kind for event in self.events]
