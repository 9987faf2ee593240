"""Retry-driven execution of the sandboxed module.

This module provides the ExecutionOrchestrator class, which owns the
workspace of one invocation and drives the run -> fetch -> re-run loop:
whenever the module fails because a URL it needs is not in the cache, the
host downloads it and the module is executed again.
"""

import logging
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Callable

from eget_wasm.exceptions import (
    EgetError,
    MaxAttemptsExceededError,
    ModuleFailureError,
)
from eget_wasm.exec.sandbox import SandboxProvider
from eget_wasm.models import (
    DEFAULT_MAX_ATTEMPTS,
    AuditEvent,
    ExecutionState,
    Invocation,
    ProgressCallback,
)
from eget_wasm.observability.audit import AuditSink
from eget_wasm.parsing.diagnostic import parse_diagnostic
from eget_wasm.resources.codec import url_to_cache_path
from eget_wasm.resources.fetcher import ResourceFetcher

logger = logging.getLogger(__name__)

# Called with the successful attempt's workspace before it is destroyed.
SuccessHandler = Callable[[Path], None]


class ExecutionOrchestrator:
    """Drives the sandboxed module until it succeeds or gives up.

    The ExecutionOrchestrator is responsible for:
    1. Creating the invocation's temporary workspace
    2. Running the module in a fresh ``attempt-<n>`` directory each time
    3. Parsing the diagnostic text of failed runs
    4. Downloading the missing URL into the shared cache root
    5. Handing the successful workspace to the caller
    6. Removing the workspace on every exit path

    The cache root persists across attempts, so a fetched resource is
    visible to the next run. Output left by a failed attempt is discarded
    with its directory; only the successful attempt is handed on.
    """

    def __init__(
        self,
        sandbox: SandboxProvider,
        fetcher: ResourceFetcher,
        cache_root: Path,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        audit_sink: AuditSink | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            sandbox: SandboxProvider that executes the module
            fetcher: ResourceFetcher used for missing URLs
            cache_root: Directory mounted as the module's network cache
            max_attempts: Maximum number of module runs per invocation
            audit_sink: Optional AuditSink for run/fetch events
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.sandbox = sandbox
        self.fetcher = fetcher
        self.cache_root = Path(cache_root)
        self.max_attempts = max_attempts
        self._audit_sink = audit_sink
        self.last_invocation: Invocation | None = None

    def _audit(self, kind: str, **fields) -> None:
        if self._audit_sink:
            self._audit_sink.log(AuditEvent(ts=datetime.now(), kind=kind, **fields))

    def execute(
        self,
        args: list[str],
        on_success: SuccessHandler | None = None,
        env: dict[str, str] | None = None,
        on_progress: ProgressCallback | None = None,
        timeout_s: float | None = None,
    ) -> Invocation:
        """Run the module until it succeeds.

        Args:
            args: Module argument vector
            on_success: Called with the successful workspace root while it
                        still exists (the materialization step)
            env: Environment variables for the module
            on_progress: Progress callback forwarded to the fetcher
            timeout_s: Per-download timeout forwarded to the fetcher

        Returns:
            The SUCCEEDED Invocation, with attempt count and fetched URLs.
            The same object stays on ``last_invocation`` when a run fails.

        Raises:
            ModuleFailureError: If the module fails without naming a URL
            MaxAttemptsExceededError: If max_attempts runs all failed
            FetchError: If downloading a missing URL fails
            InfrastructureError: If the module cannot be loaded
        """
        invocation = Invocation()
        self.last_invocation = invocation
        self.cache_root.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(prefix="eget-wasm-") as tmp:
            try:
                self._loop(invocation, Path(tmp), args, env or {}, on_progress, timeout_s, on_success)
            except EgetError as e:
                if invocation.state is not ExecutionState.FAILED_TERMINAL:
                    invocation.transition(ExecutionState.FAILED_TERMINAL)
                self._audit(
                    "error",
                    detail={
                        "attempts": invocation.attempts,
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                    },
                )
                raise

        return invocation

    def _loop(
        self,
        invocation: Invocation,
        tmp: Path,
        args: list[str],
        env: dict[str, str],
        on_progress: ProgressCallback | None,
        timeout_s: float | None,
        on_success: SuccessHandler | None,
    ) -> None:
        previous: Path | None = None

        for attempt in range(self.max_attempts):
            if previous is not None:
                shutil.rmtree(previous, ignore_errors=True)
            workspace = tmp / f"attempt-{attempt}"
            workspace.mkdir()
            previous = workspace

            logger.debug("Attempt %d/%d: eget %s", attempt + 1, self.max_attempts, " ".join(args))
            result = self.sandbox.execute(
                args=args,
                workspace_root=workspace,
                cache_root=self.cache_root,
                env=env,
            )
            invocation.attempts = attempt + 1
            self._audit(
                "run",
                path=str(workspace),
                detail={
                    "attempt": invocation.attempts,
                    "exit_code": result.exit_code,
                    "duration_ms": result.duration_ms,
                },
            )

            if result.exit_code == 0:
                invocation.transition(ExecutionState.SUCCEEDED)
                if on_success:
                    on_success(workspace)
                return

            diagnostic = parse_diagnostic(result.stderr)
            invocation.last_diagnostic = diagnostic

            if not diagnostic.recoverable:
                invocation.transition(ExecutionState.FAILED_TERMINAL)
                raise ModuleFailureError(
                    f"eget failed with exit code {result.exit_code}: "
                    f"{diagnostic.message.strip() or 'no diagnostic output'}",
                    exit_code=result.exit_code,
                    path=diagnostic.path,
                )

            invocation.transition(ExecutionState.FAILED_RECOVERABLE)

            if attempt + 1 >= self.max_attempts:
                invocation.transition(ExecutionState.FAILED_TERMINAL)
                raise MaxAttemptsExceededError(
                    f"Max attempts ({self.max_attempts}) reached. Download failed; "
                    f"last missing URL: {diagnostic.url}",
                    attempts=invocation.attempts,
                    last_url=diagnostic.url,
                )

            logger.debug("Missing file for URL: %s", diagnostic.url)
            destination = url_to_cache_path(diagnostic.url, self.cache_root)
            fetched = self.fetcher.fetch(
                diagnostic.url,
                destination,
                on_progress=on_progress,
                timeout_s=timeout_s,
            )
            invocation.fetched.append(diagnostic.url)
            self._audit(
                "fetch",
                url=diagnostic.url,
                path=str(destination),
                bytes=fetched.bytes if fetched else None,
                sha256=fetched.sha256 if fetched else None,
            )
            invocation.transition(ExecutionState.RUNNING)
