"""Caller-facing entry point for downloading releases through eget.wasm.

This module provides the Eget class, which wires the sandbox, the fetcher,
the orchestrator and the materializer together, and the ``eget``
convenience function that downloads and then cleans up the cache.

Example:
    >>> from eget_wasm import eget
    >>> result = eget("getsops/sops", asset="^json", cwd="./bin")
    >>> result.success, result.files
"""

import logging
import platform
import shutil
from dataclasses import replace
from pathlib import Path

from eget_wasm.exceptions import EgetError
from eget_wasm.exec.runner import ExecutionOrchestrator
from eget_wasm.exec.sandbox import SandboxProvider
from eget_wasm.exec.wasi_sandbox import WasiSandbox
from eget_wasm.models import (
    BridgeConfig,
    DownloadOptions,
    DownloadResult,
    ProgressCallback,
    RunResult,
)
from eget_wasm.observability.audit import AuditSink
from eget_wasm.output.materializer import OutputMaterializer
from eget_wasm.parsing.diagnostic import parse_diagnostic
from eget_wasm.resources.fetcher import ResourceFetcher

logger = logging.getLogger(__name__)

_PLATFORMS = {"windows": "windows", "darwin": "darwin"}
_ARCHITECTURES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "armv6l": "arm",
    "arm": "arm",
}


def detect_system() -> str:
    """Return the host system in eget's ``platform/arch`` form.

    Unknown platforms map to ``linux`` and unknown architectures to ``amd64``.
    """
    system = _PLATFORMS.get(platform.system().lower(), "linux")
    arch = _ARCHITECTURES.get(platform.machine().lower(), "amd64")
    return f"{system}/{arch}"


class Eget:
    """Runs eget.wasm with host-mediated networking.

    Example:
        >>> egt = Eget(cwd=Path("./bin"), verbose=True)
        >>> result = egt.download("cli/cli", DownloadOptions(to="gh"))
        >>> egt.cleanup()
    """

    def __init__(
        self,
        cwd: Path | str | None = None,
        tmp_dir: Path | str | None = None,
        wasm_path: Path | str | None = None,
        on_progress: ProgressCallback | None = None,
        verbose: bool = False,
        config: BridgeConfig | None = None,
        sandbox: SandboxProvider | None = None,
        fetcher: ResourceFetcher | None = None,
        audit_sink: AuditSink | None = None,
    ):
        """Initialize the bridge.

        Args:
            cwd: Directory that receives the output (defaults to the current
                 directory). EGET_BIN, when set, takes precedence.
            tmp_dir: Download cache mounted at /tmp inside the sandbox
                     (defaults to the configured cache dir, ``./.eget``)
            wasm_path: Path to eget.wasm (defaults to the configured path)
            on_progress: Default download progress callback
            verbose: Log progress messages at INFO instead of DEBUG
            config: BridgeConfig; defaults to ``BridgeConfig.from_env()``
            sandbox: SandboxProvider override (defaults to WasiSandbox)
            fetcher: ResourceFetcher override
            audit_sink: Optional AuditSink for run/fetch/materialize events

        Raises:
            TypeError: If an option has the wrong type
        """
        if cwd is not None and not isinstance(cwd, (str, Path)):
            raise TypeError("cwd must be a string or Path")
        if tmp_dir is not None and not isinstance(tmp_dir, (str, Path)):
            raise TypeError("tmp_dir must be a string or Path")
        if wasm_path is not None and not isinstance(wasm_path, (str, Path)):
            raise TypeError("wasm_path must be a string or Path")
        if on_progress is not None and not callable(on_progress):
            raise TypeError("on_progress must be callable")
        if not isinstance(verbose, bool):
            raise TypeError("verbose must be a boolean")

        self.config = config or BridgeConfig.from_env()
        if wasm_path is not None:
            self.config = replace(self.config, wasm_path=Path(wasm_path))

        self.cwd = Path(cwd) if cwd is not None else Path.cwd()
        self.tmp_dir = Path(tmp_dir) if tmp_dir is not None else self.config.cache_dir
        self.on_progress = on_progress
        self.verbose = verbose

        self._sandbox = sandbox
        self._fetcher = fetcher
        self._audit_sink = audit_sink
        self._materializer = OutputMaterializer(audit_sink=audit_sink)

    @property
    def destination(self) -> Path:
        """Directory that receives output; EGET_BIN wins over ``cwd``."""
        return self.config.bin_dir if self.config.bin_dir else self.cwd

    @property
    def sandbox(self) -> SandboxProvider:
        if self._sandbox is None:
            self._sandbox = WasiSandbox(self.config.wasm_path)
        return self._sandbox

    @property
    def fetcher(self) -> ResourceFetcher:
        if self._fetcher is None:
            self._fetcher = ResourceFetcher(
                github_token=self.config.github_token,
                timeout_s=self.config.timeout_s,
            )
        return self._fetcher

    def log(self, message: str, *args) -> None:
        logger.log(logging.INFO if self.verbose else logging.DEBUG, message, *args)

    def run(self, args: list[str], workspace_root: Path) -> RunResult:
        """Run eget.wasm once, without fetching or retrying.

        Args:
            args: eget argument vector
            workspace_root: Directory exposed as the module's root

        Returns:
            RunResult; on failure ``url`` names the missing resource, if any
        """
        result = self.sandbox.execute(
            args=args,
            workspace_root=Path(workspace_root),
            cache_root=self.tmp_dir,
            env=self.config.sandbox_env(),
        )
        if result.exit_code == 0:
            return RunResult(success=True)
        diagnostic = parse_diagnostic(result.stderr)
        return RunResult(
            success=False,
            url=diagnostic.url,
            path=diagnostic.path,
            error=diagnostic.message,
        )

    def download(
        self,
        repo: str,
        options: DownloadOptions | None = None,
        check: bool = True,
        **kwargs,
    ) -> DownloadResult:
        """Download a release asset of ``repo`` into the destination.

        Args:
            repo: GitHub repository as ``owner/repo`` (or any target eget accepts)
            options: DownloadOptions; keyword arguments build one if omitted
            check: Raise on failure (default). If False, failures are
                   returned as an unsuccessful DownloadResult.
            **kwargs: DownloadOptions fields, used when ``options`` is None

        Returns:
            DownloadResult. ``skipped`` is True when eget produced nothing,
            e.g. ``upgrade_only`` found no newer release.

        Raises:
            ValueError: If repo is empty
            EgetError: Any bridge failure, when ``check`` is True
        """
        if not repo:
            raise ValueError("repo parameter is required")
        if options is None:
            options = DownloadOptions(**kwargs)
        if not options.system:
            options = replace(options, system=detect_system())

        args = options.to_args(repo)
        rule = options.placement
        destination = self.destination
        files: list[Path] = []

        self.log("Running eget with args: %s", " ".join(args))

        def materialize(workspace: Path) -> None:
            files.extend(
                self._materializer.materialize(workspace, destination, rule, options.to)
            )

        orchestrator = ExecutionOrchestrator(
            sandbox=self.sandbox,
            fetcher=self.fetcher,
            cache_root=self.tmp_dir,
            max_attempts=self.config.max_attempts,
            audit_sink=self._audit_sink,
        )

        try:
            invocation = orchestrator.execute(
                args,
                on_success=materialize,
                env=self.config.sandbox_env(),
                on_progress=options.on_progress or self.on_progress,
                timeout_s=options.timeout_s or self.config.timeout_s,
            )
        except EgetError as e:
            self.log("Download failed: %s", e)
            if check:
                raise
            return DownloadResult(
                success=False,
                attempts=orchestrator.last_invocation.attempts,
                fetched=list(orchestrator.last_invocation.fetched),
                error=e,
            )

        if files:
            self.log("Download completed successfully: %s", ", ".join(str(f) for f in files))
        else:
            self.log("Nothing to do: eget produced no output")

        return DownloadResult(
            success=True,
            attempts=invocation.attempts,
            files=files,
            fetched=list(invocation.fetched),
        )

    def cleanup(self) -> None:
        """Remove the download cache directory."""
        try:
            shutil.rmtree(self.tmp_dir)
            self.log("Cleaned up temporary files in %s", self.tmp_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not clean up temporary files: %s", e)


def eget(
    repo: str,
    *,
    cwd: Path | str | None = None,
    tmp_dir: Path | str | None = None,
    wasm_path: Path | str | None = None,
    verbose: bool = False,
    skip_cleanup: bool = False,
    check: bool = True,
    **options,
) -> DownloadResult:
    """Download ``repo`` with a throwaway Eget instance and clean up afterwards.

    Args:
        repo: GitHub repository as ``owner/repo``
        cwd: Output directory (EGET_BIN takes precedence)
        tmp_dir: Download cache directory
        wasm_path: Path to eget.wasm
        verbose: Log progress at INFO
        skip_cleanup: Keep the download cache (for debugging)
        check: Raise on failure instead of returning an unsuccessful result
        **options: DownloadOptions fields (``asset``, ``to``, ``tag``, ...)

    Example:
        >>> eget("cli/cli", system="linux/amd64", tag="v2.40.1", to="gh", cwd="./bin")
    """
    instance = Eget(cwd=cwd, tmp_dir=tmp_dir, wasm_path=wasm_path, verbose=verbose)
    try:
        return instance.download(repo, DownloadOptions(**options), check=check)
    finally:
        if not skip_cleanup:
            instance.cleanup()
