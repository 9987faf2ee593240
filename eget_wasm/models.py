"""Data models for the eget WASI bridge."""

import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from eget_wasm.exceptions import EgetError

# (url, current_bytes, total_bytes); total_bytes is -1 when unknown.
ProgressCallback = Callable[[str, int, int], None]

UNKNOWN_SIZE = -1
DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_TIMEOUT_S = 300.0


class ExecutionState(Enum):
    """State machine for one orchestrated invocation."""
    RUNNING = "running"
    FAILED_RECOVERABLE = "failed_recoverable"
    SUCCEEDED = "succeeded"
    FAILED_TERMINAL = "failed_terminal"


class PlacementRule(Enum):
    """How sandbox output maps onto the caller's destination directory."""
    INTO_DIRECTORY = "single-file-into-directory"
    RENAME = "single-file-rename"
    FAN_OUT = "fan-out-into-directory"

    @classmethod
    def select(
        cls,
        to: str | None,
        all_assets: bool = False,
        extract_all: bool = False,
    ) -> "PlacementRule":
        """Pick the rule from caller intent, before any output exists."""
        if not to:
            return cls.INTO_DIRECTORY
        if all_assets or extract_all:
            return cls.FAN_OUT
        return cls.RENAME

    def for_entry_count(self, count: int) -> "PlacementRule":
        """A rename target becomes a directory once several entries appear."""
        if self is PlacementRule.RENAME and count > 1:
            return PlacementRule.FAN_OUT
        return self


@dataclass
class ExecutionResult:
    """Result of one sandboxed module execution."""
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    meta: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> dict:
        """Serialize to JSON-compatible dict."""
        return {
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration_ms": self.duration_ms,
            "meta": self.meta,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutionResult":
        """Deserialize from dict."""
        return cls(
            exit_code=data["exit_code"],
            stdout=data.get("stdout", ""),
            stderr=data.get("stderr", ""),
            duration_ms=data.get("duration_ms", 0),
            meta=data.get("meta", {}),
        )


@dataclass(frozen=True)
class DiagnosticRecord:
    """Structured failure extracted from the module's diagnostic stream.

    ``url`` is None when the failure is not a missing-resource condition.
    """
    url: str | None
    path: str | None
    message: str

    @property
    def recoverable(self) -> bool:
        return self.url is not None

    def to_dict(self) -> dict:
        return {"url": self.url, "path": self.path, "error": self.message}


@dataclass
class RunResult:
    """Outcome of a single ``Eget.run`` call."""
    success: bool
    url: str | None = None
    path: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "url": self.url,
            "path": self.path,
            "error": self.error,
        }


@dataclass
class AuditEvent:
    """Record of a bridge operation."""
    ts: datetime
    kind: str  # "run", "fetch", "materialize", "error"
    url: str | None = None
    path: str | None = None
    bytes: int | None = None
    sha256: str | None = None
    detail: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Serialize to JSON-compatible dict."""
        return {
            "ts": self.ts.isoformat(),
            "kind": self.kind,
            "url": self.url,
            "path": self.path,
            "bytes": self.bytes,
            "sha256": self.sha256,
            "detail": self.detail,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuditEvent":
        """Deserialize from dict."""
        return cls(
            ts=datetime.fromisoformat(data["ts"]),
            kind=data["kind"],
            url=data.get("url"),
            path=data.get("path"),
            bytes=data.get("bytes"),
            sha256=data.get("sha256"),
            detail=data.get("detail", {}),
        )


@dataclass
class FetchResult:
    """Outcome of a completed download."""
    url: str
    path: Path
    bytes: int
    sha256: str


@dataclass
class Invocation:
    """Progress of one orchestrated invocation through its state machine."""
    state: ExecutionState = ExecutionState.RUNNING
    attempts: int = 0
    fetched: list[str] = field(default_factory=list)
    last_diagnostic: DiagnosticRecord | None = None

    def transition(self, new_state: ExecutionState) -> None:
        """Transition to new state with validation."""
        valid_transitions = {
            ExecutionState.RUNNING: {
                ExecutionState.SUCCEEDED,
                ExecutionState.FAILED_RECOVERABLE,
                ExecutionState.FAILED_TERMINAL,
            },
            ExecutionState.FAILED_RECOVERABLE: {
                ExecutionState.RUNNING,
                ExecutionState.FAILED_TERMINAL,
            },
            ExecutionState.SUCCEEDED: set(),  # Terminal state
            ExecutionState.FAILED_TERMINAL: set(),  # Terminal state
        }

        if new_state not in valid_transitions[self.state]:
            raise ValueError(
                f"Invalid state transition from {self.state.value} to {new_state.value}"
            )

        self.state = new_state


@dataclass
class DownloadOptions:
    """Caller options for a single download.

    Most fields are forwarded to the sandboxed eget as flags; ``to``,
    ``timeout_s`` and ``on_progress`` are consumed by the bridge itself.
    """
    system: str | None = None
    asset: str | list[str] | None = None
    tag: str | None = None
    pre_release: bool = False
    all: bool = False
    file: str | None = None
    to: str | None = None
    quiet: bool = False
    upgrade_only: bool = False
    verify_sha256: str | None = None
    remove_archive: bool = False
    extract_all: bool = False
    source: bool = False
    download_only: bool = False
    timeout_s: float | None = None
    on_progress: ProgressCallback | None = None

    @property
    def placement(self) -> PlacementRule:
        return PlacementRule.select(self.to, self.all, self.extract_all)

    def to_args(self, repo: str) -> list[str]:
        """Build the eget argument vector for ``repo``."""
        args: list[str] = []

        if self.system:
            args.extend(["--system", self.system])
        if self.asset:
            assets = [self.asset] if isinstance(self.asset, str) else self.asset
            for asset in assets:
                args.extend(["--asset", asset])
        if self.tag:
            args.extend(["--tag", self.tag])
        if self.pre_release:
            args.append("--pre-release")
        if self.all:
            args.append("--all")
        if self.file:
            args.extend(["--file", self.file])
        if self.quiet:
            args.append("--quiet")
        if self.upgrade_only:
            args.append("--upgrade-only")
        if self.verify_sha256:
            args.extend(["--verify-sha256", self.verify_sha256])
        if self.remove_archive:
            args.append("--remove-archive")
        if self.extract_all:
            args.append("--extract-all")
        if self.source:
            args.append("--source")
        if self.download_only:
            args.append("--download-only")

        args.append(repo)
        return args


@dataclass
class DownloadResult:
    """Outcome of ``Eget.download``."""
    success: bool
    attempts: int = 0
    files: list[Path] = field(default_factory=list)
    fetched: list[str] = field(default_factory=list)
    error: EgetError | None = None

    @property
    def skipped(self) -> bool:
        """True when the run succeeded but produced nothing (e.g. no upgrade)."""
        return self.success and not self.files

    def __bool__(self) -> bool:
        return self.success

    def to_dict(self) -> dict:
        """Serialize to JSON-compatible dict."""
        return {
            "success": self.success,
            "attempts": self.attempts,
            "files": [str(path) for path in self.files],
            "fetched": self.fetched,
            "skipped": self.skipped,
            "error": (
                {"type": type(self.error).__name__, "message": str(self.error)}
                if self.error
                else None
            ),
        }


def _default_wasm_path() -> Path:
    return Path(__file__).parent / "eget.wasm"


@dataclass
class BridgeConfig:
    """Environment-derived configuration for the bridge."""
    wasm_path: Path = field(default_factory=_default_wasm_path)
    cache_dir: Path = Path(".eget")
    bin_dir: Path | None = None
    github_token: str | None = None
    timeout_s: float = DEFAULT_TIMEOUT_S
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    env_allowlist: set[str] = field(
        default_factory=lambda: {
            "EGET_CONFIG",
            "EGET_GITHUB_TOKEN",
            "GITHUB_TOKEN",
            "HOME",
            "NO_COLOR",
        }
    )

    def sandbox_env(self, environ: dict[str, str] | None = None) -> dict[str, str]:
        """Environment forwarded into the sandbox.

        EGET_BIN is never forwarded: output placement happens on the host.
        """
        source = os.environ if environ is None else environ
        return {
            name: source[name]
            for name in sorted(self.env_allowlist)
            if name in source and name != "EGET_BIN"
        }

    def to_dict(self) -> dict:
        """Serialize to JSON-compatible dict."""
        return {
            "wasm_path": str(self.wasm_path),
            "cache_dir": str(self.cache_dir),
            "bin_dir": str(self.bin_dir) if self.bin_dir else None,
            "timeout_s": self.timeout_s,
            "max_attempts": self.max_attempts,
            "env_allowlist": sorted(self.env_allowlist),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BridgeConfig":
        """Deserialize from dict."""
        config = cls()
        if data.get("wasm_path"):
            config.wasm_path = Path(data["wasm_path"])
        if data.get("cache_dir"):
            config.cache_dir = Path(data["cache_dir"])
        if data.get("bin_dir"):
            config.bin_dir = Path(data["bin_dir"])
        config.github_token = data.get("github_token")
        config.timeout_s = float(data.get("timeout_s", DEFAULT_TIMEOUT_S))
        config.max_attempts = int(data.get("max_attempts", DEFAULT_MAX_ATTEMPTS))
        if "env_allowlist" in data:
            config.env_allowlist = set(data["env_allowlist"])
        return config

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "BridgeConfig":
        """Build configuration from EGET_* environment variables."""
        env: Any = os.environ if environ is None else environ
        return cls.from_dict(
            {
                "wasm_path": env.get("EGET_WASM_PATH"),
                "cache_dir": env.get("EGET_CACHE_DIR"),
                "bin_dir": env.get("EGET_BIN"),
                "github_token": env.get("EGET_GITHUB_TOKEN") or env.get("GITHUB_TOKEN"),
                "timeout_s": env.get("EGET_TIMEOUT_S") or DEFAULT_TIMEOUT_S,
            }
        )
