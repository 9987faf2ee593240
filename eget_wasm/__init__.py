"""eget-wasm - run the eget release downloader in a WASI sandbox.

The sandboxed eget has no network access. Whenever it needs a URL it fails
with a structured diagnostic, the host downloads the URL into a cache
directory mounted inside the sandbox, and eget is run again. Once it
succeeds, its output is moved to the caller's destination.
"""

from eget_wasm.exceptions import (
    EgetError,
    InvalidLocatorError,
    FetchError,
    ResourceNotFoundError,
    RateLimitedError,
    ServerError,
    FetchTimeoutError,
    NetworkError,
    HTTPStatusError,
    ModuleFailureError,
    MaxAttemptsExceededError,
    InfrastructureError,
)

from eget_wasm.models import (
    AuditEvent,
    BridgeConfig,
    DiagnosticRecord,
    DownloadOptions,
    DownloadResult,
    ExecutionResult,
    ExecutionState,
    PlacementRule,
    RunResult,
)

from eget_wasm.observability import AuditSink, JSONLAuditSink, StdoutAuditSink
from eget_wasm.exec import ExecutionOrchestrator, ModuleCache, SandboxProvider, WasiSandbox
from eget_wasm.output import OutputMaterializer
from eget_wasm.parsing import parse_diagnostic
from eget_wasm.resources import ResourceFetcher, url_to_cache_path
from eget_wasm.runtime import Eget, detect_system, eget

__version__ = "0.1.0"

__all__ = [
    # Exceptions
    "EgetError",
    "InvalidLocatorError",
    "FetchError",
    "ResourceNotFoundError",
    "RateLimitedError",
    "ServerError",
    "FetchTimeoutError",
    "NetworkError",
    "HTTPStatusError",
    "ModuleFailureError",
    "MaxAttemptsExceededError",
    "InfrastructureError",
    # Models
    "AuditEvent",
    "BridgeConfig",
    "DiagnosticRecord",
    "DownloadOptions",
    "DownloadResult",
    "ExecutionResult",
    "ExecutionState",
    "PlacementRule",
    "RunResult",
    # Observability
    "AuditSink",
    "JSONLAuditSink",
    "StdoutAuditSink",
    # Bridge components
    "ExecutionOrchestrator",
    "ModuleCache",
    "SandboxProvider",
    "WasiSandbox",
    "OutputMaterializer",
    "parse_diagnostic",
    "ResourceFetcher",
    "url_to_cache_path",
    # Entry points
    "Eget",
    "detect_system",
    "eget",
]
