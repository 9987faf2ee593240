"""Sandbox provider interface for running the eget module.

This module defines the abstract base class for sandboxes that execute the
network-incapable eget program. The default implementation runs a WASI
preview1 module under wasmtime; tests plug in lightweight doubles that
honour the same filesystem contract.
"""

from abc import ABC, abstractmethod
from pathlib import Path

from eget_wasm.models import ExecutionResult

# Guest path under which the cache root is mounted. eget.wasm reads
# <CACHE_MOUNT>/<scheme>/<authority>/<path> instead of opening sockets.
CACHE_MOUNT = "/tmp"

# Guest path under which the workspace is mounted.
WORKSPACE_MOUNT = "/"


class SandboxProvider(ABC):
    """Abstract interface for one-shot executions of the sandboxed module.

    The sandbox is responsible for:
    - Exposing ``workspace_root`` as the module's writable root
    - Exposing ``cache_root`` read-only-in-practice at CACHE_MOUNT
    - Passing the argument vector and environment
    - Capturing the full diagnostic (stderr) stream
    - Reporting the exit code

    A nonzero exit code is an ordinary result, never an exception.
    """

    @abstractmethod
    def execute(
        self,
        args: list[str],
        workspace_root: Path,
        cache_root: Path,
        env: dict[str, str],
    ) -> ExecutionResult:
        """Run the module once.

        Args:
            args: Arguments for the module (without argv[0])
            workspace_root: Host directory exposed as the module's root
            cache_root: Host directory exposed at CACHE_MOUNT
            env: Environment variables for the module

        Returns:
            ExecutionResult with exit code, captured stdout/stderr, duration
            and sandbox-specific metadata

        Raises:
            InfrastructureError: If the module cannot be loaded or instantiated
        """
        pass
