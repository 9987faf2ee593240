"""Execution module for sandboxed runs and the retry loop."""

from eget_wasm.exec.sandbox import SandboxProvider
from eget_wasm.exec.module_cache import ModuleCache, default_module_cache
from eget_wasm.exec.wasi_sandbox import WasiSandbox
from eget_wasm.exec.runner import ExecutionOrchestrator

__all__ = [
    "SandboxProvider",
    "ModuleCache",
    "default_module_cache",
    "WasiSandbox",
    "ExecutionOrchestrator",
]
