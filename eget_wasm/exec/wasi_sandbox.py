"""WASI sandbox implementation backed by wasmtime.

The eget program is compiled for WASI preview1 and has no socket access.
It sees two preopened directories: the per-attempt workspace as ``/`` and
the shared download cache as ``/tmp``.

Security Note:
    Isolation is whatever wasmtime's WASI implementation provides: the
    module can only touch the two preopened directories and has no
    network. No further OS-level sandboxing is attempted.
"""

import logging
import tempfile
import time
from pathlib import Path

from wasmtime import ExitTrap, Linker, Store, Trap, WasiConfig, WasmtimeError

from eget_wasm.exceptions import InfrastructureError
from eget_wasm.exec.module_cache import ModuleCache, default_module_cache
from eget_wasm.exec.sandbox import CACHE_MOUNT, WORKSPACE_MOUNT, SandboxProvider
from eget_wasm.models import ExecutionResult

logger = logging.getLogger(__name__)

ARGV0 = "eget.wasm"


class WasiSandbox(SandboxProvider):
    """Execute a WASI preview1 module under wasmtime.

    The module is compiled once through a ModuleCache and instantiated in
    a fresh Store for every call.

    Example:
        >>> sandbox = WasiSandbox(Path("eget.wasm"))
        >>> result = sandbox.execute(
        ...     args=["--system", "linux/amd64", "zyedidia/eget"],
        ...     workspace_root=Path("/tmp/work/attempt-0"),
        ...     cache_root=Path(".eget"),
        ...     env={},
        ... )
        >>> print(result.exit_code, result.stderr)
    """

    def __init__(self, wasm_path: Path, module_cache: ModuleCache | None = None):
        """Initialize the sandbox.

        Args:
            wasm_path: Path to the compiled eget.wasm
            module_cache: Cache to compile through; defaults to the
                          process-wide cache
        """
        self.wasm_path = Path(wasm_path)
        self.module_cache = module_cache or default_module_cache()

    def execute(
        self,
        args: list[str],
        workspace_root: Path,
        cache_root: Path,
        env: dict[str, str],
    ) -> ExecutionResult:
        """Run the module once.

        Raises:
            InfrastructureError: If the module cannot be loaded or instantiated

        Notes:
            - A ``proc_exit`` trap supplies the exit code; returning from
              ``_start`` means exit code 0
            - Any other trap is reported as exit code 1 with the trap
              message appended to stderr
            - stderr is captured to a host file outside the workspace so it
              never shows up as produced output
        """
        module = self.module_cache.get(self.wasm_path)
        engine = self.module_cache.engine

        workspace_root = Path(workspace_root)
        cache_root = Path(cache_root)
        cache_root.mkdir(parents=True, exist_ok=True)

        guest_env = dict(env)
        guest_env["PWD"] = WORKSPACE_MOUNT

        with tempfile.TemporaryDirectory(prefix="eget-wasm-io-") as io_dir:
            stdout_file = Path(io_dir) / "stdout.log"
            stderr_file = Path(io_dir) / "stderr.log"
            stdout_file.touch()
            stderr_file.touch()

            wasi_config = WasiConfig()
            wasi_config.argv = [ARGV0, *args]
            wasi_config.env = list(guest_env.items())
            wasi_config.stdout_file = str(stdout_file)
            wasi_config.stderr_file = str(stderr_file)
            wasi_config.preopen_dir(str(workspace_root), WORKSPACE_MOUNT)
            wasi_config.preopen_dir(str(cache_root), CACHE_MOUNT)

            store = Store(engine)
            store.set_wasi(wasi_config)

            linker = Linker(engine)
            linker.define_wasi()

            try:
                instance = linker.instantiate(store, module)
                start = instance.exports(store)["_start"]
            except (WasmtimeError, Trap, KeyError) as e:
                raise InfrastructureError(
                    f"Failed to instantiate WASM module {self.wasm_path}: {e}"
                ) from e

            trap_message = ""
            start_time = time.time()
            try:
                start(store)
                exit_code = 0
            except ExitTrap as e:
                exit_code = e.code
            except (Trap, WasmtimeError) as e:
                exit_code = 1
                trap_message = str(e)
                logger.debug("Module trapped: %s", e)
            duration_ms = int((time.time() - start_time) * 1000)

            stdout = stdout_file.read_text(encoding="utf-8", errors="replace")
            stderr = stderr_file.read_text(encoding="utf-8", errors="replace")

        if trap_message:
            stderr = f"{stderr}\n{trap_message}" if stderr else trap_message

        return ExecutionResult(
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration_ms=duration_ms,
            meta={"sandbox": "wasi", "module": str(self.wasm_path)},
        )
