"""Compiled WebAssembly module cache.

Compiling a module is pure and expensive, instantiating it is cheap and
must happen per run. ModuleCache keeps compiled modules keyed by their
resolved path and makes concurrent first callers share a single
compilation.
"""

import logging
import threading
from pathlib import Path

from wasmtime import Engine, Module, WasmtimeError

from eget_wasm.exceptions import InfrastructureError

logger = logging.getLogger(__name__)


class ModuleCache:
    """Caches compiled wasmtime modules per engine.

    Example:
        >>> cache = ModuleCache()
        >>> module = cache.get(Path("eget.wasm"))
        >>> module is cache.get(Path("eget.wasm"))
        True
    """

    def __init__(self, engine: Engine | None = None):
        """Initialize the cache.

        Args:
            engine: Engine to compile with. Modules are only valid within the
                    engine that compiled them, so the sandbox must use
                    ``cache.engine`` for its stores.
        """
        self.engine = engine or Engine()
        self._modules: dict[str, Module] = {}
        self._lock = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}

    @staticmethod
    def _key(wasm_path: Path) -> str:
        return str(Path(wasm_path).expanduser().resolve())

    def get(self, wasm_path: Path) -> Module:
        """Return the compiled module for ``wasm_path``, compiling on first use.

        Raises:
            InfrastructureError: If the file cannot be read or compiled.
                Failures are not cached.
        """
        key = self._key(wasm_path)

        with self._lock:
            module = self._modules.get(key)
            if module is not None:
                return module
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        with key_lock:
            # Another caller may have finished compiling while we waited.
            with self._lock:
                module = self._modules.get(key)
                if module is not None:
                    return module

            logger.debug("Compiling WebAssembly module %s", key)
            try:
                module = Module.from_file(self.engine, key)
            except OSError as e:
                raise InfrastructureError(f"Failed to read WASM file {key}: {e}") from e
            except WasmtimeError as e:
                raise InfrastructureError(f"Failed to compile WASM file {key}: {e}") from e

            with self._lock:
                self._modules[key] = module
            return module

    def __contains__(self, wasm_path: Path) -> bool:
        with self._lock:
            return self._key(wasm_path) in self._modules

    def invalidate(self, wasm_path: Path) -> None:
        """Drop the compiled module for ``wasm_path``."""
        with self._lock:
            self._modules.pop(self._key(wasm_path), None)

    def clear(self) -> None:
        """Drop all compiled modules."""
        with self._lock:
            self._modules.clear()


_default_cache: ModuleCache | None = None
_default_lock = threading.Lock()


def default_module_cache() -> ModuleCache:
    """Return the process-wide ModuleCache, creating it on first use."""
    global _default_cache
    with _default_lock:
        if _default_cache is None:
            _default_cache = ModuleCache()
        return _default_cache
