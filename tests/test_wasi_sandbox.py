"""Tests for WasiSandbox using small hand-written WASI modules."""

import pytest
from wasmtime import wat2wasm

from eget_wasm.exceptions import InfrastructureError
from eget_wasm.exec.module_cache import ModuleCache
from eget_wasm.exec.wasi_sandbox import WasiSandbox
from eget_wasm.parsing.diagnostic import parse_diagnostic

RETURNS = """
(module
  (memory (export "memory") 1)
  (func (export "_start")))
"""

EXITS_WITH_3 = """
(module
  (import "wasi_snapshot_preview1" "proc_exit" (func $proc_exit (param i32)))
  (memory (export "memory") 1)
  (func (export "_start")
    (call $proc_exit (i32.const 3))))
"""

# Writes a 50-byte JSON diagnostic to stderr, then exits with 1.
REPORTS_MISSING_URL = r"""
(module
  (import "wasi_snapshot_preview1" "fd_write"
    (func $fd_write (param i32 i32 i32 i32) (result i32)))
  (import "wasi_snapshot_preview1" "proc_exit" (func $proc_exit (param i32)))
  (memory (export "memory") 1)
  (data (i32.const 0) "\40\00\00\00\32\00\00\00")
  (data (i32.const 64) "{\"url\":\"https://example.test/a\",\"error\":\"missing\"}")
  (func (export "_start")
    (drop (call $fd_write (i32.const 2) (i32.const 0) (i32.const 1) (i32.const 16)))
    (call $proc_exit (i32.const 1))))
"""

# Creates out.txt in the first preopen (the workspace) containing "hello".
WRITES_OUTPUT = r"""
(module
  (import "wasi_snapshot_preview1" "path_open"
    (func $path_open (param i32 i32 i32 i32 i32 i64 i64 i32 i32) (result i32)))
  (import "wasi_snapshot_preview1" "fd_write"
    (func $fd_write (param i32 i32 i32 i32) (result i32)))
  (import "wasi_snapshot_preview1" "proc_exit" (func $proc_exit (param i32)))
  (memory (export "memory") 1)
  (data (i32.const 0) "\40\00\00\00\05\00\00\00")
  (data (i32.const 32) "out.txt")
  (data (i32.const 64) "hello")
  (func (export "_start")
    (if (call $path_open
          (i32.const 3) (i32.const 0) (i32.const 32) (i32.const 7)
          (i32.const 9) (i64.const 66) (i64.const 66) (i32.const 0) (i32.const 16))
      (then (call $proc_exit (i32.const 9))))
    (drop (call $fd_write (i32.load (i32.const 16)) (i32.const 0) (i32.const 1) (i32.const 20)))))
"""

TRAPS = """
(module
  (memory (export "memory") 1)
  (func (export "_start")
    unreachable))
"""

NO_START = """
(module
  (memory (export "memory") 1))
"""


@pytest.fixture
def module_cache():
    return ModuleCache()


@pytest.fixture
def make_sandbox(temp_dir, module_cache):
    def factory(wat: str) -> WasiSandbox:
        path = temp_dir / "module.wasm"
        path.write_bytes(wat2wasm(wat))
        module_cache.invalidate(path)
        return WasiSandbox(path, module_cache=module_cache)

    return factory


@pytest.fixture
def workspace(temp_dir):
    path = temp_dir / "workspace"
    path.mkdir()
    return path


class TestWasiSandbox:
    """Tests for WasiSandbox.execute."""

    def test_return_from_start_is_success(self, make_sandbox, workspace, cache_root):
        result = make_sandbox(RETURNS).execute([], workspace, cache_root, {})

        assert result.exit_code == 0
        assert result.ok
        assert result.meta["sandbox"] == "wasi"

    def test_proc_exit_code(self, make_sandbox, workspace, cache_root):
        result = make_sandbox(EXITS_WITH_3).execute([], workspace, cache_root, {})

        assert result.exit_code == 3

    def test_captures_diagnostic(self, make_sandbox, workspace, cache_root):
        result = make_sandbox(REPORTS_MISSING_URL).execute(
            ["--system", "linux/amd64", "o/r"], workspace, cache_root, {}
        )

        assert result.exit_code == 1
        assert parse_diagnostic(result.stderr).url == "https://example.test/a"

    def test_diagnostic_stream_stays_out_of_workspace(self, make_sandbox, workspace, cache_root):
        make_sandbox(REPORTS_MISSING_URL).execute([], workspace, cache_root, {})

        assert list(workspace.iterdir()) == []

    def test_output_lands_in_workspace(self, make_sandbox, workspace, cache_root):
        result = make_sandbox(WRITES_OUTPUT).execute([], workspace, cache_root, {})

        assert result.exit_code == 0
        assert (workspace / "out.txt").read_text() == "hello"

    def test_trap_is_exit_code_one(self, make_sandbox, workspace, cache_root):
        result = make_sandbox(TRAPS).execute([], workspace, cache_root, {})

        assert result.exit_code == 1
        assert "unreachable" in result.stderr

    def test_creates_cache_root(self, make_sandbox, workspace, temp_dir):
        cache_root = temp_dir / "not-yet"

        make_sandbox(RETURNS).execute([], workspace, cache_root, {})

        assert cache_root.is_dir()

    def test_missing_start_export(self, make_sandbox, workspace, cache_root):
        with pytest.raises(InfrastructureError):
            make_sandbox(NO_START).execute([], workspace, cache_root, {})

    def test_missing_module(self, temp_dir, workspace, cache_root, module_cache):
        sandbox = WasiSandbox(temp_dir / "absent.wasm", module_cache=module_cache)

        with pytest.raises(InfrastructureError):
            sandbox.execute([], workspace, cache_root, {})

    def test_reuses_compiled_module(self, make_sandbox, workspace, cache_root, module_cache):
        sandbox = make_sandbox(RETURNS)

        sandbox.execute([], workspace, cache_root, {})
        sandbox.execute([], workspace, cache_root, {})

        assert sandbox.wasm_path in module_cache
