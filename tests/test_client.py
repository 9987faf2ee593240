"""Tests for the Eget facade and the eget() helper."""

import re
from pathlib import Path

import pytest

from eget_wasm.exceptions import (
    InfrastructureError,
    MaxAttemptsExceededError,
    ModuleFailureError,
    ResourceNotFoundError,
)
from eget_wasm.models import BridgeConfig, DownloadOptions, ExecutionResult
from eget_wasm.runtime.client import Eget, detect_system, eget

from conftest import MemoryAuditSink, ScriptedSandbox, StubFetcher, missing, succeeded


def release_script(*names):
    """Sandbox script: ask for one URL, then produce ``names``."""

    def script(attempt, workspace, cache):
        if not (cache / "https" / "example.test" / "asset").exists():
            return missing("https://example.test/asset")
        for name in names:
            (workspace / name).write_bytes(b"binary")
        return succeeded()

    return script


def make_eget(script, temp_dir, fetcher=None, **kwargs):
    sandbox = ScriptedSandbox(script)
    instance = Eget(
        cwd=temp_dir / "bin",
        tmp_dir=temp_dir / "cache",
        config=kwargs.pop("config", BridgeConfig()),
        sandbox=sandbox,
        fetcher=fetcher or StubFetcher(),
        **kwargs,
    )
    return instance, sandbox


class TestEgetDownload:
    """Tests for Eget.download."""

    def test_end_to_end(self, temp_dir):
        """One miss, one fetch, one success; the file lands in cwd."""
        instance, sandbox = make_eget(release_script("sops"), temp_dir)

        result = instance.download("getsops/sops", system="linux/amd64")

        assert result.success
        assert result.attempts == 2
        assert result.files == [temp_dir / "bin" / "sops"]
        assert result.fetched == ["https://example.test/asset"]
        assert (temp_dir / "bin" / "sops").read_bytes() == b"binary"
        assert sandbox.calls[0]["args"] == ["--system", "linux/amd64", "getsops/sops"]
        assert (temp_dir / "cache" / "https" / "example.test" / "asset").exists()

    def test_rename(self, temp_dir):
        instance, _ = make_eget(release_script("gh_2.40.1_linux_amd64"), temp_dir)

        result = instance.download("cli/cli", DownloadOptions(system="linux/amd64", to="gh"))

        assert result.files == [temp_dir / "bin" / "gh"]

    def test_fan_out(self, temp_dir):
        instance, _ = make_eget(release_script("a", "b"), temp_dir)

        result = instance.download("o/r", DownloadOptions(system="linux/amd64", to="out", all=True))

        assert sorted(result.files) == [temp_dir / "bin" / "out" / "a", temp_dir / "bin" / "out" / "b"]

    def test_nothing_produced_is_skipped(self, temp_dir):
        instance, _ = make_eget(release_script(), temp_dir)

        result = instance.download("o/r", upgrade_only=True, system="linux/amd64")

        assert result.success
        assert result.skipped
        assert result.files == []

    def test_detects_system_when_missing(self, temp_dir):
        instance, sandbox = make_eget(lambda attempt, workspace, cache: succeeded(), temp_dir)
        options = DownloadOptions()

        instance.download("o/r", options)

        assert sandbox.calls[0]["args"][:2] == ["--system", detect_system()]
        assert options.system is None

    def test_bin_dir_wins_over_cwd(self, temp_dir):
        config = BridgeConfig(bin_dir=temp_dir / "eget-bin")
        instance, _ = make_eget(release_script("tool"), temp_dir, config=config)

        result = instance.download("o/r", system="linux/amd64")

        assert result.files == [temp_dir / "eget-bin" / "tool"]
        assert not (temp_dir / "bin").exists()

    def test_bin_dir_not_forwarded_to_sandbox(self, temp_dir, monkeypatch):
        monkeypatch.setenv("EGET_BIN", "/somewhere")
        monkeypatch.setenv("HOME", "/home/user")
        config = BridgeConfig(env_allowlist={"EGET_BIN", "HOME"})
        instance, sandbox = make_eget(lambda attempt, workspace, cache: succeeded(), temp_dir, config=config)

        instance.download("o/r", system="linux/amd64")

        assert sandbox.calls[0]["env"] == {"HOME": "/home/user"}

    def test_failure_raises_by_default(self, temp_dir):
        instance, _ = make_eget(lambda attempt, workspace, cache: missing("https://example.test/x"), temp_dir)

        with pytest.raises(MaxAttemptsExceededError):
            instance.download("o/r", system="linux/amd64")

    def test_failure_without_check(self, temp_dir):
        instance, _ = make_eget(lambda attempt, workspace, cache: missing("https://example.test/x"), temp_dir)

        result = instance.download("o/r", system="linux/amd64", check=False)

        assert not result.success
        assert result.attempts == 10
        assert isinstance(result.error, MaxAttemptsExceededError)

    def test_terminal_failure_without_check_counts_attempts(self, temp_dir):
        instance, _ = make_eget(
            lambda attempt, workspace, cache: ExecutionResult(exit_code=1, stdout="", stderr="no assets", duration_ms=1),
            temp_dir,
        )

        result = instance.download("o/r", system="linux/amd64", check=False)

        assert isinstance(result.error, ModuleFailureError)
        assert result.attempts == 1

    def test_fetch_failure_without_check_counts_attempts(self, temp_dir):
        def script(attempt, workspace, cache):
            if attempt == 1:
                return missing("https://example.test/a")
            return missing("https://example.test/b")

        error = ResourceNotFoundError("HTTP 404", url="https://example.test/b", status_code=404)

        class FailSecond(StubFetcher):
            def fetch(self, url, destination, on_progress=None, timeout_s=None):
                if url.endswith("/b"):
                    raise error
                return super().fetch(url, destination, on_progress=on_progress, timeout_s=timeout_s)

        instance, _ = make_eget(script, temp_dir, fetcher=FailSecond())

        result = instance.download("o/r", system="linux/amd64", check=False)

        assert result.error is error
        assert result.attempts == 2
        assert result.fetched == ["https://example.test/a"]

    def test_terminal_failure_produces_nothing(self, temp_dir):
        def script(attempt, workspace, cache):
            (workspace / "half-written").write_bytes(b"x")
            return ExecutionResult(exit_code=1, stdout="", stderr="no assets found", duration_ms=1)

        instance, _ = make_eget(script, temp_dir)

        with pytest.raises(ModuleFailureError):
            instance.download("o/r", system="linux/amd64")

        assert not (temp_dir / "bin").exists()

    def test_audit_events(self, temp_dir):
        sink = MemoryAuditSink()
        instance, _ = make_eget(release_script("tool"), temp_dir, audit_sink=sink)

        instance.download("o/r", system="linux/amd64")

        assert sink.kinds == ["run", "fetch", "run", "materialize"]

    def test_progress_callback(self, temp_dir):
        calls = []
        instance, _ = make_eget(
            release_script("tool"),
            temp_dir,
            fetcher=StubFetcher(content=b"12345"),
            on_progress=lambda url, current, total: calls.append((url, current, total)),
        )

        instance.download("o/r", system="linux/amd64")

        assert calls[-1] == ("https://example.test/asset", 5, 5)

    def test_empty_repo(self, temp_dir):
        instance, _ = make_eget(lambda attempt, workspace, cache: succeeded(), temp_dir)

        with pytest.raises(ValueError):
            instance.download("")


class TestEgetConstruction:
    """Tests for Eget option validation and defaults."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"cwd": 42},
            {"tmp_dir": ["x"]},
            {"wasm_path": 1.5},
            {"on_progress": "not callable"},
            {"verbose": "yes"},
        ],
    )
    def test_type_errors(self, kwargs):
        with pytest.raises(TypeError):
            Eget(config=BridgeConfig(), **kwargs)

    def test_defaults(self, monkeypatch, temp_dir):
        monkeypatch.chdir(temp_dir)
        instance = Eget()

        assert instance.cwd == temp_dir
        assert instance.tmp_dir == Path(".eget")
        assert instance.destination == temp_dir

    def test_wasm_path_does_not_mutate_config(self):
        config = BridgeConfig()
        instance = Eget(wasm_path="custom.wasm", config=config)

        assert instance.config.wasm_path == Path("custom.wasm")
        assert config.wasm_path.name == "eget.wasm"
        assert config.wasm_path != Path("custom.wasm")

    def test_cleanup(self, temp_dir):
        cache = temp_dir / "cache"
        (cache / "https").mkdir(parents=True)
        instance = Eget(tmp_dir=cache, config=BridgeConfig())

        instance.cleanup()
        instance.cleanup()

        assert not cache.exists()


class TestEgetRun:
    """Tests for the single-shot Eget.run."""

    def test_success(self, temp_dir):
        instance, _ = make_eget(lambda attempt, workspace, cache: succeeded(), temp_dir)

        result = instance.run(["o/r"], temp_dir)

        assert result.success
        assert result.url is None

    def test_missing_resource(self, temp_dir):
        instance, sandbox = make_eget(
            lambda attempt, workspace, cache: missing("https://example.test/a", "not cached"), temp_dir
        )

        result = instance.run(["o/r"], temp_dir)

        assert not result.success
        assert result.url == "https://example.test/a"
        assert result.error == "not cached"
        assert len(sandbox.calls) == 1
        assert instance.fetcher.calls == []


def test_detect_system_format():
    assert re.fullmatch(r"(linux|darwin|windows)/(amd64|arm64|arm)", detect_system())


class TestEgetFunction:
    """Tests for the eget() convenience function."""

    def test_missing_wasm_cleans_up(self, temp_dir):
        cache = temp_dir / "cache"

        with pytest.raises(InfrastructureError):
            eget(
                "o/r",
                cwd=temp_dir,
                tmp_dir=cache,
                wasm_path=temp_dir / "absent.wasm",
                system="linux/amd64",
            )

        assert not cache.exists()

    def test_missing_wasm_without_check(self, temp_dir):
        result = eget(
            "o/r",
            cwd=temp_dir,
            tmp_dir=temp_dir / "cache",
            wasm_path=temp_dir / "absent.wasm",
            check=False,
            system="linux/amd64",
        )

        assert not result.success
        assert isinstance(result.error, InfrastructureError)

    def test_skip_cleanup(self, temp_dir):
        cache = temp_dir / "cache"

        eget(
            "o/r",
            cwd=temp_dir,
            tmp_dir=cache,
            wasm_path=temp_dir / "absent.wasm",
            check=False,
            skip_cleanup=True,
        )

        assert cache.exists()
