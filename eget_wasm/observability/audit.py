"""Audit logging interfaces and implementations for the eget bridge.

This module provides the AuditSink abstract interface for recording bridge
operations (module runs, downloads, output placement, failures), along with
concrete implementations for different logging backends.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path

from eget_wasm.models import AuditEvent


class AuditSink(ABC):
    """Abstract interface for audit logging.

    Implementations can write to different backends (files, stdout,
    databases, etc.). The orchestrator emits ``run``, ``fetch`` and
    ``error`` events; the materializer emits ``materialize`` events.
    """

    @abstractmethod
    def log(self, event: AuditEvent) -> None:
        """Record an audit event.

        Args:
            event: The AuditEvent to record.
        """
        pass


class JSONLAuditSink(AuditSink):
    """Writes audit events to a JSONL (JSON Lines) file.

    Example log file content:
        {"ts": "2024-01-01T12:00:00", "kind": "run", "url": null, ...}
        {"ts": "2024-01-01T12:00:01", "kind": "fetch", "url": "https://api.github.com/...", ...}
    """

    def __init__(self, log_path: Path):
        """Initialize JSONLAuditSink with log file path.

        Args:
            log_path: Path to the JSONL log file. Parent directories will be
                      created if they don't exist.
        """
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, event: AuditEvent) -> None:
        """Append audit event as a JSON line to the log file."""
        json_line = json.dumps(event.to_dict(), separators=(',', ':'))
        with open(self.log_path, 'a', encoding='utf-8') as f:
            f.write(json_line + '\n')


class StdoutAuditSink(AuditSink):
    """Writes audit events to stdout as JSON lines."""

    def log(self, event: AuditEvent) -> None:
        """Print audit event as a JSON line to stdout."""
        print(json.dumps(event.to_dict(), separators=(',', ':')))
