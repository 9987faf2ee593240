"""Relocation of sandbox output into the caller's destination."""

import logging
import shutil
from datetime import datetime
from pathlib import Path

from eget_wasm.models import AuditEvent, PlacementRule
from eget_wasm.observability.audit import AuditSink
from eget_wasm.output.permissions import repair_permissions

logger = logging.getLogger(__name__)


class OutputMaterializer:
    """Moves files produced in a workspace to their final destination.

    Placement of each top-level workspace entry follows the PlacementRule:

    - INTO_DIRECTORY: ``destination_cwd/<entry>``
    - RENAME: ``destination_cwd/<requested_name>``
    - FAN_OUT: ``destination_cwd/<requested_name>/<entry>``

    Directories are moved file by file, preserving their relative layout,
    and every moved file goes through permission repair.
    """

    def __init__(self, audit_sink: AuditSink | None = None):
        self._audit_sink = audit_sink

    def destination_for(
        self,
        entry_name: str,
        destination_cwd: Path,
        rule: PlacementRule,
        requested_name: str | None,
    ) -> Path:
        """Compute where a top-level workspace entry should land."""
        if rule is PlacementRule.INTO_DIRECTORY or not requested_name:
            return destination_cwd / entry_name
        if rule is PlacementRule.RENAME:
            return destination_cwd / requested_name
        return destination_cwd / requested_name / entry_name

    def materialize(
        self,
        workspace_root: Path,
        destination_cwd: Path,
        rule: PlacementRule,
        requested_name: str | None = None,
    ) -> list[Path]:
        """Move everything under ``workspace_root`` into ``destination_cwd``.

        Args:
            workspace_root: Root of the successful attempt's workspace
            destination_cwd: Caller's destination directory
            rule: PlacementRule selected from caller intent
            requested_name: Target name (the ``to`` option), if any

        Returns:
            Destination paths of all moved files, in move order. An empty
            list means the module produced nothing (e.g. upgrade skipped).
        """
        workspace_root = Path(workspace_root)
        destination_cwd = Path(destination_cwd)

        entries = sorted(workspace_root.iterdir(), key=lambda p: p.name)
        if not entries:
            logger.debug("No output produced in %s", workspace_root)
            return []

        effective_rule = rule.for_entry_count(len(entries))
        moved: list[Path] = []

        for entry in entries:
            target = self.destination_for(
                entry.name, destination_cwd, effective_rule, requested_name
            )
            if entry.is_dir() and not entry.is_symlink():
                moved.extend(self._move_tree(entry, target))
            else:
                moved.append(self._move_file(entry, target))

        if self._audit_sink:
            self._audit_sink.log(
                AuditEvent(
                    ts=datetime.now(),
                    kind="materialize",
                    path=str(destination_cwd),
                    detail={
                        "rule": effective_rule.value,
                        "files": [str(path) for path in moved],
                    },
                )
            )
        return moved

    def _move_file(self, source: Path, target: Path) -> Path:
        if target.is_dir() and not target.is_symlink():
            target = target / source.name
        target.parent.mkdir(parents=True, exist_ok=True)
        # Rename when on the same filesystem, copy + delete otherwise.
        shutil.move(str(source), str(target))
        if not target.is_symlink():
            repair_permissions(target)
        logger.debug("Placed %s", target)
        return target

    def _move_tree(self, source_root: Path, target_root: Path) -> list[Path]:
        moved: list[Path] = []
        pending: list[tuple[Path, Path]] = [(source_root, target_root)]

        while pending:
            source_dir, target_dir = pending.pop()
            target_dir.mkdir(parents=True, exist_ok=True)
            for child in sorted(source_dir.iterdir(), key=lambda p: p.name):
                child_target = target_dir / child.name
                if child.is_dir() and not child.is_symlink():
                    pending.append((child, child_target))
                else:
                    moved.append(self._move_file(child, child_target))

        return moved
