"""Executable-permission repair for placed files.

Files come out of the WASI sandbox without reliable mode bits, so the
final placement step decides by name whether a file should be runnable.
No content sniffing is done; the decision depends only on the file name
and its current mode.
"""

import os
import stat
from pathlib import Path

EXECUTABLE_SUFFIXES = (".exe", ".appimage", ".run", ".bin")

NON_EXECUTABLE_SUFFIXES = (
    # archives and packages
    ".tar", ".gz", ".tgz", ".bz2", ".tbz", ".xz", ".txz", ".zst", ".zip", ".7z",
    ".deb", ".rpm", ".apk", ".pkg", ".msi", ".dmg", ".snap", ".flatpak",
    # checksums and signatures
    ".sha256", ".sha512", ".sha256sum", ".md5", ".sig", ".asc", ".pem", ".sbom",
    # documentation and data
    ".md", ".txt", ".rst", ".html", ".pdf", ".json", ".yaml", ".yml", ".toml",
    ".1", ".2", ".3", ".4", ".5", ".6", ".7", ".8", ".9",
)

DOCUMENTATION_NAMES = {
    "license", "licence", "readme", "copying", "changelog", "changes",
    "notice", "authors", "contributors", "makefile",
}

EXECUTE_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


def should_be_executable(path: Path, mode: int) -> bool:
    """Decide whether a placed file should be granted execute permission."""
    name = path.name.lower()

    if name.endswith(NON_EXECUTABLE_SUFFIXES) or name in DOCUMENTATION_NAMES:
        return False
    if mode & EXECUTE_BITS:
        return True
    if name.endswith(EXECUTABLE_SUFFIXES):
        return True
    # Most single-binary release assets carry no extension at all.
    return Path(name).suffix == ""


def repair_permissions(path: Path) -> int:
    """Grant execute permission where ``should_be_executable`` says so.

    Each read bit is mirrored onto the matching execute bit, so the result
    respects whoever may already read the file. Running this twice yields
    the same mode as running it once. No-op on platforms without POSIX
    execute bits.

    Returns:
        The file's mode bits after repair
    """
    path = Path(path)
    mode = stat.S_IMODE(path.stat().st_mode)
    if os.name == "nt":
        return mode

    if not should_be_executable(path, mode):
        return mode

    new_mode = mode | ((mode & (stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH)) >> 2)
    if new_mode != mode:
        path.chmod(new_mode)
    return new_mode
