"""Command-line interface for eget-wasm.

This module provides a thin CLI over the Eget bridge. It forwards eget's
own options to the sandboxed module and handles placement, progress and
cache cleanup on the host.

Commands:
    download: Download a release asset through eget.wasm
    clean: Remove the download cache

Example:
    $ eget-wasm download getsops/sops --asset ^json --cwd ./bin
    $ eget-wasm download cli/cli --to gh --tag v2.40.1 --verbose
    $ eget-wasm clean --tmp-dir .eget
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import NoReturn

from eget_wasm.exceptions import EgetError, RateLimitedError
from eget_wasm.models import BridgeConfig, DownloadOptions
from eget_wasm.observability.audit import JSONLAuditSink
from eget_wasm.runtime.client import Eget


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="eget-wasm",
        description="Run eget in a WASI sandbox with host-side downloads",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Download command
    download_parser = subparsers.add_parser(
        "download",
        help="Download a release asset",
        description="Download and extract a GitHub release asset via eget.wasm",
    )
    download_parser.add_argument(
        "repo",
        help="Repository in owner/repo form",
    )
    download_parser.add_argument("--cwd", type=Path, help="Output directory (EGET_BIN takes precedence)")
    download_parser.add_argument("--tmp-dir", type=Path, help="Download cache directory (default: ./.eget)")
    download_parser.add_argument("--wasm", type=Path, help="Path to eget.wasm")
    download_parser.add_argument("--system", help="Target system, e.g. linux/amd64 (default: detected)")
    download_parser.add_argument(
        "--asset",
        action="append",
        default=[],
        help="Asset name pattern (can be specified multiple times)",
    )
    download_parser.add_argument("--tag", help="Release tag to download")
    download_parser.add_argument("--pre-release", action="store_true", help="Include pre-releases")
    download_parser.add_argument("--all", action="store_true", help="Download all matching assets")
    download_parser.add_argument("--file", help="File to extract from the archive")
    download_parser.add_argument("--to", help="Output name (a directory when several files result)")
    download_parser.add_argument("--quiet", action="store_true", help="Tell eget to be quiet")
    download_parser.add_argument("--upgrade-only", action="store_true", help="Only download if newer")
    download_parser.add_argument("--verify-sha256", help="Expected SHA-256 of the asset")
    download_parser.add_argument("--remove-archive", action="store_true", help="Remove the archive after extraction")
    download_parser.add_argument("--extract-all", action="store_true", help="Extract all files from the archive")
    download_parser.add_argument("--source", action="store_true", help="Download the source archive")
    download_parser.add_argument("--download-only", action="store_true", help="Do not extract")
    download_parser.add_argument(
        "--timeout",
        type=float,
        help="Per-download timeout in seconds (default: 300)",
    )
    download_parser.add_argument(
        "--audit-log",
        type=Path,
        help="Append JSONL audit events to this file",
    )
    download_parser.add_argument(
        "--progress",
        action="store_true",
        help="Print download progress to stderr",
    )
    download_parser.add_argument(
        "--skip-cleanup",
        action="store_true",
        help="Keep the download cache afterwards",
    )

    # Clean command
    clean_parser = subparsers.add_parser(
        "clean",
        help="Remove the download cache",
        description="Delete the directory holding downloaded resources",
    )
    clean_parser.add_argument("--tmp-dir", type=Path, help="Download cache directory (default: ./.eget)")

    return parser


def print_progress(url: str, current: int, total: int) -> None:
    """Render download progress on stderr."""
    name = url.rsplit("/", 1)[-1] or url
    if total > 0:
        percent = current * 100 // total
        print(f"\r{name}: {current}/{total} bytes ({percent}%)", end="", file=sys.stderr)
        if current == total:
            print(file=sys.stderr)
    else:
        print(f"\r{name}: {current} bytes", end="", file=sys.stderr)


def cmd_download(args: argparse.Namespace) -> int:
    """Execute the download command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, 1 for error)
    """
    instance = None
    try:
        config = BridgeConfig.from_env()
        instance = Eget(
            cwd=args.cwd,
            tmp_dir=args.tmp_dir,
            wasm_path=args.wasm,
            verbose=args.verbose,
            config=config,
            audit_sink=JSONLAuditSink(args.audit_log) if args.audit_log else None,
        )

        options = DownloadOptions(
            system=args.system,
            asset=args.asset or None,
            tag=args.tag,
            pre_release=args.pre_release,
            all=args.all,
            file=args.file,
            to=args.to,
            quiet=args.quiet,
            upgrade_only=args.upgrade_only,
            verify_sha256=args.verify_sha256,
            remove_archive=args.remove_archive,
            extract_all=args.extract_all,
            source=args.source,
            download_only=args.download_only,
            timeout_s=args.timeout,
            on_progress=print_progress if args.progress else None,
        )

        result = instance.download(args.repo, options)

        if result.skipped:
            print("Nothing to do.")
        for path in result.files:
            print(path)
        return 0

    except RateLimitedError as e:
        print(f"Error: {e}", file=sys.stderr)
        if e.retry_after:
            print(f"Retry after: {e.retry_after.isoformat()}", file=sys.stderr)
        return 1
    except EgetError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        return 1
    finally:
        if instance is not None and not args.skip_cleanup:
            instance.cleanup()


def cmd_clean(args: argparse.Namespace) -> int:
    """Execute the clean command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (always 0)
    """
    config = BridgeConfig.from_env()
    tmp_dir = args.tmp_dir or config.cache_dir
    Eget(tmp_dir=tmp_dir, config=config).cleanup()
    print(f"Removed {tmp_dir}")
    return 0


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the CLI.

    This function is called when the eget-wasm command is executed.
    It parses command-line arguments and dispatches to the appropriate
    command handler.
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    # Dispatch to command handler
    if args.command == "download":
        exit_code = cmd_download(args)
    elif args.command == "clean":
        exit_code = cmd_clean(args)
    else:
        parser.print_help()
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
