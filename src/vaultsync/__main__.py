"""Entry point for `python -m vaultsync` / `vaultsync`.

Subcommands:
    vaultsync sync      Run one sync session (manual trigger)
    vaultsync status    Check divergence from the remote (startup hook)
    vaultsync watch     Startup check, then periodic sync until interrupted
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path


def _build_app(config: Path | None):
    from vaultsync.app import SyncApp
    from vaultsync.config import get_settings, load_settings
    from vaultsync.logger import set_level

    settings = load_settings(config) if config else get_settings()
    set_level(settings.logging.level)
    return SyncApp(settings)


def _sync(config: Path | None) -> int:
    app = _build_app(config)
    session = asyncio.run(app.sync())
    return 0 if session is not None and session.succeeded else 1


def _status(config: Path | None) -> int:
    from vaultsync.sync import StatusVerdict

    app = _build_app(config)
    verdict = asyncio.run(app.check_status(force=True))
    print(f"vaultsync: status {verdict}")
    return 1 if verdict is StatusVerdict.UNREACHABLE else 0


def _watch(config: Path | None) -> int:
    app = _build_app(config)
    asyncio.run(app.run_forever())
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="vaultsync",
        description="Keep a local vault in sync with a remote git repository",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.toml (default: ./config.toml)",
    )
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("sync", help="Run one sync session now")
    sub.add_parser("status", help="Check whether the vault is behind the remote")
    sub.add_parser("watch", help="Run the startup check, then sync on the configured interval")

    args = parser.parse_args()

    match args.command:
        case "sync":
            sys.exit(_sync(args.config))
        case "status":
            sys.exit(_status(args.config))
        case "watch":
            sys.exit(_watch(args.config))
        case _:
            parser.print_help()
            sys.exit(2)


if __name__ == "__main__":
    main()
