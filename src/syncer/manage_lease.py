"""
Operator tool for the run lease.

Runnable as::

    python -m syncer.manage_lease status
    python -m syncer.manage_lease release --force

``status`` prints the lease row plus sync statistics.  ``release`` clears
a lease left held by a run that was killed mid-way; it refuses without
``--force`` because clearing a lease under a live run lets two runs work
at once.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from shared.config import DEFAULT_CONFIG_PATH, database_config, load_config
from shared.db import get_connection_pool
from shared.secrets import get_optional_secret
from syncer.lease import LeaseStatus, PostgresLease
from syncer.photo_store import PhotoStore

logger = logging.getLogger("syncer.manage_lease")


def format_status(status: LeaseStatus, stats: Dict[str, Any]) -> str:
    lines = [f"Lease:        {status.name}"]
    if status.held:
        lines.append(f"State:        HELD by {status.holder}")
        if status.acquired_at is not None:
            lines.append(f"Acquired at:  {status.acquired_at.isoformat()}")
    else:
        lines.append("State:        free")
        if status.released_at is not None:
            lines.append(f"Released at:  {status.released_at.isoformat()}")
    lines.append(f"Photos:       {stats.get('total_photos', 0)}")
    lines.append(f"Published:    {stats.get('total_published', 0)}")
    for action, timestamp in sorted(stats.get("cursors", {}).items()):
        lines.append(f"Cursor:       {action} = {timestamp}")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m syncer.manage_lease",
        description="Inspect or clear the Flickr sync run lease.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to settings.toml (default: %(default)s)",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Show lease state and sync statistics")
    release = sub.add_parser("release", help="Clear a stuck lease")
    release.add_argument(
        "--force",
        action="store_true",
        help="Clear the lease even though another holder owns it",
    )
    return parser


async def run_command(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    lease_name = config.get("syncer", {}).get("lease_name", "flickr-sync")
    db_config = database_config(config)
    db_password = get_optional_secret("database_password")
    if db_password:
        db_config["password"] = db_password

    pool = await get_connection_pool(db_config)
    try:
        lease = PostgresLease(pool, name=lease_name, holder="operator")
        status = await lease.status()

        if args.command == "status":
            stats = await PhotoStore(pool).get_sync_stats()
            print(format_status(status, stats))
            return 0

        if not status.held:
            print(f"Lease {lease_name} is not held; nothing to do.")
            return 0
        if not args.force:
            print(f"Lease {lease_name} is held by {status.holder}.")
            print("Make sure no syncer run is active, then re-run with --force.")
            return 2
        released = await lease.force_release()
        print(f"Lease {lease_name} {'released' if released else 'was already free'}.")
        return 0
    finally:
        await pool.close()


def main(argv: Optional[List[str]] = None) -> None:
    """Synchronous entry point."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    args = build_parser().parse_args(argv)
    sys.exit(asyncio.run(run_command(args)))


if __name__ == "__main__":
    main()
