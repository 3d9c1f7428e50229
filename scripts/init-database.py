#!/usr/bin/env python3
"""
Create the syncer's tables and grant the syncer role what it needs.

Run once per database with a privileged role, e.g.::

  sudo -u postgres /opt/flickr-channel/venv/bin/python3 \
      /opt/flickr-channel/scripts/init-database.py --user postgres
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from shared.config import DEFAULT_CONFIG_PATH, database_config, load_config
from shared.db import SCHEMA_STATEMENTS, get_connection_pool, init_database

logger = logging.getLogger("scripts.init_database")

_TABLES = (
    "actions",
    "photos",
    "photos_tags",
    "photos_exifs",
    "users",
    "photos_messages",
    "sync_leases",
    "audit_log",
)


def grant_statements(role: str) -> List[str]:
    quoted = '"' + role.replace('"', '""') + '"'
    statements = [
        f"GRANT SELECT, INSERT, UPDATE ON {table} TO {quoted}" for table in _TABLES
    ]
    statements.append(f"GRANT USAGE ON SEQUENCE audit_log_id_seq TO {quoted}")
    return statements


async def main(args: argparse.Namespace) -> None:
    config = load_config(args.config)
    syncer_role = database_config(config)["user"]
    admin_config = dict(config["database"])
    admin_config["user"] = args.user

    pool = await get_connection_pool(admin_config)
    try:
        await init_database(pool)
        if args.grant:
            async with pool.acquire() as conn:
                for statement in grant_statements(syncer_role):
                    await conn.execute(statement)
            logger.info("Granted table privileges to %s", syncer_role)
    finally:
        await pool.close()
    print(f"Schema ready: {len(SCHEMA_STATEMENTS)} tables, syncer role {syncer_role}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-8s %(name)s: %(message)s")
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH)
    parser.add_argument("--user", default="postgres", help="Privileged database role")
    parser.add_argument(
        "--no-grant",
        dest="grant",
        action="store_false",
        help="Only create tables; skip GRANTs to the syncer role",
    )
    asyncio.run(main(parser.parse_args()))
