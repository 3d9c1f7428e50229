"""
Cross-instance run lease backed by a single PostgreSQL row.

Only one syncer run may work at a time, across every node pointed at the
same database.  The lease is a boolean flag in ``sync_leases``:

    - ``acquire()`` is one conditional upsert.  It flips ``held`` to TRUE
      only if the row is absent or currently free, and reports whether it
      did.  It never waits and never takes over a held lease.
    - ``release()`` clears the flag for this holder.

The flag survives process death.  A holder killed mid-run leaves the lease
held until an operator clears it::

    python -m syncer.manage_lease release --force

``release_with_retry`` wraps ``release()`` in bounded exponential backoff;
running out of attempts raises ``LeaseReleaseError``, which stops the
daemon.
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

import asyncpg

from shared.errors import LeaseReleaseError

logger = logging.getLogger("syncer.lease")

_ACQUIRE_SQL = """
    INSERT INTO sync_leases (name, held, holder, acquired_at)
    VALUES ($1, TRUE, $2, NOW())
    ON CONFLICT (name)
    DO UPDATE SET
        held = TRUE,
        holder = EXCLUDED.holder,
        acquired_at = EXCLUDED.acquired_at
    WHERE sync_leases.held = FALSE
    RETURNING name
"""

_RELEASE_SQL = """
    UPDATE sync_leases
    SET held = FALSE, released_at = NOW()
    WHERE name = $1 AND holder = $2 AND held = TRUE
"""

_FORCE_RELEASE_SQL = """
    UPDATE sync_leases
    SET held = FALSE, released_at = NOW()
    WHERE name = $1 AND held = TRUE
"""

_STATUS_SQL = """
    SELECT name, held, holder, acquired_at, released_at
    FROM sync_leases
    WHERE name = $1
"""


def default_holder_id() -> str:
    """``host:pid:random``, unique per process and per lease object."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


@dataclass
class LeaseStatus:
    name: str
    held: bool
    holder: Optional[str] = None
    acquired_at: Optional[datetime] = None
    released_at: Optional[datetime] = None


class PostgresLease:
    """Single-owner lease on one named row of ``sync_leases``.

    Args:
        pool: ``asyncpg`` connection pool.
        name: Lease name (one per recurring job).
        holder: Identity written into the row while held.
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        name: str = "flickr-sync",
        holder: Optional[str] = None,
    ) -> None:
        self._pool = pool
        self.name = name
        self.holder = holder or default_holder_id()

    async def acquire(self) -> bool:
        """Try to take the lease.  Returns ``False`` immediately if held."""
        row = await self._pool.fetchrow(_ACQUIRE_SQL, self.name, self.holder)
        granted = row is not None
        if granted:
            logger.info("Lease %s acquired by %s", self.name, self.holder)
        else:
            logger.info("Lease %s is held elsewhere; not acquired", self.name)
        return granted

    async def release(self) -> bool:
        """Clear the lease if this holder has it.

        Returns:
            ``True`` if the flag was cleared, ``False`` if this holder did
            not hold it.

        Raises:
            asyncpg.PostgresError, OSError: The database was unreachable.
        """
        status = await self._pool.execute(_RELEASE_SQL, self.name, self.holder)
        released = status.endswith(" 1")
        if released:
            logger.info("Lease %s released by %s", self.name, self.holder)
        else:
            logger.warning("Lease %s was not held by %s at release", self.name, self.holder)
        return released

    async def status(self) -> LeaseStatus:
        row = await self._pool.fetchrow(_STATUS_SQL, self.name)
        if row is None:
            return LeaseStatus(name=self.name, held=False)
        return LeaseStatus(
            name=row["name"],
            held=bool(row["held"]),
            holder=row["holder"],
            acquired_at=row["acquired_at"],
            released_at=row["released_at"],
        )

    async def force_release(self) -> bool:
        """Clear the lease regardless of holder (operator recovery only)."""
        status = await self._pool.execute(_FORCE_RELEASE_SQL, self.name)
        released = status.endswith(" 1")
        logger.warning("Lease %s force-released (was held: %s)", self.name, released)
        return released


async def release_with_retry(
    lease: PostgresLease,
    *,
    max_attempts: int = 10,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> bool:
    """Release ``lease``, retrying transient failures with backoff.

    Delays run ``initial_delay``, doubling each attempt, capped at
    ``max_delay``.  ``False`` from ``release()`` (not our lease) is not an
    error and is returned as-is.

    Raises:
        LeaseReleaseError: Every attempt raised.
    """
    delay = initial_delay
    last_exc: Optional[BaseException] = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await lease.release()
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
            last_exc = exc
            logger.warning(
                "Lease %s release attempt %d/%d failed: %s",
                lease.name,
                attempt,
                max_attempts,
                exc,
            )
        if attempt < max_attempts:
            await sleep(delay)
            delay = min(delay * 2, max_delay)

    logger.critical(
        "Lease %s could not be released after %d attempts; future runs are blocked",
        lease.name,
        max_attempts,
    )
    raise LeaseReleaseError(
        f"lease {lease.name!r} not released after {max_attempts} attempts: {last_exc}",
        attempts=max_attempts,
    )
