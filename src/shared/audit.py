"""
Structured audit logging: records run events to both a JSON Lines file
and the PostgreSQL ``audit_log`` table.

A run produces only a handful of events (lease skipped, photo published
or edited, run complete or failed, lease release trouble), so each event
is written straight through: one file append plus one INSERT.  Either sink
may fail independently; failures go to the standard logger and never
interrupt the run.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import asyncpg

logger = logging.getLogger("shared.audit")

_DEFAULT_LOG_PATH = Path("/var/log/flickr-channel/audit.log")
_INSERT_AUDIT_SQL = (
    "INSERT INTO audit_log (service, action, run_id, details, success) "
    "VALUES ($1, $2, $3, $4::jsonb, $5)"
)


class AuditLogger:
    """Audit writer bound to one service name.

    Args:
        pool: ``asyncpg`` connection pool (needs INSERT on ``audit_log``).
        service: Service label stored with every event.
        log_path: Path to the JSON Lines audit log file.
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        service: str = "syncer",
        log_path: Optional[Path] = None,
    ) -> None:
        self._pool = pool
        self._service = service
        self._log_path = log_path or _DEFAULT_LOG_PATH
        self._closed = False

    def _append_file(self, line: str) -> None:
        try:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._log_path, "a", encoding="utf-8") as handle:
                handle.write(line)
        except OSError:
            logger.exception("Failed to write audit log file")

    async def log(
        self,
        action: str,
        details: Optional[Dict[str, Any]] = None,
        success: bool = True,
        run_id: Optional[str] = None,
    ) -> None:
        """Record an audit event.

        Args:
            action: Event identifier (``"run_complete"``, ``"photo_published"``,
                    ``"run_skipped"``, ...).
            details: JSON-serialisable metadata.  Never put credentials here.
            success: Whether the step succeeded.
            run_id: Identifier of the run the event belongs to.
        """
        if self._closed:
            logger.debug("Dropping audit event after close: action=%s", action)
            return

        details_json = json.dumps(details or {}, default=str, sort_keys=True)
        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": self._service,
            "action": action,
            "run_id": run_id,
            "details": details or {},
            "success": success,
        }
        self._append_file(json.dumps(event, default=str) + "\n")

        try:
            await self._pool.execute(
                _INSERT_AUDIT_SQL,
                self._service,
                action,
                run_id,
                details_json,
                success,
            )
        except Exception:
            logger.exception("Failed to write audit log to database")

    async def close(self) -> None:
        """Stop accepting events."""
        self._closed = True
