"""
Tests for the audit logger's file and database sinks.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.audit import AuditLogger


def _pool():
    pool = MagicMock()
    pool.execute = AsyncMock(return_value="INSERT 0 1")
    return pool


@pytest.mark.asyncio
async def test_event_written_to_file_and_table(tmp_path):
    log_path = tmp_path / "audit" / "audit.log"
    pool = _pool()
    audit = AuditLogger(pool, service="syncer", log_path=log_path)

    await audit.log("photo_published", {"photo_id": "5301", "message_id": 777}, run_id="run1")

    event = json.loads(log_path.read_text().strip())
    assert event["service"] == "syncer"
    assert event["action"] == "photo_published"
    assert event["run_id"] == "run1"
    assert event["details"] == {"photo_id": "5301", "message_id": 777}
    assert event["success"] is True

    _, service, action, run_id, details, success = pool.execute.await_args.args
    assert (service, action, run_id, success) == ("syncer", "photo_published", "run1", True)
    assert json.loads(details) == {"message_id": 777, "photo_id": "5301"}


@pytest.mark.asyncio
async def test_database_failure_does_not_raise(tmp_path):
    pool = _pool()
    pool.execute.side_effect = OSError("connection lost")
    audit = AuditLogger(pool, log_path=tmp_path / "audit.log")

    await audit.log("run_failed", {"kind": "upstream_api"}, success=False)

    assert "run_failed" in (tmp_path / "audit.log").read_text()


@pytest.mark.asyncio
async def test_events_dropped_after_close(tmp_path):
    pool = _pool()
    audit = AuditLogger(pool, log_path=tmp_path / "audit.log")
    await audit.close()

    await audit.log("run_start")

    pool.execute.assert_not_awaited()
    assert not (tmp_path / "audit.log").exists()
