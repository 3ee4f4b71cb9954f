"""Tests for the NDJSON audit log."""

import orjson
import pytest

from codevolve.audit.log import AuditLog


@pytest.fixture
def audit(tmp_path):
    return AuditLog(tmp_path / "logs" / "evolution.log")


@pytest.mark.asyncio
async def test_record_creates_file_and_appends(audit):
    await audit.record("DAEMON_START", interval_seconds=60)
    await audit.record("PROPOSAL_START", id="local-1", title="x")

    lines = audit.path.read_bytes().splitlines()
    assert len(lines) == 2
    first = orjson.loads(lines[0])
    assert first["event"] == "DAEMON_START"
    assert first["interval_seconds"] == 60
    assert "timestamp" in first


@pytest.mark.asyncio
async def test_query_most_recent_first(audit):
    for i in range(5):
        await audit.record("PROPOSAL_START", id=f"p{i}")

    entries = await audit.query(limit=3)
    assert [e.model_extra["id"] for e in entries] == ["p4", "p3", "p2"]


@pytest.mark.asyncio
async def test_query_filters_by_event(audit):
    await audit.record("PROPOSAL_START", id="a")
    await audit.record("PROPOSAL_JUDGED", id="a", verdict="APPROVED")
    await audit.record("PROPOSAL_START", id="b")

    judged = await audit.query(event="PROPOSAL_JUDGED")
    assert len(judged) == 1
    assert judged[0].model_extra["verdict"] == "APPROVED"


@pytest.mark.asyncio
async def test_corrupt_lines_skipped(audit):
    await audit.record("DAEMON_START")
    with audit.path.open("ab") as f:
        f.write(b'{"event": "TORN", "time')
        f.write(b"\n\n")
    await audit.record("DAEMON_STOP")

    assert await audit.count() == 2
    events = [e.event for e in await audit.query()]
    assert events == ["DAEMON_STOP", "DAEMON_START"]


@pytest.mark.asyncio
async def test_write_failure_is_swallowed(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("file", encoding="utf-8")
    audit = AuditLog(blocker / "evolution.log")

    entry = await audit.record("DAEMON_START")
    assert entry.event == "DAEMON_START"
    assert await audit.count() == 0


@pytest.mark.asyncio
async def test_empty_log(audit):
    assert await audit.query() == []
    assert await audit.count() == 0
