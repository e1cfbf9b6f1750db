"""Tests for StatusStore and the status value format."""

from __future__ import annotations

import zoneinfo
from datetime import datetime
from pathlib import Path

import pytest

from reservebot.errors import StatusStoreError
from reservebot.scheduler.store import Phase, StatusRecord, StatusStore

TOKYO = zoneinfo.ZoneInfo("Asia/Tokyo")
AT = datetime(2025, 10, 22, 11, 45, 0, 123000, tzinfo=TOKYO)


@pytest.fixture
def store(tmp_path: Path) -> StatusStore:
    return StatusStore(tmp_path / "status.db")


# -- Rendering -------------------------------------------------------------------


def test_render_running() -> None:
    assert StatusRecord.running(AT).render() == "2025-10-22 11:45:00.123@Running"


def test_render_success_with_elapsed() -> None:
    record = StatusRecord.success(AT, 12.3456)
    assert record.render() == "2025-10-22 11:45:00.123@Success#12.346s"


def test_render_failure_with_summary_and_elapsed() -> None:
    record = StatusRecord.failure(AT, "retry budget exhausted", 60.5)
    assert record.render() == "2025-10-22 11:45:00.123@Failure#retry budget exhausted#60.500s"


def test_render_strips_reserved_characters() -> None:
    record = StatusRecord.failure(AT, "bad #3 @ step\nline two", 1.0)
    value = record.render()
    assert value.count("@") == 1
    assert value == "2025-10-22 11:45:00.123@Failure#bad 3 step line two#1.000s"


def test_render_clamps_negative_elapsed() -> None:
    assert StatusRecord.success(AT, -0.001).render().endswith("#0.000s")


def test_render_escapes_undecodable_detail() -> None:
    record = StatusRecord.failure(AT, "Cannot read /tmp/\udcff.json", 0.0)
    value = record.render()
    assert value == "2025-10-22 11:45:00.123@Failure#Cannot read /tmp/\\udcff.json#0.000s"


def test_parse_failure() -> None:
    record = StatusRecord.parse("2025-10-22 11:45:00.123@Failure#attempt cap reached#3.250s")
    assert record.timestamp == "2025-10-22 11:45:00.123"
    assert record.phase is Phase.FAILURE
    assert record.detail == "attempt cap reached"
    assert record.elapsed_seconds == pytest.approx(3.25)


def test_parse_running() -> None:
    record = StatusRecord.parse("2025-10-22 11:45:00.123@Running")
    assert record.phase is Phase.RUNNING
    assert record.detail is None
    assert record.elapsed_seconds is None


@pytest.mark.parametrize("value", ["no separator", "2025-10-22@", "2025-10-22@Paused"])
def test_parse_rejects_malformed(value: str) -> None:
    with pytest.raises(ValueError):
        StatusRecord.parse(value)


# -- Persistence -------------------------------------------------------------------


async def test_read_missing_returns_none(store: StatusStore) -> None:
    assert await store.read("nobody") is None
    assert await store.read_value("nobody") is None


async def test_read_does_not_create_database(tmp_path: Path) -> None:
    store = StatusStore(tmp_path / "data" / "status.db")
    assert await store.read("nobody") is None
    assert not (tmp_path / "data").exists()


async def test_write_and_read(store: StatusStore) -> None:
    await store.write("profile-a", StatusRecord.running(AT))

    assert await store.read_value("profile-a") == "2025-10-22 11:45:00.123@Running"
    record = await store.read("profile-a")
    assert record is not None
    assert record.phase is Phase.RUNNING


async def test_write_overwrites_whole_record(store: StatusStore) -> None:
    await store.write("profile-a", StatusRecord.failure(AT, "driver setup failed", 4.0))
    await store.write("profile-a", StatusRecord.success(AT, 1.5))

    assert await store.read_value("profile-a") == "2025-10-22 11:45:00.123@Success#1.500s"


async def test_records_are_keyed_by_task_id(store: StatusStore) -> None:
    await store.write("a", StatusRecord.running(AT))
    await store.write("b", StatusRecord.success(AT, 2.0))

    a = await store.read("a")
    b = await store.read("b")
    assert a is not None and a.phase is Phase.RUNNING
    assert b is not None and b.phase is Phase.SUCCESS


async def test_creates_parent_directory(tmp_path: Path) -> None:
    store = StatusStore(tmp_path / "nested" / "dir" / "status.db")
    await store.write("a", StatusRecord.running(AT))
    assert (tmp_path / "nested" / "dir" / "status.db").exists()


async def test_unreachable_store_raises(tmp_path: Path) -> None:
    # A directory cannot be opened as a database file
    store = StatusStore(tmp_path)
    with pytest.raises(StatusStoreError, match="Cannot write status"):
        await store.write("a", StatusRecord.running(AT))


async def test_unreadable_store_raises(tmp_path: Path) -> None:
    store = StatusStore(tmp_path)
    with pytest.raises(StatusStoreError, match="Cannot read status"):
        await store.read("a")


async def test_undecodable_task_id_raises_store_error(store: StatusStore) -> None:
    with pytest.raises(StatusStoreError, match="Cannot write status"):
        await store.write("bad\udcff", StatusRecord.running(AT))


async def test_undecodable_detail_is_persisted_escaped(store: StatusStore) -> None:
    await store.write("a", StatusRecord.failure(AT, "invalid configuration: \udcff.json", 0.0))

    record = await store.read("a")
    assert record is not None
    assert record.detail == "invalid configuration: \\udcff.json"
