"""Tests for the database connection helper and timestamp codecs."""

from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path

import aiosqlite

from src.db import ensure_utc, from_iso, get_connection, to_iso


class TestGetConnection:
    async def test_returns_aiosqlite_connection(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        assert isinstance(conn, aiosqlite.Connection)
        await conn.close()

    async def test_creates_parent_dirs(self, tmp_path: Path):
        db_path = tmp_path / "nested" / "dir" / "test.db"
        conn = await get_connection(local_path_override=db_path)
        assert db_path.parent.exists()
        await conn.close()

    async def test_wal_mode(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        cursor = await conn.execute("PRAGMA journal_mode")
        (mode,) = await cursor.fetchone()
        assert mode == "wal"
        await conn.close()


class TestTimestamps:
    def test_naive_treated_as_utc(self):
        assert ensure_utc(datetime(2024, 1, 1, 9)) == datetime(2024, 1, 1, 9, tzinfo=UTC)

    def test_aware_converted(self):
        plus_five = timezone(timedelta(hours=5))
        assert ensure_utc(datetime(2024, 1, 1, 9, tzinfo=plus_five)).hour == 4

    def test_fixed_width(self):
        assert to_iso(datetime(2024, 1, 1, tzinfo=UTC)) == "2024-01-01T00:00:00.000000+00:00"

    def test_lexical_order_matches_time(self):
        a = datetime(2024, 1, 1, 9, 0, 0, 5, tzinfo=UTC)
        b = datetime(2024, 1, 1, 9, 0, 1, tzinfo=UTC)
        assert to_iso(a) < to_iso(b)

    def test_none_passthrough(self):
        assert to_iso(None) is None
        assert from_iso(None) is None
        assert from_iso("") is None

    def test_from_iso_is_aware(self):
        value = from_iso("2024-01-01T09:00:00.000000+00:00")
        assert value == datetime(2024, 1, 1, 9, tzinfo=UTC)
