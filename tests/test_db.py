"""Tests for db.py: event log, symbol stats and skill-tree progress storage."""

from __future__ import annotations

import math

import pytest

from keydrill.models import BranchProgress, KeyTime, SkillTreeProgress, SymbolStat
from keydrill.symbols import BACKSPACE, ENTER


@pytest.fixture(autouse=True)
def fresh_db(tmp_path):
    """Use a temp file DB for each test."""
    from keydrill import db
    db_path = tmp_path / "test.db"
    db.DB_PATH = db_path
    db.init_db()
    yield
    if db_path.exists():
        db_path.unlink()


from keydrill.db import (
    count_sessions,
    load_progress,
    load_sessions,
    load_symbol_stats,
    now_iso,
    record_session,
    save_progress,
    save_symbol_stats,
    store_session,
    total_score,
)


class TestEventLog:
    def test_empty(self):
        assert load_sessions() == []
        assert count_sessions() == 0

    def test_sessions_in_order(self):
        first = [KeyTime("a", 120.0, True), KeyTime(BACKSPACE, 80.0, True), KeyTime(ENTER, 300.5, False)]
        second = [KeyTime("b", 200.0, True)]
        id1 = record_session(first)
        id2 = record_session(second, scope="numbers")
        assert id2 > id1
        assert load_sessions() == [first, second]
        assert count_sessions() == 2

    def test_empty_session_kept(self):
        record_session([])
        record_session([KeyTime("a", 100.0, True)])
        sessions = load_sessions()
        assert sessions[0] == []
        assert len(sessions) == 2


class TestSymbolStats:
    def test_round_trip_with_infinite_best(self):
        stats = {
            "a": SymbolStat(
                filtered_time_ms=310.0,
                best_time_ms=300.0,
                confidence=1.1,
                sample_count=2,
                error_count=1,
                total_count=3,
                error_rate_ema=0.1,
                recent_times=[300.0, 400.0],
            ),
            "z": SymbolStat(error_count=1, total_count=1, error_rate_ema=1.0),
        }
        save_symbol_stats(stats)
        loaded = load_symbol_stats()
        assert loaded["a"] == stats["a"]
        assert math.isinf(loaded["z"].best_time_ms)
        assert loaded["z"] == stats["z"]

    def test_upsert(self):
        save_symbol_stats({"a": SymbolStat(sample_count=1)})
        save_symbol_stats({"a": SymbolStat(sample_count=5)})
        assert load_symbol_stats()["a"].sample_count == 5


class TestProgress:
    def test_nothing_saved(self):
        assert load_progress() is None

    def test_round_trip(self):
        progress = SkillTreeProgress(branches={
            "lowercase": BranchProgress("complete", 20),
            "numbers": BranchProgress("in_progress", 1),
            "capitals": BranchProgress("available", 0),
        })
        save_progress(progress)
        assert load_progress() == progress

    def test_upsert(self):
        save_progress(SkillTreeProgress(branches={"numbers": BranchProgress("available", 0)}))
        save_progress(SkillTreeProgress(branches={"numbers": BranchProgress("in_progress", 1)}))
        assert load_progress().branches["numbers"] == BranchProgress("in_progress", 1)


class TestStoreSession:
    def test_writes_log_stats_and_progress(self):
        keys = [KeyTime("a", 120.0, True)]
        progress = SkillTreeProgress(branches={"lowercase": BranchProgress("in_progress", 1)})
        session_id = store_session(keys, "global", 12.5, {"a": SymbolStat(sample_count=1)}, progress)
        assert session_id == 1
        assert load_sessions() == [keys]
        assert load_symbol_stats()["a"].sample_count == 1
        assert load_progress() == progress
        assert total_score() == 12.5

    def test_failed_write_leaves_nothing_behind(self, monkeypatch):
        from keydrill import db

        def fail(conn, progress):
            raise RuntimeError("disk full")

        monkeypatch.setattr(db, "_upsert_progress", fail)
        with pytest.raises(RuntimeError):
            store_session(
                [KeyTime("a", 120.0, True)],
                "global",
                1.0,
                {"a": SymbolStat(sample_count=1)},
                SkillTreeProgress(branches={}),
            )
        assert count_sessions() == 0
        assert load_symbol_stats() == {}

    def test_total_score_sums_sessions(self):
        assert total_score() == 0.0
        record_session([], score=2.0)
        record_session([], score=3.5)
        assert total_score() == pytest.approx(5.5)

    def test_score_column_added_to_older_database(self, tmp_path):
        import sqlite3
        from keydrill import db
        old_path = tmp_path / "old.db"
        with sqlite3.connect(old_path) as conn:
            conn.execute(
                "CREATE TABLE sessions (id INTEGER PRIMARY KEY AUTOINCREMENT, scope TEXT NOT NULL DEFAULT 'global', "
                "keystroke_count INTEGER NOT NULL DEFAULT 0, created_at TEXT NOT NULL)"
            )
            conn.execute("INSERT INTO sessions (created_at) VALUES ('2024-01-01T00:00:00+00:00')")
        conn.close()
        db.DB_PATH = old_path
        db.init_db()
        assert total_score() == 0.0
        assert count_sessions() == 1


class TestNowIso:
    def test_seconds_precision_utc(self):
        from datetime import datetime
        assert now_iso(datetime(2024, 1, 2, 3, 4, 5, 678)) == "2024-01-02T03:04:05+00:00"
