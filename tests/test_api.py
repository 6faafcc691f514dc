"""Tests for the HTTP routes: session submission, skill tree, focus, stats, restart."""

from __future__ import annotations

import asyncio
import copy
import random

import pytest


@pytest.fixture(autouse=True)
def fresh_db(tmp_path, monkeypatch):
    from keydrill import api, db
    from keydrill.branches import clear_cache
    for name in ("KEYDRILL_CONFIG", "KEYDRILL_TARGET_WPM", "KEYDRILL_TARGET_CPM"):
        monkeypatch.delenv(name, raising=False)
    db_path = tmp_path / "test.db"
    db.DB_PATH = db_path
    db.init_db()
    clear_cache()
    api.reset_engine()
    yield
    api.reset_engine()
    if db_path.exists():
        db_path.unlink()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from keydrill.app import app
    return TestClient(app)


def _session(text: str, time_ms: float = 100.0, scope: str = "global") -> dict:
    return {
        "scope": scope,
        "keystrokes": [{"symbol": ch, "time_ms": time_ms, "correct": True} for ch in text],
    }


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestSessions:
    def test_submit(self, client):
        response = client.post("/sessions", json=_session("etaoin"))
        assert response.status_code == 200
        data = response.json()
        assert data["session_id"] == 1
        assert data["session_index"] == 1
        assert data["hesitation_threshold_ms"] == 800.0
        assert data["changes"]["levels_advanced"] == {"lowercase": 1}
        assert data["focus"]["char_focus"] == "s"
        assert data["focus"]["primary"] == {"kind": "symbol", "target": "s"}
        assert data["score"] == pytest.approx(600.0 * 0.1 * (6 / 50))
        assert data["total_score"] == pytest.approx(data["score"])
        assert data["level"] == 1

    def test_key_names_accepted(self, client):
        payload = {"keystrokes": [{"symbol": "enter", "time_ms": 200.0}]}
        assert client.post("/sessions", json=payload).status_code == 200
        symbols = [row["symbol"] for row in client.get("/stats/symbols").json()]
        assert symbols == ["\n"]

    def test_bad_symbol(self, client):
        payload = {"keystrokes": [{"symbol": "shift", "time_ms": 200.0, "correct": True}]}
        assert client.post("/sessions", json=payload).status_code == 400

    def test_unknown_scope(self, client):
        assert client.post("/sessions", json=_session("eat", scope="emoji")).status_code == 400

    def test_negative_time_rejected(self, client):
        payload = {"keystrokes": [{"symbol": "e", "time_ms": -5.0, "correct": True}]}
        assert client.post("/sessions", json=payload).status_code == 422


class TestSkillTree:
    def test_initial_tree(self, client):
        data = client.get("/skill-tree").json()
        assert data["root"] == "lowercase"
        assert data["total_symbols"] == 96
        assert data["total_unlocked"] == 6
        assert data["complexity"] == pytest.approx(0.1)
        lowercase = data["branches"][0]
        assert lowercase["status"] == "in_progress"
        assert lowercase["stage_count"] == 21
        assert lowercase["unlocked_symbols"] == ["e", "t", "a", "o", "i", "n"]
        assert {b["status"] for b in data["branches"][1:]} == {"locked"}

    def test_start_unknown_branch(self, client):
        assert client.post("/branches/emoji/start").status_code == 404

    def test_start_locked_branch(self, client):
        response = client.post("/branches/numbers/start")
        assert response.status_code == 409
        assert "locked" in response.json()["detail"]

    def test_unlocked(self, client):
        data = client.get("/unlocked").json()
        assert data == {"scope": "global", "symbols": ["e", "t", "a", "o", "i", "n"]}

    def test_unlocked_unknown_scope(self, client):
        assert client.get("/unlocked", params={"scope": "emoji"}).status_code == 400


class TestFocus:
    def test_held_focus(self, client):
        client.post("/sessions", json=_session("etao"))
        data = client.get("/focus").json()
        assert data["char_focus"] == "i"
        assert data["bigram_focus"] is None

    def test_scoped_focus(self, client):
        data = client.get("/focus", params={"scope": "numbers"}).json()
        assert data["char_focus"] is None


class TestStats:
    def test_symbol_stats(self, client):
        client.post("/sessions", json=_session("eat", 300.0))
        rows = {row["symbol"]: row for row in client.get("/stats/symbols").json()}
        assert set(rows) == {"a", "e", "t"}
        assert rows["e"]["filtered_time_ms"] == 300.0
        assert rows["e"]["best_time_ms"] == 300.0
        assert rows["e"]["laplace_error_rate"] == pytest.approx(1 / 3)
        assert rows["e"]["trend"] is None

    def test_error_only_symbol_has_no_best_time(self, client):
        payload = {"keystrokes": [{"symbol": "q", "time_ms": 200.0, "correct": False}]}
        client.post("/sessions", json=payload)
        row = client.get("/stats/symbols").json()[0]
        assert row["best_time_ms"] is None

    def test_pair_stats(self, client):
        client.post("/sessions", json=_session("eat tea"))
        bigrams = client.get("/stats/pairs").json()
        assert bigrams["order"] == 2
        assert bigrams["tracked"] == 3
        assert bigrams["anomalies"] == []
        trigrams = client.get("/stats/pairs", params={"order": 3}).json()
        assert trigrams["tracked"] == 2
        assert trigrams["marginal_gain"] == 0.0

    def test_unsupported_order(self, client):
        assert client.get("/stats/pairs", params={"order": 4}).status_code == 400

    def test_kind_filter(self, client):
        assert client.get("/stats/pairs", params={"kind": "Speed"}).json()["anomalies"] == []
        assert client.get("/stats/pairs", params={"kind": "rhythm"}).status_code == 400


class TestRestart:
    def test_state_survives_engine_rebuild(self, client):
        from keydrill import api
        client.post("/sessions", json=_session("etaoin"))
        client.post("/sessions", json=_session("eat tea"))
        before_pairs = client.get("/stats/pairs").json()
        before_tree = client.get("/skill-tree").json()

        api.reset_engine()

        assert client.get("/stats/pairs").json() == before_pairs
        assert client.get("/skill-tree").json() == before_tree
        assert api.get_engine().session_count == 2

    def test_total_score_survives_engine_rebuild(self, client):
        from keydrill import api
        first = client.post("/sessions", json=_session("etaoin")).json()
        second = client.post("/sessions", json=_session("eat tea")).json()
        api.reset_engine()
        data = client.get("/skill-tree").json()
        assert data["total_score"] == pytest.approx(first["score"] + second["score"])
        assert data["level"] == 1


def _random_payloads(count: int, seed: int = 5) -> list[dict]:
    rng = random.Random(seed)
    payloads = []
    for _ in range(count):
        keystrokes = []
        for _word in range(rng.randint(2, 5)):
            for _ch in range(rng.randint(2, 6)):
                keystrokes.append({
                    "symbol": rng.choice("etaoinsh"),
                    "time_ms": round(rng.uniform(80.0, 700.0), 1),
                    "correct": rng.random() > 0.08,
                })
            keystrokes.append({"symbol": "space", "time_ms": 150.0, "correct": True})
        payloads.append({"keystrokes": keystrokes})
    return payloads


class TestConcurrentSessions:
    def test_concurrent_submissions_match_rebuild(self):
        import httpx
        from keydrill import api, db
        from keydrill.app import app
        from keydrill.engine import MasteryEngine

        payloads = _random_payloads(60)

        async def submit_all() -> list[int]:
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
                responses = await asyncio.gather(*(client.post("/sessions", json=p) for p in payloads))
            return [r.status_code for r in responses]

        assert asyncio.run(submit_all()) == [200] * len(payloads)

        live = api.get_engine()
        live_bigrams = copy.deepcopy(live.bigrams.stats)
        live_trigrams = copy.deepcopy(live.trigrams.stats)
        live_symbols = copy.deepcopy(live.symbol_stats.stats)
        live_total = live.total_score

        api.reset_engine()
        rebuilt = api.get_engine()
        assert rebuilt.session_count == len(payloads)
        assert rebuilt.bigrams.stats == live_bigrams
        assert rebuilt.trigrams.stats == live_trigrams
        assert rebuilt.symbol_stats.stats == live_symbols
        assert rebuilt.total_score == pytest.approx(live_total)

        replayed = MasteryEngine.replay(db.load_sessions(), config=live.config)
        assert replayed.symbol_stats.stats == live_symbols
        assert replayed.bigrams.stats == live_bigrams
