"""Tests for session management, settings, errors and the MCP tool functions."""
from __future__ import annotations

import json
from decimal import Decimal

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

import demoday.db as db_mod
from demoday import mcp_server, services
from demoday.config import Settings, get_settings
from demoday.errors import Internal, InvalidAmount, NotFound
from demoday.models import Event, Idea


@pytest.fixture()
def database(tmp_path):
    db_mod.init_db(tmp_path / "demoday.db")
    yield tmp_path / "demoday.db"
    if db_mod._engine is not None:
        db_mod._engine.dispose()
    db_mod._engine = None
    db_mod._SessionLocal = None


class TestSettings:
    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DEMODAY_HOME", str(tmp_path))
        monkeypatch.delenv("DEMODAY_DB_PATH", raising=False)
        monkeypatch.setenv("DEMODAY_DEFAULT_BALANCE", "500.25")
        monkeypatch.setenv("DEMODAY_PORT", "9100")
        s = Settings()
        assert s.data_dir == tmp_path.resolve()
        assert s.database_path == tmp_path.resolve() / "demoday.db"
        assert s.default_balance == Decimal("500.25")
        assert s.port == 9100

    def test_get_settings_cached(self):
        get_settings.cache_clear()
        assert get_settings() is get_settings()
        get_settings.cache_clear()


class TestErrors:
    def test_default_message_from_docstring(self):
        assert InvalidAmount().message == "Amount must be positive with at most 2 decimal places."
        assert InvalidAmount().status_code == 422

    def test_custom_message(self):
        err = NotFound("Demoday 3 not found")
        assert err.message == "Demoday 3 not found"
        assert err.code == "not_found"

    def test_internal_is_generic(self):
        assert Internal().status_code == 500


class TestSessionManagement:
    def test_init_db_creates_file(self, database):
        assert database.exists()

    def test_foreign_keys_enforced(self, database):
        with db_mod.session_scope() as sess:
            assert sess.execute(text("PRAGMA foreign_keys")).scalar() == 1

    def test_session_scope(self, database):
        with db_mod.session_scope() as sess:
            assert isinstance(sess, Session)
            idea = Idea(submitter_user_id="u", title="Scoped")
            sess.add(idea)
            sess.commit()
            assert idea.id is not None

    def test_session_scope_rollback(self, database):
        with pytest.raises(ValueError):
            with db_mod.session_scope() as sess:
                sess.add(Idea(submitter_user_id="u", title="WillFail"))
                sess.flush()
                raise ValueError("boom")
        with db_mod.session_scope() as sess:
            assert sess.query(Idea).count() == 0

    def test_session_generator(self, database):
        gen = db_mod.session_generator()
        sess = next(gen)
        assert isinstance(sess, Session)
        gen.close()

    def test_get_session_before_init(self, monkeypatch):
        monkeypatch.setattr(db_mod, "_SessionLocal", None)
        with pytest.raises(RuntimeError):
            db_mod.get_session()


class TestMcpTools:
    def _seed_pitching(self):
        event = mcp_server.list_events()[0]
        with db_mod.session_scope() as sess:
            idea = Idea(submitter_user_id="p1", title="Tidal Kites")
            sess.add(idea)
            sess.commit()
            pitch_id = services.submit_pitch(sess, event["id"], "p1", idea.id).id
        assert mcp_server.start_pitching(event["id"], "host")["status"] == "pitching"
        return event["id"], pitch_id

    def test_list_events(self, database):
        events = mcp_server.list_events()
        assert len(events) == 2
        with db_mod.session_scope() as sess:
            assert sess.query(Event).count() == 2

    def test_funding_flow(self, database):
        event_id, pitch_id = self._seed_pitching()
        assert mcp_server.register_angel(event_id, "angel")["is_angel"] is True
        bal = mcp_server.invest(event_id, "angel", pitch_id, "10.50")
        assert bal["remaining_balance"] == "999989.50"
        assert mcp_server.get_balance(event_id, "angel") == bal

        results = mcp_server.calculate_results(event_id, "host")
        assert results["pitch_rankings"][0]["pitch_id"] == pitch_id
        assert Decimal(results["investor_rankings"][0]["returns"]) == Decimal("199.50")
        assert mcp_server.get_results(event_id)["id"] == results["id"]

    def test_errors_returned_as_dicts(self, database):
        event_id, pitch_id = self._seed_pitching()
        assert mcp_server.invest(event_id, "stranger", pitch_id, "1") == {
            "error": "Register as an angel investor before investing.", "code": "not_an_angel",
        }
        assert mcp_server.invest(event_id, "stranger", pitch_id, "abc")["code"] == "invalid_amount"
        assert mcp_server.get_results(event_id)["code"] == "not_found"
        assert mcp_server.list_pitches(424242)["code"] == "not_found"

    def test_overview_resource(self):
        overview = json.loads(mcp_server.demoday_overview())
        assert overview["multipliers_by_rank"]["1"] == "20x"
        assert overview["ranks_beyond_5"].startswith("0x")
