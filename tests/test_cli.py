"""Tests for the command-line interface."""

import os
import sys

import pytest

from voicebridge import cli
from voicebridge.config import loader, reload_config
from voicebridge.contracts import CoachingEvaluation, TurnRecord
from voicebridge.store import TranscriptLog


@pytest.fixture
def config(tmp_path, monkeypatch):
    """Point the global config at a throwaway data directory."""
    for name in list(os.environ):
        if name.startswith(loader.ENV_PREFIX) or name in loader.ENV_ALIASES:
            monkeypatch.delenv(name)
    monkeypatch.setattr(loader, "_config", None)
    path = tmp_path / "config.py"
    path.write_text(f"DATA_DIR = {str(tmp_path / 'data')!r}\nTRANSCRIPTS_ENABLED = False\n")
    return reload_config(path)


def run(monkeypatch, *argv: str) -> int:
    monkeypatch.setattr(sys, "argv", ["voicebridge", *argv])
    return cli.main()


class TestCli:
    def test_no_command_prints_help(self, monkeypatch, config, capsys):
        assert run(monkeypatch) == 0
        assert "usage" in capsys.readouterr().out

    def test_scenarios(self, monkeypatch, config):
        assert run(monkeypatch, "scenarios") == 0

    def test_status_reports_missing_keys(self, monkeypatch, config, capsys):
        assert run(monkeypatch, "status") == 1
        assert "ELEVENLABS_API_KEY is not set" in capsys.readouterr().out

    def test_ask_without_providers_apologizes(self, monkeypatch, config):
        printed = []
        monkeypatch.setattr(cli.console, "print", lambda *a, **k: printed.append(a))

        assert run(monkeypatch, "ask", "Hello", "--session", "s1") == 0
        assert any(config.APOLOGY_TEXT in str(args[0]) for args in printed if args)

    def test_history_without_database(self, monkeypatch, config, capsys):
        assert run(monkeypatch, "history") == 0
        assert "No transcripts" in capsys.readouterr().out

    def test_history_for_session(self, monkeypatch, config, tmp_path):
        log = TranscriptLog(tmp_path / "data" / "transcripts.db")
        log.append_turn("s1", TurnRecord(turn_index=0, user_text="hi", assistant_text="hello"))

        assert run(monkeypatch, "history") == 0
        assert run(monkeypatch, "history", "s1") == 0
        assert run(monkeypatch, "history", "missing") == 1

    def test_evaluate_without_database(self, monkeypatch, config, capsys):
        assert run(monkeypatch, "evaluate", "s1") == 1
        assert "No transcripts" in capsys.readouterr().out

    def test_evaluate_without_fallback_provider(self, monkeypatch, config, tmp_path, capsys):
        log = TranscriptLog(tmp_path / "data" / "transcripts.db")
        log.append_turn("s1", TurnRecord(turn_index=0, user_text="hi", assistant_text="hello"))

        assert run(monkeypatch, "evaluate", "s1") == 1
        assert "not configured" in capsys.readouterr().out

    def test_evaluate_show(self, monkeypatch, config, tmp_path, capsys):
        log = TranscriptLog(tmp_path / "data" / "transcripts.db")
        log.append_turn("s1", TurnRecord(turn_index=0, user_text="hi", assistant_text="hello"))

        assert run(monkeypatch, "evaluate", "s1", "--show") == 1
        assert "No evaluation" in capsys.readouterr().out

        log.save_evaluation("s1", CoachingEvaluation(overall_score=9))
        assert run(monkeypatch, "evaluate", "s1", "--show") == 0


class TestBuildStore:
    def test_transcripts_enabled(self, tmp_path, monkeypatch):
        monkeypatch.setattr(loader, "_config", None)
        path = tmp_path / "config.py"
        path.write_text(f"DATA_DIR = {str(tmp_path / 'data')!r}\nMAX_TURNS = 3\n")
        store = cli.build_store(reload_config(path))

        store.append_turn("s1", "hi", "hello")

        assert store.max_turns == 3
        assert (tmp_path / "data" / "transcripts.db").exists()


class TestOpenSession:
    def test_continues_logged_session(self, tmp_path):
        from voicebridge.core.continuity import ConversationStore

        log = TranscriptLog(tmp_path / "transcripts.db")
        ConversationStore(transcript_log=log).append_turn("s1", "hi", "hello")
        store = ConversationStore(transcript_log=log)

        assert cli.open_session(store, "s1", None) == "s1"
        assert [t.user_text for t in store.get("s1").turns] == ["hi"]

    def test_new_session_without_id(self):
        from voicebridge.core.continuity import ConversationStore

        store = ConversationStore()
        session_id = cli.open_session(store, None, "job_interview")

        assert store.get(session_id).scenario == "job_interview"
