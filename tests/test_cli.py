"""Tests for triagectl.cli -- option handling and command dispatch."""

import argparse
import json
import sys
from unittest.mock import patch

import pytest
from conftest import FakeEmbedder

from triagectl import __version__
from triagectl.cli import _load_config, _run_filters, main


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("USE_LLM_ANALYZER", raising=False)
    monkeypatch.delenv("TRIAGECTL_DATABASE_URL", raising=False)


def _run_main(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["triagectl", *argv])
    with pytest.raises(SystemExit) as exc:
        main()
    return exc.value.code


# ---------------------------------------------------------------------------
# _load_config
# ---------------------------------------------------------------------------

class TestLoadConfig:
    def test_flags_override(self):
        args = argparse.Namespace(
            config=None, repo="org/repo", db="sqlite:///flags.db",
            llm=True, provider="claude", model="opus",
        )
        config = _load_config(args)
        assert config.repository == "org/repo"
        assert config.database_url == "sqlite:///flags.db"
        assert config.llm.enabled
        assert config.llm.provider == "claude"
        assert config.llm.model == "opus"

    def test_no_llm_flag(self, tmp_path):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"llm": {"enabled": True}}))
        args = argparse.Namespace(config=str(path), llm=False)
        assert not _load_config(args).llm.enabled

    def test_absent_flags_keep_file_values(self, tmp_path):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"repository": "file/repo", "llm": {"enabled": True}}))
        args = argparse.Namespace(config=str(path), db=None)
        config = _load_config(args)
        assert config.repository == "file/repo"
        assert config.llm.enabled


# ---------------------------------------------------------------------------
# _run_filters
# ---------------------------------------------------------------------------

class TestRunFilters:
    def _config(self, tmp_path):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"workflows": [
            {"name": "CI", "workflowFileName": "ci.yml", "branch": "main"},
        ]}))
        return _load_config(argparse.Namespace(config=str(path)))

    def test_config_workflows(self, tmp_path):
        args = argparse.Namespace(workflow=None, branch=None)
        assert _run_filters(args, self._config(tmp_path)) == (["ci.yml"], ["main"])

    def test_flags_win(self, tmp_path):
        args = argparse.Namespace(workflow="a.yml,b.yml", branch="*")
        assert _run_filters(args, self._config(tmp_path)) == (["a.yml", "b.yml"], None)

    def test_no_filters(self):
        args = argparse.Namespace(workflow=None, branch=None)
        config = _load_config(argparse.Namespace(config=None))
        assert _run_filters(args, config) == (None, None)


# ---------------------------------------------------------------------------
# main
# ---------------------------------------------------------------------------

class TestMain:
    def test_version(self, monkeypatch, capsys):
        assert _run_main(monkeypatch, "--version") == 0
        assert f"triagectl {__version__}" in capsys.readouterr().out

    def test_command_required(self, monkeypatch):
        assert _run_main(monkeypatch) == 2

    def test_stats_on_empty_database(self, monkeypatch, capsys, tmp_path):
        db = f"sqlite:///{tmp_path / 'cli.db'}"
        out = tmp_path / "stats.json"
        assert _run_main(monkeypatch, "stats", "--db", db, "--output-json", str(out)) == 0
        assert "Root cause detection" in capsys.readouterr().out
        assert json.loads(out.read_text())["failed_jobs"] == 0

    def test_analyze_without_repository(self, monkeypatch, tmp_path):
        db = f"sqlite:///{tmp_path / 'cli.db'}"
        assert _run_main(monkeypatch, "analyze", "--db", db) == 1

    def test_invalid_config(self, monkeypatch, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"initialLogLines": "many"}))
        assert _run_main(monkeypatch, "stats", "--config", str(path)) == 2

    def test_similar_on_empty_catalog(self, monkeypatch, capsys, tmp_path):
        db = f"sqlite:///{tmp_path / 'cli.db'}"
        with patch("triagectl.pipeline.SentenceTransformerEmbedder", return_value=FakeEmbedder()):
            rc = _run_main(monkeypatch, "similar", "worker crashed", "--db", db, "--threshold", "0.8")
        assert rc == 0
        assert "No root cause at similarity >= 0.8" in capsys.readouterr().out
