from __future__ import annotations

import os
from pathlib import Path

import pytest
from click.testing import CliRunner

import main
from services.auth_service import AuthError


@pytest.fixture
def runner(tmp_path: Path, monkeypatch) -> CliRunner:
    monkeypatch.setattr(os, "environ", os.environ.copy())
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("STATS_FILE", str(tmp_path / "stats.json"))
    monkeypatch.setenv("GOOGLE_CLIENT_SECRETS", str(tmp_path / "credentials.json"))
    monkeypatch.setenv("GOOGLE_TOKEN_PATH", str(tmp_path / "token.json"))
    monkeypatch.setenv("GMAIL_ACCOUNTS_FILE", str(tmp_path / "accounts.json"))
    monkeypatch.setattr(main, "configure_logging", lambda *args, **kwargs: None)
    return CliRunner()


def _args(tmp_path: Path, *args: str) -> list[str]:
    return ["--env-file", str(tmp_path / "missing.env"), *args]


def test_auth_failure_exits_non_zero(runner, tmp_path, monkeypatch):
    def fail(*_args, **_kwargs):
        raise AuthError("token revoked")

    monkeypatch.setattr(main.GmailGateway, "connect", fail)

    result = runner.invoke(main.cli, _args(tmp_path, "run"))

    assert result.exit_code == 1
    assert "Authorization failed: token revoked" in result.output


def test_unknown_account_is_a_usage_error(runner, tmp_path):
    result = runner.invoke(main.cli, _args(tmp_path, "--account", "nope", "stats"))

    assert result.exit_code == 2
    assert "Unknown account 'nope'" in result.output


def test_invalid_configuration_exits_non_zero(runner, tmp_path, monkeypatch):
    monkeypatch.setenv("HANDLED_POLICY", "sometimes")

    result = runner.invoke(main.cli, _args(tmp_path, "stats"))

    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


def test_once_replies_to_new_mail(runner, tmp_path, monkeypatch, gateway):
    gateway.add("m1", "Hello", "a@x.com")
    monkeypatch.setattr(main.GmailGateway, "connect", lambda *args, **kwargs: gateway)

    result = runner.invoke(main.cli, _args(tmp_path, "once", "--no-delay"))

    assert result.exit_code == 0, result.output
    assert [reply.to for reply in gateway.sent] == ["a@x.com"]
    assert "Next poll would run in 0 second(s)" in result.output


def test_pending_lists_candidates_without_sending(runner, tmp_path, monkeypatch, gateway):
    gateway.add("m1", "Hello", "a@x.com")
    gateway.add("m2", "Done", "b@x.com", labels=["Label_3"])
    monkeypatch.setattr(main.GmailGateway, "connect", lambda *args, **kwargs: gateway)

    result = runner.invoke(main.cli, _args(tmp_path, "pending"))

    assert result.exit_code == 0, result.output
    assert "m1" in result.output
    assert "m2" not in result.output
    assert gateway.sent == []


def test_stats_before_any_run(runner, tmp_path):
    result = runner.invoke(main.cli, _args(tmp_path, "stats"))

    assert result.exit_code == 0
    assert "No stats recorded yet." in result.output
