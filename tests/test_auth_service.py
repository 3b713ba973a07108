from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from oauthlib.oauth2.rfc6749.errors import InvalidGrantError

from services import auth_service
from services.auth_service import AuthError, AuthService
from utils.config import AccountConfig


@pytest.fixture
def account(tmp_path: Path) -> AccountConfig:
    return AccountConfig(
        name="default",
        credentials_file=tmp_path / "credentials.json",
        token_file=tmp_path / "token.json",
        user_id="me",
    )


def _fake_flow(monkeypatch, credentials=None, fetch_error=None) -> MagicMock:
    flow = MagicMock()
    flow.client_config = {"redirect_uris": ["http://localhost:3000/callback"]}
    flow.authorization_url.return_value = ("https://accounts.example/auth?x=1", "state")
    if fetch_error:
        flow.fetch_token.side_effect = fetch_error
    flow.credentials = credentials or MagicMock(to_json=MagicMock(return_value='{"token": "new"}'))
    factory = MagicMock(return_value=flow)
    monkeypatch.setattr(auth_service.InstalledAppFlow, "from_client_secrets_file", factory)
    return flow


def test_missing_client_secrets_raises_auth_error(account):
    service = AuthService(account, prompt=lambda _: "code")

    with pytest.raises(AuthError, match="client secrets"):
        service.authenticate()


def test_unreadable_token_raises_auth_error(account):
    account.token_file.write_text("not json", encoding="utf-8")
    service = AuthService(account)

    with pytest.raises(AuthError, match="unreadable"):
        service.authenticate()


def test_valid_cached_token_skips_flow(account, monkeypatch):
    creds = MagicMock(valid=True, expired=False)
    account.token_file.write_text(json.dumps({"token": "cached"}), encoding="utf-8")
    monkeypatch.setattr(
        auth_service.Credentials, "from_authorized_user_info", MagicMock(return_value=creds)
    )
    service = AuthService(account, prompt=lambda _: pytest.fail("should not prompt"))

    assert service.authenticate() is creds


def test_console_flow_prompts_for_code_and_persists_token(account, monkeypatch):
    account.credentials_file.write_text("{}", encoding="utf-8")
    flow = _fake_flow(monkeypatch)
    echoed: list[str] = []
    service = AuthService(account, prompt=lambda _: "  4/abc  ", echo=echoed.append)

    creds = service.authenticate()

    assert creds is flow.credentials
    assert flow.redirect_uri == "http://localhost:3000/callback"
    flow.fetch_token.assert_called_once_with(code="4/abc")
    assert "https://accounts.example/auth?x=1" in echoed[0]
    assert account.token_file.read_text(encoding="utf-8") == '{"token": "new"}'


def test_rejected_code_raises_auth_error(account, monkeypatch):
    account.credentials_file.write_text("{}", encoding="utf-8")
    _fake_flow(monkeypatch, fetch_error=InvalidGrantError("bad code"))
    service = AuthService(account, prompt=lambda _: "wrong", echo=lambda _: None)

    with pytest.raises(AuthError, match="authorization code"):
        service.authenticate()
    assert not account.token_file.exists()


def test_empty_code_raises_auth_error(account, monkeypatch):
    account.credentials_file.write_text("{}", encoding="utf-8")
    _fake_flow(monkeypatch)
    service = AuthService(account, prompt=lambda _: "", echo=lambda _: None)

    with pytest.raises(AuthError):
        service.authenticate()


def test_local_flow_uses_local_server(account, monkeypatch):
    account.credentials_file.write_text("{}", encoding="utf-8")
    flow = _fake_flow(monkeypatch)
    local_creds = MagicMock(to_json=MagicMock(return_value='{"token": "local"}'))
    flow.run_local_server.return_value = local_creds
    service = AuthService(account, flow="local")

    assert service.authenticate() is local_creds
    flow.run_local_server.assert_called_once_with(port=0)
