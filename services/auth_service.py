from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Callable, Iterable

import click
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from utils.config import AccountConfig

LOGGER = logging.getLogger(__name__)
SCOPES: Iterable[str] = ("https://www.googleapis.com/auth/gmail.modify",)
DEFAULT_REDIRECT_URI = "http://localhost"


class AuthError(RuntimeError):
    """Raised when Gmail credentials cannot be loaded or obtained."""


def _default_prompt(message: str) -> str:
    return click.prompt(message, type=str)


class AuthService:
    """Handle OAuth2 credential lifecycle for a specific Gmail account."""

    def __init__(
        self,
        account: AccountConfig,
        flow: str = "console",
        prompt: Callable[[str], str] | None = None,
        echo: Callable[[str], None] = click.echo,
    ):
        self._account = account
        self._flow = flow
        self._prompt = prompt or _default_prompt
        self._echo = echo

    def _save_credentials(self, creds: Credentials) -> None:
        LOGGER.debug("Persisting OAuth tokens to %s", self._account.token_file)
        self._account.token_file.parent.mkdir(parents=True, exist_ok=True)
        self._account.token_file.write_text(creds.to_json(), encoding="utf-8")

    def _load_existing_credentials(self) -> Credentials | None:
        token_path: Path = self._account.token_file
        if not token_path.exists():
            return None
        LOGGER.debug("Loading cached credential from %s", token_path)
        try:
            data = json.loads(token_path.read_text(encoding="utf-8"))
            return Credentials.from_authorized_user_info(data, SCOPES)
        except (OSError, ValueError) as exc:
            raise AuthError(f"Cached token {token_path} is unreadable: {exc}") from exc

    def authenticate(self) -> Credentials:
        creds = self._load_existing_credentials()
        if creds and creds.expired and creds.refresh_token:
            LOGGER.info("Refreshing expired Gmail token for %s", self._account.name)
            try:
                creds.refresh(Request())
            except GoogleAuthError as exc:
                raise AuthError(f"Failed to refresh Gmail token: {exc}") from exc
            self._save_credentials(creds)
            return creds

        if creds and creds.valid:
            LOGGER.info("Authorization successful for %s", self._account.name)
            return creds

        creds = self._run_flow()
        self._save_credentials(creds)
        LOGGER.info("Token stored to %s", self._account.token_file)
        return creds

    def _run_flow(self) -> Credentials:
        secrets = self._account.credentials_file
        if not secrets.exists():
            raise AuthError(f"Missing OAuth client secrets file: {secrets}")

        LOGGER.info("Initiating OAuth flow using %s", secrets)
        try:
            flow = InstalledAppFlow.from_client_secrets_file(str(secrets), scopes=SCOPES)
        except ValueError as exc:
            raise AuthError(f"Invalid client secrets file {secrets}: {exc}") from exc

        if self._flow == "local":
            return flow.run_local_server(port=0)
        return self._run_console_flow(flow)

    def _run_console_flow(self, flow: InstalledAppFlow) -> Credentials:
        redirect_uris = flow.client_config.get("redirect_uris") or [DEFAULT_REDIRECT_URI]
        flow.redirect_uri = redirect_uris[0]
        auth_url, _ = flow.authorization_url(access_type="offline", prompt="consent")
        self._echo(f"Authorize this app by visiting this URL: {auth_url}")

        code = self._prompt("Enter the code from that page here").strip()
        if not code:
            raise AuthError("No authorization code entered")
        try:
            flow.fetch_token(code=code)
        except (OAuth2Error, ValueError) as exc:
            raise AuthError(f"Error exchanging authorization code: {exc}") from exc
        return flow.credentials
