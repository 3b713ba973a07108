from __future__ import annotations

import base64
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv


PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_REPLY_TEMPLATE = (
    'Thank you for your email on "{subject}". '
    "I'm currently out on vacation and will get back to you as soon as possible."
)
DEFAULT_IGNORED_LABELS = "UNREAD,IMPORTANT,CATEGORY_*"
HANDLED_POLICIES = ("any-label", "tracking-label")
AUTH_FLOWS = ("console", "local")


@dataclass(slots=True)
class AccountConfig:
    name: str
    credentials_file: Path
    token_file: Path
    user_id: str


@dataclass(slots=True)
class ResponderSettings:
    label_name: str = "VacationReplies"
    inbox_label: str = "INBOX"
    ignored_labels: Tuple[str, ...] = ("UNREAD", "IMPORTANT", "CATEGORY_*")
    handled_policy: str = "any-label"
    min_delay: int = 45
    max_delay: int = 120
    idle_delay: int = 60
    reply_template: str = DEFAULT_REPLY_TEMPLATE

    def __post_init__(self) -> None:
        if self.min_delay < 0 or self.idle_delay < 0:
            raise ValueError("Delays must not be negative")
        if self.min_delay > self.max_delay:
            raise ValueError(
                f"REPLY_DELAY_MIN ({self.min_delay}) must not exceed REPLY_DELAY_MAX ({self.max_delay})"
            )
        try:
            self.reply_template.format(subject="")
        except (KeyError, IndexError, AttributeError, ValueError) as exc:
            raise ValueError(
                f"REPLY_TEMPLATE may only use the {{subject}} placeholder: {exc!r}"
            ) from exc
        if self.handled_policy not in HANDLED_POLICIES:
            raise ValueError(
                f"Unknown HANDLED_POLICY '{self.handled_policy}'. Expected one of: {', '.join(HANDLED_POLICIES)}"
            )


@dataclass(slots=True)
class AppConfig:
    log_dir: Path
    log_level: str
    fetch_batch_size: int
    stats_file: Path
    auth_flow: str
    responder: ResponderSettings
    accounts: Dict[str, AccountConfig]
    default_account: AccountConfig
    accounts_file: Path

    def get_account(self, account_name: Optional[str]) -> AccountConfig:
        if not account_name:
            return self.default_account
        if account_name not in self.accounts:
            available = ", ".join(sorted(self.accounts))
            raise KeyError(f"Unknown account '{account_name}'. Available accounts: {available}")
        return self.accounts[account_name]


def _resolve_path(value: str | None, fallback: str) -> Path:
    candidate = Path(value or fallback)
    if not candidate.is_absolute():
        candidate = PROJECT_ROOT / candidate
    return candidate


def _maybe_write_secret_file(target: Path, inline_value: str | None, b64_value: str | None) -> None:
    if not inline_value and not b64_value:
        return
    target.parent.mkdir(parents=True, exist_ok=True)
    if inline_value:
        target.write_text(inline_value, encoding="utf-8")
        return
    try:
        decoded = base64.b64decode(b64_value or "")
    except Exception as exc:  # noqa: BLE001
        raise ValueError("Failed to decode base64 secret payload") from exc
    target.write_bytes(decoded)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from exc


def _split_labels(raw: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def load_responder_settings() -> ResponderSettings:
    return ResponderSettings(
        label_name=os.getenv("VACATION_LABEL", "VacationReplies"),
        inbox_label=os.getenv("INBOX_LABEL", "INBOX"),
        ignored_labels=_split_labels(os.getenv("IGNORED_LABELS", DEFAULT_IGNORED_LABELS)),
        handled_policy=os.getenv("HANDLED_POLICY", "any-label").strip().lower(),
        min_delay=_int_env("REPLY_DELAY_MIN", 45),
        max_delay=_int_env("REPLY_DELAY_MAX", 120),
        idle_delay=_int_env("IDLE_DELAY", 60),
        reply_template=os.getenv("REPLY_TEMPLATE", DEFAULT_REPLY_TEMPLATE),
    )


def load_config(env_file: str | os.PathLike[str] | None = None) -> AppConfig:
    """Load configuration values from a .env file and environment variables."""

    if env_file:
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(override=False)

    credentials_file = _resolve_path(os.getenv("GOOGLE_CLIENT_SECRETS"), "credentials.json")
    token_file = _resolve_path(os.getenv("GOOGLE_TOKEN_PATH"), "token.json")
    log_dir = _resolve_path(os.getenv("LOG_DIR"), "logs")
    stats_file = _resolve_path(os.getenv("STATS_FILE"), "data/stats.json")
    accounts_file = _resolve_path(os.getenv("GMAIL_ACCOUNTS_FILE"), "accounts.json")

    log_dir.mkdir(parents=True, exist_ok=True)
    stats_file.parent.mkdir(parents=True, exist_ok=True)

    _maybe_write_secret_file(
        credentials_file,
        os.getenv("GOOGLE_CLIENT_SECRETS_JSON"),
        os.getenv("GOOGLE_CLIENT_SECRETS_B64"),
    )
    _maybe_write_secret_file(
        token_file,
        os.getenv("GOOGLE_TOKEN_JSON"),
        os.getenv("GOOGLE_TOKEN_B64"),
    )

    fetch_batch_size = _int_env("FETCH_BATCH_SIZE", 100)
    if fetch_batch_size < 1:
        raise ValueError("FETCH_BATCH_SIZE must be at least 1")

    auth_flow = os.getenv("AUTH_FLOW", "console").strip().lower()
    if auth_flow not in AUTH_FLOWS:
        raise ValueError(f"Unknown AUTH_FLOW '{auth_flow}'. Expected one of: {', '.join(AUTH_FLOWS)}")

    default_account = AccountConfig(
        name="default",
        credentials_file=credentials_file,
        token_file=token_file,
        user_id=os.getenv("GMAIL_USER_ID", "me"),
    )
    accounts: Dict[str, AccountConfig] = {default_account.name: default_account}

    if accounts_file.exists():
        data = json.loads(accounts_file.read_text(encoding="utf-8"))
        for item in data.get("accounts", []):
            name = item.get("name")
            if not name:
                continue
            accounts[name] = AccountConfig(
                name=name,
                credentials_file=_resolve_path(item.get("credentials_file"), "credentials.json"),
                token_file=_resolve_path(item.get("token_file"), "token.json"),
                user_id=item.get("user_id", "me"),
            )

    return AppConfig(
        log_dir=log_dir,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        fetch_batch_size=fetch_batch_size,
        stats_file=stats_file,
        auth_flow=auth_flow,
        responder=load_responder_settings(),
        accounts=accounts,
        default_account=default_account,
        accounts_file=accounts_file,
    )
