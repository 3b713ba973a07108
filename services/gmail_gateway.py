from __future__ import annotations

import base64
import logging
from email.mime.text import MIMEText
from typing import Any, Dict, List, Sequence

import httplib2
from google.auth.exceptions import GoogleAuthError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from models.email_message import EmailMessage, MessageRef
from models.reply import Reply
from services.auth_service import AuthService
from services.mail_gateway import GatewayError, MailGateway
from utils.config import AccountConfig, ResponderSettings

LOGGER = logging.getLogger(__name__)
# Gmail caps a single messages.list page at 500 ids.
MAX_PAGE_SIZE = 500
METADATA_HEADERS = ["From", "Subject", "Message-ID", "References"]


class GmailGateway(MailGateway):
    """Wrapper around the Gmail API for the operations we need."""

    def __init__(
        self,
        account: AccountConfig,
        client: Any,
        settings: ResponderSettings | None = None,
        fetch_batch_size: int = 100,
    ):
        self._account = account
        self._client = client
        self._settings = settings or ResponderSettings()
        self._fetch_batch_size = fetch_batch_size

    @classmethod
    def connect(
        cls,
        account: AccountConfig,
        auth_service: AuthService,
        settings: ResponderSettings | None = None,
        fetch_batch_size: int = 100,
    ) -> "GmailGateway":
        creds = auth_service.authenticate()
        client = build("gmail", "v1", credentials=creds, cache_discovery=False)
        return cls(account, client, settings, fetch_batch_size)

    @property
    def user_id(self) -> str:
        return self._account.user_id

    def list_inbox_messages(self) -> List[MessageRef]:
        listed: List[Dict] = []
        page_token = None
        while len(listed) < self._fetch_batch_size:
            request = (
                self._client.users()
                .messages()
                .list(
                    userId=self.user_id,
                    labelIds=[self._settings.inbox_label],
                    maxResults=min(MAX_PAGE_SIZE, self._fetch_batch_size - len(listed)),
                    pageToken=page_token,
                )
            )
            response = self._execute(request, "List inbox messages")
            listed.extend(response.get("messages", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break

        LOGGER.info("Listed %s inbox message(s)", len(listed))
        refs: List[MessageRef] = []
        for message in listed[: self._fetch_batch_size]:
            ref = self._fetch_ref(message["id"])
            if ref is not None:
                refs.append(ref)
        return refs

    def _fetch_ref(self, message_id: str) -> MessageRef | None:
        request = (
            self._client.users()
            .messages()
            .get(userId=self.user_id, id=message_id, format="minimal")
        )
        try:
            response = self._execute(request, "Read labels", message_id)
        except GatewayError as exc:
            if exc.status == 404:
                LOGGER.warning("Message %s disappeared before its labels could be read", message_id)
                return None
            raise
        labels = frozenset(
            label for label in response.get("labelIds", []) if not self._is_ignored_label(label)
        )
        return MessageRef(id=message_id, thread_id=response.get("threadId"), labels=labels)

    def _is_ignored_label(self, label_id: str) -> bool:
        if label_id == self._settings.inbox_label:
            return True
        for pattern in self._settings.ignored_labels:
            if pattern.endswith("*"):
                if label_id.startswith(pattern[:-1]):
                    return True
            elif label_id == pattern:
                return True
        return False

    def get_message(self, message_id: str) -> EmailMessage:
        request = (
            self._client.users()
            .messages()
            .get(
                userId=self.user_id,
                id=message_id,
                format="metadata",
                metadataHeaders=METADATA_HEADERS,
            )
        )
        response = self._execute(request, "Fetch message", message_id)
        header_list = response.get("payload", {}).get("headers", [])
        headers = _headers_to_dict(header_list)
        return EmailMessage(
            id=response.get("id", message_id),
            thread_id=response.get("threadId"),
            subject=headers.get("subject") or "(no subject)",
            sender=extract_sender(header_list),
            labels=list(response.get("labelIds", [])),
            rfc822_message_id=headers.get("message-id") or None,
            references=headers.get("references") or None,
        )

    def send_reply(self, reply: Reply) -> None:
        message = MIMEText(reply.body, "plain", "utf-8")
        message["To"] = reply.to
        message["Subject"] = reply.subject
        if reply.in_reply_to:
            message["In-Reply-To"] = reply.in_reply_to
        if reply.references:
            message["References"] = reply.references
        body: Dict[str, str] = {"raw": base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")}
        if reply.thread_id:
            body["threadId"] = reply.thread_id
        request = self._client.users().messages().send(userId=self.user_id, body=body)
        response = self._execute(request, "Send reply")
        LOGGER.info("Sent reply %s to %s", response.get("id"), reply.to)

    def ensure_label(self, label_name: str) -> str:
        existing = self.find_label(label_name)
        if existing:
            LOGGER.debug("Label %s already exists as %s", label_name, existing)
            return existing
        body = {"name": label_name, "labelListVisibility": "labelShow", "messageListVisibility": "show"}
        request = self._client.users().labels().create(userId=self.user_id, body=body)
        try:
            response = self._execute(request, f"Create label {label_name}")
        except GatewayError as exc:
            if exc.status != 409:
                raise
            # Created by someone else between our list and create calls.
            existing = self.find_label(label_name)
            if not existing:
                raise
            LOGGER.info("Label %s was created concurrently as %s", label_name, existing)
            return existing
        LOGGER.info("Created label %s with id %s", label_name, response["id"])
        return response["id"]

    def find_label(self, label_name: str) -> str | None:
        request = self._client.users().labels().list(userId=self.user_id)
        labels = self._execute(request, "List labels").get("labels", [])
        for label in labels:
            if label.get("name", "").lower() == label_name.lower():
                return label["id"]
        return None

    def apply_label(self, message_id: str, label_id: str) -> None:
        self._modify(message_id, {"addLabelIds": [label_id]})
        LOGGER.info("Applied label %s to message %s", label_id, message_id)

    def remove_label(self, message_id: str, label_id: str) -> None:
        self._modify(message_id, {"removeLabelIds": [label_id]})
        LOGGER.info("Removed label %s from message %s", label_id, message_id)

    def _modify(self, message_id: str, body: Dict[str, List[str]]) -> Dict:
        request = (
            self._client.users()
            .messages()
            .modify(userId=self.user_id, id=message_id, body=body)
        )
        return self._execute(request, "Modify labels", message_id)

    def _execute(self, request: Any, operation: str, message_id: str | None = None) -> Dict:
        try:
            return request.execute()
        except HttpError as exc:
            raise GatewayError(operation, exc, message_id, status=exc.resp.status) from exc
        except (GoogleAuthError, httplib2.HttpLib2Error, OSError) as exc:
            raise GatewayError(operation, exc, message_id) from exc


def extract_sender(headers: Sequence[Dict[str, str]]) -> str | None:
    """Return the From header value, or None when it is missing or blank."""

    for header in headers:
        if header.get("name", "").lower() == "from":
            value = (header.get("value") or "").strip()
            return value or None
    return None


def _headers_to_dict(headers: Sequence[Dict[str, str]]) -> Dict[str, str]:
    mapped: Dict[str, str] = {}
    for header in headers:
        name = header.get("name", "").lower()
        value = header.get("value", "")
        mapped[name] = value
    return mapped
