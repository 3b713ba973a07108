from __future__ import annotations

from typing import Dict, List, Set

import pytest

from models.email_message import EmailMessage, MessageRef
from models.reply import Reply
from services.mail_gateway import GatewayError, MailGateway
from utils.config import ResponderSettings


class FakeGateway(MailGateway):
    """In-memory mailbox keyed by message id."""

    def __init__(self, inbox_label: str = "INBOX"):
        self.inbox_label = inbox_label
        self.messages: Dict[str, dict] = {}
        self.order: List[str] = []
        self.labels: Dict[str, str] = {}
        self.sent: List[Reply] = []
        self.created_labels: List[str] = []
        self.fail_send_to: Set[str] = set()
        self.fail_list = False
        self.list_calls = 0

    def add(self, message_id: str, subject: str, sender: str | None, labels=()) -> None:
        self.messages[message_id] = {
            "subject": subject,
            "sender": sender,
            "labels": {self.inbox_label, *labels},
        }
        self.order.append(message_id)

    def list_inbox_messages(self) -> List[MessageRef]:
        self.list_calls += 1
        if self.fail_list:
            raise GatewayError("List inbox messages", "HTTP 503")
        return [
            MessageRef(id=mid, labels=frozenset(self.messages[mid]["labels"] - {self.inbox_label}))
            for mid in self.order
            if self.inbox_label in self.messages[mid]["labels"]
        ]

    def get_message(self, message_id: str) -> EmailMessage:
        if message_id not in self.messages:
            raise GatewayError("Fetch message", "HTTP 404", message_id, status=404)
        data = self.messages[message_id]
        return EmailMessage(
            id=message_id,
            thread_id=f"t-{message_id}",
            subject=data["subject"],
            sender=data["sender"],
            labels=sorted(data["labels"]),
            rfc822_message_id=f"<{message_id}@mail.example>",
        )

    def send_reply(self, reply: Reply) -> None:
        if reply.to in self.fail_send_to:
            raise GatewayError("Send reply", "HTTP 500")
        self.sent.append(reply)

    def ensure_label(self, label_name: str) -> str:
        if label_name not in self.labels:
            self.labels[label_name] = f"Label_{len(self.labels) + 1}"
            self.created_labels.append(label_name)
        return self.labels[label_name]

    def find_label(self, label_name: str) -> str | None:
        return self.labels.get(label_name)

    def label_names(self, message_id: str) -> Set[str]:
        by_id = {label_id: name for name, label_id in self.labels.items()}
        return {by_id.get(label, label) for label in self.messages[message_id]["labels"]}

    def apply_label(self, message_id: str, label_id: str) -> None:
        self.messages[message_id]["labels"].add(label_id)

    def remove_label(self, message_id: str, label_id: str) -> None:
        self.messages[message_id]["labels"].discard(label_id)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def settings() -> ResponderSettings:
    return ResponderSettings()
