from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from models.email_message import EmailMessage, MessageRef
from models.reply import Reply


class GatewayError(RuntimeError):
    """A single mail provider call failed (transport, quota, not found...)."""

    def __init__(
        self,
        operation: str,
        detail: object,
        message_id: str | None = None,
        status: int | None = None,
    ):
        self.operation = operation
        self.message_id = message_id
        self.status = status
        target = f" for message {message_id}" if message_id else ""
        super().__init__(f"{operation} failed{target}: {detail}")


class MailGateway(ABC):
    """Capabilities the auto-responder needs from the mail provider."""

    @abstractmethod
    def list_inbox_messages(self) -> List[MessageRef]:
        """Return inbox messages with their current non-inbox labels."""
        raise NotImplementedError

    @abstractmethod
    def get_message(self, message_id: str) -> EmailMessage:
        """Return subject, sender and labels; ``sender`` is None when unavailable."""
        raise NotImplementedError

    @abstractmethod
    def send_reply(self, reply: Reply) -> None:
        raise NotImplementedError

    @abstractmethod
    def ensure_label(self, label_name: str) -> str:
        """Return the id of ``label_name``, creating the label if needed."""
        raise NotImplementedError

    @abstractmethod
    def find_label(self, label_name: str) -> str | None:
        """Return the id of ``label_name`` without creating it."""
        raise NotImplementedError

    @abstractmethod
    def apply_label(self, message_id: str, label_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def remove_label(self, message_id: str, label_id: str) -> None:
        raise NotImplementedError
