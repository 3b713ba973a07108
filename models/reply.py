from __future__ import annotations

from dataclasses import dataclass

from models.email_message import EmailMessage


@dataclass(frozen=True, slots=True)
class Reply:
    """Outgoing auto-reply, built right before it is sent."""

    to: str
    subject: str
    body: str
    thread_id: str | None = None
    in_reply_to: str | None = None
    references: str | None = None

    @classmethod
    def for_message(cls, email: EmailMessage, template: str) -> "Reply":
        if email.sender is None:
            raise ValueError(f"Message {email.id} has no sender to reply to")
        references = email.references
        if email.rfc822_message_id:
            references = f"{references} {email.rfc822_message_id}" if references else email.rfc822_message_id
        return cls(
            to=email.sender,
            subject=f"Re: {email.subject}",
            body=template.format(subject=email.subject),
            thread_id=email.thread_id,
            in_reply_to=email.rfc822_message_id,
            references=references,
        )
