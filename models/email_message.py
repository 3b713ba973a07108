from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, List


@dataclass(frozen=True, slots=True)
class MessageRef:
    """Inbox listing entry: an id plus its current non-inbox labels."""

    id: str
    thread_id: str | None = None
    labels: FrozenSet[str] = frozenset()


@dataclass(slots=True)
class EmailMessage:
    """Simplified representation of a Gmail message."""

    id: str
    thread_id: str | None
    subject: str
    sender: str | None = None
    labels: List[str] = field(default_factory=list)
    rfc822_message_id: str | None = None
    references: str | None = None
