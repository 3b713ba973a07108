"""Polling loop that sends one vacation reply per first-contact message.

Each cycle lists the inbox and keeps the messages that carry no labels yet.
If there are any, it waits a random 45-120 s, then replies to them one at a
time, tags them with the tracking label, moves them out of the inbox, and
polls again right away. Otherwise it polls again after the idle delay.

Labels are the only record of a handled message; nothing is kept locally.
Under the default ``any-label`` policy a message that carries any label is
never selected again, whoever applied the label; ``tracking-label`` only
looks for the vacation label. The tracking label is applied after the send,
so a failed send leaves the message selectable on the next cycle, while a
failed label call after a successful send can lead to a second reply.
"""
from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from models.email_message import EmailMessage, MessageRef
from models.reply import Reply
from services.mail_gateway import GatewayError, MailGateway
from services.statistics_service import StatisticsService
from utils.config import ResponderSettings

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class BatchResult:
    sent: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class AutoResponder:
    """Drive list -> filter -> delay -> reply cycles against a mail gateway."""

    def __init__(
        self,
        gateway: MailGateway,
        settings: ResponderSettings,
        stats: Optional[StatisticsService] = None,
        account_name: str = "default",
        dry_run: bool = False,
        rng: Optional[random.Random] = None,
        stop_event: Optional[threading.Event] = None,
        sleep: Optional[Callable[[float], object]] = None,
    ):
        self._gateway = gateway
        self._settings = settings
        self._stats = stats
        self._account_name = account_name
        self._dry_run = dry_run
        self._rng = rng or random.Random()
        self._stop = stop_event or threading.Event()
        # Returns truthy when the wait was cut short by stop().
        self._sleep = sleep or self._stop.wait

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        self._stop.set()

    def run(self) -> None:
        LOGGER.info(
            "Auto-responder started for %s (label %s%s)",
            self._account_name,
            self._settings.label_name,
            ", dry-run" if self._dry_run else "",
        )
        while not self._stop.is_set():
            delay = self.run_cycle()
            if delay and self._sleep(delay):
                break
        LOGGER.info("Auto-responder stopped")

    def run_cycle(self, wait: bool = True) -> int:
        """Run one cycle and return the seconds to wait before the next one."""

        idle_delay = self._settings.idle_delay
        LOGGER.debug("Checking inbox for new emails")
        try:
            refs = self._gateway.list_inbox_messages()
            candidates = self.select_candidates(refs, self._tracking_label_id())
        except GatewayError as exc:
            LOGGER.error("Error listing messages: %s. Retrying in %s seconds", exc, idle_delay)
            return idle_delay

        self._record("record_cycle", len(candidates))

        if not candidates:
            LOGGER.info("No new emails found. Checking again in %s seconds...", idle_delay)
            return idle_delay

        if wait:
            delay = self.draw_delay()
            LOGGER.info("Found %s new email(s). Processing in %s seconds...", len(candidates), delay)
            if self._sleep(delay):
                LOGGER.info("Stop requested; %s email(s) left for the next run", len(candidates))
                return 0

        self.process_batch(candidates)
        return 0

    def select_candidates(
        self, refs: Sequence[MessageRef], tracking_label_id: Optional[str] = None
    ) -> List[MessageRef]:
        if self._settings.handled_policy == "tracking-label":
            return [ref for ref in refs if tracking_label_id not in ref.labels]
        return [ref for ref in refs if not ref.labels]

    def draw_delay(self) -> int:
        return self._rng.randint(self._settings.min_delay, self._settings.max_delay)

    def process_batch(self, candidates: Sequence[MessageRef]) -> BatchResult:
        result = BatchResult()
        label_cache: Dict[str, str] = {}
        for ref in candidates:
            try:
                replied = self.reply_to(ref.id, label_cache)
            except GatewayError as exc:
                LOGGER.error("Error replying to message %s: %s", ref.id, exc)
                result.failed.append(ref.id)
                continue
            (result.sent if replied else result.skipped).append(ref.id)

        LOGGER.info(
            "Batch finished: %s sent, %s skipped, %s failed",
            len(result.sent),
            len(result.skipped),
            len(result.failed),
        )
        self._record("record_batch", len(result.sent), len(result.skipped), len(result.failed))
        return result

    def reply_to(self, message_id: str, label_cache: Optional[Dict[str, str]] = None) -> bool:
        """Reply to and label one message. Returns False when it was skipped."""

        email = self._gateway.get_message(message_id)
        if email.sender is None:
            LOGGER.error("Unable to extract sender email address for message %s; skipping", message_id)
            return False

        reply = Reply.for_message(email, self._settings.reply_template)
        if self._dry_run:
            LOGGER.info('[dry-run] Would reply to %s about "%s" (message %s)', reply.to, email.subject, message_id)
            return True

        self._gateway.send_reply(reply)
        LOGGER.info('Reply sent for message %s with subject "%s"', message_id, email.subject)

        label_id = self._label_id(label_cache if label_cache is not None else {})
        self._gateway.apply_label(message_id, label_id)
        self._gateway.remove_label(message_id, self._settings.inbox_label)
        LOGGER.info('Label "%s" added and message %s moved out of the inbox', self._settings.label_name, message_id)
        return True

    def pending(self) -> List[EmailMessage]:
        """Hydrate the current candidates without replying to them."""

        refs = self._gateway.list_inbox_messages()
        candidates = self.select_candidates(refs, self._tracking_label_id())
        return [self._gateway.get_message(ref.id) for ref in candidates]

    def _tracking_label_id(self) -> Optional[str]:
        if self._settings.handled_policy != "tracking-label":
            return None
        # Lookup only: a missing label means nothing has been handled yet.
        return self._gateway.find_label(self._settings.label_name)

    def _label_id(self, cache: Dict[str, str]) -> str:
        name = self._settings.label_name
        if name not in cache:
            cache[name] = self._gateway.ensure_label(name)
        return cache[name]

    def _record(self, method: str, *counts: int) -> None:
        if not self._stats or self._dry_run:
            return
        try:
            getattr(self._stats, method)(self._account_name, *counts)
        except OSError as exc:
            LOGGER.warning("Could not update activity stats: %s", exc)
