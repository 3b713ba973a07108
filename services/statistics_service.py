from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict

LOGGER = logging.getLogger(__name__)
COUNTERS = ("cycles", "candidates_seen", "replies_sent", "skipped", "failed")


class StatisticsService:
    """Very small JSON-backed stats store."""

    def __init__(self, stats_file: Path):
        self._stats_file = stats_file
        self._stats_file.parent.mkdir(parents=True, exist_ok=True)
        self._stats_file.touch(exist_ok=True)
        if not self._stats_file.read_text(encoding="utf-8").strip():
            self._stats_file.write_text(json.dumps({}), encoding="utf-8")

    def _read(self) -> Dict:
        try:
            return json.loads(self._stats_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            LOGGER.warning("Stats file was corrupt, resetting %s", self._stats_file)
            self._stats_file.write_text(json.dumps({}), encoding="utf-8")
            return {}

    def _write(self, payload: Dict) -> None:
        self._stats_file.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def record_cycle(self, account: str, candidates: int) -> None:
        self._increment(account, cycles=1, candidates_seen=candidates)

    def record_batch(self, account: str, sent: int, skipped: int, failed: int) -> None:
        stats = self._increment(account, replies_sent=sent, skipped=skipped, failed=failed, write=False)
        if sent:
            stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
            stats["last_reply_at"] = stamp
            self._account_bucket(stats, account)["last_reply_at"] = stamp
        self._write(stats)

    def snapshot(self) -> Dict:
        return self._read()

    def _increment(self, account: str, write: bool = True, **counts: int) -> Dict:
        stats = self._read()
        bucket = self._account_bucket(stats, account)
        for key, count in counts.items():
            stats[key] = stats.get(key, 0) + count
            bucket[key] = bucket.get(key, 0) + count
        if write:
            self._write(stats)
        return stats

    def _account_bucket(self, stats: Dict, account: str) -> Dict:
        accounts = stats.setdefault("accounts", {})
        return accounts.setdefault(account, {})
