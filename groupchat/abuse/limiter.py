"""
Abuse control: a persisted ban registry and a per-session rate limiter.

A participant is Active until it sends more than `limit` messages within any
rolling window, at which point a ban is written and it becomes Banned. There is no
unban: the ban lapses at expires_at and is re-checked on the next connect.
"""

import json
import logging
from typing import Callable, List, Optional

from pydantic import ValidationError as ModelError

from groupchat import config
from groupchat.common.errors import RateLimitExceeded
from groupchat.common.protocol import BanRecord, Identity, RateWindow
from groupchat.common.utils import now_ms

logger = logging.getLogger(__name__)

BAN_REGISTRY_KEY = "groupchat:bans"


class BanRegistry:
    """Ban records persisted under one store key as a JSON list."""

    def __init__(self, store, clock: Callable[[], int] = now_ms):
        self.store = store
        self.clock = clock

    def load(self) -> List[BanRecord]:
        raw = self.store.get(BAN_REGISTRY_KEY)
        if raw is None:
            return []
        try:
            items = json.loads(raw)
        except ValueError as e:
            logger.warning("Ban registry unreadable, treating as empty: %s", e)
            return []
        if not isinstance(items, list):
            logger.warning("Ban registry is not a list, treating as empty")
            return []

        records = []
        for item in items:
            try:
                records.append(BanRecord.model_validate(item))
            except ModelError:
                logger.warning("Skipping malformed ban record")
        return records

    def check_ban(self, identity_hash: str, device_token: str) -> Optional[BanRecord]:
        """First active record matching either identifier, or None."""
        now = self.clock()
        for record in self.load():
            if record.matches(identity_hash, device_token) and record.is_active(now):
                return record
        return None

    def issue(self, identity: Identity, reason: str, duration_seconds: int) -> BanRecord:
        """Writes a new ban. Expired records are pruned on the way."""
        now = self.clock()
        record = BanRecord(
            identity_hash=identity.identity_hash,
            device_token=identity.device_token,
            reason=reason,
            issued_at=now,
            expires_at=now + duration_seconds * 1000,
        )
        records = [r for r in self.load() if r.is_active(now)]
        records.append(record)
        data = json.dumps([r.model_dump() for r in records], separators=(",", ":"))
        self.store.set(BAN_REGISTRY_KEY, data.encode("utf-8"))
        logger.warning(
            "Issued ban for %s/%s until %d: %s",
            identity.identity_hash, identity.device_token[:8], record.expires_at, reason
        )
        return record


class AbuseController:
    """Gates sends with a sliding per-minute ceiling; exceeding it issues a ban."""

    def __init__(
        self,
        bans: BanRegistry,
        limit: int = config.RATE_LIMIT,
        window_seconds: int = config.RATE_WINDOW_SECONDS,
        ban_seconds: int = config.BAN_SECONDS,
        clock: Callable[[], int] = now_ms
    ):
        self.bans = bans
        self.limit = limit
        self.window_ms = window_seconds * 1000
        self.ban_seconds = ban_seconds
        self.clock = clock

    def check_ban(self, identity: Identity) -> Optional[BanRecord]:
        return self.bans.check_ban(identity.identity_hash, identity.device_token)

    def admit(self, window: RateWindow, identity: Identity) -> None:
        """
        Counts one outgoing message against the rolling window ending now.
        Raises RateLimitExceeded carrying the issued ban once more than
        `limit` messages fall inside it.
        """
        now = self.clock()
        window.sent = [ts for ts in window.sent if now - ts < self.window_ms]
        window.sent.append(now)

        if window.count > self.limit:
            ban = self.bans.issue(
                identity,
                reason=f"More than {self.limit} messages in {self.window_ms // 1000}s",
                duration_seconds=self.ban_seconds,
            )
            raise RateLimitExceeded(ban)

    def record_message(self, window: RateWindow, identity: Identity) -> bool:
        """admit() as a flag: False means a ban was just issued."""
        try:
            self.admit(window, identity)
        except RateLimitExceeded:
            return False
        return True
