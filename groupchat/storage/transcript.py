"""Append-only encrypted group log + decrypt-filter read path."""

import json
import logging
import secrets
from typing import Callable, List, Optional, Tuple

from pydantic import ValidationError as ModelError

from groupchat import config
from groupchat.common.errors import ValidationError
from groupchat.common.protocol import ChatLine, LogEntry
from groupchat.common.utils import b64d, b64e, now_ms
from groupchat.crypto import engine

logger = logging.getLogger(__name__)

LOG_KEY_PREFIX = "groupchat:log:"


def log_key(group_id: str) -> str:
    return f"{LOG_KEY_PREFIX}{group_id}"


def validate_fields(
    author: str,
    text: str,
    max_author: int = config.MAX_AUTHOR_LENGTH,
    max_text: int = config.MAX_MESSAGE_LENGTH
) -> None:
    """Raises ValidationError listing every bad field. Never truncates."""
    errors = {}
    if not author:
        errors["author"] = "Author is required"
    elif len(author) > max_author:
        errors["author"] = f"Author must be at most {max_author} characters"
    if not text or not text.strip():
        errors["text"] = "Message is empty"
    elif len(text) > max_text:
        errors["text"] = f"Message must be at most {max_text} characters"
    if errors:
        raise ValidationError(errors)


class MessageLog:
    """
    The shared log for one GroupIdentity.

    Entries live in the store as one JSON list under `groupchat:log:<group_id>`.
    Every participant reads the whole list and keeps only what its key opens.

    append() is read-modify-write without any version check: two writers
    appending at the same moment can lose one entry.
    """

    def __init__(
        self,
        store,
        group_id: str,
        material,
        retention_cap: int = config.RETENTION_CAP,
        clock: Callable[[], int] = now_ms
    ):
        if retention_cap < 1:
            raise ValueError(f"retention_cap must be at least 1, got {retention_cap}")
        self.store = store
        self.group_id = group_id
        self.key = log_key(group_id)
        self.retention_cap = retention_cap
        self.clock = clock
        self._material = material
        self.entries: List[LogEntry] = []
        self._observed: Tuple[int, Optional[str]] = (0, None)

    # --- Loading ---

    def _load(self) -> List[LogEntry]:
        """Reads the persisted list. Missing or malformed data reads as empty."""
        raw = self.store.get(self.key)
        if raw is None:
            return []
        try:
            items = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning("Message log %s is not valid JSON, starting empty: %s", self.group_id[:12], e)
            return []
        if not isinstance(items, list):
            logger.warning("Message log %s is not a list, starting empty", self.group_id[:12])
            return []

        entries = []
        for item in items:
            try:
                entries.append(LogEntry.model_validate(item))
            except ModelError:
                logger.warning("Skipping malformed entry in log %s", self.group_id[:12])
        return entries

    def _save(self, entries: List[LogEntry]) -> None:
        data = json.dumps([e.model_dump() for e in entries], separators=(",", ":"))
        self.store.set(self.key, data.encode("utf-8"))

    @staticmethod
    def _fingerprint(entries: List[LogEntry]) -> Tuple[int, Optional[str]]:
        return len(entries), (entries[-1].id if entries else None)

    def open(self) -> "MessageLog":
        """Loads the log. Never fails: bad data becomes an empty log."""
        self.entries = self._load()
        self._observed = self._fingerprint(self.entries)
        logger.info("Opened log %s with %d entries", self.group_id[:12], len(self.entries))
        return self

    def reload(self) -> None:
        self.entries = self._load()

    # --- Writing ---

    def seal(self, author: str, text: str) -> LogEntry:
        """
        Validates and encrypts a new entry without storing it.
        Raises ValidationError before any encryption, EncryptionFailure if
        the key cannot encrypt.
        """
        validate_fields(author, text)
        ciphertext = engine.encrypt(self._material, text)

        ts = self.clock()
        return LogEntry(
            id=f"{ts}-{secrets.token_hex(4)}",
            author=author,
            ts=ts,
            ct=b64e(ciphertext),
        )

    def commit(self, entry: LogEntry) -> LogEntry:
        """Persists a sealed entry, dropping the oldest past the retention cap."""
        # Re-read right before writing to keep the lost-update window small
        entries = self._load()
        entries.append(entry)
        if len(entries) > self.retention_cap:
            entries = sorted(entries, key=lambda e: e.ts)[len(entries) - self.retention_cap:]
        self._save(entries)
        self.entries = entries
        logger.info("Appended entry %s to log %s", entry.id, self.group_id[:12])
        return entry

    def append(self, author: str, text: str) -> LogEntry:
        """seal() then commit(). On any error the log is untouched."""
        return self.commit(self.seal(author, text))

    # --- Reading ---

    def read_all(self, username: Optional[str] = None) -> List[ChatLine]:
        """
        Decrypts the loaded entries in timestamp order (ties keep insertion
        order) and silently omits anything this key cannot open.
        """
        lines = []
        for entry in sorted(self.entries, key=lambda e: e.ts):
            try:
                ciphertext = b64d(entry.ct)
            except ValueError:
                continue
            text = engine.decrypt(self._material, ciphertext)
            if text is None:
                continue
            lines.append(ChatLine(
                author=entry.author,
                ts=entry.ts,
                text=text,
                is_self=(username is not None and entry.author == username),
            ))
        return lines

    def poll(self) -> bool:
        """
        Reloads from the store and reports whether the log changed since the
        last open() or poll(). A coarse signal: re-read everything on True.
        """
        self.entries = self._load()
        current = self._fingerprint(self.entries)
        changed = current != self._observed
        self._observed = current
        return changed

    def close(self) -> None:
        """Drops the key material and cached entries."""
        self._material = None
        self.entries = []


def open_log(store, group_id: str, material, **kwargs) -> MessageLog:
    return MessageLog(store, group_id, material, **kwargs).open()
