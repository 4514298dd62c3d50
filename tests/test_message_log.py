"""Tests for the append-only group log and its decrypt-filter read path."""

import json

import pytest

from groupchat.common.errors import EncryptionFailure, ValidationError
from groupchat.common.protocol import LogEntry, RSAKeyPair
from groupchat.common.utils import b64e
from groupchat.crypto import engine
from groupchat.storage.transcript import MessageLog, log_key, open_log


@pytest.fixture
def group_id(key_pair):
    return engine.group_identity(key_pair)


@pytest.fixture
def log(store, group_id, key_pair, clock):
    return open_log(store, group_id, key_pair, clock=clock)


def stored_entries(store, group_id):
    return json.loads(store.get(log_key(group_id)))


class TestOpen:

    def test_missing_log_is_empty(self, log):
        assert log.entries == []
        assert log.read_all() == []

    @pytest.mark.parametrize("raw", [b"{not json", b'{"a": 1}', b"\xff\xfe", b"null"])
    def test_malformed_log_is_empty(self, store, group_id, key_pair, raw):
        store.set(log_key(group_id), raw)
        assert open_log(store, group_id, key_pair).entries == []

    def test_malformed_entries_are_skipped(self, store, group_id, key_pair):
        good = LogEntry(id="1", author="a", ts=1, ct=b64e(engine.encrypt(key_pair, "ok")))
        store.set(log_key(group_id), json.dumps([{"bogus": True}, good.model_dump()]).encode())
        log = open_log(store, group_id, key_pair)
        assert [line.text for line in log.read_all()] == ["ok"]


class TestAppend:

    def test_append_persists_encrypted_entry(self, log, store, group_id):
        entry = log.append("alice", "hello")
        persisted = stored_entries(store, group_id)
        assert len(persisted) == 1
        assert persisted[0]["id"] == entry.id
        assert persisted[0]["author"] == "alice"
        assert "hello" not in persisted[0]["ct"]

    def test_author_too_long(self, log, store, group_id):
        with pytest.raises(ValidationError) as exc:
            log.append("a" * 21, "hello")
        assert "author" in exc.value.errors
        assert store.get(log_key(group_id)) is None

    def test_message_too_long_is_rejected_not_truncated(self, log):
        with pytest.raises(ValidationError) as exc:
            log.append("alice", "x" * 1001)
        assert "text" in exc.value.errors
        assert log.entries == []

    def test_bounds_are_inclusive(self, log):
        log.append("a" * 20, "x" * 1000)
        assert log.read_all()[0].text == "x" * 1000

    def test_empty_message_rejected(self, log):
        with pytest.raises(ValidationError):
            log.append("alice", "   ")

    def test_encryption_failure_leaves_log_untouched(self, store, group_id, key_pair):
        broken = RSAKeyPair(public_key="garbage", private_key=key_pair.private_key.get_secret_value())
        log = open_log(store, group_id, broken)
        with pytest.raises(EncryptionFailure):
            log.append("alice", "hello")
        assert store.get(log_key(group_id)) is None

    def test_retention_cap_drops_oldest(self, store, group_id, key_pair, clock):
        log = open_log(store, group_id, key_pair, retention_cap=3, clock=clock)
        for i in range(5):
            clock.advance(ms=1)
            log.append("alice", f"m{i}")
        assert [line.text for line in log.read_all()] == ["m2", "m3", "m4"]
        assert len(stored_entries(store, group_id)) == 3

    def test_retention_cap_of_one(self, store, group_id, key_pair, clock):
        log = open_log(store, group_id, key_pair, retention_cap=1, clock=clock)
        for i in range(3):
            clock.advance(ms=1)
            log.append("alice", f"m{i}")
        assert [line.text for line in log.read_all()] == ["m2"]

    @pytest.mark.parametrize("cap", [0, -1])
    def test_retention_cap_below_one_rejected(self, store, group_id, key_pair, cap):
        with pytest.raises(ValueError):
            MessageLog(store, group_id, key_pair, retention_cap=cap)

    def test_append_rereads_store(self, store, group_id, key_pair, clock):
        first = open_log(store, group_id, key_pair, clock=clock)
        second = open_log(store, group_id, key_pair, clock=clock)
        first.append("alice", "one")
        second.append("bob", "two")
        assert len(stored_entries(store, group_id)) == 2


class TestReadAll:

    def test_sorted_by_timestamp(self, store, group_id, key_pair):
        entries = [
            LogEntry(id=str(ts), author="a", ts=ts, ct=b64e(engine.encrypt(key_pair, f"t{ts}")))
            for ts in (30, 10, 20)
        ]
        store.set(log_key(group_id), json.dumps([e.model_dump() for e in entries]).encode())
        log = open_log(store, group_id, key_pair)
        assert [line.text for line in log.read_all()] == ["t10", "t20", "t30"]

    def test_ties_keep_insertion_order(self, log):
        for text in ("first", "second", "third"):
            log.append("alice", text)
        assert [line.text for line in log.read_all()] == ["first", "second", "third"]

    def test_foreign_entries_are_silently_omitted(self, store, group_id, key_pair, other_key_pair, clock):
        log = open_log(store, group_id, key_pair, clock=clock)
        log.append("alice", "mine")
        # Someone with another key writing into the same partition
        intruder = MessageLog(store, group_id, other_key_pair, clock=clock).open()
        intruder.append("mallory", "noise")
        log.reload()
        assert len(log.entries) == 2
        assert [(line.author, line.text) for line in log.read_all()] == [("alice", "mine")]

    def test_bad_base64_is_omitted(self, store, group_id, key_pair):
        store.set(log_key(group_id), json.dumps([{"id": "1", "author": "a", "ts": 1, "ct": "%%%"}]).encode())
        assert open_log(store, group_id, key_pair).read_all() == []

    def test_read_all_is_idempotent(self, log):
        log.append("alice", "hello")
        log.append("bob", "hi")
        assert log.read_all() == log.read_all()

    def test_is_self_marking(self, log):
        log.append("alice", "hello")
        log.append("bob", "hi")
        lines = log.read_all(username="alice")
        assert [line.is_self for line in lines] == [True, False]

    def test_closed_log_reads_nothing(self, log):
        log.append("alice", "hello")
        log.close()
        assert log.read_all() == []


class TestPoll:

    def test_no_change(self, log):
        assert log.poll() is False

    def test_change_from_another_writer(self, store, group_id, key_pair, clock):
        reader = open_log(store, group_id, key_pair, clock=clock)
        writer = open_log(store, group_id, key_pair, clock=clock)
        writer.append("bob", "hi")
        assert reader.poll() is True
        assert reader.poll() is False
        assert [line.text for line in reader.read_all()] == ["hi"]

    def test_change_detected_at_retention_cap(self, store, group_id, key_pair, clock):
        reader = open_log(store, group_id, key_pair, retention_cap=2, clock=clock)
        writer = open_log(store, group_id, key_pair, retention_cap=2, clock=clock)
        writer.append("bob", "1")
        writer.append("bob", "2")
        assert reader.poll() is True
        clock.advance(ms=1)
        writer.append("bob", "3")
        assert reader.poll() is True
        assert [line.text for line in reader.read_all()] == ["2", "3"]
