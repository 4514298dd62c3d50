"""Shared fixtures for the group chat test suite."""

import pytest

from groupchat.abuse.identity import IdentityResolver
from groupchat.common.protocol import RSAKeyPair
from groupchat.crypto import kdf, rsa_oaep
from groupchat.session import SessionCoordinator
from groupchat.storage.store import MemoryStore

# Low iteration count keeps passphrase tests fast
TEST_KDF_ITERATIONS = 1000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float = 0, ms: int = 0) -> None:
        self.now += int(seconds * 1000) + ms


@pytest.fixture(scope="session")
def key_pair() -> RSAKeyPair:
    public_pem, private_pem = rsa_oaep.generate_key_pair(2048)
    return RSAKeyPair(public_key=public_pem, private_key=private_pem)


@pytest.fixture(scope="session")
def other_key_pair() -> RSAKeyPair:
    public_pem, private_pem = rsa_oaep.generate_key_pair(2048)
    return RSAKeyPair(public_key=public_pem, private_key=private_pem)


@pytest.fixture(scope="session")
def symmetric_key():
    return kdf.derive_key("correct horse battery staple", b"test-salt", TEST_KDF_ITERATIONS)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_coordinator(store, clock):
    """Builds coordinators sharing one store, as participants sharing one log."""
    created = []

    def _make(origin: str = "10.0.0.1", **kwargs):
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("poll_interval", 0.05)
        kwargs.setdefault("kdf_iterations", TEST_KDF_ITERATIONS)
        kwargs.setdefault("resolver", IdentityResolver(store, origin_source=lambda: origin))
        coordinator = SessionCoordinator(store, **kwargs)
        created.append(coordinator)
        return coordinator

    yield _make
    for coordinator in created:
        coordinator.close()
