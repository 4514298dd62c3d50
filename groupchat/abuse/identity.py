"""Per-participant moderation identity: origin hash + persisted device token."""

import logging
import secrets
import zlib
from typing import Callable

from groupchat import config
from groupchat.common.protocol import Identity

logger = logging.getLogger(__name__)

DEVICE_TOKEN_KEY = "groupchat:device_token"


def origin_hash(origin: str) -> str:
    """
    CRC-32 of the origin string as 8 hex chars.
    Fast and spoofable; a moderation signal, not a security boundary.
    """
    return format(zlib.crc32(origin.encode("utf-8")) & 0xFFFFFFFF, "08x")


class IdentityResolver:
    """
    Resolves {identity_hash, device_token} independently of any chat key.

    origin_source supplies the network-origin string; the default is the
    configured GROUPCHAT_ORIGIN. Real deployments plug in the request origin.
    """

    def __init__(
        self,
        store,
        origin_source: Callable[[], str] = lambda: config.ORIGIN,
        token_factory: Callable[[], str] = lambda: secrets.token_hex(16)
    ):
        self.store = store
        self.origin_source = origin_source
        self.token_factory = token_factory

    def device_token(self) -> str:
        """Returns the persisted device token, creating it once."""
        raw = self.store.get(DEVICE_TOKEN_KEY)
        if raw is not None:
            try:
                token = raw.decode("ascii").strip()
                if token:
                    return token
            except UnicodeDecodeError:
                pass
            logger.warning("Device token unreadable, issuing a new one")

        token = self.token_factory()
        self.store.set(DEVICE_TOKEN_KEY, token.encode("ascii"))
        return token

    def resolve(self) -> Identity:
        return Identity(
            identity_hash=origin_hash(self.origin_source()),
            device_token=self.device_token(),
        )
