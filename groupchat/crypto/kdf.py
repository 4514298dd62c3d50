"""PBKDF2-HMAC-SHA256 passphrase derivation + salt handling."""

import logging
import os
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from groupchat.common.protocol import SymmetricKey
from groupchat.common.utils import b64d, b64e

logger = logging.getLogger(__name__)

SALT_KEY = "groupchat:kdf_salt"
SALT_SIZE = 16
DERIVED_KEY_SIZE = 32

def derive_key(passphrase: str, salt: bytes, iterations: int) -> SymmetricKey:
    """
    Derives the 32-byte group key from a passphrase.
    This is deliberately slow; run it off the coordinating thread.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=DERIVED_KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    key = kdf.derive(passphrase.encode('utf-8'))
    return SymmetricKey(key=key, salt=b64e(salt), iterations=iterations)

def static_salt(value: str) -> bytes:
    """The fixed salt shared by every participant."""
    return value.encode('utf-8')

def load_or_create_salt(store) -> bytes:
    """
    Returns the persisted random salt, creating it only if none exists.
    An existing salt is never replaced: a new salt makes every stored
    message unreadable.
    """
    raw = store.get(SALT_KEY)
    if raw is not None:
        try:
            salt = b64d(raw.decode('ascii'))
            if len(salt) == SALT_SIZE:
                return salt
        except (UnicodeDecodeError, ValueError):
            pass
        # Corrupt salt: refuse to overwrite it silently
        raise ValueError("Persisted KDF salt is unreadable; remove it explicitly to reset")

    salt = os.urandom(SALT_SIZE)
    store.set(SALT_KEY, b64e(salt).encode('ascii'))
    logger.info("Created new persisted KDF salt")
    return salt
