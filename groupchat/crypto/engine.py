"""
Crypto engine: probe validation, message encryption and decryption.

Two schemes share one contract:

- RSAKeyPair: every message gets a fresh AES-256-GCM content key, which is
  wrapped with RSA-OAEP(SHA-256) to the group public key. Ciphertext layout
  is wrapped_key || nonce || aes_ciphertext.
- SymmetricKey: AES-256-GCM under the passphrase-derived key, ciphertext
  layout nonce || aes_ciphertext.

decrypt() never raises. Any failure means "not for us".
"""

import logging
from cryptography.exceptions import InvalidTag

from groupchat.common.errors import EncryptionFailure, UndecryptableEntry
from groupchat.common.protocol import RSAKeyPair, SymmetricKey
from groupchat.common.utils import sha256_hex
from groupchat.crypto import aes, rsa_oaep

logger = logging.getLogger(__name__)

PROBE = "test"

# Results of check()
KEY_OK = "ok"
PUBLIC_KEY_INVALID = "public_key_invalid"
PRIVATE_KEY_INVALID = "private_key_invalid"
KEY_MISMATCH = "key_mismatch"

_GROUP_ID_CONTEXT = b"groupchat-group-id:"


def check(material) -> str:
    """
    Runs the probe round trip and reports which side failed.
    Returns one of KEY_OK, PUBLIC_KEY_INVALID, PRIVATE_KEY_INVALID, KEY_MISMATCH.
    """
    if isinstance(material, RSAKeyPair):
        try:
            rsa_oaep.load_public_key(material.public_key)
        except Exception as e:
            logger.warning("Public key rejected: %s", type(e).__name__)
            return PUBLIC_KEY_INVALID
        try:
            rsa_oaep.load_private_key(material.private_key.get_secret_value())
        except Exception as e:
            logger.warning("Private key rejected: %s", type(e).__name__)
            return PRIVATE_KEY_INVALID
    elif not isinstance(material, SymmetricKey):
        return PUBLIC_KEY_INVALID

    try:
        ciphertext = encrypt(material, PROBE)
    except EncryptionFailure:
        return PUBLIC_KEY_INVALID

    if decrypt(material, ciphertext) != PROBE:
        logger.warning("Probe round trip failed: key mismatch")
        return KEY_MISMATCH
    return KEY_OK


def validate(material) -> bool:
    """True iff encrypting the probe and decrypting it gives the probe back."""
    try:
        return check(material) == KEY_OK
    except Exception:
        logger.exception("Unexpected error during key validation")
        return False


def encrypt(material, plaintext: str) -> bytes:
    """
    Encrypts text for the group.
    Raises EncryptionFailure on malformed key material or unencodable text.
    """
    try:
        data = plaintext.encode('utf-8')
    except (UnicodeEncodeError, AttributeError) as e:
        raise EncryptionFailure(f"Cannot encode message: {e}") from e

    try:
        if isinstance(material, RSAKeyPair):
            public_key = rsa_oaep.load_public_key(material.public_key)
            content_key = aes.generate_key()
            return rsa_oaep.wrap(public_key, content_key) + aes.encrypt(content_key, data)
        if isinstance(material, SymmetricKey):
            return aes.encrypt(material.key.get_secret_value(), data)
    except Exception as e:
        raise EncryptionFailure(f"Encryption failed: {type(e).__name__}") from e

    raise EncryptionFailure(f"Unsupported key material: {type(material).__name__}")


def _open(material, ciphertext: bytes) -> bytes:
    """Raises UndecryptableEntry on any failure."""
    try:
        if isinstance(material, RSAKeyPair):
            private_key = rsa_oaep.load_private_key(material.private_key.get_secret_value())
            wrapped_len = private_key.key_size // 8
            if len(ciphertext) <= wrapped_len:
                raise ValueError("Ciphertext too short")
            content_key = rsa_oaep.unwrap(private_key, ciphertext[:wrapped_len])
            return aes.decrypt(content_key, ciphertext[wrapped_len:])
        if isinstance(material, SymmetricKey):
            return aes.decrypt(material.key.get_secret_value(), ciphertext)
    except (ValueError, TypeError, InvalidTag) as e:
        raise UndecryptableEntry(type(e).__name__) from e
    raise UndecryptableEntry(f"Unsupported key material: {type(material).__name__}")


def decrypt(material, ciphertext: bytes):
    """
    Returns the plaintext string, or None if this key cannot open the
    ciphertext (wrong key, corrupted or truncated input).
    """
    try:
        return _open(material, ciphertext).decode('utf-8')
    except (UndecryptableEntry, UnicodeDecodeError) as e:
        logger.debug("Undecryptable entry: %s", e)
        return None
    except Exception as e:
        # Backend errors must not escape a read path
        logger.debug("Undecryptable entry (unexpected %s)", type(e).__name__)
        return None


def group_identity(material) -> str:
    """
    Deterministic 64-hex-char identifier for the group owning this key material.
    For RSA it is the SHA-256 of the DER public key; for a passphrase key it
    is a SHA-256 over a context prefix and the derived key.
    """
    if isinstance(material, RSAKeyPair):
        public_key = rsa_oaep.load_public_key(material.public_key)
        return sha256_hex(rsa_oaep.public_key_der(public_key))
    if isinstance(material, SymmetricKey):
        return sha256_hex(_GROUP_ID_CONTEXT + material.key.get_secret_value())
    raise TypeError(f"Unsupported key material: {type(material).__name__}")
