"""AES-256-GCM helpers, random nonce prepended (use library)."""

from cryptography.hazmat.primitives.ciphers.aead import AESGCM
import os

# AES-256 uses 32-byte keys
AES_KEY_SIZE = 32
# GCM standard nonce length
NONCE_SIZE = 12

def generate_key() -> bytes:
    """Returns a fresh random 32-byte AES key."""
    return AESGCM.generate_key(bit_length=AES_KEY_SIZE * 8)

def encrypt(key: bytes, plaintext: bytes) -> bytes:
    """
    Encrypts plaintext using AES-256-GCM.

    key: 32-byte AES key
    plaintext: The data to encrypt
    Returns: nonce || ciphertext || tag

    A new nonce is drawn for every call; never reuse one with the same key.
    """
    if len(key) != AES_KEY_SIZE:
        raise ValueError("Key must be 32 bytes (AES-256)")

    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
    return nonce + ciphertext

def decrypt(key: bytes, blob: bytes) -> bytes:
    """
    Decrypts a blob produced by encrypt().

    Raises ValueError for a bad key or a truncated blob, and
    cryptography.exceptions.InvalidTag for a wrong key or tampered data.
    """
    if len(key) != AES_KEY_SIZE:
        raise ValueError("Key must be 32 bytes (AES-256)")
    if len(blob) < NONCE_SIZE + 16:
        raise ValueError("Ciphertext too short")

    nonce, ciphertext = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
    return AESGCM(key).decrypt(nonce, ciphertext, None)
