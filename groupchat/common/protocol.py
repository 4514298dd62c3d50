"""Pydantic models: key material, log entry, chat line, ban record, identity, rate window, saved credentials."""

from pydantic import BaseModel, Field, SecretBytes, SecretStr
from typing import List, Literal, Optional, Union

# --- 1.1 Key Material ---

class RSAKeyPair(BaseModel):
    """
    Shared asymmetric group key pair.
    Both halves are PEM text; the private half is kept out of reprs and logs.
    """
    public_key: str
    private_key: SecretStr

class SymmetricKey(BaseModel):
    """
    AES-256 key derived from the group passphrase.
    """
    key: SecretBytes
    salt: str         # Base64-encoded salt used for the derivation
    iterations: int

KeyMaterial = Union[RSAKeyPair, SymmetricKey]

# --- 1.2 Message Log ---

class LogEntry(BaseModel):
    """
    One persisted, encrypted chat message. Never mutated after append.
    """
    id: str
    author: str
    ts: int           # Creation time (Unix milliseconds)
    ct: str           # Base64-encoded ciphertext

class ChatLine(BaseModel):
    """
    A decrypted entry, as handed to the presentation layer.
    """
    author: str
    ts: int
    text: str
    is_self: bool = False

# --- 1.3 Abuse Control ---

class Identity(BaseModel):
    """
    Per-participant moderation identity. Not a security boundary.
    """
    identity_hash: str
    device_token: str

class BanRecord(BaseModel):
    """
    A time-boxed ban. Active while now < expires_at.
    """
    identity_hash: str
    device_token: str
    reason: str
    issued_at: int    # Unix milliseconds
    expires_at: int   # Unix milliseconds

    def is_active(self, now: int) -> bool:
        return now < self.expires_at

    def matches(self, identity_hash: str, device_token: str) -> bool:
        return self.identity_hash == identity_hash or self.device_token == device_token

class RateWindow(BaseModel):
    """
    In-memory per-session send history for the sliding window.
    """
    sent: List[int] = Field(default_factory=list)  # Send times still inside the window (Unix ms)

    @property
    def window_start(self) -> int:
        return self.sent[0] if self.sent else 0

    @property
    def count(self) -> int:
        return len(self.sent)

# --- 1.4 Convenience Cache ---

class SavedCredentials(BaseModel):
    """
    Credentials remembered across restarts when the user opts in.
    Stored in plaintext: anyone who can read the store can read the group.
    """
    scheme: Literal["rsa", "passphrase"]
    username: str
    public_key: Optional[str] = None
    private_key: Optional[str] = None
    passphrase: Optional[str] = None
    saved_at: int = Field(default=0)
