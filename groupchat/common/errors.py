"""Error taxonomy shared by every layer."""


class GroupChatError(Exception):
    """Base class for all group chat failures."""
    pass


class ValidationError(GroupChatError):
    """
    Missing or oversized user input.
    `errors` maps the offending field name to a human-readable message.
    """

    def __init__(self, errors: dict):
        self.errors = dict(errors)
        super().__init__("; ".join(f"{k}: {v}" for k, v in self.errors.items()))


class InvalidKeyMaterial(GroupChatError):
    """
    The probe round trip failed.

    reason is one of: public_key_invalid, private_key_invalid,
    key_mismatch, timeout, salt_unreadable.
    """

    def __init__(self, reason: str, message: str = ""):
        self.reason = reason
        super().__init__(message or reason)


class EncryptionFailure(GroupChatError):
    """Malformed key material or unencodable plaintext at send time."""
    pass


class UndecryptableEntry(GroupChatError):
    """A single ciphertext could not be opened. Never leaves the crypto engine."""
    pass


class NotConnected(GroupChatError):
    """Operation requires a Connected session."""
    pass


class RateLimitExceeded(GroupChatError):
    """Too many messages in one window; a ban has been issued."""

    def __init__(self, ban):
        self.ban = ban
        super().__init__(f"Rate limit exceeded, access denied until {ban.expires_at}")


class BannedAccess(GroupChatError):
    """An active ban matches this participant."""

    def __init__(self, ban):
        self.ban = ban
        super().__init__(f"Access denied ({ban.reason}) until {ban.expires_at}")
