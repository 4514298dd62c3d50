"""
Session coordinator: validates credentials, opens the group log, polls it,
and gates sends through abuse control.

Each connected participant is an explicit Session value owned by the
caller. The coordinator itself only holds shared collaborators (store,
identity resolver, abuse controller, worker pool).
"""

import concurrent.futures
import logging
import threading
from typing import Callable, List, Optional, Union

from pydantic import ValidationError as ModelError

from groupchat import config
from groupchat.abuse.identity import IdentityResolver
from groupchat.abuse.limiter import AbuseController, BanRegistry
from groupchat.common.errors import (
    BannedAccess, EncryptionFailure, InvalidKeyMaterial, NotConnected,
    RateLimitExceeded, ValidationError,
)
from groupchat.common.protocol import (
    BanRecord, ChatLine, Identity, LogEntry, RateWindow, RSAKeyPair, SavedCredentials,
)
from groupchat.common.utils import now_ms
from groupchat.crypto import engine, kdf, rsa_oaep
from groupchat.storage.transcript import MessageLog, open_log, validate_fields

logger = logging.getLogger(__name__)

# Session states
DISCONNECTED = "disconnected"
VALIDATING = "validating"
CONNECTED = "connected"

SAVED_CREDENTIALS_KEY = "groupchat:saved_credentials"

Credentials = Union[RSAKeyPair, str]


class Session:
    """One participant's connection to one group log."""

    def __init__(self, username: str, identity: Identity):
        self.username = username
        self.identity = identity
        self.state = DISCONNECTED
        self.keys = None
        self.group_id: Optional[str] = None
        self.log: Optional[MessageLog] = None
        self.rate_window = RateWindow()
        self.poller: Optional["Poller"] = None

    @property
    def connected(self) -> bool:
        return self.state == CONNECTED


class Poller:
    """
    Periodic reload of one log on a daemon thread.
    Calls on_update(lines) whenever the log reports a change. Ticks are
    idempotent, so a missed or doubled tick is harmless.
    """

    def __init__(
        self,
        log: MessageLog,
        on_update: Callable[[List[ChatLine]], None],
        interval: float,
        username: Optional[str] = None
    ):
        self.log = log
        self.on_update = on_update
        self.interval = interval
        self.username = username
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name="groupchat-poller")
        self._thread.daemon = True
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                if self.log.poll():
                    self.on_update(self.log.read_all(self.username))
            except Exception:
                logger.exception("Poll tick failed")

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


class SessionCoordinator:
    """
    Disconnected -> Validating -> Connected -> Disconnected.

    Key derivation and probe validation run on a worker pool and are awaited
    with `crypto_timeout`, so a slow KDF never blocks past that bound.
    """

    def __init__(
        self,
        store,
        resolver: Optional[IdentityResolver] = None,
        abuse: Optional[AbuseController] = None,
        clock: Callable[[], int] = now_ms,
        poll_interval: float = config.POLL_INTERVAL,
        crypto_timeout: float = config.CRYPTO_TIMEOUT,
        kdf_iterations: int = config.KDF_ITERATIONS,
        kdf_salt_mode: str = config.KDF_SALT_MODE,
        retention_cap: int = config.RETENTION_CAP
    ):
        self.store = store
        self.resolver = resolver or IdentityResolver(store)
        self.abuse = abuse or AbuseController(BanRegistry(store, clock=clock), clock=clock)
        self.clock = clock
        self.poll_interval = poll_interval
        self.crypto_timeout = crypto_timeout
        self.kdf_iterations = kdf_iterations
        self.kdf_salt_mode = kdf_salt_mode
        self.retention_cap = retention_cap
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="groupchat-crypto"
        )

    # --- Access ---

    def check_access(self) -> Optional[BanRecord]:
        """The active ban for this device/origin, if any. Call at startup."""
        return self.abuse.check_ban(self.resolver.resolve())

    # --- Connect ---

    def _check_fields(self, credentials: Credentials, username: str) -> None:
        errors = {}
        if not username or not username.strip():
            errors["username"] = "Username is required"
        elif len(username) > config.MAX_AUTHOR_LENGTH:
            errors["username"] = f"Username must be at most {config.MAX_AUTHOR_LENGTH} characters"

        if isinstance(credentials, RSAKeyPair):
            if not credentials.public_key.strip():
                errors["public_key"] = "Public key is required"
            if not credentials.private_key.get_secret_value().strip():
                errors["private_key"] = "Private key is required"
        elif isinstance(credentials, str):
            if not credentials:
                errors["passphrase"] = "Passphrase is required"
            else:
                try:
                    credentials.encode("utf-8")
                except UnicodeEncodeError:
                    errors["passphrase"] = "Passphrase contains characters that cannot be encoded"
        else:
            errors["credentials"] = "Provide a key pair or a passphrase"

        if errors:
            raise ValidationError(errors)

    def _salt(self) -> bytes:
        if self.kdf_salt_mode == "persisted":
            return kdf.load_or_create_salt(self.store)
        return kdf.static_salt(config.KDF_SALT)

    def _prepare_keys(self, credentials: Credentials):
        """Runs on the worker pool. Returns (material, check result)."""
        if isinstance(credentials, RSAKeyPair):
            material = credentials
        else:
            try:
                salt = self._salt()
            except ValueError as e:
                raise InvalidKeyMaterial("salt_unreadable", str(e))
            material = kdf.derive_key(credentials, salt, self.kdf_iterations)
        return material, engine.check(material)

    def connect(
        self,
        credentials: Credentials,
        username: str,
        on_update: Optional[Callable[[List[ChatLine]], None]] = None
    ) -> Session:
        """
        Validates credentials and opens the group log.

        credentials is an RSAKeyPair or a passphrase string. When on_update
        is given, a poller calls it with the full decrypted list on every
        change. Raises ValidationError, BannedAccess or InvalidKeyMaterial;
        on any of them no session is left Connected.
        """
        self._check_fields(credentials, username)
        username = username.strip()

        identity = self.resolver.resolve()
        ban = self.abuse.check_ban(identity)
        if ban is not None:
            raise BannedAccess(ban)

        session = Session(username, identity)
        session.state = VALIDATING

        try:
            future = self._executor.submit(self._prepare_keys, credentials)
            material, result = future.result(timeout=self.crypto_timeout)
        except concurrent.futures.TimeoutError:
            session.state = DISCONNECTED
            raise InvalidKeyMaterial("timeout", "Key validation timed out")
        except InvalidKeyMaterial:
            session.state = DISCONNECTED
            raise

        if result != engine.KEY_OK:
            session.state = DISCONNECTED
            messages = {
                engine.PUBLIC_KEY_INVALID: "Invalid public key",
                engine.PRIVATE_KEY_INVALID: "Invalid private key",
                engine.KEY_MISMATCH: "Invalid private key or key mismatch",
            }
            raise InvalidKeyMaterial(result, messages.get(result, result))

        session.keys = material
        session.group_id = engine.group_identity(material)
        session.log = open_log(
            self.store, session.group_id, material,
            retention_cap=self.retention_cap, clock=self.clock
        )
        session.state = CONNECTED
        logger.info("%s connected to group %s", username, session.group_id[:12])

        if on_update is not None:
            session.poller = Poller(session.log, on_update, self.poll_interval, username)
            session.poller.start()
        return session

    # --- Messaging ---

    def _require_connected(self, session: Session) -> None:
        if not session.connected:
            raise NotConnected("Session is not connected")

    def send(self, session: Session, text: str) -> LogEntry:
        """
        Rate-checks, encrypts and appends one message.

        Raises ValidationError (nothing counted), RateLimitExceeded (ban
        issued, session disconnected) or EncryptionFailure (nothing
        appended; the caller keeps its input).
        """
        self._require_connected(session)
        validate_fields(session.username, text)

        try:
            self.abuse.admit(session.rate_window, session.identity)
        except RateLimitExceeded:
            self.disconnect(session)
            raise

        future = self._executor.submit(session.log.seal, session.username, text)
        try:
            entry = future.result(timeout=self.crypto_timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise EncryptionFailure("Encryption timed out")
        return session.log.commit(entry)

    def messages(self, session: Session) -> List[ChatLine]:
        """Decrypted lines from the last load, oldest first."""
        self._require_connected(session)
        return session.log.read_all(session.username)

    def reload(self, session: Session) -> List[ChatLine]:
        """Explicit refresh: reload from the store and decrypt everything."""
        self._require_connected(session)
        session.log.reload()
        return session.log.read_all(session.username)

    def poll(self, session: Session) -> bool:
        self._require_connected(session)
        return session.log.poll()

    # --- Disconnect ---

    def disconnect(self, session: Session) -> None:
        """
        Stops polling and drops in-memory key material.
        Remembered credentials are untouched; see forget_credentials().
        """
        if session.poller is not None:
            session.poller.stop()
            session.poller = None
        if session.log is not None:
            session.log.close()
        session.keys = None
        rsa_oaep.forget_keys()
        session.state = DISCONNECTED
        logger.info("%s disconnected", session.username)

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    # --- Convenience cache (opt-in) ---

    def remember_credentials(self, credentials: Credentials, username: str) -> None:
        """
        Persists credentials in plaintext so the next start can prefill them.
        Opt-in only: anyone able to read the store can then read the group.
        """
        if isinstance(credentials, RSAKeyPair):
            saved = SavedCredentials(
                scheme="rsa",
                username=username,
                public_key=credentials.public_key,
                private_key=credentials.private_key.get_secret_value(),
                saved_at=self.clock(),
            )
        else:
            saved = SavedCredentials(
                scheme="passphrase",
                username=username,
                passphrase=credentials,
                saved_at=self.clock(),
            )
        self.store.set(SAVED_CREDENTIALS_KEY, saved.model_dump_json().encode("utf-8"))
        logger.warning("Credentials saved to the local store in plaintext")

    def load_remembered(self) -> Optional[SavedCredentials]:
        raw = self.store.get(SAVED_CREDENTIALS_KEY)
        if raw is None:
            return None
        try:
            return SavedCredentials.model_validate_json(raw)
        except (ModelError, ValueError):
            logger.warning("Saved credentials unreadable, ignoring them")
            return None

    def forget_credentials(self) -> None:
        self.store.remove(SAVED_CREDENTIALS_KEY)


def credentials_from_saved(saved: SavedCredentials) -> Credentials:
    if saved.scheme == "rsa":
        return RSAKeyPair(public_key=saved.public_key or "", private_key=saved.private_key or "")
    return saved.passphrase or ""
