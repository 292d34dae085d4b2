"""Encrypted append-only log of service tokens.

The flow hands every issued ServiceToken to a metadata store as a
"service token added" event. ServiceTokenLog keeps those events in a
single Fernet-encrypted file whose key is held by the OS keyring.
Access to the file is serialized with flock on a sidecar lock file,
so the log is POSIX-only.
"""

import asyncio
import base64
import fcntl
import hashlib
import json
import logging
import os
import platform
import stat
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Protocol

import keyring
from cryptography.fernet import Fernet, InvalidToken

from .errors import CollaboratorPersistError
from .tokens import ServiceToken

logger = logging.getLogger(__name__)


@contextmanager
def _locked(path: Path, operation: int) -> Iterator[None]:
    """Hold an flock (LOCK_SH or LOCK_EX) on the ".lock" file next to path."""
    with open(path.parent / f"{path.name}.lock", "a") as handle:
        fcntl.flock(handle, operation)
        try:
            yield
        finally:
            fcntl.flock(handle, fcntl.LOCK_UN)


KEYRING_SERVICE = "services-auth"
KEYRING_USERNAME = "token-log-encryption-key"

DEFAULT_STORE_DIR = Path.home() / ".cache" / "services-auth"

LOG_FILE = "service_tokens.log.json"

EVENT_SERVICE_TOKEN_ADDED = "service_token_added"


class MetadataStore(Protocol):
    """Append-only metadata log accepting service token events."""

    async def append_service_token_added(self, token: ServiceToken) -> str:
        """Append a "service token added" event and return its entry reference."""
        ...

    def list_service_tokens(self) -> list[ServiceToken]:
        """Return the tokens added so far."""
        ...


class TokenDecryptionError(CollaboratorPersistError):
    """Failed to decrypt the token log.

    The encryption key has changed (keyring cleared, different machine)
    and the existing log cannot be read.
    """

    pass


def _machine_key(store_dir: Path) -> bytes:
    """Fernet key bound to this host, the current uid and the log directory."""
    machine_id = Path("/etc/machine-id")
    host = machine_id.read_text().strip() if machine_id.is_file() else platform.node()
    material = f"{host}:{os.getuid()}:{store_dir.resolve()}"
    return base64.urlsafe_b64encode(hashlib.sha256(material.encode("utf-8")).digest())


class ServiceTokenLog:
    """Encrypted, append-only log of service token events.

    The log lives in ~/.cache/services-auth/ by default. The directory is
    0700 and the file 0600. Events are only ever appended.
    """

    def __init__(self, store_dir: Path | None = None):
        self.store_dir = store_dir or DEFAULT_STORE_DIR
        self._cipher: Fernet | None = None
        self._using_keyring = False

        self._init_storage()
        self._init_encryption()

    @property
    def log_path(self) -> Path:
        return self.store_dir / LOG_FILE

    def _init_storage(self) -> None:
        self.store_dir.mkdir(parents=True, exist_ok=True)

        try:
            self.store_dir.chmod(stat.S_IRWXU)
        except OSError as e:
            logger.warning(f"Could not restrict {self.store_dir} to its owner: {e}")

    def _init_encryption(self) -> None:
        """Load the log key from the keyring, creating it on first use."""
        try:
            key = keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
            if key is None:
                key = Fernet.generate_key().decode("ascii")
                keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, key)
                logger.debug("Stored a new token log key in the keyring")
        except Exception as e:
            # keyring backends raise anything from KeyringError to DBus errors
            logger.warning(
                f"Keyring unavailable ({type(e).__name__}: {e}), "
                f"encrypting the token log with a machine-bound key instead"
            )
            self._cipher = Fernet(_machine_key(self.store_dir))
            self._using_keyring = False
            return

        self._cipher = Fernet(key.encode("ascii"))
        self._using_keyring = True

    def _read_events(self) -> list[dict[str, Any]]:
        """Read and decrypt all events, under a shared lock.

        Raises:
            TokenDecryptionError: If the log cannot be decrypted or parsed
        """
        if not self.log_path.exists():
            return []

        with _locked(self.log_path, fcntl.LOCK_SH):
            return self._read_events_unlocked()

    def _read_events_unlocked(self) -> list[dict[str, Any]]:
        if not self.log_path.exists():
            return []

        assert self._cipher is not None
        try:
            plaintext = self._cipher.decrypt(self.log_path.read_bytes())
        except InvalidToken as e:
            raise TokenDecryptionError(
                f"Cannot decrypt {LOG_FILE}. The encryption key may have changed."
            ) from e

        try:
            data = json.loads(plaintext)
        except json.JSONDecodeError as e:
            raise TokenDecryptionError(f"Token log {LOG_FILE} is corrupted.") from e

        events: list[dict[str, Any]] = data.get("events", [])
        return events

    def _write_events_unlocked(self, events: list[dict[str, Any]]) -> None:
        assert self._cipher is not None
        encrypted = self._cipher.encrypt(json.dumps({"events": events}, indent=2).encode("utf-8"))

        self.log_path.write_bytes(encrypted)
        try:
            self.log_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0600
        except OSError as e:
            logger.warning(f"Could not set file permissions: {e}")

    def append_event(self, event_type: str, token: ServiceToken) -> str:
        """Append an event under an exclusive lock.

        Returns:
            The entry reference "<seq>:<token_id>"

        Raises:
            CollaboratorPersistError: If the log cannot be read or written
        """
        try:
            with _locked(self.log_path, fcntl.LOCK_EX):
                events = self._read_events_unlocked()
                seq = len(events)
                events.append({"type": event_type, "seq": seq, "token": token.to_dict()})
                self._write_events_unlocked(events)
        except OSError as e:
            raise CollaboratorPersistError(f"Could not append to token log: {e}") from e

        entry_ref = f"{seq}:{token.token_id}"
        logger.debug(f"Appended {event_type} event {entry_ref}")
        return entry_ref

    async def append_service_token_added(self, token: ServiceToken) -> str:
        """Append a "service token added" event."""
        return await asyncio.to_thread(self.append_event, EVENT_SERVICE_TOKEN_ADDED, token)

    def list_service_tokens(self) -> list[ServiceToken]:
        """Replay the log into the list of added tokens.

        A token added more than once is listed once, at its first position,
        with its latest content.
        """
        tokens: dict[str, ServiceToken] = {}
        for event in self._read_events():
            if event.get("type") != EVENT_SERVICE_TOKEN_ADDED:
                continue
            try:
                token = ServiceToken.from_dict(event["token"])
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping invalid token log entry {event.get('seq')}: {e}")
                continue
            tokens[token.token_id] = token
        return list(tokens.values())

    def is_using_keyring(self) -> bool:
        """Check if the OS keyring holds the encryption key."""
        return self._using_keyring
