"""
Durable credential storage for the LearnMap client.

This module persists the access and refresh credentials under two keys,
using the system keyring or an encrypted file as fallback.
"""

import os
import json
import logging
from typing import Optional, Dict
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

from learnmap_shared.exceptions import CredentialStorageError, ErrorCode
from learnmap_shared.interfaces import ICredentialBackend
from learnmap_shared.models import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY

logger = logging.getLogger(__name__)

CREDENTIAL_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY)


def default_storage_dir() -> Path:
    """Get directory for file-based credential storage."""
    xdg_config = os.environ.get('XDG_CONFIG_HOME')
    if xdg_config:
        return Path(xdg_config) / 'learnmap'
    return Path.home() / '.config' / 'learnmap'


def keyring_available(service_name: str) -> bool:
    """Check if system keyring is usable by round-tripping a probe value."""
    try:
        import keyring
        test_key = f"{service_name}_probe"
        keyring.set_password(service_name, test_key, "probe")
        result = keyring.get_password(service_name, test_key)
        keyring.delete_password(service_name, test_key)
        return result == "probe"
    except Exception as e:
        logger.debug(f"Keyring not available: {e}")
        return False


class KeyringCredentialStorage(ICredentialBackend):
    """
    Credential storage in the system keyring.

    Each credential is a separate keyring entry under ``service_name``.
    """

    def __init__(self, service_name: str = "learnmap-client"):
        self.service_name = service_name

    def read(self) -> Dict[str, Optional[str]]:
        import keyring

        data = {}
        for key in CREDENTIAL_KEYS:
            try:
                data[key] = keyring.get_password(self.service_name, key)
            except Exception as e:
                # A half-read pair must not pass for an access-only session
                raise CredentialStorageError(
                    f"Failed to read {key} from keyring: {e}",
                    error_code=ErrorCode.STORAGE_UNAVAILABLE,
                    cause=e
                ) from e
        return data

    def write(self, access_token: str, refresh_token: str) -> None:
        import keyring

        try:
            keyring.set_password(self.service_name, ACCESS_TOKEN_KEY, access_token)
        except Exception as e:
            raise CredentialStorageError(f"Failed to store access credential in keyring: {e}", cause=e)

        try:
            keyring.set_password(self.service_name, REFRESH_TOKEN_KEY, refresh_token)
        except Exception as e:
            # Never leave a new access credential next to a stale refresh credential
            self._delete_entry(ACCESS_TOKEN_KEY)
            raise CredentialStorageError(f"Failed to store refresh credential in keyring: {e}", cause=e)

    def delete(self) -> None:
        failures = [key for key in CREDENTIAL_KEYS if not self._delete_entry(key)]
        if failures:
            raise CredentialStorageError(
                f"Failed to remove {', '.join(failures)} from keyring",
                error_code=ErrorCode.STORAGE_DELETE_FAILED
            )

    def _delete_entry(self, key: str) -> bool:
        import keyring
        from keyring.errors import PasswordDeleteError

        try:
            keyring.delete_password(self.service_name, key)
            return True
        except PasswordDeleteError:
            # Entry was never there
            return True
        except Exception as e:
            logger.error(f"Failed to delete {key} from keyring: {e}")
            return False


class EncryptedFileCredentialStorage(ICredentialBackend):
    """
    Credential storage in a Fernet-encrypted JSON file.

    Both keys live in one file, replaced atomically on every write. The
    encryption key is kept in the keyring when available, else in a
    0600 key file next to the credential file.
    """

    def __init__(
        self,
        storage_path: Optional[Path] = None,
        service_name: str = "learnmap-client",
        use_keyring_for_key: bool = False
    ):
        self.storage_path = Path(storage_path) if storage_path else default_storage_dir() / 'credentials.enc'
        self.key_path = self.storage_path.with_suffix('.key')
        self.service_name = service_name
        self.use_keyring_for_key = use_keyring_for_key
        self._encryption_key: Optional[bytes] = None

    def _get_encryption_key(self) -> bytes:
        """Get or create the encryption key for file storage."""
        if self._encryption_key:
            return self._encryption_key

        if self.use_keyring_for_key:
            try:
                import keyring
                stored_key = keyring.get_password(self.service_name, "encryption_key")
                if stored_key:
                    self._encryption_key = stored_key.encode()
                    return self._encryption_key
            except Exception as e:
                logger.warning(f"Failed to get encryption key from keyring: {e}")

        # Also the fallback when the keyring refused to store the key
        if self.key_path.exists():
            self._encryption_key = self.key_path.read_bytes().strip()
            return self._encryption_key

        key = Fernet.generate_key()

        stored = False
        if self.use_keyring_for_key:
            try:
                import keyring
                keyring.set_password(self.service_name, "encryption_key", key.decode())
                stored = True
            except Exception as e:
                logger.warning(f"Failed to store encryption key in keyring: {e}")

        if not stored:
            self.key_path.parent.mkdir(parents=True, exist_ok=True)
            self._write_private(self.key_path, key)

        self._encryption_key = key
        return key

    @staticmethod
    def _write_private(path: Path, data: bytes) -> None:
        """Write bytes to a temporary file with restrictive permissions, then move it into place."""
        tmp_path = path.with_name(path.name + '.tmp')
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)

    def read(self) -> Dict[str, Optional[str]]:
        empty = {key: None for key in CREDENTIAL_KEYS}
        if not self.storage_path.exists():
            return empty

        try:
            fernet = Fernet(self._get_encryption_key())
            data = json.loads(fernet.decrypt(self.storage_path.read_bytes()).decode())
        except (InvalidToken, ValueError, OSError) as e:
            logger.warning(f"Failed to read credential file {self.storage_path}: {e}")
            return empty

        return {key: data.get(key) for key in CREDENTIAL_KEYS}

    def write(self, access_token: str, refresh_token: str) -> None:
        payload = json.dumps({
            ACCESS_TOKEN_KEY: access_token,
            REFRESH_TOKEN_KEY: refresh_token
        })

        try:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            fernet = Fernet(self._get_encryption_key())
            self._write_private(self.storage_path, fernet.encrypt(payload.encode()))
        except (OSError, ValueError) as e:
            raise CredentialStorageError(f"Failed to write credential file: {e}", cause=e)

    def delete(self) -> None:
        try:
            self.storage_path.unlink(missing_ok=True)
        except OSError as e:
            raise CredentialStorageError(
                f"Failed to remove credential file: {e}",
                error_code=ErrorCode.STORAGE_DELETE_FAILED,
                cause=e
            )


class MemoryCredentialStorage(ICredentialBackend):
    """Process-local storage for ephemeral sessions and tests."""

    def __init__(self, initial: Optional[Dict[str, Optional[str]]] = None):
        self._data: Dict[str, Optional[str]] = dict(initial or {})

    def read(self) -> Dict[str, Optional[str]]:
        return {key: self._data.get(key) for key in CREDENTIAL_KEYS}

    def write(self, access_token: str, refresh_token: str) -> None:
        self._data = {ACCESS_TOKEN_KEY: access_token, REFRESH_TOKEN_KEY: refresh_token}

    def delete(self) -> None:
        self._data = {}


def create_credential_storage(
    kind: str = "auto",
    service_name: str = "learnmap-client",
    token_file: Optional[str] = None
) -> ICredentialBackend:
    """
    Create the durable storage backend for credentials.

    Args:
        kind: One of auto, keyring, file or memory
        service_name: Keyring service name
        token_file: Path of the encrypted credential file

    Returns:
        Storage backend instance
    """
    if kind == "memory":
        return MemoryCredentialStorage()

    has_keyring = keyring_available(service_name)

    if kind == "keyring" or (kind == "auto" and has_keyring):
        if not has_keyring:
            raise CredentialStorageError(
                "System keyring requested but not available",
                error_code=ErrorCode.STORAGE_UNAVAILABLE
            )
        logger.info("Credential storage initialized (keyring)")
        return KeyringCredentialStorage(service_name)

    if kind in ("file", "auto"):
        logger.info("Credential storage initialized (encrypted file)")
        return EncryptedFileCredentialStorage(
            storage_path=Path(token_file).expanduser() if token_file else None,
            service_name=service_name,
            use_keyring_for_key=has_keyring
        )

    raise CredentialStorageError(
        f"Unknown credential storage kind: {kind}",
        error_code=ErrorCode.STORAGE_UNAVAILABLE
    )
