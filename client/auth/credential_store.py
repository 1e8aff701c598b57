"""
Secure credential storage for the GPT Toolkit Client.

This module persists long-lived secrets (the refresh token) using the system
keyring, or an encrypted file when no keyring backend is usable.
"""

import os
import json
import base64
import logging
import tempfile
import threading
from pathlib import Path
from typing import Optional, Dict

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from cryptography.fernet import Fernet, InvalidToken

from shared.exceptions import CredentialStoreError, ErrorCode
from shared.interfaces import ICredentialStore, CredentialKey

logger = logging.getLogger(__name__)


def _decode_secret(data: bytes) -> str:
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError as e:
        raise CredentialStoreError(
            "Credential value is not valid UTF-8",
            error_code=ErrorCode.STORAGE_ENCODING_FAILED,
            cause=e
        )


class KeyringCredentialStore(ICredentialStore):
    """Stores each credential as a keyring password under (service, account)."""

    def save(self, key: CredentialKey, data: bytes) -> None:
        secret = _decode_secret(data)
        try:
            keyring.set_password(key.service, key.account, secret)
        except KeyringError as e:
            logger.error(f"Failed to save credential {key.service}/{key.account}: {e}")
            raise CredentialStoreError(f"Failed to save credential: {e}", cause=e)

    def read(self, key: CredentialKey) -> Optional[bytes]:
        try:
            secret = keyring.get_password(key.service, key.account)
        except Exception as e:
            # Backends surface D-Bus and OS errors outside KeyringError
            logger.warning(f"Failed to read credential {key.service}/{key.account}: {e}")
            return None
        return secret.encode('utf-8') if secret is not None else None

    def delete(self, key: CredentialKey) -> None:
        try:
            keyring.delete_password(key.service, key.account)
        except PasswordDeleteError:
            logger.debug(f"No credential stored for {key.service}/{key.account}")
        except KeyringError as e:
            logger.error(f"Failed to delete credential {key.service}/{key.account}: {e}")
            raise CredentialStoreError(
                f"Failed to delete credential: {e}",
                error_code=ErrorCode.STORAGE_DELETE_FAILED,
                cause=e
            )


class EncryptedFileCredentialStore(ICredentialStore):
    """
    Stores credentials in a Fernet-encrypted JSON file.

    The encryption key lives in a sibling ``.key`` file. Both files are
    created with 0600 permissions and replaced atomically on every write.
    """

    def __init__(self, storage_path: Path):
        self.storage_path = Path(storage_path)
        self.key_path = self.storage_path.with_suffix('.key')
        self._lock = threading.Lock()
        self._fernet: Optional[Fernet] = None

    def _atomic_write(self, path: Path, payload: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(payload)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _get_fernet(self) -> Fernet:
        """Get or create the file encryption key."""
        if self._fernet:
            return self._fernet

        if self.key_path.exists():
            key = self.key_path.read_bytes().strip()
        else:
            key = Fernet.generate_key()
            self._atomic_write(self.key_path, key)
            logger.info(f"Created credential encryption key: {self.key_path}")

        self._fernet = Fernet(key)
        return self._fernet

    def _load_all(self) -> Dict[str, Dict[str, str]]:
        """Decrypt the whole store. Raises on unreadable data."""
        if not self.storage_path.exists():
            return {}
        encrypted_data = self.storage_path.read_bytes()
        decrypted_data = self._get_fernet().decrypt(encrypted_data)
        return json.loads(decrypted_data.decode('utf-8'))

    def _write_all(self, entries: Dict[str, Dict[str, str]]) -> None:
        if not entries:
            if self.storage_path.exists():
                self.storage_path.unlink()
            return
        encrypted_data = self._get_fernet().encrypt(json.dumps(entries).encode('utf-8'))
        self._atomic_write(self.storage_path, encrypted_data)

    def _load_for_update(self) -> Dict[str, Dict[str, str]]:
        try:
            return self._load_all()
        except (InvalidToken, ValueError, OSError) as e:
            logger.warning(f"Discarding unreadable credential file {self.storage_path}: {e}")
            return {}

    def save(self, key: CredentialKey, data: bytes) -> None:
        with self._lock:
            try:
                entries = self._load_for_update()
                entries.setdefault(key.service, {})[key.account] = base64.b64encode(data).decode('ascii')
                self._write_all(entries)
            except OSError as e:
                logger.error(f"Failed to save credential to {self.storage_path}: {e}")
                raise CredentialStoreError(f"Failed to save credential: {e}", cause=e)

    def read(self, key: CredentialKey) -> Optional[bytes]:
        with self._lock:
            try:
                value = self._load_all().get(key.service, {}).get(key.account)
                return base64.b64decode(value) if value is not None else None
            except (InvalidToken, ValueError, OSError, AttributeError) as e:
                logger.warning(f"Failed to read credential file {self.storage_path}: {e}")
                return None

    def delete(self, key: CredentialKey) -> None:
        with self._lock:
            try:
                entries = self._load_for_update()
                accounts = entries.get(key.service, {})
                if key.account not in accounts:
                    return
                del accounts[key.account]
                if not accounts:
                    del entries[key.service]
                self._write_all(entries)
            except OSError as e:
                logger.error(f"Failed to delete credential from {self.storage_path}: {e}")
                raise CredentialStoreError(
                    f"Failed to delete credential: {e}",
                    error_code=ErrorCode.STORAGE_DELETE_FAILED,
                    cause=e
                )


class SecureCredentialStore(ICredentialStore):
    """
    Secure storage for the refresh token.

    Uses the system keyring when available, falls back to encrypted file storage.
    """

    def __init__(self, storage_path: Path, service_name: str = "GPTToolkitMacApp", use_keyring: bool = True):
        self.service_name = service_name
        self.keyring_available = use_keyring and self._check_keyring_availability()

        if self.keyring_available:
            self._backend: ICredentialStore = KeyringCredentialStore()
        else:
            self._backend = EncryptedFileCredentialStore(storage_path)

        logger.info(f"Credential store initialized (keyring: {self.keyring_available})")

    def _check_keyring_availability(self) -> bool:
        """Check if system keyring is usable with a set/get/delete probe."""
        probe_account = f"{self.service_name}_probe"
        try:
            keyring.set_password(self.service_name, probe_account, "probe")
            result = keyring.get_password(self.service_name, probe_account)
            keyring.delete_password(self.service_name, probe_account)
            return result == "probe"
        except Exception as e:
            logger.debug(f"Keyring not available: {e}")
            return False

    @property
    def backend(self) -> ICredentialStore:
        return self._backend

    def save(self, key: CredentialKey, data: bytes) -> None:
        self._backend.save(key, data)

    def read(self, key: CredentialKey) -> Optional[bytes]:
        return self._backend.read(key)

    def delete(self, key: CredentialKey) -> None:
        self._backend.delete(key)
