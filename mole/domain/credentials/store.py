"""
Credential store - named client keypairs plus their authorization state
"""
import base64
import hashlib
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from ...core.constants import KEY_SUFFIX, KEY_DIR_MODE, PRIVATE_KEY_MODE, PUBLIC_KEY_MODE
from ...core.exceptions import CredentialExistsError, CredentialNotFoundError
from ...core.logging import get_logger
from ...core.settings import Settings
from ...core.telemetry import get_telemetry
from ...core.utils import validate_name
from .authorized_keys import AuthorizationList
from .models import ClientCredential, marker_for

logger = get_logger(__name__)
telemetry = get_telemetry()


def fingerprint_of(public_line: str) -> Optional[str]:
    """SHA256 fingerprint of an OpenSSH public key line, as ssh-keygen -l prints it"""
    parts = public_line.split()
    if len(parts) < 2:
        return None
    try:
        blob = base64.b64decode(parts[1], validate=True)
    except ValueError:
        return None
    digest = base64.b64encode(hashlib.sha256(blob).digest()).decode().rstrip("=")
    return f"SHA256:{digest}"


def generate_key_pair(comment: str, passphrase: Optional[str] = None) -> tuple[bytes, str]:
    """
    Generate an Ed25519 keypair.

    Returns:
        (OpenSSH private key bytes, public key line including comment)
    """
    key = Ed25519PrivateKey.generate()
    encryption = (
        serialization.BestAvailableEncryption(passphrase.encode("utf-8"))
        if passphrase
        else serialization.NoEncryption()
    )
    private = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.OpenSSH,
        encryption,
    )
    public = key.public_key().public_bytes(
        serialization.Encoding.OpenSSH,
        serialization.PublicFormat.OpenSSH,
    ).decode("ascii")
    return private, f"{public} {comment}"


class CredentialListing:
    """Restartable view over the credentials in a key directory"""

    def __init__(self, store: "CredentialStore"):
        self._store = store

    def __iter__(self) -> Iterator[ClientCredential]:
        key_dir = self._store.key_dir
        if not key_dir.is_dir():
            return
        for entry in key_dir.iterdir():
            if not entry.name.endswith(KEY_SUFFIX) or not entry.is_file():
                continue
            name = entry.name[: -len(KEY_SUFFIX)]
            if not self._store.public_key_path(name).exists():
                logger.debug(f"Skipping {entry}: public key missing")
                continue
            yield self._store._load(name)


class CredentialStore:
    """
    On-disk collection of client keypairs.

    Layout in key_dir:
    - {name}_ed25519 - private key (0600)
    - {name}_ed25519.pub - public key (0644)
    - {name}_ed25519.revoked - present while the credential is revoked
    """

    def __init__(self, settings: Settings, authorization: Optional[AuthorizationList] = None):
        self.key_dir = settings.key_dir
        self.authorization = authorization or AuthorizationList(settings.authorized_keys)

    # --------------------
    # Paths
    # --------------------
    def private_key_path(self, name: str) -> Path:
        return self.key_dir / f"{name}{KEY_SUFFIX}"

    def public_key_path(self, name: str) -> Path:
        return self.key_dir / f"{name}{KEY_SUFFIX}.pub"

    def _revoked_marker(self, name: str) -> Path:
        return self.key_dir / f"{name}{KEY_SUFFIX}.revoked"

    def _ensure_dir(self) -> None:
        self.key_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self.key_dir, KEY_DIR_MODE)

    # --------------------
    # Queries
    # --------------------
    def exists(self, name: str) -> bool:
        return self.private_key_path(name).exists()

    def get(self, name: str) -> ClientCredential:
        """
        Load a credential.

        Raises:
            CredentialNotFoundError: If no keypair is stored under name
        """
        validate_name(name, "client name")
        if not self.exists(name) or not self.public_key_path(name).exists():
            raise CredentialNotFoundError(
                f"Client credential '{name}' not found in {self.key_dir}. "
                f"Issue it first with 'mole keys issue {name}'"
            )
        return self._load(name)

    def _load(self, name: str) -> ClientCredential:
        private_path = self.private_key_path(name)
        public_path = self.public_key_path(name)
        public_line = public_path.read_text(encoding="utf-8").strip()
        return ClientCredential(
            name=name,
            private_key_path=private_path,
            public_key_path=public_path,
            created_at=datetime.fromtimestamp(private_path.stat().st_mtime),
            revoked=self._revoked_marker(name).exists(),
            fingerprint=fingerprint_of(public_line),
        )

    def list(self) -> CredentialListing:
        """Credentials in directory enumeration order"""
        return CredentialListing(self)

    def is_authorized(self, name: str) -> bool:
        credential = self.get(name)
        return self.authorization.contains(credential.public_key())

    # --------------------
    # Lifecycle
    # --------------------
    def issue(self, name: str, passphrase: Optional[str] = None) -> ClientCredential:
        """
        Generate and persist a keypair for a new client.

        The private key file is created with O_EXCL so that of two concurrent
        issuers of the same name exactly one succeeds.

        Raises:
            CredentialExistsError: If the name is already issued
        """
        validate_name(name, "client name")
        self._ensure_dir()

        private_path = self.private_key_path(name)
        public_path = self.public_key_path(name)
        private, public_line = generate_key_pair(marker_for(name, datetime.now()), passphrase)

        try:
            fd = os.open(private_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, PRIVATE_KEY_MODE)
        except FileExistsError:
            raise CredentialExistsError(
                f"Client credential '{name}' already exists at {private_path}"
            ) from None

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(private)
            os.chmod(private_path, PRIVATE_KEY_MODE)
            public_path.write_text(public_line + "\n", encoding="utf-8")
            os.chmod(public_path, PUBLIC_KEY_MODE)
        except BaseException:
            private_path.unlink(missing_ok=True)
            public_path.unlink(missing_ok=True)
            raise

        logger.info(f"Issued credential '{name}' at {private_path}")
        telemetry.record_event("credential.issued", {"name": name})
        return self._load(name)

    def authorize(self, name: str) -> bool:
        """
        Add a client's public key to the authorization list.

        Returns:
            True if added, False if the exact key was already present

        Raises:
            CredentialNotFoundError: If the credential does not exist
        """
        credential = self.get(name)
        added = self.authorization.add(credential.public_key())
        self._revoked_marker(name).unlink(missing_ok=True)

        if added:
            logger.info(f"Authorized '{name}' in {self.authorization.path}")
            telemetry.record_event("credential.authorized", {"name": name})
        else:
            logger.info(f"'{name}' already in {self.authorization.path}")
        return added

    def revoke(self, name: str) -> int:
        """
        Remove every authorization entry tagged with the client's marker.

        The keypair is kept; use delete() to destroy it.

        Returns:
            Number of entries removed (0 is a valid outcome)
        """
        validate_name(name, "client name")
        removed = self.authorization.remove_tagged(name)
        if self.exists(name):
            self._revoked_marker(name).touch()

        logger.info(f"Revoked '{name}': {removed} authorization entr{'y' if removed == 1 else 'ies'} removed")
        telemetry.record_event("credential.revoked", {"name": name, "removed": removed})
        return removed

    def delete(self, name: str) -> None:
        """Revoke, then remove the keypair files; absent files are not an error"""
        self.revoke(name)

        found = False
        for path in (self.private_key_path(name), self.public_key_path(name), self._revoked_marker(name)):
            if path.exists():
                path.unlink()
                found = True

        if found:
            logger.info(f"Deleted credential '{name}'")
            telemetry.record_event("credential.deleted", {"name": name})
        else:
            logger.info(f"Credential '{name}' not found, nothing to delete")

    def purge(self) -> bool:
        """Revoke every stored credential and remove the key directory"""
        if not self.key_dir.exists():
            return False

        for credential in list(self.list()):
            self.revoke(credential.name)
        shutil.rmtree(self.key_dir)
        logger.info(f"Removed key directory {self.key_dir}")
        return True
