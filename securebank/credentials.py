"""
Credential Store

Salted PBKDF2-HMAC-SHA256 password hashes. The store is the only component
that reads or writes password material.
"""

import base64
import binascii
import secrets
from dataclasses import dataclass
from typing import Optional, Tuple

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .logging_config import get_logger
from .storage import Clock, StorageInterface, StorageRecord, utc_now


logger = get_logger("securebank.credentials")

MIN_ITERATIONS = 100_000
SALT_BYTES = 32
KEY_BYTES = 64


@dataclass
class Credential(StorageRecord):
    """Stored password hash; ``id`` is the owning account id"""
    password_hash: str
    password_salt: str
    iterations: int


class CredentialStore:
    """Hashes, stores and verifies account passwords"""

    def __init__(self, storage: StorageInterface, iterations: int = MIN_ITERATIONS,
                 clock: Optional[Clock] = None):
        self.storage = storage
        self.iterations = max(iterations, MIN_ITERATIONS)
        self.clock = clock or utc_now
        self.table_name = "credentials"
        # Random stand-in that no password derives to
        self._decoy_hash = base64.b64encode(secrets.token_bytes(KEY_BYTES)).decode('ascii')
        self._decoy_salt = base64.b64encode(secrets.token_bytes(SALT_BYTES)).decode('ascii')

    def _kdf(self, salt: bytes, iterations: int) -> PBKDF2HMAC:
        return PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_BYTES,
            salt=salt,
            iterations=iterations,
        )

    def hash_password(self, plaintext: str) -> Tuple[str, str]:
        """
        Hash a password with a fresh random salt

        Returns:
            (hash, salt), both base64 encoded
        """
        salt = secrets.token_bytes(SALT_BYTES)
        key = self._kdf(salt, self.iterations).derive(plaintext.encode('utf-8'))
        return (
            base64.b64encode(key).decode('ascii'),
            base64.b64encode(salt).decode('ascii'),
        )

    def verify(self, plaintext: str, password_hash: str, salt: str,
               iterations: Optional[int] = None) -> bool:
        """
        Check a password against a stored hash in constant time

        Returns False for malformed stored values instead of raising.
        """
        if not plaintext or not password_hash or not salt:
            return False
        try:
            salt_bytes = base64.b64decode(salt, validate=True)
            expected = base64.b64decode(password_hash, validate=True)
            kdf = self._kdf(salt_bytes, iterations or self.iterations)
            kdf.verify(plaintext.encode('utf-8'), expected)
            return True
        except InvalidKey:
            return False
        except (binascii.Error, ValueError, TypeError):
            logger.warning("Stored password hash is malformed")
            return False

    def set_password(self, account_id: str, plaintext: str) -> None:
        """Hash and persist a password for an account, replacing any previous one"""
        password_hash, salt = self.hash_password(plaintext)
        self.store_hash(account_id, password_hash, salt)

    def store_hash(self, account_id: str, password_hash: str, salt: str) -> None:
        """Persist an already computed hash, e.g. inside a provisioning transaction"""
        now = self.clock()
        existing = self.storage.load(self.table_name, account_id)
        credential = Credential(
            id=account_id,
            created_at=now if existing is None else existing['created_at'],
            updated_at=now,
            password_hash=password_hash,
            password_salt=salt,
            iterations=self.iterations,
        )
        data = credential.to_dict()
        self.storage.save(self.table_name, account_id, data)

    def check(self, account_id: str, plaintext: str) -> bool:
        """Verify a password for an account; unknown accounts never verify"""
        data = self.storage.load(self.table_name, account_id)
        if not data:
            return False
        return self.verify(
            plaintext, data.get('password_hash'), data.get('password_salt'),
            data.get('iterations')
        )

    def check_unknown(self, plaintext: str) -> bool:
        """
        Spend the same key-derivation work as check() for an identifier that
        matches no account, so response time does not reveal whether the
        account exists. Never verifies.
        """
        self.verify(plaintext, self._decoy_hash, self._decoy_salt)
        return False

    def has_credentials(self, account_id: str) -> bool:
        return self.storage.exists(self.table_name, account_id)
