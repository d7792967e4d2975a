"""Credential encryption utilities"""
import base64
import json

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from mailsync.domain.value_objects.credential import Credential
from mailsync.infrastructure.config.settings import Settings

KDF_ITERATIONS = 100_000


class CredentialEncryptor:
    """Encrypt/decrypt account credentials using Fernet symmetric encryption"""

    def __init__(self, settings: Settings):
        self._fernet = Fernet(self._derive_key(settings.secret_key, settings.encryption_salt))

    @staticmethod
    def _derive_key(secret_key: str, salt: str) -> bytes:
        """
        Derive the Fernet key from the app secret using PBKDF2.

        PBKDF2-HMAC-SHA256 with 100,000 iterations turns secret_key and the
        deployment-specific salt into 32 bytes, base64url-encoded for Fernet.
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt.encode(),
            iterations=KDF_ITERATIONS,
        )
        derived_key = kdf.derive(secret_key.encode())
        return base64.urlsafe_b64encode(derived_key)

    def encrypt(self, credentials: dict) -> str:
        """
        Encrypt credentials dictionary to string.

        Returns:
            Encrypted string safe for database storage
        """
        json_str = json.dumps(credentials)
        encrypted_bytes = self._fernet.encrypt(json_str.encode())
        return encrypted_bytes.decode()

    def decrypt(self, encrypted_str: str) -> dict:
        """
        Decrypt credentials string to dictionary.

        Raises:
            ValueError: If the data is corrupted, was encrypted with another key,
                or is not a JSON object
        """
        try:
            decrypted_bytes = self._fernet.decrypt(encrypted_str.encode())
            result = json.loads(decrypted_bytes.decode())
            if not isinstance(result, dict):
                raise ValueError("Decrypted credentials must be a dictionary")
            return result
        except InvalidToken as e:
            raise ValueError(
                "Failed to decrypt credentials - invalid or corrupted data"
            ) from e
        except json.JSONDecodeError as e:
            raise ValueError("Decrypted credentials are not valid JSON") from e

    def encrypt_credential(self, credential: Credential) -> str:
        return self.encrypt(credential.to_dict())

    def decrypt_credential(self, encrypted_str: str) -> Credential:
        data = self.decrypt(encrypted_str)
        if not data.get("access_token"):
            raise ValueError("Stored credentials have no access_token")
        return Credential.from_dict(data)
