"""
Token encryption at rest.
Access/refresh tokens are stored Fernet-encrypted (AES-128-CBC + HMAC) in the credentials file.
"""

import hashlib
import logging
import os
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

LOGGER = logging.getLogger(__name__)

# Marque les valeurs chiffrées dans le fichier, pour relire un fichier écrit en clair
ENCRYPTED_PREFIX = "enc:"


class TokenEncryptor:
    """
    Chiffre / déchiffre les tokens OAuth avec une clé Fernet locale.

    La clé est générée au premier lancement (permissions 600).
    Sans ce fichier, les tokens stockés sont illisibles et le bot
    repassera par une authentification complète.
    """

    def __init__(self, key_file: str = ".alertbridge.key"):
        self.key_file = Path(key_file)
        self.key: Optional[bytes] = None
        self.fernet: Optional[Fernet] = None

        self._load_or_generate_key()

    def _load_or_generate_key(self):
        """Load existing key or generate new one"""
        if self.key_file.exists():
            with open(self.key_file, 'rb') as f:
                self.key = f.read().strip()
            self.fernet = Fernet(self.key)
            LOGGER.info(f"🔑 Encryption key loaded from {self.key_file}")
            return

        self.key = Fernet.generate_key()
        self.fernet = Fernet(self.key)

        self.key_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.key_file, 'wb') as f:
            f.write(self.key)
        os.chmod(self.key_file, 0o600)

        LOGGER.info(f"🔑 New encryption key generated and saved to {self.key_file}")
        LOGGER.warning("⚠️ BACKUP THIS KEY FILE! Without it, stored tokens cannot be decrypted!")

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a token string

        Returns:
            "enc:" + Fernet token
        """
        if not self.fernet:
            raise RuntimeError("Encryptor not initialized")
        token = self.fernet.encrypt(plaintext.encode('utf-8'))
        return ENCRYPTED_PREFIX + token.decode('ascii')

    def decrypt(self, stored: str) -> str:
        """
        Decrypt a stored token string.
        Values written before encryption was enabled are returned unchanged.

        Raises:
            InvalidToken: wrong key or tampered value
        """
        if not self.fernet:
            raise RuntimeError("Encryptor not initialized")
        if not stored.startswith(ENCRYPTED_PREFIX):
            return stored

        try:
            plaintext = self.fernet.decrypt(stored[len(ENCRYPTED_PREFIX):].encode('ascii'))
        except InvalidToken:
            LOGGER.error("❌ Decryption failed: invalid token or wrong key")
            raise
        return plaintext.decode('utf-8')

    def get_key_fingerprint(self) -> str:
        """SHA256 of the key, first 16 chars (for logs)"""
        if not self.key:
            return "NO_KEY"
        return hashlib.sha256(self.key).hexdigest()[:16]
