# mcp_bridge/utils/security.py
import logging
from typing import Optional
from base64 import urlsafe_b64decode
from binascii import Error as Base64Error

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


def generate_session_encryption_key() -> str:
    """Returns a new Fernet key suitable for SESSION_ENCRYPTION_KEY."""
    return Fernet.generate_key().decode('utf-8')


def mask_token(token: Optional[str], visible: int = 6) -> str:
    """Renders a credential for log output without revealing it."""
    if not token:
        return "<none>"
    if len(token) <= visible:
        return "*" * len(token)
    return f"{token[:visible]}..."


class SessionTokenCipher:
    """
    Encrypts backend session tokens before they leave the process.

    With no key configured the cipher is a pass-through, which is what the
    in-memory store uses. A configured key that is not a valid Fernet key is
    rejected at construction so a misconfigured deployment fails on startup.
    """

    def __init__(self, encryption_key: Optional[str]):
        self._fernet: Optional[Fernet] = None
        if not encryption_key:
            logger.info("No session encryption key configured. Tokens will be stored as-is.")
            return

        key_bytes = encryption_key.encode('utf-8')
        try:
            decoded = urlsafe_b64decode(key_bytes)
        except (Base64Error, ValueError) as e:
            raise ValueError(f"SESSION_ENCRYPTION_KEY is not valid base64: {e}") from e
        if len(decoded) != 32:
            raise ValueError(
                f"SESSION_ENCRYPTION_KEY must decode to 32 bytes, got {len(decoded)}."
            )
        self._fernet = Fernet(key_bytes)
        logger.info("SessionTokenCipher initialized with encryption enabled.")

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, token: str) -> str:
        if not self._fernet:
            return token
        return self._fernet.encrypt(token.encode('utf-8')).decode('utf-8')

    def decrypt(self, stored_value: str) -> Optional[str]:
        """
        Reverses encrypt().

        Returns None when the value was written under a different key or is
        corrupted; the caller treats that as a missing session.
        """
        if not self._fernet:
            return stored_value
        try:
            return self._fernet.decrypt(stored_value.encode('utf-8')).decode('utf-8')
        except InvalidToken:
            logger.error(
                "Decryption of a stored session token failed. "
                "The encryption key may have changed or the data is corrupted."
            )
            return None
