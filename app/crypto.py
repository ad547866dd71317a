"""
Encryption of Google OAuth tokens at rest using Fernet (symmetric, from cryptography).

Tokens are encrypted before being stored in google_accounts and decrypted only
when a Drive call needs them. decrypt raises cryptography.fernet.InvalidToken
for values written with another key or tampered with; callers decide whether
that is fatal.
"""
from cryptography.fernet import Fernet, InvalidToken

from config import TOKEN_ENCRYPTION_KEY

fernet = Fernet(TOKEN_ENCRYPTION_KEY.encode())

__all__ = ["InvalidToken", "decrypt", "encrypt"]


def encrypt(value: str | None) -> str | None:
    """Encrypt a token for storage. None passes through (e.g. no refresh_token granted)."""
    if value is None:
        return None
    return fernet.encrypt(value.encode()).decode()


def decrypt(value: str | None) -> str | None:
    """Decrypt a stored token. Returns None if value is None or empty."""
    if not value:
        return None
    return fernet.decrypt(value.encode()).decode()
