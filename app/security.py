"""
Verification of the session cookie JWT.

The surrounding application signs sessions with the shared JWT_SECRET; this
service never issues them and only needs the "sub" claim (profile id).
Algorithm: HS256.
"""
from jose import jwt

from config import JWT_SECRET, JWT_ALGORITHM


def decode_jwt(token: str) -> dict:
    """Decode and verify JWT; raises JWTError if invalid or expired."""
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
