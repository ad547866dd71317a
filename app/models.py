"""
Data models for the Drive backend.

profiles is owned by the surrounding application; only the Google-related
columns are read and written here. google_accounts and oauth_states belong
to the Drive connect flow.
"""
from datetime import datetime, UTC

from sqlalchemy import Column, DateTime, ForeignKey, String, Text

from database import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Profile(Base):
    """
    User profile row with the Google Drive connection state.

    - google_refresh_token: legacy plaintext refresh token. Only read as a
      fallback when google_accounts has no usable encrypted token; the connect
      flow never writes it.
    - google_access_token: last short-lived access token (cache, not authoritative).
    - google_app_folder_id: id of the single app folder in the user's Drive;
      null until the first folder-scoped operation creates or finds it.
    - google_connected_at: null means "disconnected" to the UI.
    """
    __tablename__ = "profiles"

    id = Column(String(255), primary_key=True, index=True)
    email = Column(String(255), nullable=True)

    google_refresh_token = Column(Text, nullable=True)
    google_access_token = Column(Text, nullable=True)
    google_app_folder_id = Column(String(255), nullable=True)
    google_scope = Column(Text, nullable=True)
    google_connected_at = Column(DateTime(timezone=True), nullable=True)


class GoogleAccount(Base):
    """
    Google identity and Fernet-encrypted tokens for one profile.

    encrypted_* columns are written with crypto.encrypt and read with
    crypto.decrypt; a row whose token cannot be decrypted is treated as
    having no token.
    """
    __tablename__ = "google_accounts"

    id = Column(String(36), primary_key=True)
    profile_id = Column(String(255), ForeignKey("profiles.id"), unique=True, nullable=False, index=True)
    google_id = Column(String(255), nullable=True)
    google_email = Column(String(255), nullable=True)

    encrypted_refresh_token = Column(Text, nullable=True)
    encrypted_access_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    scope = Column(Text, nullable=True)
    connected_at = Column(DateTime(timezone=True), nullable=True)


class OAuthState(Base):
    """CSRF state issued by /oauth/start and consumed once by /oauth/callback."""
    __tablename__ = "oauth_states"

    state = Column(String(64), primary_key=True)
    user_id = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
