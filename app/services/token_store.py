"""
Token store: per-user refresh token lookup, access-token refresh, app folder id.

Refresh tokens are read from google_accounts (Fernet-encrypted, preferred)
with a fallback to the legacy plaintext column on profiles. Every request
refreshes its own access token; the stored access token is a cache only.
"""
import logging
import uuid
from datetime import datetime, timedelta, UTC

import requests
from sqlalchemy import select
from sqlalchemy.orm import Session

from crypto import InvalidToken, decrypt, encrypt
from errors import ProfileNotFound, NotConnected, RemoteOperationFailed, TokenRefreshFailed
from models import GoogleAccount, Profile
from services.drive_service import ensure_app_folder
from services.google_oauth import refresh_access_token

logger = logging.getLogger(__name__)


def get_profile(db: Session, user_id: str) -> Profile:
    profile = db.get(Profile, user_id)
    if profile is None:
        logger.warning("Profile %s not found", user_id)
        raise ProfileNotFound(user_id)
    return profile


def get_account(db: Session, user_id: str) -> GoogleAccount | None:
    return db.execute(
        select(GoogleAccount).where(GoogleAccount.profile_id == user_id)
    ).scalar_one_or_none()


def get_refresh_token(db: Session, user_id: str) -> str | None:
    """
    Refresh token for user_id, or None when the user never connected Drive.
    A token that fails to decrypt is logged and skipped, not raised.
    """
    account = get_account(db, user_id)
    if account is not None and account.encrypted_refresh_token:
        try:
            token = decrypt(account.encrypted_refresh_token)
        except InvalidToken:
            logger.error("Decryption failed for stored refresh token of user %s", user_id)
        else:
            if token:
                logger.debug("Using encrypted refresh token for user %s", user_id)
                return token

    profile = db.get(Profile, user_id)
    if profile is not None and profile.google_refresh_token:
        logger.info("Using legacy plaintext refresh token for user %s", user_id)
        return profile.google_refresh_token

    logger.warning("No refresh token found for user %s", user_id)
    return None


def resolve_access_token(db: Session, user_id: str) -> str:
    """
    Return a fresh access token for user_id.
    Raises NotConnected without a refresh token, TokenRefreshFailed when Google
    rejects it or cannot be reached.
    """
    refresh_token = get_refresh_token(db, user_id)
    if not refresh_token:
        raise NotConnected(user_id)

    try:
        data = refresh_access_token(refresh_token)
    except requests.RequestException as e:
        logger.error("Token refresh transport error for user %s: %s", user_id, e)
        raise TokenRefreshFailed(error=str(e))
    if "error" in data or not data.get("access_token"):
        logger.error("Token refresh rejected for user %s: %s", user_id, data)
        raise TokenRefreshFailed(error=data)

    access_token = data["access_token"]
    account = get_account(db, user_id)
    if account is not None:
        account.encrypted_access_token = encrypt(access_token)
        account.token_expires_at = datetime.now(UTC) + timedelta(seconds=data.get("expires_in", 3600))
        db.commit()
    return access_token


def get_app_folder_id(
    db: Session,
    user_id: str,
    access_token: str,
    create_if_missing: bool = False,
) -> str | None:
    """
    Persisted app folder id (returned without checking Drive). When absent and
    create_if_missing, find-or-create the folder and store its id; a Drive
    failure is logged and yields None.
    """
    profile = get_profile(db, user_id)
    if profile.google_app_folder_id:
        return profile.google_app_folder_id
    if not create_if_missing:
        return None

    try:
        folder_id = ensure_app_folder(access_token)
    except RemoteOperationFailed as e:
        logger.error("Could not ensure app folder for user %s: %s", user_id, e.error)
        return None
    except requests.RequestException as e:
        logger.error("Could not reach Drive to ensure app folder for user %s: %s", user_id, e)
        return None

    # Last writer wins; concurrent first calls store equivalent folders
    profile.google_app_folder_id = folder_id
    db.commit()
    return folder_id


def save_account_tokens(
    db: Session,
    profile: Profile,
    token_data: dict,
    userinfo: dict,
) -> GoogleAccount:
    """Upsert google_accounts after a successful code exchange and stamp the profile."""
    now = datetime.now(UTC)
    account = get_account(db, profile.id)
    if account is None:
        account = GoogleAccount(id=str(uuid.uuid4()), profile_id=profile.id)
        db.add(account)

    account.google_id = userinfo.get("id")
    account.google_email = userinfo.get("email")
    account.encrypted_access_token = encrypt(token_data.get("access_token"))
    # Google omits refresh_token on re-consent for an already-granted client; keep the old one
    if token_data.get("refresh_token"):
        account.encrypted_refresh_token = encrypt(token_data["refresh_token"])
    expires_in = token_data.get("expires_in")
    account.token_expires_at = now + timedelta(seconds=expires_in) if expires_in else None
    account.scope = token_data.get("scope")
    account.connected_at = now

    profile.google_connected_at = now
    profile.google_scope = token_data.get("scope")
    db.commit()
    return account
