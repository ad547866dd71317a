"""
Caller authorization and the Google Drive connect flow.

- authorize_user_access lets a request act on a userId when it carries the
  admin shared secret (x-admin-token) or a session cookie for that same user.
- /oauth/start stores a CSRF state row and returns the Google consent URL.
- /oauth/callback validates state, exchanges the code, stores encrypted
  tokens, ensures the app folder and redirects to the frontend.
- /status reports connection state; /disconnect is a soft disconnect that
  keeps the refresh token so admin tooling can still reach the folder.
"""
import logging
import secrets
from datetime import datetime, timedelta, UTC

import requests
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from jose import JWTError
from pydantic import BaseModel
from sqlalchemy.orm import Session

from config import (
    ADMIN_SECRET_TOKEN,
    ADMIN_TOKEN_HEADER,
    FRONTEND_URL,
    JWT_COOKIE_NAME,
    OAUTH_STATE_MAX_AGE,
)
from database import get_db
from errors import DriveError
from models import OAuthState, Profile
from security import decode_jwt
from services.drive_service import ensure_app_folder
from services.google_oauth import build_authorization_url, exchange_code, fetch_userinfo
from services.token_store import get_account, get_profile, save_account_tokens

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/google")


class UserBody(BaseModel):
    userId: str | None = None


def is_admin_request(request: Request) -> bool:
    """True when the admin shared-secret header matches (constant-time compare)."""
    supplied = request.headers.get(ADMIN_TOKEN_HEADER)
    if not ADMIN_SECRET_TOKEN or not supplied:
        return False
    return secrets.compare_digest(supplied, ADMIN_SECRET_TOKEN)


def get_session_user_id(request: Request) -> str | None:
    """Profile id from the session cookie, or None if missing/invalid/expired."""
    token = request.cookies.get(JWT_COOKIE_NAME)
    if not token:
        return None
    try:
        payload = decode_jwt(token)
    except JWTError:
        return None
    return payload.get("sub")


def authorize_user_access(request: Request, user_id: str | None) -> str:
    """
    Check the caller may act on user_id and return it.
    Raises 400 when user_id is missing, 401 when neither admin nor the same user.
    """
    if not user_id:
        raise HTTPException(status_code=400, detail="userId required")
    if is_admin_request(request):
        logger.info("Admin access granted for user %s", user_id)
        return user_id
    session_user = get_session_user_id(request)
    if session_user != user_id:
        logger.warning("Unauthorized access attempt for %s by %s", user_id, session_user)
        raise HTTPException(status_code=401, detail="Unauthorized access")
    return user_id


def _state_expired(created_at: datetime) -> bool:
    # SQLite hands back naive datetimes
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)
    return datetime.now(UTC) - created_at > timedelta(seconds=OAUTH_STATE_MAX_AGE)


@router.post("/oauth/start")
def oauth_start(
    body: UserBody,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Begin connecting Google Drive. Stores a random state bound to the user
    and returns the consent URL for the frontend to navigate to.
    """
    user_id = authorize_user_access(request, body.userId)
    get_profile(db, user_id)

    state = secrets.token_hex(16)
    url = build_authorization_url(state)
    db.add(OAuthState(state=state, user_id=user_id))
    db.commit()
    return {"success": True, "url": url}


@router.get("/oauth/callback")
def oauth_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    db: Session = Depends(get_db),
):
    """
    Handle the redirect from Google. Every failure logs and sends the browser
    back to the frontend root; success lands on /profile?google_connected=1.
    """
    failure = RedirectResponse(url=f"{FRONTEND_URL}/")
    if error or not code or not state:
        logger.error("OAuth callback without code/state (error=%s)", error)
        return failure

    state_row = db.get(OAuthState, state)
    if state_row is None:
        logger.error("OAuth callback with unknown state")
        return failure
    user_id = state_row.user_id
    # State is single-use whatever happens next
    expired = _state_expired(state_row.created_at)
    db.delete(state_row)
    db.commit()
    if expired:
        logger.error("OAuth state for user %s expired", user_id)
        return failure

    profile = db.get(Profile, user_id)
    if profile is None:
        logger.error("OAuth callback for missing profile %s", user_id)
        return failure

    try:
        token_data = exchange_code(code)
    except (requests.RequestException, DriveError) as e:
        logger.error("Token exchange failed for user %s: %s", user_id, e)
        return failure
    if "error" in token_data or not token_data.get("access_token"):
        logger.error("Token exchange rejected for user %s: %s", user_id, token_data)
        return failure
    logger.info("Token exchanged for user %s, scope %s", user_id, token_data.get("scope"))

    access_token = token_data["access_token"]
    try:
        userinfo = fetch_userinfo(access_token)
    except (requests.RequestException, ValueError) as e:
        logger.error("Failed to fetch Google user info for %s: %s", user_id, e)
        userinfo = {}

    save_account_tokens(db, profile, token_data, userinfo)

    if not profile.google_app_folder_id:
        try:
            profile.google_app_folder_id = ensure_app_folder(access_token)
            db.commit()
            logger.info("App folder ensured for user %s: %s", user_id, profile.google_app_folder_id)
        except DriveError as e:
            logger.error("Ensure app folder failed for user %s: %s", user_id, e.error)

    return RedirectResponse(url=f"{FRONTEND_URL}/profile?google_connected=1")


@router.get("/status")
def status(
    request: Request,
    userId: str | None = None,
    db: Session = Depends(get_db),
):
    """Connection state for the profile page and admin views."""
    user_id = authorize_user_access(request, userId)
    profile = get_profile(db, user_id)
    account = get_account(db, user_id)
    has_refresh_token = bool(
        profile.google_refresh_token or (account is not None and account.encrypted_refresh_token)
    )
    connected_at = profile.google_connected_at
    return {
        "success": True,
        "connected": connected_at is not None,
        "has_refresh_token": has_refresh_token,
        "google_scope": profile.google_scope,
        "google_connected_at": connected_at.isoformat() if connected_at else None,
        "google_app_folder_id": profile.google_app_folder_id,
    }


@router.post("/disconnect")
def disconnect(
    body: UserBody,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Soft disconnect: clear cached access tokens and the connected timestamp.
    The refresh token stays so admins keep access to the app folder.
    """
    user_id = authorize_user_access(request, body.userId)
    profile = get_profile(db, user_id)
    profile.google_access_token = None
    profile.google_connected_at = None
    account = get_account(db, user_id)
    if account is not None:
        account.encrypted_access_token = None
        account.token_expires_at = None
    db.commit()
    logger.info("User %s disconnected Google Drive", user_id)
    return {"success": True}
