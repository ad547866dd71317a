"""
Google OAuth client: refresh-token exchange and the authorization-code flow.

refresh_access_token returns the provider's JSON verbatim; callers check for
an "error" key. Only transport failures (requests.RequestException) raise.
Client id/secret are process-wide config; a missing value raises
ConfigurationError before any network call.
"""
import logging
from urllib.parse import quote, urlencode

import requests

import config
from errors import ConfigurationError

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


def _require(name: str) -> str:
    value = getattr(config, name)
    if not value:
        logger.error("Missing required setting %s", name)
        raise ConfigurationError(name)
    return value


def _post_token_endpoint(data: dict) -> dict:
    resp = requests.post(
        GOOGLE_TOKEN_URL,
        data=data,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        timeout=config.TOKEN_REQUEST_TIMEOUT,
    )
    try:
        return resp.json()
    except ValueError:
        logger.error("Token endpoint returned non-JSON body (status %s)", resp.status_code)
        return {
            "error": "invalid_response",
            "error_description": f"Token endpoint returned HTTP {resp.status_code}",
        }


def refresh_access_token(refresh_token: str) -> dict:
    """
    Exchange a refresh token for a short-lived access token.
    Returns {access_token, expires_in, scope, ...} or {error, error_description}.
    """
    return _post_token_endpoint({
        "client_id": _require("GOOGLE_CLIENT_ID"),
        "client_secret": _require("GOOGLE_CLIENT_SECRET"),
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    })


def exchange_code(code: str) -> dict:
    """Exchange an authorization code from the consent redirect for tokens."""
    return _post_token_endpoint({
        "client_id": _require("GOOGLE_CLIENT_ID"),
        "client_secret": _require("GOOGLE_CLIENT_SECRET"),
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": _require("GOOGLE_REDIRECT_URI"),
    })


def build_authorization_url(state: str) -> str:
    """
    Consent URL with offline access (so a refresh token is issued) and a
    forced consent prompt. Scopes are joined with %20, which Google requires.
    """
    params = urlencode({
        "client_id": _require("GOOGLE_CLIENT_ID"),
        "response_type": "code",
        "redirect_uri": _require("GOOGLE_REDIRECT_URI"),
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
        "include_granted_scopes": "true",
    })
    return f"{GOOGLE_AUTH_URL}?{params}&scope={quote(config.GOOGLE_OAUTH_SCOPES, safe='')}"


def fetch_userinfo(access_token: str) -> dict:
    """Google id and email for the freshly connected account; raises on HTTP errors."""
    resp = requests.get(
        GOOGLE_USERINFO_URL,
        headers={"Authorization": f"Bearer {access_token}"},
        timeout=config.TOKEN_REQUEST_TIMEOUT,
    )
    resp.raise_for_status()
    return resp.json()
