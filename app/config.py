"""
Application configuration from environment variables.

Load with python-dotenv in main so env vars are available before imports.
Session and encryption secrets are validated at module load; missing values
raise RuntimeError. Google OAuth client settings are checked by the operations
that need them (see services.google_oauth) so a half-configured deployment can
still serve status and health endpoints.
"""
import os

# --- Required (raise if missing) ---
JWT_SECRET = os.getenv("JWT_SECRET")
TOKEN_ENCRYPTION_KEY = os.getenv("TOKEN_ENCRYPTION_KEY")

for name, val in [
    ("JWT_SECRET", JWT_SECRET),
    ("TOKEN_ENCRYPTION_KEY", TOKEN_ENCRYPTION_KEY),
]:
    if not val or not str(val).strip():
        raise RuntimeError(f"Required env var {name} is missing or empty")

JWT_ALGORITHM = "HS256"

# --- Google OAuth client (checked per operation) ---
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "").strip()
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "").strip()
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI", "").strip()
GOOGLE_OAUTH_SCOPES = (
    "https://www.googleapis.com/auth/drive "
    "https://www.googleapis.com/auth/drive.file"
)

# Shared secret for admin tooling (x-admin-token header); admin access is off when empty
ADMIN_SECRET_TOKEN = os.getenv("ADMIN_SECRET_TOKEN", "").strip()
ADMIN_TOKEN_HEADER = "x-admin-token"

# --- Optional with defaults ---
# Frontend URL for post-connect redirect
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")

# Session cookie issued by the surrounding app; only its "sub" claim is read here
JWT_COOKIE_NAME = os.getenv("JWT_COOKIE_NAME", "session")

# OAuth CSRF: state rows older than this are rejected by the callback
OAUTH_STATE_MAX_AGE = 600  # 10 minutes

# Name of the single application-owned folder in each user's Drive
APP_FOLDER_NAME = os.getenv("APP_FOLDER_NAME", "GEOINFORMATIC").strip() or "GEOINFORMATIC"

# Request timeouts (connect, read) in seconds
TOKEN_REQUEST_TIMEOUT = (5, 30)
DRIVE_REQUEST_TIMEOUT = (5, 60)  # connect 5s, read 60s
DRIVE_TRANSFER_TIMEOUT = (5, 300)  # uploads and streamed downloads

# Database URL (SQLite default; use Postgres URL in production)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./app.db")

# Skip create_all at startup (set in production when the schema is managed elsewhere)
SKIP_DB_INIT = os.getenv("SKIP_DB_INIT", "false").lower() in ("1", "true", "yes")

# Environment: development | production (affects .env loading)
ENV = os.getenv("ENV", "development").lower()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
