"""
Upwork token broker configuration. Values come from the environment.
Client credentials and the database URL are required; everything else has a default.
"""
import os
from collections.abc import Mapping

REQUIRED_SETTINGS = ("UPWORK_CLIENT_ID", "UPWORK_CLIENT_SECRET", "DATABASE_URL")


def normalize_database_url(url: str) -> str:
    """Map postgres:// and postgresql:// URLs (as hosting platforms hand them out) to the psycopg driver."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def missing_required_settings(env: Mapping[str, str] | None = None) -> list[str]:
    """Names of required variables that are unset or blank."""
    env = os.environ if env is None else env
    return [name for name in REQUIRED_SETTINGS if not (env.get(name) or "").strip()]


# Our client credentials, registered with Upwork
CLIENT_ID = os.environ.get("UPWORK_CLIENT_ID", "")
CLIENT_SECRET = os.environ.get("UPWORK_CLIENT_SECRET", "")

# Callback URL; must match the redirect URI registered with Upwork exactly
REDIRECT_URI = os.environ.get("UPWORK_REDIRECT_URI", "https://api.kingofautomation.com/upwork/callback")

# Upwork consent screen and token endpoint
AUTHORIZE_URL = os.environ.get(
    "UPWORK_AUTHORIZE_URL", "https://www.upwork.com/ab/account-security/oauth2/authorize"
)
TOKEN_URL = os.environ.get("UPWORK_TOKEN_URL", "https://www.upwork.com/api/v3/oauth2/token")

# Timeout (seconds) for each call to the token endpoint
HTTP_TIMEOUT = float(os.environ.get("UPWORK_HTTP_TIMEOUT", "10"))

# Include refresh_token in GET /upwork/token (off: internal callers only need the access token)
EXPOSE_REFRESH_TOKEN = _flag(os.environ.get("UPWORK_EXPOSE_REFRESH_TOKEN"))

# Persistent store; SQLite works for development, PostgreSQL in production
DATABASE_URL = normalize_database_url(os.environ.get("DATABASE_URL", ""))

# libpq sslmode for PostgreSQL (e.g. "require" on hosted databases); empty = driver default
DATABASE_SSLMODE = os.environ.get("DATABASE_SSLMODE", "").strip()

HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "3000"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
