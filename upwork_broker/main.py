"""
Upwork OAuth broker: HTTP surface.
GET /upwork/auth redirects to Upwork; /upwork/callback exchanges the code; internal
systems read the stored token from GET /upwork/token and renew it with POST /upwork/refresh.
"""
import html
import logging
import sys
from contextlib import asynccontextmanager
from functools import lru_cache

from fastapi import Depends, FastAPI
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from upwork_broker import config
from upwork_broker.database import dispose_engine, get_session_factory, init_db
from upwork_broker.lifecycle import (
    AuthorizationDeniedError,
    AuthorizationFailedError,
    MissingCodeError,
    RefreshFailedError,
    TokenLifecycle,
    TokenState,
)
from upwork_broker.logging_config import configure_logging
from upwork_broker.provider import UpworkTokenClient
from upwork_broker.store import CredentialStore, NoCredentialError, StorageError

logger = logging.getLogger(__name__)


@lru_cache()
def get_token_client() -> UpworkTokenClient:
    return UpworkTokenClient(
        client_id=config.CLIENT_ID,
        client_secret=config.CLIENT_SECRET,
        redirect_uri=config.REDIRECT_URI,
        token_url=config.TOKEN_URL,
        authorize_url=config.AUTHORIZE_URL,
        timeout=config.HTTP_TIMEOUT,
    )


def get_lifecycle() -> TokenLifecycle:
    """Dependency: lifecycle bound to the shared session factory and token client."""
    return TokenLifecycle(CredentialStore(get_session_factory()), get_token_client())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Refuse to start without credentials or a working database; dispose the pool on shutdown."""
    missing = config.missing_required_settings()
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")
    init_db()
    logger.info("Callback URL: %s", config.REDIRECT_URI)
    yield
    dispose_engine()
    logger.info("Database connections closed")


app = FastAPI(title="Upwork OAuth Broker", version="1.0.0", lifespan=lifespan)


def _page(title: str, message: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
<body>
  <h1>{html.escape(title)}</h1>
  <p>{html.escape(message)}</p>
</body>
</html>""",
        status_code=status_code,
    )


@app.get("/")
def index():
    """List the available endpoints."""
    return {
        "status": "Upwork OAuth server running",
        "endpoints": {
            "GET /upwork/health": "Liveness probe",
            "GET /upwork/auth": "Start authorization (redirects to Upwork)",
            "GET /upwork/callback": "OAuth redirect target",
            "POST /upwork/refresh": "Refresh the stored token",
            "GET /upwork/token": "Current token and expiry",
        },
    }


@app.get("/upwork/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "upwork_broker"}


@app.get("/upwork/auth")
def auth(lifecycle: TokenLifecycle = Depends(get_lifecycle)):
    return RedirectResponse(url=lifecycle.begin_authorization(), status_code=302)


@app.get("/upwork/callback", response_class=HTMLResponse)
def callback(
    code: str | None = None,
    error: str | None = None,
    lifecycle: TokenLifecycle = Depends(get_lifecycle),
):
    """Upwork redirects here with ?code=... or ?error=...; exchange the code and store the tokens."""
    try:
        lifecycle.complete_authorization(code, error)
    except AuthorizationDeniedError as e:
        return _page("Authorization failed", f"Authorization failed: {e}", status_code=400)
    except MissingCodeError:
        return _page("Authorization failed", "Missing authorization code", status_code=400)
    except AuthorizationFailedError:
        return _page("Authorization failed", "Authorization failed.", status_code=500)
    except StorageError:
        logger.exception("Could not store tokens after authorization")
        return _page("Authorization failed", "Authorization failed.", status_code=500)
    return _page("Authorization successful", "Authorization successful. You can close this window.")


@app.post("/upwork/refresh")
def refresh(lifecycle: TokenLifecycle = Depends(get_lifecycle)):
    try:
        result = lifecycle.refresh()
    except NoCredentialError:
        return JSONResponse({"error": "No refresh token available"}, status_code=400)
    except RefreshFailedError:
        return JSONResponse({"error": "Failed to refresh token"}, status_code=500)
    except StorageError:
        logger.exception("Token refresh failed in storage")
        return JSONResponse({"error": "Failed to refresh token"}, status_code=500)
    return {"success": True, "expires_in": result.expires_in}


@app.get("/upwork/token")
def token(lifecycle: TokenLifecycle = Depends(get_lifecycle)):
    """Current access token and whether it has expired. Expiry is checked, not acted on."""
    try:
        status = lifecycle.current_status()
    except StorageError:
        logger.exception("Error fetching tokens")
        return JSONResponse({"error": "Failed to retrieve tokens"}, status_code=500)

    if status.state is TokenState.UNAUTHORIZED:
        return JSONResponse({"error": "No tokens available. Please authorize first."}, status_code=404)

    try:
        expires_at_iso = status.expires_at_iso
    except (ValueError, OverflowError):
        # Row written with an expiry beyond the datetime range
        logger.error("Stored expires_at %s cannot be rendered as a date", status.expires_at)
        return JSONResponse({"error": "Failed to retrieve tokens"}, status_code=500)

    body = {
        "has_token": True,
        "is_expired": status.expired,
        "state": status.state.value,
        "expires_at": expires_at_iso,
        "access_token": status.access_token,
    }
    if config.EXPOSE_REFRESH_TOKEN:
        body["refresh_token"] = status.refresh_token
    return body


def main() -> None:
    """Console entry point: check configuration, then serve with uvicorn."""
    configure_logging(config.LOG_LEVEL)
    missing = config.missing_required_settings()
    if missing:
        logger.error("Missing required environment variables: %s", ", ".join(missing))
        sys.exit(1)

    import uvicorn
    uvicorn.run("upwork_broker.main:app", host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
