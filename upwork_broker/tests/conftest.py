"""
Pytest configuration for upwork_broker. In-memory SQLite and dummy client credentials,
set before the package reads its configuration.
"""
import os

# In-memory SQLite; database.py uses StaticPool so all connections share the same DB
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["UPWORK_CLIENT_ID"] = "test-client-id"
os.environ["UPWORK_CLIENT_SECRET"] = "test-client-secret"
os.environ["UPWORK_REDIRECT_URI"] = "https://broker.example/upwork/callback"
os.environ["UPWORK_AUTHORIZE_URL"] = "https://provider.example/oauth2/authorize"
os.environ["UPWORK_TOKEN_URL"] = "https://provider.example/oauth2/token"
os.environ.pop("UPWORK_EXPOSE_REFRESH_TOKEN", None)

import httpx
import pytest
from sqlalchemy import delete

from upwork_broker.database import get_session_factory, init_db
from upwork_broker.models import CredentialRecord
from upwork_broker.provider import UpworkTokenClient
from upwork_broker.store import CredentialStore


def _clear_credentials() -> None:
    with get_session_factory().begin() as db:
        db.execute(delete(CredentialRecord))


@pytest.fixture
def store():
    init_db()
    _clear_credentials()
    yield CredentialStore(get_session_factory())
    _clear_credentials()


@pytest.fixture
def make_token_client():
    """Build an UpworkTokenClient whose HTTP calls go to the given handler."""

    def _make(handler) -> UpworkTokenClient:
        return UpworkTokenClient(
            client_id="test-client-id",
            client_secret="test-client-secret",
            redirect_uri="https://broker.example/upwork/callback",
            token_url="https://provider.example/oauth2/token",
            authorize_url="https://provider.example/oauth2/authorize",
            timeout=10.0,
            transport=httpx.MockTransport(handler),
        )

    return _make
