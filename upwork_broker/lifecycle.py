"""
Token lifecycle: authorize, refresh, status.

States are computed on read from the stored expiry; nothing moves a credential
between states in the background:

    UNAUTHORIZED --(code exchange)--> AUTHORIZED --(time passes)--> EXPIRED
    AUTHORIZED / EXPIRED --(refresh)--> AUTHORIZED

Concurrent refreshes are not serialized here. The last successful write wins.
"""
import enum
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from upwork_broker.provider import ProviderError, TokenResult, UpworkTokenClient
from upwork_broker.store import Credential, CredentialStore, NoCredentialError

logger = logging.getLogger(__name__)


class LifecycleError(Exception):
    pass


class AuthorizationDeniedError(LifecycleError):
    """The callback carried an error (user denied consent or the provider rejected the request)."""


class MissingCodeError(LifecycleError):
    pass


class AuthorizationFailedError(LifecycleError):
    """Exchanging the authorization code failed."""


class RefreshFailedError(LifecycleError):
    pass


class TokenState(str, enum.Enum):
    UNAUTHORIZED = "unauthorized"
    AUTHORIZED = "authorized"
    EXPIRED = "expired"


def now_ms() -> int:
    """Wall-clock milliseconds since the Unix epoch."""
    return int(time.time() * 1000)


def expires_at_from(issued_at_ms: int, expires_in: int) -> int:
    return issued_at_ms + expires_in * 1000


def to_iso(ms: int) -> str:
    """ISO-8601 UTC with milliseconds and a Z suffix, e.g. 2024-05-01T12:00:00.000Z."""
    dt = datetime.fromtimestamp(ms // 1000, tz=timezone.utc) + timedelta(milliseconds=ms % 1000)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class TokenStatus:
    state: TokenState
    expires_at: int | None = None
    access_token: str | None = None
    refresh_token: str | None = None

    @property
    def present(self) -> bool:
        return self.state is not TokenState.UNAUTHORIZED

    @property
    def expired(self) -> bool:
        return self.state is TokenState.EXPIRED

    @property
    def expires_at_iso(self) -> str | None:
        return to_iso(self.expires_at) if self.expires_at is not None else None


class TokenLifecycle:
    def __init__(
        self,
        store: CredentialStore,
        provider: UpworkTokenClient,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._provider = provider
        self._clock = clock

    def begin_authorization(self) -> str:
        """URL of the Upwork consent screen."""
        return self._provider.build_authorize_url()

    def complete_authorization(self, code: str | None, error: str | None) -> Credential:
        """
        Handle the provider callback. On any failure the stored credential is left as it was.
        """
        if error:
            logger.info("Authorization denied by provider: %s", error)
            raise AuthorizationDeniedError(error)
        if not code or not code.strip():
            raise MissingCodeError("Missing authorization code")

        try:
            result = self._provider.exchange_authorization_code(code)
        except ProviderError as e:
            logger.error("Token exchange error: %s (payload=%s)", e, e.payload if e.status_code != 200 else "-")
            raise AuthorizationFailedError(str(e)) from e

        expires_at = expires_at_from(self._clock(), result.expires_in)
        return self._store.put(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_at=expires_at,
        )

    def refresh(self) -> TokenResult:
        """Trade the stored refresh token for a new pair and overwrite the stored credential."""
        current = self._store.get()
        if current is None or not current.refresh_token:
            raise NoCredentialError("No refresh token available")

        try:
            result = self._provider.exchange_refresh_token(current.refresh_token)
        except ProviderError as e:
            logger.error("Token refresh error: %s (payload=%s)", e, e.payload if e.status_code != 200 else "-")
            raise RefreshFailedError(str(e)) from e

        self._store.update(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_at=expires_at_from(self._clock(), result.expires_in),
        )
        return result

    def current_status(self) -> TokenStatus:
        """Read-only view of the stored credential; never calls the provider."""
        current = self._store.get()
        if current is None:
            return TokenStatus(state=TokenState.UNAUTHORIZED)
        state = TokenState.EXPIRED if current.expires_at <= self._clock() else TokenState.AUTHORIZED
        return TokenStatus(
            state=state,
            expires_at=current.expires_at,
            access_token=current.access_token,
            refresh_token=current.refresh_token,
        )
