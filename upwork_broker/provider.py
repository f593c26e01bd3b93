"""
Upwork token endpoint client: consent URL, authorization_code grant, refresh_token grant.
One attempt per call; callers decide whether to retry.
"""
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Token endpoint call failed. payload is the provider's error body (or the transport message)."""

    def __init__(self, message: str, *, payload: Any = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.payload = payload if payload is not None else message
        self.status_code = status_code


class ProviderExchangeError(ProviderError):
    """authorization_code grant failed."""


class ProviderRefreshError(ProviderError):
    """refresh_token grant failed."""


@dataclass(frozen=True)
class TokenResult:
    access_token: str
    refresh_token: str
    expires_in: int  # seconds
    token_type: str = "bearer"


def _error_payload(response: httpx.Response) -> Any:
    """Provider error body: parsed JSON when it sent JSON, else the raw text."""
    if response.headers.get("content-type", "").startswith("application/json"):
        try:
            return response.json()
        except ValueError:
            pass
    return response.text


# Ten years. Larger values would push expires_at past what BIGINT columns and datetime can hold.
MAX_EXPIRES_IN = 10 * 365 * 24 * 3600


def _parse_expires_in(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        seconds = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if seconds < 0 or seconds > MAX_EXPIRES_IN or (isinstance(value, float) and value != seconds):
        return None
    return seconds


class UpworkTokenClient:
    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        token_url: str,
        authorize_url: str,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.token_url = token_url
        self.authorize_url = authorize_url
        self.timeout = timeout
        self._transport = transport

    def build_authorize_url(self) -> str:
        """Consent screen URL. The redirect URI must match the one registered with Upwork."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    def exchange_authorization_code(self, code: str) -> TokenResult:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
        }
        return self._request_tokens(data, ProviderExchangeError)

    def exchange_refresh_token(self, refresh_token: str) -> TokenResult:
        """
        Trade a refresh token for a new pair. When the response carries no
        refresh_token the presented one stays valid and is returned as-is.
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        return self._request_tokens(data, ProviderRefreshError, fallback_refresh_token=refresh_token)

    def _request_tokens(
        self,
        data: dict[str, str],
        error_cls: type[ProviderError],
        fallback_refresh_token: str | None = None,
    ) -> TokenResult:
        grant_type = data["grant_type"]
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as http:
                # data= is sent as application/x-www-form-urlencoded
                r = http.post(self.token_url, data=data, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            logger.warning("Token request (%s) failed: %s", grant_type, e)
            raise error_cls(f"Token request failed: {e}") from e

        if r.status_code != 200:
            payload = _error_payload(r)
            logger.warning("Token endpoint returned %s for %s: %s", r.status_code, grant_type, payload)
            raise error_cls(
                f"Token endpoint returned {r.status_code}", payload=payload, status_code=r.status_code
            )

        try:
            body = r.json()
        except ValueError as e:
            raise error_cls("Token endpoint returned a non-JSON body", payload=r.text, status_code=200) from e
        if not isinstance(body, dict):
            raise error_cls("Token endpoint returned an unexpected body", payload=body, status_code=200)

        access_token = body.get("access_token")
        refresh_token = body.get("refresh_token") or fallback_refresh_token
        expires_in = _parse_expires_in(body.get("expires_in"))
        missing = [
            name
            for name, value in (
                ("access_token", access_token),
                ("refresh_token", refresh_token),
                ("expires_in", expires_in),
            )
            if value is None or value == ""
        ]
        if missing:
            raise error_cls(
                f"Incomplete token response (missing or invalid {', '.join(missing)})", payload=body, status_code=200
            )

        logger.debug("Token endpoint issued tokens for %s (expires_in=%s)", grant_type, expires_in)
        return TokenResult(
            access_token=str(access_token),
            refresh_token=str(refresh_token),
            expires_in=expires_in,
            token_type=str(body.get("token_type") or "bearer"),
        )
