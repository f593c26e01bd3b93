"""Tests for the Upwork token endpoint client: request shaping and error classification."""
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from upwork_broker.provider import MAX_EXPIRES_IN, ProviderExchangeError, ProviderRefreshError, TokenResult


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


def test_authorize_url_has_client_redirect_and_response_type(make_token_client):
    client = make_token_client(lambda request: httpx.Response(500))
    url = client.build_authorize_url()
    parsed = urlparse(url)
    assert url.startswith("https://provider.example/oauth2/authorize?")
    params = parse_qs(parsed.query)
    assert params["client_id"] == ["test-client-id"]
    assert params["redirect_uri"] == ["https://broker.example/upwork/callback"]
    assert params["response_type"] == ["code"]
    # redirect URI is percent-encoded in the query string
    assert "redirect_uri=https%3A%2F%2Fbroker.example%2Fupwork%2Fcallback" in url


def test_code_exchange_sends_form_encoded_grant(make_token_client):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200,
            json={"access_token": "A1", "refresh_token": "R1", "token_type": "bearer", "expires_in": 3600},
        )

    result = make_token_client(handler).exchange_authorization_code("CODE1")

    assert result == TokenResult(access_token="A1", refresh_token="R1", expires_in=3600, token_type="bearer")
    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == "https://provider.example/oauth2/token"
    assert request.headers["content-type"] == "application/x-www-form-urlencoded"
    assert request.headers["accept"] == "application/json"
    assert _form(request) == {
        "grant_type": "authorization_code",
        "code": "CODE1",
        "client_id": "test-client-id",
        "client_secret": "test-client-secret",
        "redirect_uri": "https://broker.example/upwork/callback",
    }


def test_refresh_sends_refresh_grant_without_redirect_uri(make_token_client):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"access_token": "A2", "refresh_token": "R2", "expires_in": 7200})

    result = make_token_client(handler).exchange_refresh_token("R1")

    assert (result.access_token, result.refresh_token, result.expires_in) == ("A2", "R2", 7200)
    form = _form(seen[0])
    assert form == {
        "grant_type": "refresh_token",
        "refresh_token": "R1",
        "client_id": "test-client-id",
        "client_secret": "test-client-secret",
    }
    assert "redirect_uri" not in form


def test_refresh_without_new_refresh_token_keeps_presented_one(make_token_client):
    client = make_token_client(lambda request: httpx.Response(200, json={"access_token": "A2", "expires_in": 60}))
    result = client.exchange_refresh_token("R1")
    assert result.refresh_token == "R1"


def test_code_exchange_error_status_carries_provider_payload(make_token_client):
    client = make_token_client(
        lambda request: httpx.Response(400, json={"error": "invalid_grant", "error_description": "Code expired"})
    )
    with pytest.raises(ProviderExchangeError) as exc_info:
        client.exchange_authorization_code("stale")
    assert exc_info.value.status_code == 400
    assert exc_info.value.payload == {"error": "invalid_grant", "error_description": "Code expired"}


def test_refresh_error_status_is_refresh_error(make_token_client):
    client = make_token_client(lambda request: httpx.Response(401, text="Unauthorized"))
    with pytest.raises(ProviderRefreshError) as exc_info:
        client.exchange_refresh_token("revoked")
    assert exc_info.value.status_code == 401
    assert exc_info.value.payload == "Unauthorized"


def test_non_json_body_is_exchange_error(make_token_client):
    client = make_token_client(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
    with pytest.raises(ProviderExchangeError):
        client.exchange_authorization_code("CODE1")


def test_json_array_body_is_exchange_error(make_token_client):
    client = make_token_client(lambda request: httpx.Response(200, json=["A1"]))
    with pytest.raises(ProviderExchangeError):
        client.exchange_authorization_code("CODE1")


@pytest.mark.parametrize(
    "body",
    [
        {"refresh_token": "R1", "expires_in": 3600},
        {"access_token": "A1", "expires_in": 3600},
        {"access_token": "A1", "refresh_token": "R1"},
        {"access_token": "A1", "refresh_token": "R1", "expires_in": "soon"},
        {"access_token": "A1", "refresh_token": "R1", "expires_in": -5},
    ],
)
def test_incomplete_code_exchange_response_is_rejected(make_token_client, body):
    client = make_token_client(lambda request: httpx.Response(200, json=body))
    with pytest.raises(ProviderExchangeError) as exc_info:
        client.exchange_authorization_code("CODE1")
    assert "Incomplete token response" in str(exc_info.value)


def test_string_expires_in_is_accepted(make_token_client):
    client = make_token_client(
        lambda request: httpx.Response(200, json={"access_token": "A1", "refresh_token": "R1", "expires_in": "3600"})
    )
    assert client.exchange_authorization_code("CODE1").expires_in == 3600


def test_timeout_is_exchange_error_without_status(make_token_client):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ProviderExchangeError) as exc_info:
        make_token_client(handler).exchange_authorization_code("CODE1")
    assert exc_info.value.status_code is None
    assert isinstance(exc_info.value.__cause__, httpx.ReadTimeout)


def test_connection_error_is_refresh_error(make_token_client):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderRefreshError):
        make_token_client(handler).exchange_refresh_token("R1")


def test_exactly_one_attempt_per_call(make_token_client):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, text="unavailable")

    with pytest.raises(ProviderExchangeError):
        make_token_client(handler).exchange_authorization_code("CODE1")
    assert len(calls) == 1


@pytest.mark.parametrize("expires_in", [300_000_000_000, 10**20])
def test_implausibly_long_expires_in_is_rejected(make_token_client, expires_in):
    client = make_token_client(
        lambda request: httpx.Response(
            200, json={"access_token": "A1", "refresh_token": "R1", "expires_in": expires_in}
        )
    )
    with pytest.raises(ProviderExchangeError) as exc_info:
        client.exchange_authorization_code("CODE1")
    assert "expires_in" in str(exc_info.value)


def test_ten_year_expires_in_is_accepted(make_token_client):
    client = make_token_client(
        lambda request: httpx.Response(
            200, json={"access_token": "A1", "refresh_token": "R1", "expires_in": MAX_EXPIRES_IN}
        )
    )
    assert client.exchange_authorization_code("CODE1").expires_in == MAX_EXPIRES_IN
