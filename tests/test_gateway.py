from datetime import datetime, timedelta, timezone

import httpx
import pytest
import respx

from signbox_orchestrator.errors import ApiError, AuthError, NetworkError, NotFoundError, ServerError
from signbox_orchestrator.gateway import GatewayClient
from signbox_orchestrator.models import Token
from signbox_orchestrator.retry import RetryPolicy

GATEWAY = "https://gateway.example.com"
REDIRECT_URL = f"{GATEWAY}/api/auth/session/redirecturl"
SIGN_URL = "https://sign.example.com/s/one-time-xyz"
FAST = RetryPolicy(sleep=lambda s: None)


def _token() -> Token:
    return Token(access_token="tok", expires_at=datetime.now(tz=timezone.utc) + timedelta(hours=1))


def _client(http: httpx.Client, **kw) -> GatewayClient:
    return GatewayClient(http, GATEWAY, retry_policy=FAST, **kw)


@respx.mock
def test_create_redirect_returns_url():
    route = respx.post(REDIRECT_URL).respond(200, json={"redirectUrl": SIGN_URL})
    with httpx.Client(timeout=5) as c:
        url = _client(c).create_redirect("abc-123", _token())
    assert url == SIGN_URL
    request = route.calls.last.request
    assert request.url.params["id"] == "abc-123"
    assert request.headers["authorization"] == "Bearer tok"
    assert request.content == b"{}"


@respx.mock
def test_create_redirect_configurable_id_param():
    route = respx.post(REDIRECT_URL).respond(200, json=SIGN_URL)
    with httpx.Client(timeout=5) as c:
        assert _client(c, id_param="documentId").create_redirect("abc-123", _token()) == SIGN_URL
    assert route.calls.last.request.url.params["documentId"] == "abc-123"


@respx.mock
def test_create_redirect_plain_text_payload():
    respx.post(REDIRECT_URL).respond(200, text=f"  {SIGN_URL}\n")
    with httpx.Client(timeout=5) as c:
        assert _client(c).create_redirect("abc-123", _token()) == SIGN_URL


@respx.mock
def test_create_redirect_location_header():
    respx.post(REDIRECT_URL).respond(201, headers={"location": SIGN_URL})
    with httpx.Client(timeout=5) as c:
        assert _client(c).create_redirect("abc-123", _token()) == SIGN_URL


@respx.mock
def test_empty_payload_is_not_success():
    respx.post(REDIRECT_URL).respond(200, json={})
    with httpx.Client(timeout=5) as c:
        with pytest.raises(ApiError):
            _client(c).create_redirect("abc-123", _token())


@pytest.mark.parametrize(
    "token",
    [None, Token(access_token="", expires_at=datetime(2100, 1, 1, tzinfo=timezone.utc))],
)
@respx.mock
def test_create_redirect_without_token_fails_before_request(token):
    with httpx.Client(timeout=5) as c:
        with pytest.raises(AuthError):
            _client(c).create_redirect("abc-123", token)
    assert not respx.calls


@respx.mock
def test_create_redirect_expired_token():
    expired = Token(access_token="tok", expires_at=datetime.now(tz=timezone.utc) - timedelta(minutes=5))
    with httpx.Client(timeout=5) as c:
        with pytest.raises(AuthError):
            _client(c).create_redirect("abc-123", expired)


@respx.mock
def test_rejected_token_is_auth_error():
    respx.post(REDIRECT_URL).respond(401)
    with httpx.Client(timeout=5) as c:
        with pytest.raises(AuthError) as ei:
            _client(c).create_redirect("abc-123", _token())
    assert ei.value.status_code == 401


@respx.mock
def test_not_found_never_retried():
    route = respx.post(REDIRECT_URL).respond(404)
    with httpx.Client(timeout=5) as c:
        with pytest.raises(NotFoundError):
            _client(c).create_redirect("missing", _token())
    assert route.call_count == 1


@respx.mock
def test_service_unavailable_retried_exactly_twice():
    route = respx.post(REDIRECT_URL).respond(503)
    with httpx.Client(timeout=5) as c:
        with pytest.raises(ServerError) as ei:
            _client(c).create_redirect("abc-123", _token())
    assert ei.value.status_code == 503
    assert route.call_count == 3


@respx.mock
def test_timeout_is_network_error():
    route = respx.post(REDIRECT_URL).mock(side_effect=httpx.ReadTimeout("slow"))
    with httpx.Client(timeout=5) as c:
        with pytest.raises(NetworkError):
            _client(c).create_redirect("abc-123", _token())
    assert route.call_count == 3
