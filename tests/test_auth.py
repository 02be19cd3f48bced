from __future__ import annotations

import asyncio
import base64
import json
from urllib.parse import parse_qs

import httpx
import jwt
import pytest

from adrevenue.config import GAM_SCOPE
from adrevenue.errors import AuthError, ConfigurationError
from adrevenue.gam.auth import (
    JWT_BEARER_GRANT,
    ServiceAccountTokenProvider,
    build_assertion,
    parse_service_account,
)


TOKEN_URI = "https://oauth2.example.test/token"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _credentials_json(private_key_pem: str, **extra) -> str:
    data = {
        "type": "service_account",
        "client_email": "reporter@project.iam.gserviceaccount.com",
        "private_key": private_key_pem,
        "token_uri": TOKEN_URI,
        **extra,
    }
    return json.dumps(data)


def _token_server(requests: list[httpx.Request], *, status: int = 200, payload: dict | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if status != 200:
            return httpx.Response(status, text='{"error":"invalid_grant"}')
        body = payload if payload is not None else {"access_token": f"token-{len(requests)}", "expires_in": 3600}
        return httpx.Response(200, json=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_parse_service_account_accepts_plain_json(private_key_pem):
    creds = parse_service_account(_credentials_json(private_key_pem))
    assert creds.client_email == "reporter@project.iam.gserviceaccount.com"
    assert creds.token_uri == TOKEN_URI


def test_parse_service_account_accepts_base64(private_key_pem):
    raw = _credentials_json(private_key_pem)
    encoded = base64.b64encode(raw.encode("utf-8")).decode("ascii")
    assert parse_service_account(encoded).client_email == "reporter@project.iam.gserviceaccount.com"

    urlsafe = base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")
    assert parse_service_account(urlsafe).token_uri == TOKEN_URI


def test_parse_service_account_defaults_token_uri(private_key_pem):
    raw = json.dumps({"client_email": "a@b.c", "private_key": private_key_pem})
    assert parse_service_account(raw).token_uri == "https://oauth2.googleapis.com/token"


def test_parse_service_account_rejects_garbage():
    with pytest.raises(ConfigurationError):
        parse_service_account("not json, not base64 either!")


def test_missing_fields_error_does_not_echo_key(private_key_pem):
    raw = json.dumps({"private_key": private_key_pem})
    with pytest.raises(ConfigurationError) as excinfo:
        parse_service_account(raw)
    assert "client_email" in str(excinfo.value)
    assert "PRIVATE KEY" not in str(excinfo.value)


def test_assertion_claims(private_key_pem, rsa_key):
    creds = parse_service_account(_credentials_json(private_key_pem))
    assertion = build_assertion(creds, GAM_SCOPE, 1_700_000_000)

    header = jwt.get_unverified_header(assertion)
    assert header["alg"] == "RS256"
    assert header["typ"] == "JWT"

    claims = jwt.decode(
        assertion,
        rsa_key.public_key(),
        algorithms=["RS256"],
        audience=TOKEN_URI,
        options={"verify_exp": False, "verify_iat": False},
    )
    assert claims["iss"] == creds.client_email
    assert claims["scope"] == GAM_SCOPE
    assert claims["iat"] == 1_700_000_000
    assert claims["exp"] == 1_700_000_000 + 3600


def test_assertion_with_unusable_key_is_configuration_error():
    creds = parse_service_account(json.dumps({"client_email": "a@b.c", "private_key": "not a pem"}))
    with pytest.raises(ConfigurationError):
        build_assertion(creds, GAM_SCOPE, 1_700_000_000)


def test_token_exchange_posts_jwt_bearer_grant(private_key_pem):
    requests: list[httpx.Request] = []

    async def run():
        async with _token_server(requests) as client:
            provider = ServiceAccountTokenProvider(_credentials_json(private_key_pem), client, clock=FakeClock())
            return await provider.get_access_token()

    assert asyncio.run(run()) == "token-1"
    assert len(requests) == 1
    form = parse_qs(requests[0].content.decode("utf-8"))
    assert form["grant_type"] == [JWT_BEARER_GRANT]
    assert form["assertion"][0].count(".") == 2


def test_token_is_cached_until_refresh_margin(private_key_pem):
    requests: list[httpx.Request] = []
    clock = FakeClock()

    async def run():
        async with _token_server(requests) as client:
            provider = ServiceAccountTokenProvider(_credentials_json(private_key_pem), client, clock=clock)
            first = await provider.get_access_token()
            clock.now += 3600 - 301
            second = await provider.get_access_token()
            clock.now += 2
            third = await provider.get_access_token()
            fourth = await provider.get_access_token()
            return first, second, third, fourth

    first, second, third, fourth = asyncio.run(run())
    assert first == second == "token-1"
    assert third == fourth == "token-2"
    assert len(requests) == 2


def test_token_exchange_failure_raises_auth_error(private_key_pem):
    requests: list[httpx.Request] = []

    async def run():
        async with _token_server(requests, status=400) as client:
            provider = ServiceAccountTokenProvider(_credentials_json(private_key_pem), client, clock=FakeClock())
            await provider.get_access_token()

    with pytest.raises(AuthError) as excinfo:
        asyncio.run(run())
    assert "400" in str(excinfo.value)
    assert "invalid_grant" in excinfo.value.body


def test_token_response_without_access_token(private_key_pem):
    requests: list[httpx.Request] = []

    async def run():
        async with _token_server(requests, payload={"token_type": "Bearer"}) as client:
            provider = ServiceAccountTokenProvider(_credentials_json(private_key_pem), client, clock=FakeClock())
            await provider.get_access_token()

    with pytest.raises(AuthError):
        asyncio.run(run())


def test_invalid_credentials_fail_before_any_request():
    requests: list[httpx.Request] = []

    async def run():
        async with _token_server(requests) as client:
            provider = ServiceAccountTokenProvider("{broken", client, clock=FakeClock())
            await provider.get_access_token()

    with pytest.raises(ConfigurationError):
        asyncio.run(run())
    assert requests == []
