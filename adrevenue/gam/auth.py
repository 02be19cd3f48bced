"""Service-account OAuth2 for the Ad Manager API (JWT bearer grant)."""

from __future__ import annotations

import base64
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx
import jwt
from pydantic import BaseModel, ValidationError

from adrevenue.config import GAM_SCOPE
from adrevenue.errors import AuthError, ConfigurationError
from adrevenue.util import excerpt


logger = logging.getLogger(__name__)

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_TTL_SECONDS = 3600
REFRESH_MARGIN_SECONDS = 5 * 60


class ServiceAccountCredentials(BaseModel):
    client_email: str
    private_key: str
    token_uri: str = "https://oauth2.googleapis.com/token"
    project_id: str = ""
    private_key_id: str = ""


def _decode_json_or_base64(raw: str) -> dict[str, Any]:
    text = raw.strip()
    try:
        return json.loads(text)
    except ValueError as json_error:
        compact = "".join(text.split()).replace("-", "+").replace("_", "/")
        compact += "=" * (-len(compact) % 4)
        try:
            return json.loads(base64.b64decode(compact).decode("utf-8"))
        except ValueError as b64_error:
            logger.error("Service account JSON parse error: %s", json_error)
            logger.error("Service account base64 decode error: %s", b64_error)
            logger.error("Credential length: %d, prefix: %r", len(raw), raw[:8])
            raise ConfigurationError(
                "GAM_SERVICE_ACCOUNT_JSON is not valid JSON or base64-encoded JSON"
            ) from None


def parse_service_account(raw: str) -> ServiceAccountCredentials:
    data = _decode_json_or_base64(raw)
    if not isinstance(data, dict):
        raise ConfigurationError("GAM_SERVICE_ACCOUNT_JSON must contain a JSON object")
    try:
        return ServiceAccountCredentials.model_validate(data)
    except ValidationError as exc:
        # Field names only, never values.
        fields = sorted({str(e["loc"][0]) for e in exc.errors() if e.get("loc")})
        raise ConfigurationError(f"Service account credentials missing or invalid fields: {fields}") from None


def build_assertion(credentials: ServiceAccountCredentials, scope: str, now: int) -> str:
    claims = {
        "iss": credentials.client_email,
        "scope": scope,
        "aud": credentials.token_uri,
        "iat": now,
        "exp": now + ASSERTION_TTL_SECONDS,
    }
    try:
        return jwt.encode(claims, credentials.private_key, algorithm="RS256", headers={"typ": "JWT"})
    except (ValueError, TypeError, jwt.PyJWTError) as exc:
        raise ConfigurationError("Service account private_key could not be used for RS256 signing") from exc


@dataclass(frozen=True)
class CachedToken:
    token: str
    expires_at: float


class ServiceAccountTokenProvider:
    """Obtains and caches access tokens for one service account.

    Construct once per process and share it; the cached token is returned
    until it is within five minutes of expiry. Concurrent refreshes are not
    serialized, so a race may exchange twice.
    """

    def __init__(
        self,
        credentials_source: str,
        client: httpx.AsyncClient | None = None,
        *,
        scope: str = GAM_SCOPE,
        clock: Callable[[], float] = time.time,
    ):
        self._credentials_source = credentials_source
        self._credentials: ServiceAccountCredentials | None = None
        self._client = client
        self.scope = scope
        self._clock = clock
        self._cached: CachedToken | None = None

    @property
    def credentials(self) -> ServiceAccountCredentials:
        if self._credentials is None:
            self._credentials = parse_service_account(self._credentials_source)
        return self._credentials

    async def get_access_token(self) -> str:
        now = self._clock()
        cached = self._cached
        if cached is not None and now + REFRESH_MARGIN_SECONDS < cached.expires_at:
            return cached.token

        credentials = self.credentials
        assertion = build_assertion(credentials, self.scope, int(now))
        payload = await self._exchange(assertion, credentials.token_uri)

        token = str(payload.get("access_token") or "").strip()
        if not token:
            raise AuthError("Token exchange returned no access_token")
        try:
            expires_in = float(payload.get("expires_in") or ASSERTION_TTL_SECONDS)
        except (TypeError, ValueError):
            expires_in = float(ASSERTION_TTL_SECONDS)

        self._cached = CachedToken(token=token, expires_at=now + expires_in)
        logger.info("Obtained Ad Manager access token for %s (expires in %ds)", credentials.client_email, int(expires_in))
        return token

    async def _post(self, client: httpx.AsyncClient, token_uri: str, assertion: str) -> httpx.Response:
        return await client.post(token_uri, data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion})

    async def _exchange(self, assertion: str, token_uri: str) -> dict[str, Any]:
        try:
            if self._client is not None:
                resp = await self._post(self._client, token_uri, assertion)
            else:
                async with httpx.AsyncClient(timeout=30) as client:
                    resp = await self._post(client, token_uri, assertion)
        except httpx.HTTPError as exc:
            raise AuthError(f"Token exchange request failed: {exc}") from exc

        if not resp.is_success:
            body = resp.text
            logger.error("Token exchange failed: %s - %s", resp.status_code, excerpt(body))
            raise AuthError(f"Token exchange failed: {resp.status_code} - {excerpt(body)}", body=body)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise AuthError("Token exchange returned a non-JSON body", body=excerpt(resp.text)) from exc
        if not isinstance(payload, dict):
            raise AuthError("Token exchange returned an unexpected body", body=excerpt(resp.text))
        return payload
