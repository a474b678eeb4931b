"""Service-account access tokens for authenticating webhook calls.

Signs a short-lived RS256 assertion with the service account's private key
and exchanges it at the OAuth2 token endpoint (JWT-bearer grant). Every call
performs one exchange; nothing is cached or retried here.
"""

from __future__ import annotations

import time

import httpx
import jwt
from loguru import logger

from warelay.config import ServiceAccountConfig
from warelay.constants import (
    DEFAULT_HTTP_TIMEOUT,
    TOKEN_GRANT_TYPE,
    TOKEN_LIFETIME_SECONDS,
    TOKEN_SCOPE,
    TOKEN_SIGNING_ALGORITHM,
)
from warelay.errors import AuthError
from warelay.handler.messages import AccessToken


class TokenProvider:
    """Obtains bearer tokens for one service account."""

    def __init__(
        self,
        account: ServiceAccountConfig,
        scope: str = TOKEN_SCOPE,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Args:
            account: Service account identity and signing key.
            scope:   OAuth2 scope requested for the token.
            timeout: Seconds to wait for the token endpoint.
            client:  Optional shared HTTP client (one is opened per call otherwise).
        """
        self._account = account
        self._scope = scope
        self._timeout = timeout
        self._client = client

    def build_assertion(self, now: int | None = None) -> str:
        """Sign the claim set exchanged for an access token."""
        issued_at = int(now if now is not None else time.time())
        claims = {
            "iss": self._account.client_email,
            "sub": self._account.client_email,
            "aud": self._account.token_uri,
            "iat": issued_at,
            "exp": issued_at + TOKEN_LIFETIME_SECONDS,
            "scope": self._scope,
        }
        headers = {"kid": self._account.private_key_id} if self._account.private_key_id else None
        try:
            return jwt.encode(
                claims,
                self._account.signing_key,
                algorithm=TOKEN_SIGNING_ALGORITHM,
                headers=headers,
            )
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise AuthError(f"Could not sign token assertion: {e}") from e

    async def get_access_token(self) -> AccessToken:
        """Exchange a freshly signed assertion for an access token.

        Raises:
            AuthError: The endpoint returned no ``access_token`` or could not be reached.
        """
        issued_at = time.time()
        form = {"grant_type": TOKEN_GRANT_TYPE, "assertion": self.build_assertion(int(issued_at))}

        try:
            data = await self._post(form)
        except httpx.HTTPError as e:
            raise AuthError(f"Token request failed: {type(e).__name__}: {e}") from e
        except ValueError as e:
            raise AuthError(f"Token endpoint returned invalid JSON: {e}") from e

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            logger.error(f"Failed to obtain access token: {data}")
            detail = (
                data.get("error_description") if isinstance(data, dict) else None
            ) or str(data)
            raise AuthError(f"Failed to obtain access token: {detail}")

        return AccessToken(
            token=token,
            issued_at=issued_at,
            expires_in=self._lifetime(data.get("expires_in")),
        )

    @staticmethod
    def _lifetime(value) -> int:
        if value in (None, ""):
            return TOKEN_LIFETIME_SECONDS
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning(
                f"Token endpoint sent invalid expires_in {value!r}, "
                f"assuming {TOKEN_LIFETIME_SECONDS}s"
            )
            return TOKEN_LIFETIME_SECONDS

    async def _post(self, form: dict[str, str]):
        if self._client is not None:
            response = await self._client.post(
                self._account.token_uri, data=form, timeout=self._timeout
            )
            return response.json()

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(self._account.token_uri, data=form)
        return response.json()
