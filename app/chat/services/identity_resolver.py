"""Resolve bearer tokens into chat identities.

Three modes are supported, selected by ``AUTH_MODE``:

* ``remote`` asks the hosted identity provider who owns the token
  (``GET /auth/v1/user``), bounded by ``IDENTITY_VERIFY_TIMEOUT_SECONDS``.
* ``jwt`` checks the token signature locally with the provider's shared
  secret.
* ``insecure_decode`` reads the claims without any verification. It exists
  for local development against a mocked provider and is rejected by the
  settings in production.

Resolution has no side effects; recording the caller in the chat user
directory is the job of the callers.
"""

import asyncio
import logging
from typing import Any

import httpx
from jose import JWTError, jwt

from app.chat.schemas.identity import Identity
from app.core.config import Settings, settings
from app.core.exceptions import IdentityTimeoutError, UnauthorizedError

logger = logging.getLogger(__name__)


def is_admin_email(email: str, admin_email: str) -> bool:
    return bool(email) and email.strip().lower() == admin_email.strip().lower()


class IdentityResolver:
    def __init__(
        self,
        config: Settings = settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.mode = config.AUTH_MODE
        self._transport = transport

    async def resolve(self, token: str | None) -> Identity:
        if not token:
            raise UnauthorizedError("No token provided")

        if self.mode == "remote":
            claims = await self._verify_remote(token)
        elif self.mode == "jwt":
            claims = self._verify_signature(token)
        else:
            claims = self._decode_unverified(token)

        user_id = claims.get("id") or claims.get("sub")
        email = claims.get("email")
        if not user_id or not email:
            logger.info("Token accepted but carries no user id or e-mail")
            raise UnauthorizedError("Invalid token")

        return Identity(
            id=str(user_id),
            email=str(email),
            is_admin=is_admin_email(str(email), self.config.ADMIN_EMAIL),
        )

    async def _verify_remote(self, token: str) -> dict[str, Any]:
        url = f"{self.config.IDENTITY_PROVIDER_URL.rstrip('/')}/auth/v1/user"
        headers = {"Authorization": f"Bearer {token}"}
        if self.config.IDENTITY_PROVIDER_API_KEY:
            headers["apikey"] = self.config.IDENTITY_PROVIDER_API_KEY

        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self.config.IDENTITY_VERIFY_TIMEOUT_SECONDS,
            ) as client:
                # httpx bounds each phase; this bounds the whole exchange
                async with asyncio.timeout(self.config.IDENTITY_VERIFY_TIMEOUT_SECONDS):
                    response = await client.get(url, headers=headers)
        except (httpx.TimeoutException, TimeoutError) as e:
            logger.warning("Identity provider timed out: %s", type(e).__name__)
            raise IdentityTimeoutError() from e
        except httpx.HTTPError as e:
            logger.error("Identity provider request failed: %s", e)
            raise UnauthorizedError("Could not verify token") from e

        if response.status_code != 200:
            logger.info("Identity provider rejected token (status=%d)", response.status_code)
            raise UnauthorizedError("Invalid token")

        try:
            payload: dict[str, Any] = response.json()
        except ValueError as e:
            raise UnauthorizedError("Invalid token") from e
        return payload

    def _verify_signature(self, token: str) -> dict[str, Any]:
        audience = self.config.JWT_AUDIENCE
        try:
            claims: dict[str, Any] = jwt.decode(
                token,
                self.config.SECRET_KEY,
                algorithms=[self.config.ALGORITHM],
                audience=audience,
                options={"verify_aud": audience is not None},
            )
        except JWTError as e:
            logger.info("JWT verification failed: %s", e)
            raise UnauthorizedError("Invalid token") from e
        return claims

    @staticmethod
    def _decode_unverified(token: str) -> dict[str, Any]:
        try:
            claims: dict[str, Any] = jwt.get_unverified_claims(token)
        except JWTError as e:
            raise UnauthorizedError("Invalid token") from e
        return claims
