"""
Firebase ID token verification for the Chat service.

Firebase ID tokens are RS256 JWTs signed by Google's ``securetoken`` service
account. The public keys are published as a JWKS document, so verification
needs nothing beyond the JWKS endpoint and the Firebase project id.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

import httpx
from jose import JWTError, jwt

from shared.errors import AuthenticationError, InternalServiceError
from shared.logging import get_logger

FIREBASE_ISSUER_PREFIX = "https://securetoken.google.com/"
MAX_SUBJECT_LENGTH = 128


@dataclass(frozen=True)
class VerifiedIdentity:
    """Caller identity derived from a verified Firebase ID token."""

    subject: str
    claims: Dict[str, Any]
    token: str


class FirebaseTokenVerifier:
    """Verifies Firebase ID tokens against Google's published signing keys."""

    def __init__(
        self,
        project_id: str,
        jwks_url: str,
        *,
        refresh_interval: int = 300,
        http_timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.project_id = project_id
        self.jwks_url = jwks_url
        self.issuer = f"{FIREBASE_ISSUER_PREFIX}{project_id}"
        self.refresh_interval = refresh_interval
        self.logger = get_logger("chat.auth.firebase")

        self._keys: Optional[Iterable[Dict[str, Any]]] = None
        self._last_refresh: float = 0.0
        self._lock = asyncio.Lock()
        self._client = client or httpx.AsyncClient(timeout=http_timeout)
        self._clock = clock

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def warmup(self) -> None:
        """Eagerly load signing keys so the first request does not pay the cost."""
        try:
            await self._refresh_keys(force=True)
        except Exception as exc:
            self.logger.warning("JWKS warmup failed", error=str(exc))

    async def authenticate_header(self, authorization: Optional[str]) -> VerifiedIdentity:
        """Verify the bearer credential carried by an Authorization header."""
        if not authorization or not authorization.startswith("Bearer "):
            raise AuthenticationError("Missing or invalid Authorization header")
        return await self.verify(authorization[7:].strip())

    async def verify(self, credential: Optional[str]) -> VerifiedIdentity:
        """Verify a Firebase ID token and return the caller identity."""
        if not credential:
            raise AuthenticationError("Missing bearer token")

        if not self.project_id:
            self.logger.error("Firebase project id is not configured")
            raise InternalServiceError(details={"error": "project id not configured"})

        claims = await self._validate_token(credential)

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise AuthenticationError(details={"error": "token missing subject claim"})
        if len(subject) > MAX_SUBJECT_LENGTH:
            raise AuthenticationError(details={"error": "subject claim too long"})

        auth_time = claims.get("auth_time")
        if not isinstance(auth_time, (int, float)) or auth_time > self._clock():
            raise AuthenticationError(details={"error": "invalid auth_time claim"})

        return VerifiedIdentity(subject=subject, claims=claims, token=credential)

    async def check_health(self) -> str:
        """Return 'ok' if the JWKS endpoint responds correctly, otherwise 'error'."""
        try:
            await self._refresh_keys(force=False)
            return "ok"
        except Exception as exc:
            self.logger.error("JWKS health check failed", error=str(exc))
            return "error"

    async def _validate_token(self, token: str) -> Dict[str, Any]:
        """Validate signature and registered claims, returning the claims."""
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise AuthenticationError(details={"error": str(exc)}) from exc

        if header.get("alg") != "RS256":
            raise AuthenticationError(details={"error": "unexpected signing algorithm"})

        kid = header.get("kid")
        if not isinstance(kid, str):
            raise AuthenticationError(details={"error": "token header missing kid"})

        try:
            key_data = await self._get_key(kid)
        except InternalServiceError:
            raise
        except Exception as exc:
            # Provider outage, not a bad credential
            self.logger.error("Unable to fetch signing keys", error=str(exc))
            raise InternalServiceError(details={"error": "signing keys unavailable"}) from exc

        if not key_data:
            raise AuthenticationError(details={"error": "signing key not found", "kid": kid})

        try:
            return jwt.decode(
                token,
                key_data,
                algorithms=["RS256"],
                audience=self.project_id,
                issuer=self.issuer,
            )
        except JWTError as exc:
            raise AuthenticationError(details={"error": str(exc)}) from exc

    async def _get_key(self, kid: str) -> Optional[Dict[str, Any]]:
        """Return the published key matching ``kid``."""
        await self._refresh_keys(force=False)
        for key in self._keys or []:
            if key.get("kid") == kid:
                return key

        # Google rotates keys; refresh once more eagerly.
        await self._refresh_keys(force=True)
        for key in self._keys or []:
            if key.get("kid") == kid:
                return key
        return None

    async def _refresh_keys(self, *, force: bool) -> None:
        """Refresh the JWKS if the cache is stale."""
        if not force and self._is_fresh():
            return

        async with self._lock:
            if not force and self._is_fresh():
                return

            response = await self._client.get(self.jwks_url)
            response.raise_for_status()
            keys = response.json().get("keys")
            if not isinstance(keys, list):
                raise InternalServiceError(details={"error": "JWKS response missing 'keys' array"})

            self._keys = keys
            self._last_refresh = self._clock()
            self.logger.debug("Signing keys refreshed", count=len(keys))

    def _is_fresh(self) -> bool:
        return self._keys is not None and (self._clock() - self._last_refresh) < self.refresh_interval
