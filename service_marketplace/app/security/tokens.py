"""
JWT and refresh token issuance.
"""

from __future__ import annotations

import secrets
import time
from datetime import timedelta
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError

from shared.errors import AuthenticationError
from shared.logging import get_logger
from ..domain.models import Partner, RefreshToken, utcnow
from ..repositories import RefreshTokenRepository


class TokenService:
    """Sign partner JWTs and manage the refresh tokens exchanged for new ones."""

    def __init__(
        self,
        refresh_tokens: RefreshTokenRepository,
        secret: str,
        algorithm: str = "HS256",
        token_ttl: int = 3600,
        refresh_token_ttl: int = 2592000,
    ) -> None:
        self.refresh_tokens = refresh_tokens
        self.secret = secret
        self.algorithm = algorithm
        self.token_ttl = token_ttl
        self.refresh_token_ttl = refresh_token_ttl
        self.logger = get_logger("marketplace.security.tokens")

    def create_token(self, partner: Partner) -> str:
        issued_at = int(time.time())
        payload = {
            "username": partner.email,
            "roles": list(partner.roles),
            "uuid": partner.uuid,
            "email": partner.email,
            "iat": issued_at,
            "exp": issued_at + self.token_ttl,
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def decode(self, token: str) -> Dict[str, Any]:
        """Verified claims of ``token``."""
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise AuthenticationError("Expired JWT Token") from exc
        except JWTError as exc:
            raise AuthenticationError("Invalid JWT Token", details={"error": str(exc)}) from exc

        if not isinstance(claims.get("uuid"), str):
            raise AuthenticationError("Invalid JWT Token", details={"error": "missing uuid claim"})
        return claims

    def bearer_expired(self, authorization: Optional[str], now: Optional[float] = None) -> bool:
        """Whether an ``Authorization`` header carries a bearer token past its ``exp``.

        Signatures are not checked: stored responses are only replayed for
        the header value they were produced for.
        """
        if not authorization or not authorization.startswith("Bearer "):
            return False
        try:
            expires_at = jwt.get_unverified_claims(authorization[7:].strip()).get("exp")
        except JWTError:
            return True
        if not isinstance(expires_at, (int, float)):
            return True
        return expires_at <= (time.time() if now is None else now)

    async def create_refresh_token(self, partner: Partner) -> RefreshToken:
        refresh_token = RefreshToken(
            refresh_token=secrets.token_hex(64),
            username=partner.email,
            valid_until=utcnow() + timedelta(seconds=self.refresh_token_ttl),
        )
        await self.refresh_tokens.add(refresh_token)
        return refresh_token

    async def find_valid_refresh_token(self, value: str) -> RefreshToken:
        refresh_token = await self.refresh_tokens.find_one_by_token(value)
        if refresh_token is None:
            raise AuthenticationError("JWT Refresh Token Not Found")
        if not refresh_token.is_valid():
            raise AuthenticationError("Invalid JWT Refresh Token")
        return refresh_token

    async def revoke_invalid_refresh_tokens(self, username: str) -> int:
        revoked = await self.refresh_tokens.revoke_invalid(username)
        if revoked:
            self.logger.info("Expired refresh tokens revoked", username=username, count=revoked)
        return revoked
