"""
Bearer token authentication of API partners.
"""

from __future__ import annotations

from fastapi import Request

from shared.errors import AuthenticationError, AuthorizationError, BadRequestError
from shared.logging import bind_partner, get_logger
from ..cache.entity_loader import EntityCacheLoader
from ..domain.models import Partner
from ..domain.schemas import TokenResponse
from ..repositories import PartnerRepository
from .passwords import PasswordHasher
from .tokens import TokenService


ADMIN_REQUIRED_MESSAGE = "Access denied: administrator role required"


class Authenticator:
    """Resolve the partner behind a request and issue tokens on login."""

    def __init__(
        self,
        tokens: TokenService,
        partners: PartnerRepository,
        loader: EntityCacheLoader,
        hasher: PasswordHasher,
    ) -> None:
        self.tokens = tokens
        self.partners = partners
        self.loader = loader
        self.hasher = hasher
        self.logger = get_logger("marketplace.security.authenticator")

    async def authenticate(self, request: Request) -> Partner:
        """Authenticate the incoming request using the Authorization bearer token."""
        authorization = request.headers.get("Authorization")
        if not authorization or not authorization.startswith("Bearer "):
            raise AuthenticationError("No Authorization Bearer Token found")

        token = authorization[7:].strip()
        if not token:
            raise AuthenticationError("No Authorization Bearer Token found")

        claims = self.tokens.decode(token)
        try:
            partner = await self.loader.load(self.partners, claims["uuid"])
        except BadRequestError as exc:
            self.logger.warning("Token of unknown partner", partner_uuid=claims["uuid"])
            raise AuthenticationError("Unable to load an API partner from JWT Token") from exc

        bind_partner(partner.uuid)
        request.state.partner = partner
        return partner

    async def login(self, email: str, password: str) -> TokenResponse:
        """Check credentials and issue a JWT with a new refresh token."""
        partner = await self.partners.find_one_by_email(email)
        if partner is None or not self.hasher.verify(password, partner.password):
            self.logger.warning("Invalid login attempt", email=email)
            raise AuthenticationError("Invalid credentials.")

        refresh_token = await self.tokens.create_refresh_token(partner)
        self.logger.info("Partner logged in", partner_uuid=partner.uuid)
        return TokenResponse(token=self.tokens.create_token(partner), refresh_token=refresh_token.refresh_token)

    async def refresh(self, value: str) -> TokenResponse:
        """Exchange a valid refresh token for a new JWT, then drop expired refresh tokens."""
        refresh_token = await self.tokens.find_valid_refresh_token(value)
        partner = await self.partners.find_one_by_email(refresh_token.username)
        if partner is None:
            raise AuthenticationError("Invalid JWT Refresh Token")

        response = TokenResponse(token=self.tokens.create_token(partner), refresh_token=refresh_token.refresh_token)
        await self.tokens.revoke_invalid_refresh_tokens(refresh_token.username)
        return response

    @staticmethod
    def require_admin(partner: Partner) -> None:
        if not partner.is_admin:
            raise AuthorizationError(ADMIN_REQUIRED_MESSAGE)
