"""
Phones marketplace API service.
"""

import re
from typing import Any, Callable, Dict, List, Optional

from fastapi import Request, Response
from pydantic import ValidationError as PydanticValidationError

from shared.base_service import BaseService
from shared.errors import AuthorizationError, BadRequestError, NotFoundError, ValidationError

from .api.pagination import FilterRequestHandler
from .api.representation import RepresentationBuilder
from .api.responses import ResponseBuilder
from .cache.entity_loader import EntityCacheLoader
from .cache.http_cache import CachedRoute, HTTPCacheResolver
from .cache.invalidation import CacheInvalidationSubscriber
from .cache.proxy import CacheKernel, ResponseStore
from .cache.tagged_cache import InMemoryTagAwareCache, RedisTagAwareCache
from .domain import schemas
from .domain.events import EventDispatcher
from .domain.models import Client, Offer, Partner, ResourceType, utcnow
from .fixtures.loader import FixtureLoader, FixtureSummary
from .persistence.base import DuplicateEntryError
from .persistence.memory import InMemoryPersistence
from .persistence.postgres import PostgreSQLPersistence
from .repositories import (
    ClientRepository, HTTPCacheRepository, OfferRepository, PartnerRepository, PhoneRepository,
    RefreshTokenRepository, ResultWindow,
)
from .security.authenticator import ADMIN_REQUIRED_MESSAGE, Authenticator
from .security.passwords import PasswordHasher
from .security.tokens import TokenService
from .security.voters import AccessDecisionManager, ClientVoter, PartnerVoter


UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$")
EMAIL_PATTERN = re.compile(r"^[^@\s/]+@[^@\s/]+\.[A-Za-z]{2,}$")

COLLECTION = ResourceType.COLLECTION
ENTITY = ResourceType.ENTITY

# Consumer routes
LIST_PHONES = CachedRoute("list_phones", COLLECTION, "Phone")
SHOW_PHONE = CachedRoute("show_phone", ENTITY, "Phone")
LIST_CLIENTS = CachedRoute("list_clients", COLLECTION, "Client")
SHOW_CLIENT = CachedRoute("show_client", ENTITY, "Client")
SHOW_PARTNER = CachedRoute("show_partner", ENTITY, "Partner")

# Administration routes
LIST_PARTNERS = CachedRoute("list_partners", COLLECTION, "Partner")
LIST_PHONES_PER_PARTNER = CachedRoute("list_phones_per_partner", COLLECTION, "Phone")
LIST_CLIENTS_PER_PARTNER = CachedRoute("list_clients_per_partner", COLLECTION, "Client")
LIST_OFFERS = CachedRoute("list_offers", COLLECTION, "Offer")
SHOW_OFFER = CachedRoute("show_offer", ENTITY, "Offer")
LIST_OFFERS_PER_PARTNER = CachedRoute("list_offers_per_partner", COLLECTION, "Offer")
LIST_OFFERS_PER_PHONE = CachedRoute("list_offers_per_phone", COLLECTION, "Offer")


class MarketplaceService(BaseService):
    """Marketplace service implementation."""

    def __init__(self, **config_overrides: Any):
        super().__init__("marketplace", 8000, **config_overrides)
        self.prefix = self.config.api_path_prefix.rstrip("/")

        # Storage and caches
        self.persistence = self._create_persistence()
        self.cache = self._create_cache()
        self.dispatcher = EventDispatcher()

        repository_args = (self.persistence, self.dispatcher, self.cache, self.config.default_cache_ttl)
        self.partners = PartnerRepository(*repository_args)
        self.phones = PhoneRepository(*repository_args)
        self.clients = ClientRepository(*repository_args)
        self.offers = OfferRepository(*repository_args)
        self.http_caches = HTTPCacheRepository(*repository_args)
        self.refresh_tokens = RefreshTokenRepository(*repository_args)

        self.response_store: Optional[ResponseStore] = None
        if self.config.http_cache_enabled:
            self.response_store = ResponseStore(self.config.http_cache_dir)

        self.dispatcher.subscribe(CacheInvalidationSubscriber(
            self.cache,
            self.http_caches,
            self.response_store,
            self.metrics
        ))
        self.entity_loader = EntityCacheLoader(
            self.cache,
            ttl=self.config.default_cache_ttl,
            beta=self.config.cache_stampede_beta
        )
        self.http_cache_resolver = HTTPCacheResolver(self.http_caches, self.config.default_cache_ttl)

        # Security
        self.password_hasher = PasswordHasher(self.config.password_hash_iterations)
        self.token_service = TokenService(
            self.refresh_tokens,
            secret=self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            token_ttl=self.config.jwt_token_ttl,
            refresh_token_ttl=self.config.refresh_token_ttl
        )
        self.authenticator = Authenticator(self.token_service, self.partners, self.entity_loader, self.password_hasher)
        self.access = AccessDecisionManager([PartnerVoter(), ClientVoter()])

        # Request and response helpers
        self.filters = FilterRequestHandler()
        self.representation = RepresentationBuilder(self.prefix)
        self.responses = ResponseBuilder()

        @self.app.on_event("startup")
        async def _startup():
            await self.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.stop()

        self._setup_marketplace_routes()
        self._setup_security_routes()
        self._setup_consumer_routes()
        self._setup_admin_routes()
        self._setup_http_cache_middleware()

        # Expose service instance via app state for introspection/testing
        self.app.state.marketplace_service = self

    def _create_persistence(self):
        if self.config.storage_backend == "postgres":
            return PostgreSQLPersistence(self.config.postgres_dsn)
        return InMemoryPersistence()

    def _create_cache(self):
        options = {
            "default_lifetime": self.config.default_cache_ttl,
            "beta": self.config.cache_stampede_beta,
            "metrics": self.metrics,
        }
        if self.config.cache_backend == "redis":
            return RedisTagAwareCache(self.config.redis_url, **options)
        return InMemoryTagAwareCache(**options)

    async def start(self):
        """Open storage and cache connections, seed demo data if configured."""
        await self.persistence.start()
        await self.cache.start()
        if self.config.load_fixtures and await self.partners.count_by() == 0:
            await self.load_fixtures()

    async def stop(self):
        await self.cache.stop()
        await self.persistence.stop()

    async def load_fixtures(self) -> FixtureSummary:
        loader = FixtureLoader(
            self.partners,
            self.phones,
            self.clients,
            self.offers,
            self.password_hasher,
            seed=self.config.fixtures_seed
        )
        return await loader.load()

    async def _check_dependencies(self) -> Dict[str, str]:
        return {
            "storage": "ok" if await self.persistence.health_check() else "error",
            "cache": "ok" if await self.cache.health_check() else "error",
        }

    def _setup_http_cache_middleware(self):
        """Mount the reverse proxy kernel in front of the API routes."""
        if self.response_store is None:
            self.cache_kernel = None
            return

        self.cache_kernel = CacheKernel(
            self.response_store,
            debug=self.config.is_debug,
            trace_header=self.config.http_cache_trace_header,
            path_prefix=self.prefix,
            metrics=self.metrics,
            credentials_expired=self.token_service.bearer_expired
        )

        @self.app.middleware("http")
        async def http_cache(request: Request, call_next):
            return await self.cache_kernel(request, call_next)

    # Helpers shared by the route handlers

    @staticmethod
    def _request_uri(request: Request) -> str:
        uri = request.url.path
        if request.url.query:
            uri = f"{uri}?{request.url.query}"
        return uri

    @staticmethod
    def _check_uuid(*values: str) -> None:
        # Malformed identifiers do not match any route
        for value in values:
            if not UUID_PATTERN.match(value):
                raise NotFoundError()

    async def _authenticate(self, request: Request, is_collection: bool, admin: bool = False) -> Partner:
        partner = await self.authenticator.authenticate(request)
        if admin:
            self.authenticator.require_admin(partner)
        self.filters.check_query_parameters(request.query_params, is_collection)
        return partner

    async def _cached_json(
        self,
        request: Request,
        partner: Partner,
        route: CachedRoute,
        data: Dict[str, Any],
        resource_uuid: Optional[str] = None
    ) -> Response:
        entry = await self.http_cache_resolver.resolve(partner, self._request_uri(request), route, resource_uuid)
        return self.responses.create_cached_json(request, data, entry)

    async def _collection(
        self,
        request: Request,
        partner: Partner,
        route: CachedRoute,
        window: ResultWindow,
        label: str,
        serialize: Callable[[Any], Dict[str, Any]]
    ) -> Response:
        data = self.representation.create_paginated_collection(
            request.url.path,
            dict(request.query_params),
            window,
            label,
            serialize
        )
        return await self._cached_json(request, partner, route, data)

    async def _offer_serializer(self, offers: List[Offer], detailed: bool = False) -> Callable[[Offer], Dict[str, Any]]:
        """Load partners and phones of ``offers`` once, then serialize synchronously."""
        partners: Dict[str, Partner] = {}
        phones: Dict[str, Any] = {}
        for offer in offers:
            if offer.partner_uuid not in partners:
                partners[offer.partner_uuid] = await self.entity_loader.load(self.partners, offer.partner_uuid)
            if offer.phone_uuid not in phones:
                phones[offer.phone_uuid] = await self.entity_loader.load(self.phones, offer.phone_uuid)

        def serialize(offer: Offer) -> Dict[str, Any]:
            return self.representation.offer(offer, partners[offer.partner_uuid], phones[offer.phone_uuid], detailed)

        return serialize

    async def _parse_client_payload(self, request: Request) -> schemas.ClientCreateRequest:
        try:
            body = await request.json()
        except ValueError:
            raise BadRequestError("Invalid request: malformed JSON body")
        if not isinstance(body, dict):
            raise BadRequestError("Invalid request: a JSON object is expected")
        try:
            return schemas.ClientCreateRequest.model_validate(body)
        except PydanticValidationError as e:
            raise ValidationError(errors=schemas.field_errors(e))

    async def _create_client(self, request: Request, owner: Partner) -> Response:
        """Create a client of ``owner`` from the request body."""
        payload = await self._parse_client_payload(request)
        if await self.clients.find_one_by_email(payload.email) is not None:
            raise ValidationError(errors={"email": "This e-mail address is already used."})

        client = Client(type=payload.type, name=payload.name, email=payload.email, partner_uuid=owner.uuid)
        try:
            async with self.persistence.transaction():
                await self.clients.add(client)
                owner.update_date = utcnow()
                await self.partners.save(owner)
        except DuplicateEntryError:
            raise ValidationError(errors={"email": "This e-mail address is already used."})

        self.logger.info("Client created", client_uuid=client.uuid, partner_uuid=owner.uuid)
        return self.responses.create_message(
            201,
            "Client resource successfully created",
            {"Location": f"{self.prefix}/clients/{client.uuid}"}
        )

    async def _delete_client(self, client: Client) -> Response:
        async with self.persistence.transaction():
            await self.clients.remove(client)
            owner = await self.partners.find_one_by_uuid(client.partner_uuid)
            if owner is not None:
                owner.update_date = utcnow()
                await self.partners.save(owner)

        self.logger.info("Client deleted", client_uuid=client.uuid, partner_uuid=client.partner_uuid)
        return Response(status_code=204)

    # Routes

    def _setup_marketplace_routes(self):
        """Set up service level routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "marketplace",
                "message": "Phones marketplace API",
                "version": "1.0.0",
                "api_path_prefix": self.prefix,
                "capabilities": ["hal_json", "http_cache", "tagged_cache", "jwt"]
            }

    def _setup_security_routes(self):
        """Set up authentication routes."""

        @self.app.post(f"{self.prefix}/login/check", response_model=schemas.TokenResponse)
        async def login_check(credentials: schemas.LoginRequest):
            """Exchange partner credentials for a JWT and a refresh token."""
            return await self.authenticator.login(credentials.email, credentials.password)

        @self.app.post(f"{self.prefix}/token/refresh", response_model=schemas.TokenResponse)
        async def token_refresh(payload: schemas.RefreshTokenRequest):
            """Exchange a refresh token for a new JWT."""
            return await self.authenticator.refresh(payload.refresh_token)

    def _setup_consumer_routes(self):
        """Set up routes available to every partner."""

        async def show_partner(request: Request, partner: Partner, target: Partner) -> Response:
            self.access.deny_access_unless_granted(
                partner, PartnerVoter.CAN_VIEW, target,
                "Access denied: you are not allowed to view this partner!"
            )
            data = self.representation.resource(target, schemas.PartnerDetailView)
            return await self._cached_json(request, partner, SHOW_PARTNER, data, target.uuid)

        @self.app.get(f"{self.prefix}/partners/{{identifier}}")
        async def show_partner_by_identifier(identifier: str, request: Request):
            """Show one partner, by uuid or by e-mail."""
            partner = await self._authenticate(request, is_collection=False)
            if UUID_PATTERN.match(identifier):
                target = await self.entity_loader.load(self.partners, identifier)
            elif EMAIL_PATTERN.match(identifier):
                target = await self.entity_loader.load_partner_by_email(self.partners, identifier)
            else:
                raise NotFoundError()
            return await show_partner(request, partner, target)

        @self.app.get(f"{self.prefix}/phones")
        async def list_phones(request: Request):
            """List phones offered by the partner, or the whole catalog with ``catalog``."""
            partner = await self._authenticate(request, is_collection=True)
            pagination = self.filters.filter_pagination_data(request.query_params)
            if self.filters.is_full_list_requested(request.query_params):
                window = await self.phones.find_list(pagination)
            else:
                window = await self.phones.find_list_by_partner(partner.uuid, pagination)
            return await self._collection(
                request, partner, LIST_PHONES, window, "phones",
                lambda phone: self.representation.resource(phone, schemas.PhoneListView)
            )

        @self.app.get(f"{self.prefix}/phones/{{uuid}}")
        async def show_phone(uuid: str, request: Request):
            """Show one phone."""
            self._check_uuid(uuid)
            partner = await self._authenticate(request, is_collection=False)
            phone = await self.entity_loader.load(self.phones, uuid)
            data = self.representation.resource(phone, schemas.PhoneDetailView)
            return await self._cached_json(request, partner, SHOW_PHONE, data, phone.uuid)

        @self.app.get(f"{self.prefix}/clients")
        async def list_clients(request: Request):
            """List the partner's clients, or every client with ``full_list`` (administrators)."""
            partner = await self._authenticate(request, is_collection=True)
            pagination = self.filters.filter_pagination_data(request.query_params)
            if self.filters.is_full_list_requested(request.query_params):
                if not partner.is_admin:
                    raise AuthorizationError(ADMIN_REQUIRED_MESSAGE)
                window = await self.clients.find_list(pagination)
            else:
                window = await self.clients.find_list_by_partner(partner.uuid, pagination)
            return await self._collection(
                request, partner, LIST_CLIENTS, window, "clients",
                lambda client: self.representation.resource(client, schemas.ClientListView)
            )

        @self.app.get(f"{self.prefix}/clients/{{uuid}}")
        async def show_client(uuid: str, request: Request):
            """Show one client of the partner."""
            self._check_uuid(uuid)
            partner = await self._authenticate(request, is_collection=False)
            client = await self.entity_loader.load(self.clients, uuid)
            self.access.deny_access_unless_granted(
                partner, ClientVoter.CAN_VIEW, client,
                "Access denied: you are not allowed to view this client!"
            )
            data = self.representation.resource(client, schemas.ClientDetailView)
            return await self._cached_json(request, partner, SHOW_CLIENT, data, client.uuid)

        @self.app.post(f"{self.prefix}/clients")
        async def create_client(request: Request):
            """Create a client for the authenticated partner."""
            partner = await self._authenticate(request, is_collection=False)
            return await self._create_client(request, partner)

        @self.app.delete(f"{self.prefix}/clients/{{uuid}}")
        async def delete_client(uuid: str, request: Request):
            """Delete one client of the partner."""
            self._check_uuid(uuid)
            partner = await self._authenticate(request, is_collection=False)
            client = await self.entity_loader.load(self.clients, uuid)
            self.access.deny_access_unless_granted(
                partner, ClientVoter.CAN_DELETE, client,
                "Access denied: you are not allowed to delete this client!"
            )
            return await self._delete_client(client)

    def _setup_admin_routes(self):
        """Set up routes reserved to administrators."""
        admin = f"{self.prefix}/admin"

        @self.app.get(f"{admin}/partners")
        async def list_partners(request: Request):
            """List every partner."""
            partner = await self._authenticate(request, is_collection=True, admin=True)
            pagination = self.filters.filter_pagination_data(request.query_params)
            window = await self.partners.find_list(pagination)
            return await self._collection(
                request, partner, LIST_PARTNERS, window, "partners",
                lambda item: self.representation.resource(item, schemas.PartnerListView)
            )

        @self.app.get(f"{admin}/partners/{{uuid}}/phones")
        async def list_phones_per_partner(uuid: str, request: Request):
            """List the phones a partner offers."""
            self._check_uuid(uuid)
            partner = await self._authenticate(request, is_collection=True, admin=True)
            target = await self.entity_loader.load(self.partners, uuid)
            pagination = self.filters.filter_pagination_data(request.query_params)
            window = await self.phones.find_list_by_partner(target.uuid, pagination)
            return await self._collection(
                request, partner, LIST_PHONES_PER_PARTNER, window, "phones",
                lambda phone: self.representation.resource(phone, schemas.PhoneListView)
            )

        @self.app.get(f"{admin}/partners/{{uuid}}/clients")
        async def list_clients_per_partner(uuid: str, request: Request):
            """List the clients of a partner."""
            self._check_uuid(uuid)
            partner = await self._authenticate(request, is_collection=True, admin=True)
            target = await self.entity_loader.load(self.partners, uuid)
            pagination = self.filters.filter_pagination_data(request.query_params)
            window = await self.clients.find_list_by_partner(target.uuid, pagination)
            return await self._collection(
                request, partner, LIST_CLIENTS_PER_PARTNER, window, "clients",
                lambda client: self.representation.resource(client, schemas.ClientListView)
            )

        @self.app.post(f"{admin}/partners/{{uuid}}/clients")
        async def create_partner_client(uuid: str, request: Request):
            """Create a client on behalf of a partner."""
            self._check_uuid(uuid)
            await self._authenticate(request, is_collection=False, admin=True)
            owner = await self.entity_loader.load(self.partners, uuid)
            return await self._create_client(request, owner)

        @self.app.delete(f"{admin}/partners/{{uuid}}/clients/{{client_uuid}}")
        async def delete_partner_client(uuid: str, client_uuid: str, request: Request):
            """Delete a client of a partner."""
            self._check_uuid(uuid, client_uuid)
            await self._authenticate(request, is_collection=False, admin=True)
            owner = await self.entity_loader.load(self.partners, uuid)
            client = await self.entity_loader.load(self.clients, client_uuid)
            if client.partner_uuid != owner.uuid:
                raise BadRequestError(
                    f"Client ({client.uuid}) is not associated to partner ({owner.uuid})"
                )
            return await self._delete_client(client)

        @self.app.get(f"{admin}/offers")
        async def list_offers(request: Request):
            """List every offer."""
            partner = await self._authenticate(request, is_collection=True, admin=True)
            pagination = self.filters.filter_pagination_data(request.query_params)
            window = await self.offers.find_list(pagination)
            serialize = await self._offer_serializer(window.items)
            return await self._collection(request, partner, LIST_OFFERS, window, "offers", serialize)

        @self.app.get(f"{admin}/offers/{{uuid}}")
        async def show_offer(uuid: str, request: Request):
            """Show one offer."""
            self._check_uuid(uuid)
            partner = await self._authenticate(request, is_collection=False, admin=True)
            offer = await self.entity_loader.load(self.offers, uuid)
            serialize = await self._offer_serializer([offer], detailed=True)
            return await self._cached_json(request, partner, SHOW_OFFER, serialize(offer), offer.uuid)

        @self.app.get(f"{admin}/partners/{{uuid}}/offers")
        async def list_offers_per_partner(uuid: str, request: Request):
            """List the offers of a partner."""
            self._check_uuid(uuid)
            partner = await self._authenticate(request, is_collection=True, admin=True)
            target = await self.entity_loader.load(self.partners, uuid)
            pagination = self.filters.filter_pagination_data(request.query_params)
            window = await self.offers.find_list_by_partner(target.uuid, pagination)
            serialize = await self._offer_serializer(window.items)
            return await self._collection(request, partner, LIST_OFFERS_PER_PARTNER, window, "offers", serialize)

        @self.app.get(f"{admin}/phones/{{uuid}}/offers")
        async def list_offers_per_phone(uuid: str, request: Request):
            """List the offers of a phone."""
            self._check_uuid(uuid)
            partner = await self._authenticate(request, is_collection=True, admin=True)
            phone = await self.entity_loader.load(self.phones, uuid)
            pagination = self.filters.filter_pagination_data(request.query_params)
            window = await self.offers.find_list_by_phone(phone.uuid, pagination)
            serialize = await self._offer_serializer(window.items)
            return await self._collection(request, partner, LIST_OFFERS_PER_PHONE, window, "offers", serialize)


def create_app(**config_overrides: Any):
    """Create marketplace service application."""
    service = MarketplaceService(**config_overrides)
    return service.app


if __name__ == "__main__":
    service = MarketplaceService()
    service.run()
