"""
Unit tests for the demo data set.
"""

import pytest
from decimal import Decimal

from service_marketplace.app.cache.tagged_cache import InMemoryTagAwareCache
from service_marketplace.app.domain.events import EventDispatcher
from service_marketplace.app.domain.models import ClientType, PhoneType
from service_marketplace.app.fixtures.data_provider import DataProvider, phone_type_for_price, sanitize
from service_marketplace.app.fixtures.loader import FixtureLoader, partner_password
from service_marketplace.app.persistence.memory import InMemoryPersistence
from service_marketplace.app.repositories import (
    ClientRepository, OfferRepository, PartnerRepository, PhoneRepository,
)
from service_marketplace.app.security.passwords import PasswordHasher, is_strong_password


def make_loader(seed=42):
    persistence = InMemoryPersistence()
    cache = InMemoryTagAwareCache()
    dispatcher = EventDispatcher()
    args = (persistence, dispatcher, cache)
    return FixtureLoader(
        PartnerRepository(*args),
        PhoneRepository(*args),
        ClientRepository(*args),
        OfferRepository(*args),
        PasswordHasher(iterations=1000),
        seed=seed
    )


class TestFixtureLoader:
    """Test cases for FixtureLoader."""

    @pytest.mark.asyncio
    async def test_counts(self):
        """Test the data set holds 40 of each resource."""
        loader = make_loader()

        summary = await loader.load()

        assert summary.counts() == {"partners": 40, "phones": 40, "clients": 40, "offers": 40}
        assert await loader.partners.count_by() == 40
        assert await loader.offers.count_by() == 40

    @pytest.mark.asyncio
    async def test_single_admin_with_known_password(self):
        loader = make_loader()

        summary = await loader.load()

        admins = [partner for partner in summary.partners if partner.is_admin]
        assert len(admins) == 1
        admin = admins[0]
        assert summary.passwords[admin.email] == "Pass#101"
        assert loader.hasher.verify("Pass#101", admin.password)

    @pytest.mark.asyncio
    async def test_relations_are_consistent(self):
        loader = make_loader()

        summary = await loader.load()

        partner_uuids = {partner.uuid for partner in summary.partners}
        phone_uuids = {phone.uuid for phone in summary.phones}
        assert all(client.partner_uuid in partner_uuids for client in summary.clients)
        assert all(offer.partner_uuid in partner_uuids for offer in summary.offers)
        assert all(offer.phone_uuid in phone_uuids for offer in summary.offers)

    @pytest.mark.asyncio
    async def test_reproducible(self):
        first = await make_loader(seed=7).load()
        second = await make_loader(seed=7).load()

        assert [p.email for p in first.partners] == [p.email for p in second.partners]
        assert [c.email for c in first.clients] == [c.email for c in second.clients]


class TestDataProvider:
    """Test cases for the data provider helpers."""

    def test_partner_passwords_are_strong(self):
        assert partner_password(1, 1) == "Pass#101"
        assert partner_password(3, 13) == "Pass#313"
        assert all(is_strong_password(partner_password(series, 1)) for series in (1, 2, 3))

    def test_sanitize(self):
        assert sanitize("Lefèvre S.A.R.L") == "lefevre-sarl"

    @pytest.mark.parametrize("price,expected", [
        ("129.90", PhoneType.LOW_PRICE),
        ("259.90", PhoneType.GOOD_DEAL),
        ("449.90", PhoneType.REFURBISHED),
        ("759.90", PhoneType.EXCLUSIVE),
        ("1100.90", PhoneType.PREMIUM),
    ])
    def test_phone_type_for_price(self, price, expected):
        assert phone_type_for_price(Decimal(price)) is expected

    def test_client_names(self):
        provider = DataProvider(seed=1)

        assert " " not in provider.client_name(ClientType.INDIVIDUAL)
        assert provider.client_email("Martin").endswith(
            ("gmail.com", "yahoo.fr", "hotmail.fr", "free.fr", "orange.fr", "laposte.net")
        )
