"""
Demo data loading.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List

from shared.logging import get_logger
from ..domain.models import Client, Offer, Partner, PartnerRole, Phone, utcnow
from ..repositories import ClientRepository, OfferRepository, PartnerRepository, PhoneRepository
from ..security.passwords import PasswordHasher, is_strong_password
from .data_provider import (
    PARTNER_SERIES, PHONE_BRAND_LABEL, PHONE_MODEL_LABEL, PHONE_MODELS, PHONE_PRICES, PHONE_STORAGE,
    DataProvider, phone_type_for_price,
)


CLIENT_COUNT = 40
OFFER_COUNT = 40


def partner_password(series: int, index: int) -> str:
    """Clear text password of the demo partner ``index`` of ``series`` (both 1-based)."""
    return f"Pass#{series}{index:02d}"


@dataclass
class FixtureSummary:
    """What a fixture run created; partner passwords are kept in clear for demos."""
    partners: List[Partner] = field(default_factory=list)
    passwords: Dict[str, str] = field(default_factory=dict)
    phones: List[Phone] = field(default_factory=list)
    clients: List[Client] = field(default_factory=list)
    offers: List[Offer] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {
            "partners": len(self.partners),
            "phones": len(self.phones),
            "clients": len(self.clients),
            "offers": len(self.offers),
        }


class FixtureLoader:
    """Seed partners, phones, clients and offers through the repositories."""

    def __init__(
        self,
        partners: PartnerRepository,
        phones: PhoneRepository,
        clients: ClientRepository,
        offers: OfferRepository,
        hasher: PasswordHasher,
        seed: int = 42
    ):
        self.partners = partners
        self.phones = phones
        self.clients = clients
        self.offers = offers
        self.hasher = hasher
        self.provider = DataProvider(seed)
        self.logger = get_logger("marketplace.fixtures")

    async def load(self) -> FixtureSummary:
        summary = FixtureSummary()
        await self._load_partners(summary)
        await self._load_phones(summary)
        await self._load_clients(summary)
        await self._load_offers(summary)
        self.logger.info("Fixtures loaded", **summary.counts())
        return summary

    async def _load_partners(self, summary: FixtureSummary) -> None:
        now = utcnow()
        for series, (partner_type, count) in enumerate(PARTNER_SERIES, start=1):
            for index in range(1, count + 1):
                password = partner_password(series, index)
                if not is_strong_password(password):
                    raise ValueError(f"Weak fixture password for partner {series}/{index}")
                company_name = self.provider.company_name()
                roles = [PartnerRole.CONSUMER.value]
                # First partner of the data set administrates the API
                if not summary.partners:
                    roles.append(PartnerRole.ADMIN.value)
                date = now - timedelta(days=index - 1)
                partner = Partner(
                    type=partner_type.value,
                    username=company_name,
                    email=self.provider.partner_email(company_name),
                    password=self.hasher.hash(password),
                    roles=roles,
                    creation_date=date,
                    update_date=date
                )
                await self.partners.add(partner)
                summary.partners.append(partner)
                summary.passwords[partner.email] = password

    async def _load_phones(self, summary: FixtureSummary) -> None:
        now = utcnow()
        for brand_index, models in enumerate(PHONE_MODELS):
            for model_index, model in enumerate(models):
                price = Decimal(PHONE_PRICES[brand_index][model_index])
                phone_type = phone_type_for_price(price)
                date = now - timedelta(days=model_index)
                phone = Phone(
                    type=phone_type.value,
                    brand=f"{PHONE_BRAND_LABEL} {brand_index + 1}",
                    model=f"{PHONE_MODEL_LABEL} {model} {PHONE_STORAGE[phone_type]}",
                    color=self.provider.phone_color(),
                    description=self.provider.phone_description(),
                    price=price,
                    creation_date=date,
                    update_date=date
                )
                await self.phones.add(phone)
                summary.phones.append(phone)

    async def _load_clients(self, summary: FixtureSummary) -> None:
        now = utcnow()
        for index in range(CLIENT_COUNT):
            client_type = self.provider.client_type()
            name = self.provider.client_name(client_type)
            date = now - timedelta(days=index)
            client = Client(
                type=client_type.value,
                name=name,
                email=self.provider.client_email(name),
                partner_uuid=self.provider.choice(summary.partners).uuid,
                creation_date=date,
                update_date=date
            )
            await self.clients.add(client)
            summary.clients.append(client)

    async def _load_offers(self, summary: FixtureSummary) -> None:
        now = utcnow()
        for index in range(OFFER_COUNT):
            offer = Offer(
                partner_uuid=self.provider.choice(summary.partners).uuid,
                phone_uuid=self.provider.choice(summary.phones).uuid,
                creation_date=now - timedelta(days=index)
            )
            await self.offers.add(offer)
            summary.offers.append(offer)
