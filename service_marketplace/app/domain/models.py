"""
Entity models for the phones marketplace.
"""

import hashlib
import time
import uuid
from dataclasses import dataclass, field, fields, asdict
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple


DEFAULT_CACHE_TTL = 3600


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> str:
    return str(uuid.uuid4())


class PartnerRole(str, Enum):
    """Security roles granted to partners."""
    ADMIN = "ROLE_API_ADMIN"
    CONSUMER = "ROLE_API_CONSUMER"


class PartnerType(str, Enum):
    """Kind of business a partner runs."""
    STORE = "Magasin"
    SPECIALIST = "Spécialiste téléphonie"
    ONLINE = "Vente en ligne"


class PhoneType(str, Enum):
    """Commercial category of a phone."""
    PREMIUM = "Premium"
    EXCLUSIVE = "Exclusivité"
    REFURBISHED = "Reconditionné"
    GOOD_DEAL = "Bon plan"
    LOW_PRICE = "Petit prix"


class ClientType(str, Enum):
    """Kind of client a partner sells to."""
    INDIVIDUAL = "Particulier"
    PROFESSIONAL = "Professionnel"


class ResourceType(str, Enum):
    """What a cached URI represents."""
    COLLECTION = "collection"
    ENTITY = "entity"


PHONE_MIN_PRICE = Decimal("100")
PHONE_MAX_PRICE = Decimal("1200")


@dataclass
class Entity:
    """Base class of persisted entities.

    ``to_row``/``from_row`` map to storage rows (native types),
    ``to_cache``/``from_cache`` to JSON friendly payloads for the tagged cache.
    """

    ENTITY_NAME: ClassVar[str] = ""
    DATETIME_FIELDS: ClassVar[Tuple[str, ...]] = ("creation_date", "update_date")
    DECIMAL_FIELDS: ClassVar[Tuple[str, ...]] = ()

    @property
    def short_name(self) -> str:
        return self.ENTITY_NAME

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        for key, value in row.items():
            if isinstance(value, Enum):
                row[key] = value.value
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]):
        names = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in row.items() if key in names})

    def to_cache(self) -> Dict[str, Any]:
        data = self.to_row()
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = value.isoformat()
            elif isinstance(value, Decimal):
                data[key] = str(value)
        return data

    @classmethod
    def from_cache(cls, data: Dict[str, Any]):
        row = dict(data)
        for key in cls.DATETIME_FIELDS:
            if isinstance(row.get(key), str):
                row[key] = datetime.fromisoformat(row[key])
        for key in cls.DECIMAL_FIELDS:
            if row.get(key) is not None:
                row[key] = Decimal(str(row[key]))
        return cls.from_row(row)


@dataclass
class Partner(Entity):
    """API consumer account: a shop selling phones to its own clients."""

    ENTITY_NAME: ClassVar[str] = "Partner"

    type: str
    username: str
    email: str
    password: str
    roles: List[str] = field(default_factory=lambda: [PartnerRole.CONSUMER.value])
    uuid: str = field(default_factory=new_uuid)
    creation_date: datetime = field(default_factory=utcnow)
    update_date: datetime = field(default_factory=utcnow)

    @property
    def is_admin(self) -> bool:
        return PartnerRole.ADMIN.value in self.roles


@dataclass
class Phone(Entity):
    """Catalog phone."""

    ENTITY_NAME: ClassVar[str] = "Phone"
    DECIMAL_FIELDS: ClassVar[Tuple[str, ...]] = ("price",)

    type: str
    brand: str
    model: str
    color: str
    description: str
    price: Decimal
    uuid: str = field(default_factory=new_uuid)
    creation_date: datetime = field(default_factory=utcnow)
    update_date: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if not isinstance(self.price, Decimal):
            self.price = Decimal(str(self.price))
        self.price = self.price.quantize(Decimal("0.01"))


@dataclass
class Client(Entity):
    """Customer of a partner."""

    ENTITY_NAME: ClassVar[str] = "Client"

    type: str
    name: str
    email: str
    partner_uuid: str
    uuid: str = field(default_factory=new_uuid)
    creation_date: datetime = field(default_factory=utcnow)
    update_date: datetime = field(default_factory=utcnow)


@dataclass
class Offer(Entity):
    """Association of a phone with a partner selling it."""

    ENTITY_NAME: ClassVar[str] = "Offer"
    DATETIME_FIELDS: ClassVar[Tuple[str, ...]] = ("creation_date",)

    partner_uuid: str
    phone_uuid: str
    uuid: str = field(default_factory=new_uuid)
    creation_date: datetime = field(default_factory=utcnow)


def generate_etag_token(entry_uuid: str) -> str:
    """Opaque validator token derived from the entry id and the current time."""
    seed = f"{entry_uuid}{time.time_ns()}{uuid.uuid4().hex}"
    return hashlib.md5(seed.encode()).hexdigest()


@dataclass
class HTTPCacheEntry(Entity):
    """Cache metadata of one URI as seen by one partner."""

    ENTITY_NAME: ClassVar[str] = "HTTPCache"

    partner_uuid: str
    route_name: str
    request_uri: str
    type: ResourceType
    class_short_name: str
    resource_uuid: Optional[str] = None
    ttl_expiration: int = DEFAULT_CACHE_TTL
    uuid: str = field(default_factory=new_uuid)
    etag_token: str = ""
    creation_date: datetime = field(default_factory=utcnow)
    update_date: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.type = ResourceType(self.type)
        if not self.etag_token:
            self.etag_token = generate_etag_token(self.uuid)

    @property
    def is_collection(self) -> bool:
        return self.type is ResourceType.COLLECTION

    def touch(self) -> None:
        """Mark the represented content as changed: new validator, new date."""
        self.update_date = utcnow()
        self.etag_token = generate_etag_token(self.uuid)


@dataclass
class RefreshToken(Entity):
    """Long lived token exchanged for new JWTs."""

    ENTITY_NAME: ClassVar[str] = "RefreshToken"
    DATETIME_FIELDS: ClassVar[Tuple[str, ...]] = ("valid_until", "creation_date")

    refresh_token: str
    username: str
    valid_until: datetime
    uuid: str = field(default_factory=new_uuid)
    creation_date: datetime = field(default_factory=utcnow)

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        return self.valid_until > (now or utcnow())
