"""
Request and response models of the marketplace API.

List views expose the fields needed to browse a collection, detail views
everything a partner may read about a single resource.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .models import ClientType


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")


class LoginRequest(BaseModel):
    """Credentials posted to the login check route."""
    email: str = Field(..., description="Partner e-mail")
    password: str = Field(..., description="Partner password")


class RefreshTokenRequest(BaseModel):
    """Refresh token exchange request."""
    refresh_token: str = Field(..., description="Refresh token issued at login")


class TokenResponse(BaseModel):
    """JWT pair returned by authentication routes."""
    token: str = Field(..., description="Signed JWT")
    refresh_token: str = Field(..., description="Refresh token")


class ClientCreateRequest(BaseModel):
    """Payload of client creation routes."""
    model_config = ConfigDict(str_strip_whitespace=True)

    type: str = Field(..., description="Client type")
    name: str = Field(..., description="Client name")
    email: str = Field(..., description="Client e-mail")

    @field_validator("type")
    @classmethod
    def validate_type(cls, value: str) -> str:
        allowed = [client_type.value for client_type in ClientType]
        if value not in allowed:
            raise ValueError(f"Please select a client type among: {', '.join(allowed)}.")
        return value

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        if not value:
            raise ValueError("Please provide a client name.")
        if len(value) > 45:
            raise ValueError("The client name must not exceed 45 characters.")
        return value

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        if not value:
            raise ValueError("Please provide a client e-mail.")
        if not EMAIL_PATTERN.match(value):
            raise ValueError("Please provide a valid client e-mail.")
        return value.lower()


def field_errors(exc: PydanticValidationError) -> Dict[str, str]:
    """Flatten pydantic errors into a field to message map."""
    errors: Dict[str, str] = {}
    for error in exc.errors():
        name = ".".join(str(part) for part in error["loc"]) or "body"
        if error["type"] == "value_error":
            message = str(error["ctx"]["error"])
        elif error["type"] == "missing":
            message = "This value should not be blank."
        else:
            message = error["msg"]
        errors.setdefault(name, message)
    return errors


class _View(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class PartnerListView(_View):
    uuid: str
    type: str
    username: str
    email: str


class PartnerDetailView(PartnerListView):
    creation_date: datetime
    update_date: datetime


class PhoneListView(_View):
    uuid: str
    type: str
    brand: str
    model: str
    price: Decimal


class PhoneDetailView(PhoneListView):
    color: str
    description: str
    creation_date: datetime
    update_date: datetime


class ClientListView(_View):
    uuid: str
    type: str
    name: str
    email: str


class ClientDetailView(ClientListView):
    partner_uuid: str
    creation_date: datetime
    update_date: datetime


class OfferListView(_View):
    uuid: str
    creation_date: datetime
    partner: PartnerListView
    phone: PhoneListView


class OfferDetailView(_View):
    uuid: str
    creation_date: datetime
    partner: PartnerDetailView
    phone: PhoneDetailView


def dump(view: type, source: Any) -> Dict[str, Any]:
    """Validate ``source`` against a view and dump it JSON ready."""
    return view.model_validate(source).model_dump(mode="json")
