"""
Domain layer for the Marketplace Service.

Holds the entities stored by the API, the events emitted when they change
and the pydantic schemas exchanged over HTTP.
"""

from .events import EntityAction, EntityEvent, EventDispatcher
from .models import Client, HTTPCacheEntry, Offer, Partner, Phone, RefreshToken

__all__ = [
    "Client",
    "EntityAction",
    "EntityEvent",
    "EventDispatcher",
    "HTTPCacheEntry",
    "Offer",
    "Partner",
    "Phone",
    "RefreshToken",
]
