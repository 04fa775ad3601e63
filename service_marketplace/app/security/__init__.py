"""
Security helpers for the Marketplace Service.
"""

from .passwords import PasswordHasher, is_strong_password
from .voters import AccessDecisionManager, ClientVoter, PartnerVoter

__all__ = [
    "AccessDecisionManager",
    "ClientVoter",
    "PartnerVoter",
    "PasswordHasher",
    "is_strong_password",
]
