"""
Per-resource authorization decisions.
"""

from typing import Any, Iterable, List, Tuple

from shared.errors import AuthorizationError
from ..domain.models import Client, Partner


class Voter:
    """Grants or denies one family of attributes on one kind of subject."""

    attributes: Tuple[str, ...] = ()
    subject_class: type = object

    def supports(self, attribute: str, subject: Any) -> bool:
        return attribute in self.attributes and isinstance(subject, self.subject_class)

    def vote(self, attribute: str, subject: Any, partner: Partner) -> bool:
        raise NotImplementedError


class PartnerVoter(Voter):
    """Partners may only view themselves, administrators anyone."""

    CAN_VIEW = "can_view"
    attributes = (CAN_VIEW,)
    subject_class = Partner

    def vote(self, attribute: str, subject: Partner, partner: Partner) -> bool:
        return partner.is_admin or subject.uuid == partner.uuid


class ClientVoter(Voter):
    """Partners may only view or delete their own clients, administrators any."""

    CAN_VIEW = "can_view"
    CAN_DELETE = "can_delete"
    attributes = (CAN_VIEW, CAN_DELETE)
    subject_class = Client

    def vote(self, attribute: str, subject: Client, partner: Partner) -> bool:
        return partner.is_admin or subject.partner_uuid == partner.uuid


class AccessDecisionManager:
    """Affirmative strategy: granted as soon as one supporting voter grants."""

    def __init__(self, voters: Iterable[Voter]):
        self.voters: List[Voter] = list(voters)

    def is_granted(self, partner: Partner, attribute: str, subject: Any) -> bool:
        return any(
            voter.vote(attribute, subject, partner)
            for voter in self.voters
            if voter.supports(attribute, subject)
        )

    def deny_access_unless_granted(self, partner: Partner, attribute: str, subject: Any, message: str) -> None:
        if not self.is_granted(partner, attribute, subject):
            raise AuthorizationError(message)
