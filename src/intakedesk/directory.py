import logging
from dataclasses import dataclass, field
from datetime import datetime

from intakedesk.crm import Contact, CrmClient
from intakedesk.session import new_session_id, utcnow

logger = logging.getLogger(__name__)


@dataclass
class UserProfile:
    email: str
    id: str = field(default_factory=new_session_id)
    name: str = ""
    external_contact_id: str = ""
    team: str = ""
    team_id: str = ""
    last_login: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "externalContactId": self.external_contact_id,
            "team": self.team,
            "teamId": self.team_id,
        }


class UserDirectory:
    """Trust-on-email identification with optional CRM enrichment.

    An explicitly supplied name wins over the CRM name, which wins over the
    name already on file.  Same precedence for team fields, minus the
    explicit override.
    """

    def __init__(self, crm: CrmClient | None = None, clock=utcnow):
        self.crm = crm
        self._clock = clock
        self._users: dict[str, UserProfile] = {}

    async def identify(self, email: str, name: str = "") -> UserProfile:
        contact: Contact | None = None
        if self.crm is not None:
            contact = await self.crm.lookup_contact_by_email(email)
            if contact is None:
                logger.info("No CRM contact for %s", email)

        profile = self._users.get(email) or UserProfile(email=email)
        if contact is not None:
            profile.name = name or contact.full_name or profile.name
            profile.external_contact_id = contact.id or profile.external_contact_id
            profile.team = contact.team or profile.team
            profile.team_id = contact.team_id or profile.team_id
        else:
            profile.name = name or profile.name
        profile.last_login = self._clock()
        self._users[email] = profile
        return profile
