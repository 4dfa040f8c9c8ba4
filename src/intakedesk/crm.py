import asyncio
import httpx
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

HUBSPOT_API_URL = "https://api.hubapi.com"

CONTACT_PROPERTIES = [
    "email", "firstname", "lastname",
    "hs_team", "team", "department", "business_unit",
    "hs_team_id", "team_id",
]
TEAM_PROPERTIES = ("hs_team", "team", "department", "business_unit")
TEAM_ID_PROPERTIES = ("hs_team_id", "team_id")


@dataclass
class Contact:
    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    team: str = ""
    team_id: str = ""


def _first_present(properties: dict, keys) -> str:
    for key in keys:
        if properties.get(key):
            return properties[key]
    return ""


def contact_from_result(result: dict, fallback_email: str = "") -> Contact:
    properties = result.get("properties") or {}
    first = properties.get("firstname") or ""
    last = properties.get("lastname") or ""
    return Contact(
        id=str(result["id"]),
        email=properties.get("email") or fallback_email,
        first_name=first,
        last_name=last,
        full_name=f"{first} {last}".strip(),
        team=_first_present(properties, TEAM_PROPERTIES),
        team_id=_first_present(properties, TEAM_ID_PROPERTIES),
    )


class CrmClient:
    """HubSpot contact lookup used to enrich a user's name and team.

    Enrichment is optional: failures are logged and reported as "not found".
    Retries once with a short backoff.
    """

    def __init__(
        self,
        access_token: str,
        base_url: str = HUBSPOT_API_URL,
        timeout: float = 10.0,
        retry_delay: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_delay = retry_delay
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {access_token}",
                },
                timeout=self.timeout,
            )

    async def close(self):
        await self._client.aclose()

    async def _post_with_retry(self, path: str, payload: dict, label: str) -> Optional[dict]:
        for attempt in range(2):
            try:
                resp = await self._client.post(path, json=payload)
                resp.raise_for_status()
                return resp.json()
            except (httpx.HTTPError, ValueError) as e:
                if attempt == 0:
                    logger.warning("%s failed (attempt 1), retrying in %.0fs: %s", label, self.retry_delay, e)
                    await asyncio.sleep(self.retry_delay)
                else:
                    logger.error("%s failed after retry: %s", label, e)
        return None

    async def lookup_contact_by_email(self, email: str) -> Optional[Contact]:
        body = await self._post_with_retry(
            "/crm/v3/objects/contacts/search",
            {
                "query": email,
                "limit": 1,
                "filterGroups": [
                    {"filters": [{"propertyName": "email", "operator": "EQ", "value": email}]},
                ],
                "properties": CONTACT_PROPERTIES,
            },
            "CRM contact lookup",
        )
        if not isinstance(body, dict) or not body.get("results"):
            return None
        return contact_from_result(body["results"][0], fallback_email=email)
