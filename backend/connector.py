"""
Entity State Lookup — read-only access to the platform's tracked entities.

The scheduling core never owns entity data; it only asks "what state is
this prospect / investor / capital-call item / invite in right now?" at
dispatch time. A missing entity is a normal answer (None), not an error.
"""
from __future__ import annotations

import abc
import structlog
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import BackendConfig
from models.schemas import EntityFamily, TrackedEntity

logger = structlog.get_logger()

FAMILY_ENDPOINTS: dict[EntityFamily, str] = {
    EntityFamily.PROSPECT: "get_prospect",
    EntityFamily.INVESTOR: "get_investor",
    EntityFamily.CAPITAL_CALL: "get_capital_call_item",
    EntityFamily.TEAM_INVITE: "get_team_invite",
}


class EntityLookupError(Exception):
    """The entity store could not be reached; the job should be retried."""


class EntityLookup(abc.ABC):
    """Abstract base for per-family entity lookups."""

    family: EntityFamily

    @abc.abstractmethod
    async def get(self, entity_id: str) -> Optional[TrackedEntity]:
        """Return the entity, or None if it does not exist."""
        ...

    async def close(self):
        pass


class InMemoryEntityLookup(EntityLookup):
    """Dict-backed lookup for development and tests."""

    def __init__(self, family: EntityFamily, entities: list[TrackedEntity] = None):
        self.family = EntityFamily(family)
        self._entities: dict[str, TrackedEntity] = {e.id: e for e in entities or []}

    def put(self, entity: TrackedEntity):
        self._entities[entity.id] = entity

    def set_state(self, entity_id: str, state: str):
        self._entities[entity_id] = self._entities[entity_id].model_copy(update={"state": state})

    async def get(self, entity_id: str) -> Optional[TrackedEntity]:
        return self._entities.get(entity_id)


class RESTEntityLookup(EntityLookup):
    """
    Fetches one entity family from the platform REST API.

    The endpoint template comes from BackendConfig.endpoints, e.g.
    "get_prospect": "/prospects/{id}". A 404 maps to None.
    """

    def __init__(self, family: EntityFamily, config: BackendConfig, client: httpx.AsyncClient = None):
        self.family = EntityFamily(family)
        self.config = config
        self.client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers=auth_headers(self.config),
                timeout=self.config.timeout,
            )
        return self.client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _fetch(self, url: str) -> Optional[dict[str, Any]]:
        client = await self._get_client()
        response = await client.get(url)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    async def get(self, entity_id: str) -> Optional[TrackedEntity]:
        template = self.config.endpoints.get(FAMILY_ENDPOINTS[self.family], "")
        url = template.replace("{id}", entity_id)
        try:
            raw = await self._fetch(url)
        except httpx.HTTPError as e:
            logger.error("entity_lookup_failed",
                         family=self.family.value,
                         entity_id=entity_id,
                         error=str(e))
            raise EntityLookupError(f"{self.family.value} {entity_id}: {e}") from e
        if raw is None:
            return None
        return self.normalize(raw.get("data", raw), entity_id)

    def normalize(self, raw: dict[str, Any], entity_id: str) -> TrackedEntity:
        """
        Convert the platform's JSON to a TrackedEntity.
        Override in a subclass if the API uses different field names.
        """
        first = raw.get("first_name", raw.get("firstName", ""))
        last = raw.get("last_name", raw.get("lastName", ""))
        return TrackedEntity(
            id=str(raw.get("id", entity_id)),
            family=self.family,
            fund_id=str(raw.get("fund_id", raw.get("fundId", ""))),
            state=str(raw.get("status", "")),
            recipient=raw.get("email", raw.get("recipient_email", "")),
            display_name=raw.get("display_name", f"{first} {last}".strip()),
            attributes=raw,
        )

    async def close(self):
        if self.client and not self.client.is_closed:
            await self.client.aclose()


def auth_headers(config: BackendConfig) -> dict[str, str]:
    headers = {}
    if config.auth_type == "bearer":
        token = config.auth_credentials.get("token", "")
        headers["Authorization"] = f"Bearer {token}"
    elif config.auth_type == "api_key":
        key_name = config.auth_credentials.get("header_name", "X-API-Key")
        headers[key_name] = config.auth_credentials.get("api_key", "")
    return headers


def create_rest_lookups(config: BackendConfig) -> dict[EntityFamily, EntityLookup]:
    return {family: RESTEntityLookup(family, config) for family in EntityFamily}
