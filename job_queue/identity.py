"""
Job Identity — deterministic keys for enqueue dedup and cancellation.

Two conventions are in use and both are stable across restarts:

  prospect jobs        {category}:{entity_id}
  every other family   {category}:{family}:{entity_id}

Prospect keys predate the other families and keep the short form so that
jobs already sitting in the broker stay cancellable.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional, Union

from models.schemas import EntityFamily, family_of

# family -> namespace segment inserted between category and id
FAMILY_NAMESPACES: dict[EntityFamily, Optional[str]] = {
    EntityFamily.PROSPECT: None,
    EntityFamily.INVESTOR: "investor",
    EntityFamily.CAPITAL_CALL: "capital_call",
    EntityFamily.TEAM_INVITE: "team_invite",
}


def job_key(category: Union[str, Enum], entity_id: str) -> str:
    """Derive the deterministic job key for (category, entity_id)."""
    value = category.value if isinstance(category, Enum) else str(category)
    family = family_of(value)
    if family is None:
        raise ValueError(f"Unknown job category '{value}'")
    namespace = FAMILY_NAMESPACES[family]
    if namespace is None:
        return f"{value}:{entity_id}"
    return f"{value}:{namespace}:{entity_id}"


def parse_job_key(key: str) -> tuple[str, EntityFamily, str]:
    """Split a job key back into (category, family, entity_id)."""
    category, _, rest = key.partition(":")
    family = family_of(category)
    if family is None or not rest:
        raise ValueError(f"Malformed job key '{key}'")
    namespace = FAMILY_NAMESPACES[family]
    if namespace is not None:
        prefix = f"{namespace}:"
        if not rest.startswith(prefix):
            raise ValueError(f"Job key '{key}' is missing namespace '{namespace}'")
        rest = rest[len(prefix):]
    return category, family, rest
