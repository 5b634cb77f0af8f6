"""
Notification Handlers — per-category dispatch for due jobs.

Every handler follows the same three steps:
  1. re-fetch the entity's current lifecycle state
  2. check it still justifies the notification (the state guard)
  3. hand the recipient and template params to the sender

The guard closes the race window between scheduling, suppression and
delivery: a job that slipped past cancellation finds the entity in a new
state and is skipped without sending.

The worker receives the composed table once at startup:

    table = build_dispatch_table(lookups, sender)
    worker = NotificationWorker(queue, table)
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from backend.connector import EntityLookup
from backend.sender import NotificationSender
from job_queue.message_queue import QueueJob
from models.schemas import (
    CapitalCallItemStatus as CC, CapitalCallJobCategory as CCJ, EntityFamily,
    InvestorJobCategory as IJ, InvestorStatus as INV, ProspectJobCategory as PJ,
    ProspectStatus as PS, TeamInviteJobCategory as TJ, TeamInviteStatus as TI,
    TrackedEntity, family_of, parse_payload,
)

logger = structlog.get_logger()


class NotificationSendError(Exception):
    """The sender reported a failed delivery; the job should be retried."""


class DispatchOutcome(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"


@dataclass
class DispatchResult:
    outcome: DispatchOutcome
    reason: Optional[str] = None
    message_id: str = ""

    @property
    def skipped(self) -> bool:
        return self.outcome == DispatchOutcome.SKIPPED

    @classmethod
    def sent(cls, message_id: str = "") -> DispatchResult:
        return cls(DispatchOutcome.SENT, message_id=message_id)

    @classmethod
    def skip(cls, reason: str) -> DispatchResult:
        return cls(DispatchOutcome.SKIPPED, reason=reason)


Handler = Callable[[QueueJob], Awaitable[DispatchResult]]


# ──────────────────────────────────────────────────────────────
#  State guards
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StateGuard:
    """
    `allowed` lists the states the notification assumes (empty = any);
    `blocked` lists states that always suppress it.
    """
    allowed: frozenset[str] = field(default_factory=frozenset)
    blocked: frozenset[str] = field(default_factory=frozenset)

    def permits(self, state: str) -> bool:
        if state in self.blocked:
            return False
        return not self.allowed or state in self.allowed


def _requires(*states: Enum) -> StateGuard:
    return StateGuard(allowed=frozenset(s.value for s in states))


def _unless(*states: Enum) -> StateGuard:
    return StateGuard(blocked=frozenset(s.value for s in states))


STATE_GUARDS: dict[str, StateGuard] = {
    # Prospects
    PJ.KYC_REMINDER_1.value: _requires(PS.KYC_SENT),
    PJ.KYC_REMINDER_2.value: _requires(PS.KYC_SENT),
    PJ.KYC_REMINDER_3.value: _requires(PS.KYC_SENT),
    PJ.KYC_NOT_ELIGIBLE.value: _requires(PS.NOT_ELIGIBLE),
    PJ.MEETING_REMINDER_24HR.value: _requires(PS.MEETING_SCHEDULED),
    PJ.MEETING_REMINDER_15MIN.value: _requires(PS.MEETING_SCHEDULED),
    PJ.MEETING_NOSHOW.value: _requires(PS.MEETING_SCHEDULED),
    PJ.POST_MEETING_PROCEED.value: _requires(PS.MEETING_COMPLETE),
    PJ.POST_MEETING_CONSIDERING.value: _requires(PS.CONSIDERING),
    PJ.POST_MEETING_NOT_FIT.value: _requires(PS.NOT_A_FIT),
    PJ.NURTURE_DAY15.value: _requires(PS.CONSIDERING),
    PJ.NURTURE_DAY23.value: _requires(PS.CONSIDERING),
    PJ.NURTURE_DAY30.value: _requires(PS.CONSIDERING),
    PJ.DORMANT_CLOSEOUT.value: _requires(PS.CONSIDERING),

    # Investors
    IJ.ONBOARDING_REMINDER_1.value: _requires(INV.ACCOUNT_CREATED, INV.ONBOARDING),
    IJ.ONBOARDING_REMINDER_2.value: _requires(INV.ACCOUNT_CREATED, INV.ONBOARDING),
    IJ.ONBOARDING_REMINDER_3.value: _requires(INV.ACCOUNT_CREATED, INV.ONBOARDING),
    IJ.SIGNATURE_REMINDER_1.value: _requires(INV.DOCUMENTS_SENT, INV.AWAITING_SIGNATURE),
    IJ.SIGNATURE_REMINDER_2.value: _requires(INV.DOCUMENTS_SENT, INV.AWAITING_SIGNATURE),

    # Capital-call line items
    CCJ.REMINDER_7D.value: _unless(CC.PAID, CC.CANCELLED),
    CCJ.REMINDER_3D.value: _unless(CC.PAID, CC.CANCELLED),
    CCJ.REMINDER_1D.value: _unless(CC.PAID, CC.CANCELLED),
    CCJ.PAST_DUE.value: _unless(CC.PAID, CC.CANCELLED),
    CCJ.PAST_DUE_7.value: _unless(CC.PAID, CC.CANCELLED, CC.DEFAULTED),

    # Team invites
    TJ.REMINDER_3D.value: _requires(TI.PENDING),
    TJ.REMINDER_5D.value: _requires(TI.PENDING),
}


# ──────────────────────────────────────────────────────────────
#  Template params
# ──────────────────────────────────────────────────────────────

def build_template_params(job: QueueJob, entity: TrackedEntity) -> dict[str, Any]:
    """Params handed to the sender; the platform owns the templates."""
    payload = parse_payload(job.payload)
    params: dict[str, Any] = {
        "template": job.category,
        "family": payload.family,
        "entity_id": payload.entity_id,
        "fund_id": payload.fund_id or entity.fund_id,
        "recipient_name": entity.display_name,
        "anchor": payload.anchor,
    }
    params.update(payload.metadata)
    return params


# ──────────────────────────────────────────────────────────────
#  Handler factory
# ──────────────────────────────────────────────────────────────

def make_guarded_handler(
    category: str,
    lookup: EntityLookup,
    sender: NotificationSender,
    guard: StateGuard = None,
) -> Handler:
    """Build the lookup → guard → send handler for one category."""
    guard = guard or STATE_GUARDS.get(category, StateGuard())

    async def handle(job: QueueJob) -> DispatchResult:
        entity = await lookup.get(job.entity_id)
        if entity is None:
            return DispatchResult.skip("entity not found")
        if not guard.permits(entity.state):
            return DispatchResult.skip(f"stale state: {entity.state}")
        if not entity.recipient:
            return DispatchResult.skip("no recipient")

        result = await sender.send(entity.recipient, build_template_params(job, entity))
        if not result.success:
            raise NotificationSendError(result.error or "send failed")
        return DispatchResult.sent(result.message_id)

    handle.__name__ = f"handle_{category}"
    return handle


def build_dispatch_table(
    lookups: dict[EntityFamily, EntityLookup],
    sender: NotificationSender,
) -> dict[str, Handler]:
    """
    One handler per known category, for every family a lookup is supplied
    for. Categories of families without a lookup stay unmapped and the
    worker skips them as unknown.
    """
    table: dict[str, Handler] = {}
    for category in STATE_GUARDS:
        family = family_of(category)
        lookup = lookups.get(family)
        if lookup is None:
            continue
        table[category] = make_guarded_handler(category, lookup, sender)
    logger.debug("dispatch_table_built",
                 families=sorted(f.value for f in lookups),
                 categories=len(table))
    return table
