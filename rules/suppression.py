"""
Suppression Engine — cancels pending notifications made irrelevant by a
lifecycle state transition.

The rule table is declarative and exhaustive: a transition that matches no
rule cancels nothing. Cancellation is best-effort. A job that is already
executing cannot be cancelled; the worker's state re-check is what keeps it
from sending.
"""
from __future__ import annotations

import asyncio
import structlog
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from job_queue.identity import job_key
from job_queue.message_queue import DelayedQueue, QueueError
from models.schemas import (
    CapitalCallItemStatus as CC, EntityFamily, EventGroup, InvestorStatus as INV,
    ProspectStatus as PS, SuppressionRule, TeamInviteStatus as TI,
)
from rules.schedule_policy import categories_for

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Category sets
# ──────────────────────────────────────────────────────────────

PROSPECT_KYC = categories_for(EventGroup.KYC_SENT)
PROSPECT_MEETING = categories_for(EventGroup.MEETING_BOOKED)
PROSPECT_NURTURE = categories_for(EventGroup.MARKED_CONSIDERING)
PROSPECT_ALL = PROSPECT_KYC | PROSPECT_MEETING | PROSPECT_NURTURE

INVESTOR_ONBOARDING = categories_for(EventGroup.INVESTOR_ACCOUNT_CREATED)
INVESTOR_SIGNATURE = categories_for(EventGroup.INVESTOR_DOCUMENTS_SENT)
INVESTOR_ALL = INVESTOR_ONBOARDING | INVESTOR_SIGNATURE

CAPITAL_CALL_REMINDERS = categories_for(EventGroup.CAPITAL_CALL_REMINDERS)
CAPITAL_CALL_PAST_DUE = categories_for(EventGroup.CAPITAL_CALL_PAST_DUE)
CAPITAL_CALL_ALL = CAPITAL_CALL_REMINDERS | CAPITAL_CALL_PAST_DUE

TEAM_INVITE_ALL = categories_for(EventGroup.TEAM_INVITE_SENT)

FAMILY_CATEGORIES: dict[EntityFamily, frozenset[str]] = {
    EntityFamily.PROSPECT: PROSPECT_ALL,
    EntityFamily.INVESTOR: INVESTOR_ALL,
    EntityFamily.CAPITAL_CALL: CAPITAL_CALL_ALL,
    EntityFamily.TEAM_INVITE: TEAM_INVITE_ALL,
}


def _rule(family, new_state, categories, from_states=None, except_from=(), description=""):
    return SuppressionRule(
        family=family,
        new_state=new_state.value,
        categories=frozenset(categories),
        from_states=frozenset(s.value for s in from_states) if from_states else frozenset({"*"}),
        except_from=frozenset(s.value for s in except_from),
        description=description,
    )


# ──────────────────────────────────────────────────────────────
#  Rule table
# ──────────────────────────────────────────────────────────────

SUPPRESSION_RULES: tuple[SuppressionRule, ...] = (
    # Prospects
    _rule(EntityFamily.PROSPECT, PS.KYC_SUBMITTED, PROSPECT_KYC, [PS.KYC_SENT],
          description="KYC submitted"),
    _rule(EntityFamily.PROSPECT, PS.PRE_QUALIFIED, PROSPECT_KYC, [PS.KYC_SENT],
          description="KYC approved"),
    _rule(EntityFamily.PROSPECT, PS.NOT_ELIGIBLE, PROSPECT_KYC, [PS.KYC_SENT],
          description="KYC not eligible"),
    _rule(EntityFamily.PROSPECT, PS.MEETING_COMPLETE, PROSPECT_MEETING, [PS.MEETING_SCHEDULED],
          description="Meeting held"),
    _rule(EntityFamily.PROSPECT, PS.ACCOUNT_INVITE_SENT, PROSPECT_NURTURE, [PS.CONSIDERING],
          description="Ready to invest"),
    _rule(EntityFamily.PROSPECT, PS.NOT_A_FIT, PROSPECT_ALL,
          description="Closed out"),

    # Investors
    _rule(EntityFamily.INVESTOR, INV.DOCUMENTS_PENDING, INVESTOR_ONBOARDING, [INV.ACCOUNT_CREATED],
          description="Profile completed"),
    _rule(EntityFamily.INVESTOR, INV.DOCUMENTS_SIGNED, INVESTOR_SIGNATURE, [INV.DOCUMENTS_SENT],
          description="Documents signed"),
    _rule(EntityFamily.INVESTOR, INV.INACTIVE, INVESTOR_ALL,
          description="Investor deactivated"),
    _rule(EntityFamily.INVESTOR, INV.ACTIVE, INVESTOR_ALL,
          description="Investor converted"),

    # Capital-call line items
    _rule(EntityFamily.CAPITAL_CALL, CC.PAID, CAPITAL_CALL_ALL, except_from=[CC.PAID],
          description="Wire received"),
    _rule(EntityFamily.CAPITAL_CALL, CC.CANCELLED, CAPITAL_CALL_ALL,
          description="Capital call cancelled"),
    _rule(EntityFamily.CAPITAL_CALL, CC.DEFAULTED, CAPITAL_CALL_PAST_DUE,
          description="Default notice takes over"),

    # Team invites
    _rule(EntityFamily.TEAM_INVITE, TI.ACCEPTED, TEAM_INVITE_ALL, [TI.PENDING],
          description="Invite accepted"),
    _rule(EntityFamily.TEAM_INVITE, TI.CANCELLED, TEAM_INVITE_ALL, [TI.PENDING],
          description="Invite revoked"),
    _rule(EntityFamily.TEAM_INVITE, TI.EXPIRED, TEAM_INVITE_ALL, [TI.PENDING],
          description="Invite expired"),
)


def _value(state: Union[str, Enum, None]) -> Optional[str]:
    if state is None:
        return None
    return state.value if isinstance(state, Enum) else str(state)


def match_rules(
    family: EntityFamily,
    new_state: Union[str, Enum],
    previous_state: Union[str, Enum, None],
    rules: tuple[SuppressionRule, ...] = SUPPRESSION_RULES,
) -> list[SuppressionRule]:
    family = EntityFamily(family)
    return [r for r in rules if r.matches(family, _value(new_state), _value(previous_state))]


def categories_to_cancel(family, new_state, previous_state, rules=SUPPRESSION_RULES) -> frozenset[str]:
    """Union of the cancellation sets of every rule matched by the transition."""
    matched = match_rules(family, new_state, previous_state, rules)
    return frozenset().union(*(r.categories for r in matched))


# ──────────────────────────────────────────────────────────────
#  Engine
# ──────────────────────────────────────────────────────────────

@dataclass
class SuppressionResult:
    entity_id: str
    rules: list[str] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)     # keys removed from the queue
    not_pending: list[str] = field(default_factory=list)   # keys with nothing to cancel
    errors: dict[str, str] = field(default_factory=dict)   # key -> broker error

    @property
    def cancelled_count(self) -> int:
        return len(self.cancelled)


class SuppressionEngine:
    """
    Looks transitions up in the rule table and cancels matching job keys.
    Never raises to the caller of the business action.
    """

    def __init__(self, queue: DelayedQueue, rules: tuple[SuppressionRule, ...] = SUPPRESSION_RULES):
        self.queue = queue
        self.rules = rules

    async def on_transition(
        self,
        family: EntityFamily,
        entity_id: str,
        new_state: Union[str, Enum],
        previous_state: Union[str, Enum, None] = None,
    ) -> SuppressionResult:
        result = SuppressionResult(entity_id=entity_id)
        matched = match_rules(family, new_state, previous_state, self.rules)
        if not matched:
            return result

        result.rules = [r.description or r.new_state for r in matched]
        categories = frozenset().union(*(r.categories for r in matched))
        await self.cancel_categories(categories, entity_id, result)

        logger.info("notifications_suppressed",
                    family=EntityFamily(family).value,
                    entity_id=entity_id,
                    new_state=_value(new_state),
                    previous_state=_value(previous_state),
                    rules=result.rules,
                    cancelled=result.cancelled_count)
        return result

    async def cancel_categories(
        self,
        categories,
        entity_id: str,
        result: SuppressionResult = None,
    ) -> SuppressionResult:
        """Cancel every category for one entity; collects per-key outcomes."""
        result = result or SuppressionResult(entity_id=entity_id)
        if not self.queue.is_available:
            logger.warning("queue_unavailable",
                           action="suppress",
                           entity_id=entity_id)
            return result

        keys = [job_key(c, entity_id) for c in sorted(categories)]
        outcomes = await asyncio.gather(
            *(self.queue.cancel(k) for k in keys), return_exceptions=True,
        )
        for key, outcome in zip(keys, outcomes):
            if isinstance(outcome, QueueError):
                result.errors[key] = str(outcome)
                logger.warning("notification_cancel_failed", key=key, error=str(outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            elif outcome:
                result.cancelled.append(key)
            else:
                result.not_pending.append(key)
        return result
