"""
Tests — Suppression rule table and engine.

Run:
  pytest tests/test_suppression.py -v
"""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from core.scheduler import NotificationScheduler
from job_queue.message_queue import QueueUnavailableError
from models.schemas import (
    CapitalCallItemStatus as CC, EntityFamily, EventGroup, InvestorStatus as INV,
    ProspectStatus as PS, TeamInviteStatus as TI,
)
from rules.suppression import (
    CAPITAL_CALL_ALL, CAPITAL_CALL_PAST_DUE, PROSPECT_ALL, PROSPECT_KYC, SUPPRESSION_RULES,
    SuppressionEngine, categories_to_cancel, match_rules,
)


class TestRuleTable:
    """Pure lookups against the static rule table."""

    def test_paid_from_pending_cancels_everything(self):
        assert categories_to_cancel(EntityFamily.CAPITAL_CALL, CC.PAID, CC.PENDING) == CAPITAL_CALL_ALL
        assert len(CAPITAL_CALL_ALL) == 5

    def test_paid_from_paid_is_not_a_transition(self):
        assert categories_to_cancel(EntityFamily.CAPITAL_CALL, CC.PAID, CC.PAID) == frozenset()

    def test_defaulted_cancels_only_past_due(self):
        assert categories_to_cancel(EntityFamily.CAPITAL_CALL, CC.DEFAULTED, CC.PAST_DUE) == CAPITAL_CALL_PAST_DUE

    def test_unrelated_transition_cancels_nothing(self):
        assert categories_to_cancel(EntityFamily.CAPITAL_CALL, CC.NEW, CC.PENDING) == frozenset()

    def test_from_state_must_match(self):
        assert categories_to_cancel(EntityFamily.PROSPECT, PS.KYC_SUBMITTED, PS.KYC_SENT) == PROSPECT_KYC
        assert categories_to_cancel(EntityFamily.PROSPECT, PS.KYC_SUBMITTED, PS.CONSIDERING) == frozenset()

    def test_not_a_fit_from_any_state(self):
        for previous in (PS.KYC_SENT, PS.MEETING_SCHEDULED, PS.CONSIDERING, None):
            assert categories_to_cancel(EntityFamily.PROSPECT, PS.NOT_A_FIT, previous) == PROSPECT_ALL

    def test_family_scoped(self):
        # "pending → cancelled" means something for invites, not for capital calls
        assert match_rules(EntityFamily.TEAM_INVITE, TI.CANCELLED, TI.PENDING)
        assert not match_rules(EntityFamily.PROSPECT, "cancelled", "pending")

    def test_investor_rules(self):
        onboarding = categories_to_cancel(EntityFamily.INVESTOR, INV.DOCUMENTS_PENDING, INV.ACCOUNT_CREATED)
        assert onboarding == {"onboarding_reminder_1", "onboarding_reminder_2", "onboarding_reminder_3"}
        assert len(categories_to_cancel(EntityFamily.INVESTOR, INV.INACTIVE, INV.DOCUMENTS_SENT)) == 5

    def test_string_states_accepted(self):
        assert categories_to_cancel("capital_call", "defaulted", "past_due") == CAPITAL_CALL_PAST_DUE

    def test_rules_are_immutable(self):
        rule = SUPPRESSION_RULES[0]
        with pytest.raises(Exception):
            rule.new_state = "other"


class TestSuppressionEngine:

    @pytest.mark.asyncio
    async def test_paid_cancels_pending_reminders(self, memory_queue, now):
        scheduler = NotificationScheduler(memory_queue, clock=lambda: now)
        await scheduler.schedule(EventGroup.CAPITAL_CALL_REMINDERS, "cci-1", "fund-1", now + timedelta(days=20))
        await scheduler.schedule(EventGroup.CAPITAL_CALL_PAST_DUE, "cci-1", "fund-1", now + timedelta(days=20))
        await scheduler.schedule(EventGroup.CAPITAL_CALL_REMINDERS, "cci-2", "fund-1", now + timedelta(days=20))

        engine = SuppressionEngine(memory_queue)
        result = await engine.on_transition(EntityFamily.CAPITAL_CALL, "cci-1", CC.PAID, CC.PENDING)

        assert result.cancelled_count == 5
        assert result.rules == ["Wire received"]
        # the sibling line item is untouched
        assert await memory_queue.pending_count() == 3

    @pytest.mark.asyncio
    async def test_defaulted_keeps_reminders(self, memory_queue, now):
        scheduler = NotificationScheduler(memory_queue, clock=lambda: now)
        await scheduler.schedule(EventGroup.CAPITAL_CALL_REMINDERS, "cci-1", "fund-1", now + timedelta(days=20))
        await scheduler.schedule(EventGroup.CAPITAL_CALL_PAST_DUE, "cci-1", "fund-1", now + timedelta(days=20))

        result = await SuppressionEngine(memory_queue).on_transition(
            EntityFamily.CAPITAL_CALL, "cci-1", CC.DEFAULTED, CC.PAST_DUE,
        )
        assert result.cancelled_count == 2
        assert await memory_queue.pending_count() == 3

    @pytest.mark.asyncio
    async def test_unrelated_transition_makes_no_calls(self, now):
        queue = AsyncMock()
        queue.is_available = True
        result = await SuppressionEngine(queue).on_transition(
            EntityFamily.CAPITAL_CALL, "cci-1", CC.NEW, CC.PENDING,
        )
        assert result.cancelled_count == 0
        queue.cancel.assert_not_called()

    @pytest.mark.asyncio
    async def test_not_a_fit_clears_every_prospect_sequence(self, memory_queue, now):
        scheduler = NotificationScheduler(memory_queue, clock=lambda: now)
        await scheduler.schedule(EventGroup.KYC_SENT, "p-1", "fund-1", now)
        await scheduler.schedule(EventGroup.MARKED_CONSIDERING, "p-1", "fund-1", now)

        result = await SuppressionEngine(memory_queue).on_transition(
            EntityFamily.PROSPECT, "p-1", PS.NOT_A_FIT, PS.CONSIDERING,
        )
        assert result.cancelled_count == 7
        assert len(result.not_pending) == len(PROSPECT_ALL) - 7
        assert await memory_queue.pending_count() == 0

    @pytest.mark.asyncio
    async def test_cancelling_twice_is_a_no_op(self, memory_queue, now):
        engine = SuppressionEngine(memory_queue)
        first = await engine.on_transition(EntityFamily.TEAM_INVITE, "t-1", TI.ACCEPTED, TI.PENDING)
        second = await engine.on_transition(EntityFamily.TEAM_INVITE, "t-1", TI.ACCEPTED, TI.PENDING)
        assert first.cancelled_count == second.cancelled_count == 0
        assert len(second.not_pending) == 2

    @pytest.mark.asyncio
    async def test_unavailable_queue(self, unavailable_queue):
        result = await SuppressionEngine(unavailable_queue).on_transition(
            EntityFamily.CAPITAL_CALL, "cci-1", CC.PAID, CC.PENDING,
        )
        assert result.cancelled_count == 0
        unavailable_queue.cancel.assert_not_called()

    @pytest.mark.asyncio
    async def test_broker_errors_are_collected(self, memory_queue, now):
        memory_queue.cancel = AsyncMock(side_effect=QueueUnavailableError("timeout"))
        result = await SuppressionEngine(memory_queue).on_transition(
            EntityFamily.TEAM_INVITE, "t-1", TI.EXPIRED, TI.PENDING,
        )
        assert set(result.errors) == {
            "team_invite_reminder_3d:team_invite:t-1",
            "team_invite_reminder_5d:team_invite:t-1",
        }
