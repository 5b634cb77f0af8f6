"""
Schedule Policy Table — per business event, the ordered (category, offset) steps.

Offsets are measured from the event's anchor timestamp. BEFORE_ANCHOR steps
fire ahead of the anchor (meeting time, payment deadline); AFTER_ANCHOR steps
fire after it. The table is static and never mutated at runtime.
"""
from __future__ import annotations

from datetime import timedelta

from models.schemas import (
    CapitalCallJobCategory, EntityFamily, EventGroup, InvestorJobCategory,
    OffsetDirection, ProspectJobCategory, SchedulePolicyEntry, TeamInviteJobCategory,
)

MINUTES = timedelta(minutes=1)
HOURS = timedelta(hours=1)
DAYS = timedelta(days=1)

AFTER = OffsetDirection.AFTER_ANCHOR
BEFORE = OffsetDirection.BEFORE_ANCHOR

TEAM_INVITE_EXPIRY = 7 * DAYS


def _entry(group: EventGroup, category, offset: timedelta, direction=AFTER, **metadata) -> SchedulePolicyEntry:
    return SchedulePolicyEntry(
        event_group=group,
        category=category.value,
        offset=offset,
        direction=direction,
        metadata=metadata,
    )


def _invite_reminder(category, offset: timedelta) -> SchedulePolicyEntry:
    days_remaining = (TEAM_INVITE_EXPIRY - offset).days
    return _entry(EventGroup.TEAM_INVITE_SENT, category, offset, days_remaining=days_remaining)


SCHEDULE_POLICIES: dict[EventGroup, tuple[SchedulePolicyEntry, ...]] = {
    # anchor = KYC form sent
    EventGroup.KYC_SENT: (
        _entry(EventGroup.KYC_SENT, ProspectJobCategory.KYC_REMINDER_1, 48 * HOURS),
        _entry(EventGroup.KYC_SENT, ProspectJobCategory.KYC_REMINDER_2, 5 * DAYS),
        _entry(EventGroup.KYC_SENT, ProspectJobCategory.KYC_REMINDER_3, 10 * DAYS),
    ),
    # anchor = meeting time
    EventGroup.MEETING_BOOKED: (
        _entry(EventGroup.MEETING_BOOKED, ProspectJobCategory.MEETING_REMINDER_24HR, 24 * HOURS, BEFORE),
        _entry(EventGroup.MEETING_BOOKED, ProspectJobCategory.MEETING_REMINDER_15MIN, 15 * MINUTES, BEFORE),
        _entry(EventGroup.MEETING_BOOKED, ProspectJobCategory.MEETING_NOSHOW, 30 * MINUTES),
    ),
    # anchor = prospect marked "considering"
    EventGroup.MARKED_CONSIDERING: (
        _entry(EventGroup.MARKED_CONSIDERING, ProspectJobCategory.NURTURE_DAY15, 15 * DAYS),
        _entry(EventGroup.MARKED_CONSIDERING, ProspectJobCategory.NURTURE_DAY23, 23 * DAYS),
        _entry(EventGroup.MARKED_CONSIDERING, ProspectJobCategory.NURTURE_DAY30, 30 * DAYS),
        _entry(EventGroup.MARKED_CONSIDERING, ProspectJobCategory.DORMANT_CLOSEOUT, 31 * DAYS),
    ),
    # anchor = payment deadline
    EventGroup.CAPITAL_CALL_REMINDERS: (
        _entry(EventGroup.CAPITAL_CALL_REMINDERS, CapitalCallJobCategory.REMINDER_7D, 7 * DAYS, BEFORE),
        _entry(EventGroup.CAPITAL_CALL_REMINDERS, CapitalCallJobCategory.REMINDER_3D, 3 * DAYS, BEFORE),
        _entry(EventGroup.CAPITAL_CALL_REMINDERS, CapitalCallJobCategory.REMINDER_1D, 1 * DAYS, BEFORE),
    ),
    # anchor = payment deadline
    EventGroup.CAPITAL_CALL_PAST_DUE: (
        _entry(EventGroup.CAPITAL_CALL_PAST_DUE, CapitalCallJobCategory.PAST_DUE, timedelta(0)),
        _entry(EventGroup.CAPITAL_CALL_PAST_DUE, CapitalCallJobCategory.PAST_DUE_7, 7 * DAYS),
    ),
    # anchor = invite sent; invites expire after TEAM_INVITE_EXPIRY
    EventGroup.TEAM_INVITE_SENT: (
        _invite_reminder(TeamInviteJobCategory.REMINDER_3D, 3 * DAYS),
        _invite_reminder(TeamInviteJobCategory.REMINDER_5D, 5 * DAYS),
    ),
    # anchor = investor account created
    EventGroup.INVESTOR_ACCOUNT_CREATED: (
        _entry(EventGroup.INVESTOR_ACCOUNT_CREATED, InvestorJobCategory.ONBOARDING_REMINDER_1, 48 * HOURS),
        _entry(EventGroup.INVESTOR_ACCOUNT_CREATED, InvestorJobCategory.ONBOARDING_REMINDER_2, 96 * HOURS),
        _entry(EventGroup.INVESTOR_ACCOUNT_CREATED, InvestorJobCategory.ONBOARDING_REMINDER_3, 144 * HOURS),
    ),
    # anchor = subscription documents sent for signature
    EventGroup.INVESTOR_DOCUMENTS_SENT: (
        _entry(EventGroup.INVESTOR_DOCUMENTS_SENT, InvestorJobCategory.SIGNATURE_REMINDER_1, 48 * HOURS),
        _entry(EventGroup.INVESTOR_DOCUMENTS_SENT, InvestorJobCategory.SIGNATURE_REMINDER_2, 96 * HOURS),
    ),
}

EVENT_GROUP_FAMILY: dict[EventGroup, EntityFamily] = {
    EventGroup.KYC_SENT: EntityFamily.PROSPECT,
    EventGroup.MEETING_BOOKED: EntityFamily.PROSPECT,
    EventGroup.MARKED_CONSIDERING: EntityFamily.PROSPECT,
    EventGroup.CAPITAL_CALL_REMINDERS: EntityFamily.CAPITAL_CALL,
    EventGroup.CAPITAL_CALL_PAST_DUE: EntityFamily.CAPITAL_CALL,
    EventGroup.TEAM_INVITE_SENT: EntityFamily.TEAM_INVITE,
    EventGroup.INVESTOR_ACCOUNT_CREATED: EntityFamily.INVESTOR,
    EventGroup.INVESTOR_DOCUMENTS_SENT: EntityFamily.INVESTOR,
}


def policy_for(group: EventGroup) -> tuple[SchedulePolicyEntry, ...]:
    try:
        return SCHEDULE_POLICIES[EventGroup(group)]
    except (KeyError, ValueError):
        raise ValueError(f"No schedule policy for event group '{group}'") from None


def categories_for(group: EventGroup) -> frozenset[str]:
    return frozenset(entry.category for entry in policy_for(group))
