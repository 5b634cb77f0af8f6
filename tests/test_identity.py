"""
Tests — Job identity and schedule policy table.

Run:
  pytest tests/test_identity.py -v
"""
from datetime import datetime, timedelta, timezone

import pytest

from job_queue.identity import job_key, parse_job_key
from models.schemas import (
    CATEGORY_FAMILY, CapitalCallJobCategory, EntityFamily, EventGroup,
    ProspectJobCategory, TeamInviteJobCategory,
)
from rules.schedule_policy import (
    EVENT_GROUP_FAMILY, SCHEDULE_POLICIES, TEAM_INVITE_EXPIRY, categories_for, policy_for,
)


class TestJobKey:

    def test_prospect_key_has_no_namespace(self):
        assert job_key(ProspectJobCategory.KYC_REMINDER_1, "p-1") == "kyc_reminder_1:p-1"

    def test_namespaced_families(self):
        assert job_key("onboarding_reminder_1", "i-9") == "onboarding_reminder_1:investor:i-9"
        assert job_key(CapitalCallJobCategory.PAST_DUE, "c-2") == "capital_call_past_due:capital_call:c-2"
        assert job_key(TeamInviteJobCategory.REMINDER_3D, "t-4") == "team_invite_reminder_3d:team_invite:t-4"

    def test_enum_and_string_give_same_key(self):
        assert job_key(ProspectJobCategory.NURTURE_DAY15, "p-1") == job_key("nurture_day15", "p-1")

    def test_key_is_stable(self):
        keys = {job_key(CapitalCallJobCategory.REMINDER_7D, "c-1") for _ in range(5)}
        assert len(keys) == 1

    def test_unknown_category_rejected(self):
        with pytest.raises(ValueError):
            job_key("birthday_card", "p-1")

    def test_parse_round_trip_for_every_category(self):
        for category, family in CATEGORY_FAMILY.items():
            assert parse_job_key(job_key(category, "abc:123")) == (category, family, "abc:123")

    def test_parse_rejects_missing_namespace(self):
        with pytest.raises(ValueError):
            parse_job_key("capital_call_past_due:c-2")


class TestSchedulePolicy:

    def test_every_group_has_a_family(self):
        assert set(SCHEDULE_POLICIES) == set(EventGroup) == set(EVENT_GROUP_FAMILY)

    def test_policy_categories_belong_to_group_family(self):
        for group, entries in SCHEDULE_POLICIES.items():
            for entry in entries:
                assert CATEGORY_FAMILY[entry.category] == EVENT_GROUP_FAMILY[group]

    def test_kyc_offsets(self):
        anchor = datetime(2026, 3, 1, tzinfo=timezone.utc)
        due = [e.due_at(anchor) for e in policy_for(EventGroup.KYC_SENT)]
        assert due == [anchor + timedelta(hours=48), anchor + timedelta(days=5), anchor + timedelta(days=10)]

    def test_meeting_offsets_straddle_anchor(self):
        offsets = {e.category: e.signed_offset for e in policy_for(EventGroup.MEETING_BOOKED)}
        assert offsets == {
            "meeting_reminder_24hr": -timedelta(hours=24),
            "meeting_reminder_15min": -timedelta(minutes=15),
            "meeting_noshow": timedelta(minutes=30),
        }

    def test_capital_call_reminders_precede_deadline(self):
        offsets = [e.signed_offset for e in policy_for(EventGroup.CAPITAL_CALL_REMINDERS)]
        assert offsets == [-timedelta(days=7), -timedelta(days=3), -timedelta(days=1)]

    def test_team_invite_days_remaining(self):
        entries = policy_for(EventGroup.TEAM_INVITE_SENT)
        assert [e.metadata["days_remaining"] for e in entries] == [4, 2]
        assert all(e.offset < TEAM_INVITE_EXPIRY for e in entries)

    def test_conversion_categories_not_in_any_sequence(self):
        scheduled = set().union(*(categories_for(g) for g in EventGroup))
        for category in ("kyc_not_eligible", "post_meeting_proceed",
                         "post_meeting_considering", "post_meeting_not_fit"):
            assert category not in scheduled

    def test_unknown_group(self):
        with pytest.raises(ValueError):
            policy_for("birthday")

    def test_family_lookup(self):
        assert EVENT_GROUP_FAMILY[EventGroup.INVESTOR_DOCUMENTS_SENT] == EntityFamily.INVESTOR
