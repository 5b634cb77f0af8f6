"""
Core data models for the notification scheduling engine.
These are the universal types shared across all modules.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


# ──────────────────────────────────────────────────────────────
#  Entity Families & Lifecycle States
# ──────────────────────────────────────────────────────────────

class EntityFamily(str, Enum):
    PROSPECT = "prospect"
    INVESTOR = "investor"
    CAPITAL_CALL = "capital_call"
    TEAM_INVITE = "team_invite"


class ProspectStatus(str, Enum):
    KYC_SENT = "kyc_sent"
    KYC_SUBMITTED = "kyc_submitted"
    PRE_QUALIFIED = "pre_qualified"
    NOT_ELIGIBLE = "not_eligible"
    MEETING_SCHEDULED = "meeting_scheduled"
    MEETING_COMPLETE = "meeting_complete"
    CONSIDERING = "considering"
    ACCOUNT_INVITE_SENT = "account_invite_sent"
    ACCOUNT_CREATED = "account_created"
    NOT_A_FIT = "not_a_fit"
    CONVERTED = "converted"


class InvestorStatus(str, Enum):
    ACCOUNT_CREATED = "account_created"
    ONBOARDING = "onboarding"
    DOCUMENTS_PENDING = "documents_pending"
    DOCUMENTS_SENT = "documents_sent"
    AWAITING_SIGNATURE = "awaiting_signature"
    DOCUMENTS_SIGNED = "documents_signed"
    ACTIVE = "active"
    INACTIVE = "inactive"


class CapitalCallItemStatus(str, Enum):
    NEW = "new"
    PENDING = "pending"
    PARTIAL = "partial"
    PAST_DUE = "past_due"
    PAID = "paid"
    DEFAULTED = "defaulted"
    CANCELLED = "cancelled"


class TeamInviteStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# ──────────────────────────────────────────────────────────────
#  Job Categories (one enum per family)
# ──────────────────────────────────────────────────────────────

class ProspectJobCategory(str, Enum):
    KYC_REMINDER_1 = "kyc_reminder_1"
    KYC_REMINDER_2 = "kyc_reminder_2"
    KYC_REMINDER_3 = "kyc_reminder_3"
    KYC_NOT_ELIGIBLE = "kyc_not_eligible"
    MEETING_REMINDER_24HR = "meeting_reminder_24hr"
    MEETING_REMINDER_15MIN = "meeting_reminder_15min"
    MEETING_NOSHOW = "meeting_noshow"
    POST_MEETING_PROCEED = "post_meeting_proceed"
    POST_MEETING_CONSIDERING = "post_meeting_considering"
    POST_MEETING_NOT_FIT = "post_meeting_not_fit"
    NURTURE_DAY15 = "nurture_day15"
    NURTURE_DAY23 = "nurture_day23"
    NURTURE_DAY30 = "nurture_day30"
    DORMANT_CLOSEOUT = "dormant_closeout"


class InvestorJobCategory(str, Enum):
    ONBOARDING_REMINDER_1 = "onboarding_reminder_1"
    ONBOARDING_REMINDER_2 = "onboarding_reminder_2"
    ONBOARDING_REMINDER_3 = "onboarding_reminder_3"
    SIGNATURE_REMINDER_1 = "signature_reminder_1"
    SIGNATURE_REMINDER_2 = "signature_reminder_2"


class CapitalCallJobCategory(str, Enum):
    REMINDER_7D = "capital_call_reminder_7d"
    REMINDER_3D = "capital_call_reminder_3d"
    REMINDER_1D = "capital_call_reminder_1d"
    PAST_DUE = "capital_call_past_due"
    PAST_DUE_7 = "capital_call_past_due_7"


class TeamInviteJobCategory(str, Enum):
    REMINDER_3D = "team_invite_reminder_3d"
    REMINDER_5D = "team_invite_reminder_5d"


JobCategory = Union[
    ProspectJobCategory, InvestorJobCategory, CapitalCallJobCategory, TeamInviteJobCategory,
]

CATEGORY_ENUMS: dict[EntityFamily, type[Enum]] = {
    EntityFamily.PROSPECT: ProspectJobCategory,
    EntityFamily.INVESTOR: InvestorJobCategory,
    EntityFamily.CAPITAL_CALL: CapitalCallJobCategory,
    EntityFamily.TEAM_INVITE: TeamInviteJobCategory,
}

# category value -> owning family
CATEGORY_FAMILY: dict[str, EntityFamily] = {
    member.value: family
    for family, enum_cls in CATEGORY_ENUMS.items()
    for member in enum_cls
}


def family_of(category: Union[str, Enum]) -> Optional[EntityFamily]:
    """Return the entity family that owns a job category, or None if unknown."""
    value = category.value if isinstance(category, Enum) else category
    return CATEGORY_FAMILY.get(value)


class JobStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# ──────────────────────────────────────────────────────────────
#  Schedule Policy & Suppression Rows
# ──────────────────────────────────────────────────────────────

class EventGroup(str, Enum):
    """Business events that start a notification sequence."""
    KYC_SENT = "kyc_sent"
    MEETING_BOOKED = "meeting_booked"
    MARKED_CONSIDERING = "marked_considering"
    CAPITAL_CALL_REMINDERS = "capital_call_reminders"
    CAPITAL_CALL_PAST_DUE = "capital_call_past_due"
    TEAM_INVITE_SENT = "team_invite_sent"
    INVESTOR_ACCOUNT_CREATED = "investor_account_created"
    INVESTOR_DOCUMENTS_SENT = "investor_documents_sent"


class OffsetDirection(str, Enum):
    AFTER_ANCHOR = "after_anchor"
    BEFORE_ANCHOR = "before_anchor"


class SchedulePolicyEntry(BaseModel, frozen=True):
    """One (category, signed offset) step of a schedule sequence."""
    event_group: EventGroup
    category: str
    offset: timedelta
    direction: OffsetDirection = OffsetDirection.AFTER_ANCHOR
    metadata: dict[str, Any] = {}

    @property
    def signed_offset(self) -> timedelta:
        if self.direction == OffsetDirection.BEFORE_ANCHOR:
            return -self.offset
        return self.offset

    def due_at(self, anchor: datetime) -> datetime:
        return anchor + self.signed_offset


ANY_STATE = "*"


class SuppressionRule(BaseModel, frozen=True):
    """
    Cancels a set of categories when an entity enters `new_state`.

    `from_states` is the previous-state pattern: a set of states, or
    {"*"} for any. States listed in `except_from` never match.
    """
    family: EntityFamily
    new_state: str
    categories: frozenset[str]
    from_states: frozenset[str] = frozenset({ANY_STATE})
    except_from: frozenset[str] = frozenset()
    description: str = ""

    def matches(self, family: EntityFamily, new_state: str, previous_state: Optional[str]) -> bool:
        if family != self.family or new_state != self.new_state:
            return False
        if previous_state in self.except_from:
            return False
        return ANY_STATE in self.from_states or previous_state in self.from_states


# ──────────────────────────────────────────────────────────────
#  Job Payloads — tagged by family
# ──────────────────────────────────────────────────────────────

class _JobPayloadBase(BaseModel):
    category: str
    entity_id: str
    fund_id: str
    anchor: str                                  # ISO timestamp of the anchor event
    scheduled_at: str = ""                       # ISO timestamp when the job was enqueued
    metadata: dict[str, Any] = {}


class ProspectJobPayload(_JobPayloadBase):
    family: Literal["prospect"] = "prospect"


class InvestorJobPayload(_JobPayloadBase):
    family: Literal["investor"] = "investor"


class CapitalCallJobPayload(_JobPayloadBase):
    family: Literal["capital_call"] = "capital_call"

    @property
    def investor_id(self) -> str:
        return str(self.metadata.get("investor_id", ""))


class TeamInviteJobPayload(_JobPayloadBase):
    family: Literal["team_invite"] = "team_invite"

    @property
    def days_remaining(self) -> Optional[int]:
        value = self.metadata.get("days_remaining")
        return int(value) if value is not None else None


JobPayload = Annotated[
    Union[ProspectJobPayload, InvestorJobPayload, CapitalCallJobPayload, TeamInviteJobPayload],
    Field(discriminator="family"),
]

_payload_adapter: TypeAdapter = TypeAdapter(JobPayload)

PAYLOAD_TYPES: dict[EntityFamily, type[_JobPayloadBase]] = {
    EntityFamily.PROSPECT: ProspectJobPayload,
    EntityFamily.INVESTOR: InvestorJobPayload,
    EntityFamily.CAPITAL_CALL: CapitalCallJobPayload,
    EntityFamily.TEAM_INVITE: TeamInviteJobPayload,
}


def parse_payload(data: dict[str, Any]) -> JobPayload:
    """Validate a raw payload dict into its family-specific variant."""
    return _payload_adapter.validate_python(data)


def build_payload(
    family: EntityFamily,
    category: str,
    entity_id: str,
    fund_id: str,
    anchor: datetime,
    scheduled_at: datetime,
    metadata: dict[str, Any] = None,
) -> _JobPayloadBase:
    return PAYLOAD_TYPES[family](
        category=category,
        entity_id=entity_id,
        fund_id=fund_id,
        anchor=anchor.isoformat(),
        scheduled_at=scheduled_at.isoformat(),
        metadata=metadata or {},
    )


# ──────────────────────────────────────────────────────────────
#  External collaborator shapes
# ──────────────────────────────────────────────────────────────

class TrackedEntity(BaseModel):
    """Read-only view of a prospect, investor, capital-call item or team invite."""
    id: str
    family: EntityFamily
    fund_id: str = ""
    state: str
    recipient: str = ""                       # email address notifications go to
    display_name: str = ""
    anchors: dict[str, datetime] = {}
    attributes: dict[str, Any] = {}


class SendResult(BaseModel):
    success: bool
    message_id: str = ""
    error: Optional[str] = None


# ──────────────────────────────────────────────────────────────
#  Structured lifecycle log record
# ──────────────────────────────────────────────────────────────

class JobLifecycleStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class JobLogEvent(BaseModel):
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    job_id: str
    category: str
    entity_id: str = ""
    fund_id: str = ""
    family: str = ""
    status: JobLifecycleStatus
    attempt: int = 0
    duration_ms: Optional[int] = None
    reason: Optional[str] = None
    error: Optional[dict[str, str]] = None

    def to_log(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", exclude_none=True)
        # structlog's TimeStamper owns the "timestamp" key
        data["occurred_at"] = data.pop("timestamp")
        return data
