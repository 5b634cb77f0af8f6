"""
Notification Scheduler — turns a business event into delayed queue jobs.

For every step of the event's policy the due time is anchor + offset. Steps
whose due time is not in the future are dropped, never fired immediately.
The remaining enqueues run concurrently and are independent: one failing
does not undo the others. Re-scheduling the same (category, entity) replaces
the pending job, so the latest business event wins.

Usage:
    scheduler = NotificationScheduler(queue)
    await scheduler.schedule(EventGroup.KYC_SENT, prospect_id, fund_id, anchor=kyc_sent_at)
    await scheduler.cancel_group(EventGroup.MEETING_BOOKED, prospect_id)
"""
from __future__ import annotations

import asyncio
import structlog
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Union

from job_queue.identity import job_key
from job_queue.message_queue import DelayedQueue, QueueError
from models.schemas import EntityFamily, EventGroup, build_payload, family_of
from rules.schedule_policy import EVENT_GROUP_FAMILY, categories_for, policy_for
from rules.suppression import FAMILY_CATEGORIES, SuppressionEngine

logger = structlog.get_logger()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(ts: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


@dataclass
class ScheduleResult:
    entity_id: str
    enqueued: list[str] = field(default_factory=list)        # job keys
    elapsed: list[str] = field(default_factory=list)         # categories already in the past
    errors: dict[str, str] = field(default_factory=dict)     # key -> broker error
    queue_available: bool = True

    @property
    def enqueued_count(self) -> int:
        return len(self.enqueued)


class NotificationScheduler:
    """Producer side of the engine. Never raises to the business caller."""

    def __init__(
        self,
        queue: DelayedQueue,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.queue = queue
        self.clock = clock
        self._suppression = SuppressionEngine(queue)

    # ── Scheduling ────────────────────────────────────────────

    async def schedule(
        self,
        event_group: EventGroup,
        entity_id: str,
        fund_id: str,
        anchor: datetime,
        now: datetime = None,
        metadata: dict[str, Any] = None,
    ) -> ScheduleResult:
        """Enqueue every still-future step of `event_group`'s policy."""
        group = EventGroup(event_group)
        family = EVENT_GROUP_FAMILY[group]
        anchor = _aware(anchor)
        now = _aware(now or self.clock())
        result = ScheduleResult(entity_id=entity_id)

        if not self.queue.is_available:
            logger.warning("queue_unavailable",
                           action="schedule",
                           event_group=group.value,
                           entity_id=entity_id)
            result.queue_available = False
            return result

        planned = []
        for entry in policy_for(group):
            due_at = entry.due_at(anchor)
            if due_at <= now:
                result.elapsed.append(entry.category)
                logger.debug("notification_offset_elapsed",
                             category=entry.category,
                             entity_id=entity_id,
                             due_at=due_at.isoformat())
                continue
            planned.append((entry.category, due_at, {**entry.metadata, **(metadata or {})}))

        await self._enqueue_all(family, entity_id, fund_id, anchor, now, planned, result)

        logger.info("notifications_scheduled",
                    event_group=group.value,
                    entity_id=entity_id,
                    fund_id=fund_id,
                    enqueued=result.enqueued_count,
                    elapsed=len(result.elapsed),
                    failed=len(result.errors))
        return result

    async def schedule_one(
        self,
        category: Union[str, Enum],
        entity_id: str,
        fund_id: str,
        due_at: datetime,
        now: datetime = None,
        metadata: dict[str, Any] = None,
        anchor: datetime = None,
    ) -> ScheduleResult:
        """Enqueue a single one-off notification (e.g. a post-meeting follow-up)."""
        value = category.value if isinstance(category, Enum) else category
        family = family_of(value)
        if family is None:
            raise ValueError(f"Unknown job category '{value}'")
        due_at = _aware(due_at)
        now = _aware(now or self.clock())
        result = ScheduleResult(entity_id=entity_id)

        if not self.queue.is_available:
            logger.warning("queue_unavailable", action="schedule_one", category=value, entity_id=entity_id)
            result.queue_available = False
            return result
        if due_at <= now:
            result.elapsed.append(value)
            return result

        await self._enqueue_all(
            family, entity_id, fund_id, _aware(anchor) if anchor else now, now,
            [(value, due_at, metadata or {})], result,
        )
        return result

    async def _enqueue_all(
        self,
        family: EntityFamily,
        entity_id: str,
        fund_id: str,
        anchor: datetime,
        now: datetime,
        planned: list[tuple[str, datetime, dict[str, Any]]],
        result: ScheduleResult,
    ):
        keys = [job_key(category, entity_id) for category, _, _ in planned]
        calls = [
            self.queue.enqueue(
                key,
                category,
                build_payload(family, category, entity_id, fund_id, anchor, now, meta).model_dump(mode="json"),
                due_at - now,
                now=now,
            )
            for key, (category, due_at, meta) in zip(keys, planned)
        ]
        outcomes = await asyncio.gather(*calls, return_exceptions=True)
        for key, outcome in zip(keys, outcomes):
            if isinstance(outcome, QueueError):
                result.errors[key] = str(outcome)
                logger.warning("notification_enqueue_failed", key=key, error=str(outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                result.enqueued.append(key)

    # ── Explicit cancellation ─────────────────────────────────

    async def cancel(self, category: Union[str, Enum], entity_id: str) -> bool:
        """Cancel one pending notification. False if nothing was pending."""
        result = await self._suppression.cancel_categories([category], entity_id)
        return result.cancelled_count > 0

    async def cancel_group(self, event_group: EventGroup, entity_id: str) -> int:
        """Cancel every category of one sequence (e.g. all meeting reminders)."""
        result = await self._suppression.cancel_categories(categories_for(event_group), entity_id)
        if result.cancelled:
            logger.info("notification_group_cancelled",
                        event_group=EventGroup(event_group).value,
                        entity_id=entity_id,
                        cancelled=result.cancelled_count)
        return result.cancelled_count

    async def cancel_all(self, family: EntityFamily, entity_id: str) -> int:
        """Cancel every category the family knows about."""
        result = await self._suppression.cancel_categories(
            FAMILY_CATEGORIES[EntityFamily(family)], entity_id,
        )
        return result.cancelled_count


# ──────────────────────────────────────────────────────────────
#  Per-event convenience wrappers
# ──────────────────────────────────────────────────────────────

class ProspectSchedules:
    def __init__(self, scheduler: NotificationScheduler):
        self.scheduler = scheduler

    async def kyc_reminders(self, prospect_id: str, fund_id: str, kyc_sent_at: datetime, now: datetime = None):
        return await self.scheduler.schedule(EventGroup.KYC_SENT, prospect_id, fund_id, kyc_sent_at, now)

    async def meeting_reminders(self, prospect_id: str, fund_id: str, meeting_time: datetime,
                                now: datetime = None):
        return await self.scheduler.schedule(
            EventGroup.MEETING_BOOKED, prospect_id, fund_id, meeting_time, now,
            metadata={"meeting_time": _aware(meeting_time).isoformat()},
        )

    async def nurture_sequence(self, prospect_id: str, fund_id: str, considering_at: datetime,
                               now: datetime = None):
        return await self.scheduler.schedule(
            EventGroup.MARKED_CONSIDERING, prospect_id, fund_id, considering_at, now,
        )


class CapitalCallSchedules:
    def __init__(self, scheduler: NotificationScheduler):
        self.scheduler = scheduler

    async def reminders(self, item_id: str, investor_id: str, fund_id: str, deadline: datetime,
                        now: datetime = None):
        return await self.scheduler.schedule(
            EventGroup.CAPITAL_CALL_REMINDERS, item_id, fund_id, deadline, now,
            metadata={"investor_id": investor_id},
        )

    async def past_due(self, item_id: str, investor_id: str, fund_id: str, deadline: datetime,
                       now: datetime = None):
        return await self.scheduler.schedule(
            EventGroup.CAPITAL_CALL_PAST_DUE, item_id, fund_id, deadline, now,
            metadata={"investor_id": investor_id},
        )


class InvestorSchedules:
    def __init__(self, scheduler: NotificationScheduler):
        self.scheduler = scheduler

    async def onboarding_reminders(self, investor_id: str, fund_id: str, created_at: datetime,
                                   now: datetime = None):
        return await self.scheduler.schedule(
            EventGroup.INVESTOR_ACCOUNT_CREATED, investor_id, fund_id, created_at, now,
        )

    async def signature_reminders(self, investor_id: str, fund_id: str, documents_sent_at: datetime,
                                  now: datetime = None):
        return await self.scheduler.schedule(
            EventGroup.INVESTOR_DOCUMENTS_SENT, investor_id, fund_id, documents_sent_at, now,
        )


class TeamInviteSchedules:
    def __init__(self, scheduler: NotificationScheduler):
        self.scheduler = scheduler

    async def invite_reminders(self, invite_id: str, fund_id: str, sent_at: datetime, now: datetime = None):
        return await self.scheduler.schedule(EventGroup.TEAM_INVITE_SENT, invite_id, fund_id, sent_at, now)
