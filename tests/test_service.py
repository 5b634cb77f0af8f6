"""
Tests — NotificationService composition and lifecycle, end to end on the
in-memory queue.

Run:
  pytest tests/test_service.py -v
"""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from config.settings import QueueConfig, Settings
from core.handlers import build_dispatch_table
from core.service import NotificationService
from job_queue.message_queue import DisabledDelayedQueue, QueueUnavailableError
from models.schemas import CapitalCallItemStatus as CC, EntityFamily


@pytest.fixture
def settings() -> Settings:
    return Settings(queue=QueueConfig(backend="memory"))


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_context_manager(self, settings, lookups, sender):
        service = NotificationService(settings, lookups=lookups, sender=sender)
        async with service as notify:
            assert notify.queue.is_available
            assert notify.worker.concurrency == 5
        assert service._opened is False

    @pytest.mark.asyncio
    async def test_unconfigured_redis_degrades(self, lookups, sender, now):
        settings = Settings(queue=QueueConfig(backend="redis", redis_url="${REDIS_URL}"))
        async with NotificationService(settings, lookups=lookups, sender=sender) as notify:
            assert isinstance(notify.queue, DisabledDelayedQueue)
            result = await notify.prospects.kyc_reminders("p-1", "fund-1", now, now=now)
            assert result.queue_available is False

    @pytest.mark.asyncio
    async def test_unreachable_redis_degrades(self, settings, lookups, sender):
        queue = AsyncMock()
        queue.connect.side_effect = QueueUnavailableError("connection refused")
        service = NotificationService(settings, queue=queue, lookups=lookups, sender=sender)
        await service.open()
        assert service.queue.is_available is False
        assert service.scheduler.queue is service.queue
        assert service.suppression.queue is service.queue
        await service.close()

    @pytest.mark.asyncio
    async def test_explicit_dispatch_table(self, settings, lookups, sender):
        table = build_dispatch_table({EntityFamily.PROSPECT: lookups[EntityFamily.PROSPECT]}, sender)
        async with NotificationService(settings, dispatch_table=table) as notify:
            assert notify.worker.dispatch_table.keys() == table.keys()


class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_paid_capital_call_never_sends(self, settings, lookups, sender, now):
        async with NotificationService(settings, lookups=lookups, sender=sender) as notify:
            deadline = now + timedelta(days=10)
            await notify.capital_calls.reminders("cci-7", "investor-1", "fund-1", deadline, now=now)

            # the 7-day reminder goes out
            assert await notify.worker.run_due(now=now + timedelta(days=3)) == 1
            assert [p["template"] for _, p in sender.sent] == ["capital_call_reminder_7d"]

            # wire arrives: remaining reminders are cancelled
            lookups[EntityFamily.CAPITAL_CALL].set_state("cci-7", CC.PAID.value)
            result = await notify.suppression.on_transition(
                EntityFamily.CAPITAL_CALL, "cci-7", CC.PAID, CC.PENDING,
            )
            assert result.cancelled_count == 2
            assert await notify.worker.run_due(now=deadline) == 0
            assert len(sender.sent) == 1

    @pytest.mark.asyncio
    async def test_missed_cancellation_is_caught_by_state_guard(self, settings, lookups, sender, now):
        async with NotificationService(settings, lookups=lookups, sender=sender) as notify:
            await notify.team_invites.invite_reminders("inv-3", "fund-1", now, now=now)
            # invite accepted but the suppression call never happened
            lookups[EntityFamily.TEAM_INVITE].set_state("inv-3", "accepted")

            processed = await notify.worker.run_due(now=now + timedelta(days=6))
            assert processed == 2
            assert sender.sent == []
