"""Shared test fixtures for the notification engine."""
import pytest
import pytest_asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from backend.connector import InMemoryEntityLookup
from backend.sender import LoggingNotificationSender
from core.scheduler import NotificationScheduler
from job_queue.message_queue import (
    DelayedQueue, InMemoryDelayedQueue, RedisDelayedQueue, RetryPolicy,
)
from models.schemas import EntityFamily, TrackedEntity


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def memory_queue() -> InMemoryDelayedQueue:
    return InMemoryDelayedQueue(retry=RetryPolicy(max_attempts=3, backoff_base_seconds=60))


@pytest.fixture
def scheduler(memory_queue, now) -> NotificationScheduler:
    return NotificationScheduler(memory_queue, clock=lambda: now)


@pytest.fixture
def unavailable_queue() -> MagicMock:
    """A queue stand-in that reports itself unavailable and records every call."""
    queue = MagicMock(spec=DelayedQueue)
    queue.is_available = False
    queue.enqueue = AsyncMock()
    queue.cancel = AsyncMock()
    return queue


@pytest_asyncio.fixture
async def redis_queue():
    import fakeredis.aioredis

    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    queue = RedisDelayedQueue(client=client, key_prefix="test")
    await queue.connect()
    yield queue
    await queue.close()


@pytest.fixture
def sample_prospect() -> TrackedEntity:
    return TrackedEntity(
        id="p-100",
        family=EntityFamily.PROSPECT,
        fund_id="fund-1",
        state="kyc_sent",
        recipient="ada@example.com",
        display_name="Ada Lovelace",
    )


@pytest.fixture
def sample_capital_call() -> TrackedEntity:
    return TrackedEntity(
        id="cci-7",
        family=EntityFamily.CAPITAL_CALL,
        fund_id="fund-1",
        state="pending",
        recipient="lp@example.com",
        display_name="Northwind LP",
    )


@pytest.fixture
def sample_invite() -> TrackedEntity:
    return TrackedEntity(
        id="inv-3",
        family=EntityFamily.TEAM_INVITE,
        fund_id="fund-1",
        state="pending",
        recipient="analyst@example.com",
    )


@pytest.fixture
def lookups(sample_prospect, sample_capital_call, sample_invite) -> dict:
    return {
        EntityFamily.PROSPECT: InMemoryEntityLookup(EntityFamily.PROSPECT, [sample_prospect]),
        EntityFamily.INVESTOR: InMemoryEntityLookup(EntityFamily.INVESTOR),
        EntityFamily.CAPITAL_CALL: InMemoryEntityLookup(EntityFamily.CAPITAL_CALL, [sample_capital_call]),
        EntityFamily.TEAM_INVITE: InMemoryEntityLookup(EntityFamily.TEAM_INVITE, [sample_invite]),
    }


@pytest.fixture
def sender() -> LoggingNotificationSender:
    return LoggingNotificationSender()
