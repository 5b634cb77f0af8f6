"""
Notification Service — process-scoped composition of queue, scheduler,
suppression engine and worker.

The composing application builds one instance at startup and closes it at
shutdown; nothing here is a module-level singleton.

    async with NotificationService(settings) as notify:
        await notify.prospects.kyc_reminders(prospect_id, fund_id, kyc_sent_at)
        await notify.suppression.on_transition(EntityFamily.PROSPECT, prospect_id,
                                               "kyc_submitted", "kyc_sent")
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Optional

from backend.connector import EntityLookup, create_rest_lookups
from backend.sender import HTTPNotificationSender, NotificationSender
from config.settings import Settings
from core.handlers import Handler, build_dispatch_table
from core.scheduler import (
    CapitalCallSchedules, InvestorSchedules, NotificationScheduler,
    ProspectSchedules, TeamInviteSchedules,
)
from job_queue.consumer import NotificationWorker
from job_queue.message_queue import (
    DelayedQueue, DisabledDelayedQueue, QueueUnavailableError, create_delayed_queue,
)
from models.schemas import EntityFamily
from rules.suppression import SuppressionEngine

logger = structlog.get_logger()


class NotificationService:

    def __init__(
        self,
        settings: Settings,
        dispatch_table: dict[str, Handler] = None,
        queue: DelayedQueue = None,
        lookups: dict[EntityFamily, EntityLookup] = None,
        sender: NotificationSender = None,
    ):
        self.settings = settings
        self._dispatch_table = dispatch_table
        self._lookups = lookups
        self._sender = sender
        self._owned: list = []          # collaborators created here and closed on close()
        self._set_queue(queue or create_delayed_queue(settings.queue))
        self._opened = False

    def _set_queue(self, queue: DelayedQueue):
        self.queue = queue
        self.scheduler = NotificationScheduler(queue)
        self.suppression = SuppressionEngine(queue)
        self.prospects = ProspectSchedules(self.scheduler)
        self.investors = InvestorSchedules(self.scheduler)
        self.capital_calls = CapitalCallSchedules(self.scheduler)
        self.team_invites = TeamInviteSchedules(self.scheduler)
        self._worker: Optional[NotificationWorker] = None

    @property
    def worker(self) -> NotificationWorker:
        if self._worker is None:
            self._worker = NotificationWorker(
                self.queue,
                self._build_dispatch_table(),
                concurrency=self.settings.queue.worker_concurrency,
                poll_interval=self.settings.queue.poll_interval,
            )
        return self._worker

    def _build_dispatch_table(self) -> dict[str, Handler]:
        if self._dispatch_table is not None:
            return self._dispatch_table
        if self._lookups is None:
            self._lookups = create_rest_lookups(self.settings.backend)
            self._owned.extend(self._lookups.values())
        if self._sender is None:
            self._sender = HTTPNotificationSender(self.settings.backend)
            self._owned.append(self._sender)
        self._dispatch_table = build_dispatch_table(self._lookups, self._sender)
        return self._dispatch_table

    # ── Lifecycle ─────────────────────────────────────────────

    async def open(self) -> NotificationService:
        """Connect the queue. An unreachable broker degrades to the disabled queue."""
        try:
            await self.queue.connect()
        except QueueUnavailableError as e:
            logger.warning("queue_unavailable", reason=str(e), action="open")
            self._set_queue(DisabledDelayedQueue(str(e)))
        self._opened = True
        logger.info("notification_service_opened",
                    app=self.settings.app_name,
                    environment=self.settings.environment,
                    queue=type(self.queue).__name__,
                    queue_available=self.queue.is_available)
        return self

    async def close(self):
        if self._worker is not None:
            await self._worker.stop()
        await self.queue.close()
        if self._owned:
            await asyncio.gather(*(c.close() for c in self._owned), return_exceptions=True)
            self._owned.clear()
        self._opened = False
        logger.info("notification_service_closed")

    async def __aenter__(self) -> NotificationService:
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def start_worker(self):
        """Run the worker until stop() is called on it."""
        await self.worker.start()
