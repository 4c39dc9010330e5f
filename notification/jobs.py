#!/usr/bin/env python3
"""
Job Trigger entry points.

The engine never schedules itself. ``main.py`` (or any cron) calls the
sweeps on a cadence and the web layer calls ``handle_send_event`` per
inbound event, either inline or through the Redis queue:

- ``run_due_sweep``: release stranded members of failed batches, then
  deliver ``pending`` notifications whose ``scheduled_for`` has passed
- ``deliver_due_batches``: aggregate and send batches whose window closed
- ``handle_send_event``: fan out one send request and deliver the
  immediate rows it created

Every entry point is safe to run repeatedly; storage uniqueness and the
status-driven claim make a re-run a no-op for finished work.

Usage:
    from notification.jobs import NotificationJobs

    jobs = NotificationJobs(AppContext.build(load_config()))
    jobs.run_due_sweep()
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from redis import Redis
from redis.exceptions import RedisError
from rq import Queue, Retry

from core.app_context import AppContext, TenantServices
from core.config_loader import AppConfig, load_config
from core.context import RequestHeader
from database import database
from database.repositories import DueWorkRepository
from database.uow import notification_uow
from notification.models import (
    BatchDeliveryResult,
    BatchStatus,
    FanOutResult,
    NotificationStatus,
    SendRequest,
)

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_LIMIT = 500


def _group_by_tenant(rows) -> "OrderedDict[str, list]":
    groups: "OrderedDict[str, list]" = OrderedDict()
    for row in rows:
        groups.setdefault(row.tenant_id, []).append(row)
    return groups


class NotificationJobs:
    """Scheduler-agnostic sweep and event logic; one unit of work per call."""

    def __init__(
        self,
        context: AppContext,
        session_factory=None,
        sweep_limit: int = DEFAULT_SWEEP_LIMIT
    ):
        self.context = context
        self.session_factory = session_factory
        self.sweep_limit = sweep_limit

    def _now(self) -> datetime:
        return self.context.clock() if self.context.clock else datetime.now(timezone.utc)

    def handle_send_event(
        self,
        tenant_id: str,
        request: Union[SendRequest, Dict[str, Any]],
        deliver_now: bool = True
    ) -> FanOutResult:
        """
        Fan out one send request, then deliver its due immediate rows.

        The fan-out commits before delivery starts, so a delivery crash
        leaves the rows ``pending`` for the next sweep.
        """
        if isinstance(request, dict):
            request = SendRequest.from_dict(request)

        with notification_uow(self.session_factory) as session:
            services = self.context.services(session, RequestHeader.system(tenant_id))
            result = services.notifications.send(request)

        if deliver_now and result.notification_ids:
            self.deliver_pending(tenant_id, result.notification_ids)
        return result

    def fan_out(self, services: TenantServices, request: SendRequest, deliver_now: bool = True) -> FanOutResult:
        """Inline variant of ``handle_send_event`` on the caller's session."""
        result = services.notifications.send(request)
        if deliver_now and result.notification_ids:
            self._deliver_due(services, result.notification_ids)
        return result

    def deliver_pending(self, tenant_id: str, notification_ids: List[str]) -> BatchDeliveryResult:
        """Deliver the given notifications that are ``pending`` and due now."""
        with notification_uow(self.session_factory) as session:
            services = self.context.services(session, RequestHeader.system(tenant_id))
            return self._deliver_due(services, notification_ids)

    def _deliver_due(self, services: TenantServices, notification_ids: List[str]) -> BatchDeliveryResult:
        now = self._now()
        due = [
            n for n in services.notifications.notifications.get_many(notification_ids)
            if n.status == NotificationStatus.PENDING.value
            and (n.scheduled_for is None or n.scheduled_for <= now)
        ]
        return services.delivery.deliver_batch(due)

    def release_failed_batches(self, limit: Optional[int] = None) -> int:
        """Catch-up: return ``batched`` members of failed batches to individual delivery."""
        released = 0
        with notification_uow(self.session_factory) as session:
            batches = DueWorkRepository(session).failed_batches_with_members(limit or self.sweep_limit)
            for tenant_id, tenant_batches in _group_by_tenant(batches).items():
                services = self.context.services(session, RequestHeader.system(tenant_id))
                for batch in tenant_batches:
                    released += services.batching.release_failed(batch)
        if released:
            logger.info(f"Catch-up released {released} notifications from failed batches")
        return released

    def run_due_sweep(self, limit: Optional[int] = None) -> Dict[str, int]:
        """
        Deliver every due ``pending`` notification, tenant by tenant.

        A tenant whose delivery raises is rolled back to its savepoint and
        logged; the other tenants still go out.
        """
        released = self.release_failed_batches(limit)
        totals = {'released': released, 'claimed': 0, 'sent': 0, 'failed': 0, 'tenant_errors': 0}

        with notification_uow(self.session_factory) as session:
            claimed = DueWorkRepository(session).claim_due_notifications(
                self._now(), limit or self.sweep_limit, self.context.channel_registry.names()
            )
            totals['claimed'] = len(claimed)

            for tenant_id, rows in _group_by_tenant(claimed).items():
                try:
                    with session.begin_nested():
                        services = self.context.services(session, RequestHeader.system(tenant_id))
                        summary = services.delivery.deliver_batch(rows)
                except Exception as e:
                    logger.error(f"Due sweep failed for tenant {tenant_id}: {e}", exc_info=True)
                    totals['tenant_errors'] += 1
                    continue
                totals['sent'] += summary.successful
                totals['failed'] += summary.failed

        logger.info(
            f"Due sweep: {totals['claimed']} claimed, {totals['sent']} sent, "
            f"{totals['failed']} not sent, {totals['released']} released"
        )
        return totals

    def deliver_due_batches(self, limit: Optional[int] = None) -> Dict[str, int]:
        """Aggregate and deliver every open batch whose window has closed."""
        totals = {'claimed': 0, 'sent': 0, 'failed': 0, 'cancelled': 0, 'errors': 0}

        with notification_uow(self.session_factory) as session:
            batches = DueWorkRepository(session).claim_due_batches(self._now(), limit or self.sweep_limit)
            totals['claimed'] = len(batches)

            for tenant_id, tenant_batches in _group_by_tenant(batches).items():
                services = self.context.services(session, RequestHeader.system(tenant_id))
                for batch in tenant_batches:
                    try:
                        with session.begin_nested():
                            result = services.batching.process_batch(batch)
                    except Exception as e:
                        logger.error(f"Batch {batch.id} failed to process: {e}", exc_info=True)
                        totals['errors'] += 1
                        continue
                    if result.status == BatchStatus.SENT.value:
                        totals['sent'] += 1
                    elif result.status == BatchStatus.CANCELLED.value:
                        totals['cancelled'] += 1
                    else:
                        totals['failed'] += 1

        logger.info(
            f"Batch sweep: {totals['claimed']} due, {totals['sent']} sent, "
            f"{totals['failed']} failed, {totals['cancelled']} cancelled"
        )
        return totals


@dataclass
class Dispatch:
    """Outcome of a dispatch: a queued job id, or the inline result."""
    job_id: Optional[str] = None
    result: Any = None

    @property
    def queued(self) -> bool:
        return self.job_id is not None


class NotificationDispatcher:
    """
    Routes job entry points to the Redis queue, or runs them inline.

    Inline mode is used when the async queue is disabled in config or
    Redis cannot be reached at startup.
    """

    def __init__(
        self,
        jobs: NotificationJobs,
        redis_url: str = 'redis://localhost:6379/0',
        queue_name: str = 'notifications',
        use_async_queue: bool = True,
        retries: int = 3,
        retry_intervals: Optional[List[int]] = None,
        job_timeout: str = '5m'
    ):
        self.jobs = jobs
        self.retries = retries
        self.retry_intervals = list(retry_intervals or [30, 60, 120])
        self.job_timeout = job_timeout
        self.redis_conn = None
        self.queue = None

        if not use_async_queue:
            logger.info("Async queue disabled via config. Using sync mode.")
            return
        try:
            self.redis_conn = Redis.from_url(redis_url)
            self.redis_conn.ping()
            self.queue = Queue(queue_name, connection=self.redis_conn)
            logger.info(f"Dispatcher connected to Redis queue '{queue_name}'")
        except RedisError as e:
            logger.error(f"Redis connection failed: {e}. Falling back to sync mode.")
            self.redis_conn = None
            self.queue = None

    @classmethod
    def from_config(cls, config: AppConfig, jobs: NotificationJobs) -> "NotificationDispatcher":
        return cls(
            jobs,
            redis_url=config.redis.url,
            queue_name=config.notifications.queue_name,
            use_async_queue=config.notifications.use_async_queue,
            retries=config.schedule.job_retries,
            retry_intervals=config.schedule.job_retry_intervals,
            job_timeout=config.schedule.job_timeout,
        )

    @property
    def async_mode(self) -> bool:
        return self.queue is not None

    def _enqueue(self, func: Callable, *args) -> str:
        job = self.queue.enqueue(
            func,
            *args,
            job_timeout=self.job_timeout,
            result_ttl=86400,
            retry=Retry(max=self.retries, interval=self.retry_intervals)
        )
        logger.info(f"Queued {func.__name__} as job {job.id}")
        return job.id

    def dispatch_send(
        self,
        tenant_id: str,
        request: SendRequest,
        services: Optional[TenantServices] = None
    ) -> Dispatch:
        """Queue a send event, or run it inline (on ``services`` when given)."""
        if self.async_mode:
            return Dispatch(job_id=self._enqueue(handle_send_event, tenant_id, request.to_dict()))
        if services is not None:
            return Dispatch(result=self.jobs.fan_out(services, request))
        return Dispatch(result=self.jobs.handle_send_event(tenant_id, request))

    def dispatch_due_sweep(self) -> Dispatch:
        if self.async_mode:
            return Dispatch(job_id=self._enqueue(run_due_sweep))
        return Dispatch(result=self.jobs.run_due_sweep())

    def dispatch_batch_sweep(self) -> Dispatch:
        if self.async_mode:
            return Dispatch(job_id=self._enqueue(deliver_due_batches))
        return Dispatch(result=self.jobs.deliver_due_batches())


# Module-level entry points imported by RQ workers.

_jobs: Optional[NotificationJobs] = None


def init_jobs(config: AppConfig) -> NotificationJobs:
    """Bind the database and build the process-wide NotificationJobs from ``config``."""
    global _jobs
    database.configure(config.database.url)
    _jobs = NotificationJobs(AppContext.build(config), sweep_limit=config.schedule.sweep_limit)
    return _jobs


def get_jobs() -> NotificationJobs:
    """Process-wide NotificationJobs; built from config.yaml on first use unless a worker initialized it."""
    if _jobs is None:
        return init_jobs(load_config())
    return _jobs


def handle_send_event(tenant_id: str, request_data: Dict[str, Any]) -> Dict[str, Any]:
    return get_jobs().handle_send_event(tenant_id, request_data).to_dict()


def run_due_sweep() -> Dict[str, int]:
    return get_jobs().run_due_sweep()


def deliver_due_batches() -> Dict[str, int]:
    return get_jobs().deliver_due_batches()
