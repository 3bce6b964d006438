"""Scheduled jobs for automation"""
import asyncio
from datetime import datetime, timedelta
from typing import Dict, Any, Callable, List, Optional
import logging

from pymongo import ReturnDocument

from ..config import scheduler as scheduler_config
from ..errors import NotFoundError
from ..models import JobType, RunStatus, Schedule, ScheduledJob

logger = logging.getLogger(__name__)

# Statuses a job can be claimed from
CLAIMABLE = [None, RunStatus.PENDING.value, RunStatus.SUCCESS.value, RunStatus.FAILED.value]

SUNDAY = 6


def compute_next_run(schedule: str, now: datetime) -> datetime:
    """Next run time in the clock of ``now``.

    hourly: top of the next hour. daily: 03:00 the next day.
    weekly: 03:00 next Sunday, or today if it is Sunday before 03:00.
    """
    schedule = Schedule(schedule)
    if schedule == Schedule.HOURLY:
        return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)

    run_at = now.replace(hour=scheduler_config.run_hour, minute=0, second=0, microsecond=0)
    if schedule == Schedule.DAILY:
        return run_at + timedelta(days=1)

    days_ahead = (SUNDAY - now.weekday()) % 7
    if days_ahead == 0 and now >= run_at:
        days_ahead = 7
    return run_at + timedelta(days=days_ahead)


class ScheduledJobRunner:
    """Runs per-shop scheduled jobs stored in Mongo"""

    def __init__(self, db=None, handlers: Dict[str, Callable] = None, alerts=None):
        self.db = db
        self.handlers: Dict[str, Callable] = handlers or {}
        self.alerts = alerts
        self.running = False
        self._task_handle = None

    def register_handler(self, job_type: str, func: Callable):
        self.handlers[JobType(job_type).value] = func

    # Job records
    async def create_job(self, shop: str, job_type: str, schedule: str = Schedule.DAILY,
                         is_enabled: bool = True, config: Dict[str, Any] = None,
                         now: datetime = None) -> ScheduledJob:
        """One job per shop and type; creating it again returns the existing record"""
        job = ScheduledJob(
            shop=shop,
            job_type=job_type,
            schedule=schedule,
            is_enabled=is_enabled,
            config=config or {},
            last_status=RunStatus.PENDING,
            next_run_at=compute_next_run(schedule, now or datetime.utcnow()),
        )
        await self.db.scheduled_jobs.update_one(
            {'shop': shop, 'job_type': job.job_type},
            {'$setOnInsert': job.model_dump(exclude={'shop', 'job_type'})},
            upsert=True,
        )
        doc = await self.db.scheduled_jobs.find_one({'shop': shop, 'job_type': job.job_type})
        logger.info(f"Scheduled {job.job_type} for {shop} ({job.schedule})")
        return ScheduledJob(**doc)

    async def get_job(self, shop: str, job_id: str) -> ScheduledJob:
        doc = await self.db.scheduled_jobs.find_one({'shop': shop, 'id': job_id})
        if not doc:
            raise NotFoundError(f"Scheduled job {job_id} not found")
        return ScheduledJob(**doc)

    async def list_jobs(self, shop: str) -> List[ScheduledJob]:
        docs = await self.db.scheduled_jobs.find({'shop': shop}).to_list(None)
        return [ScheduledJob(**d) for d in docs]

    async def _set(self, shop: str, job_id: str, fields: Dict[str, Any]) -> ScheduledJob:
        doc = await self.db.scheduled_jobs.find_one_and_update(
            {'shop': shop, 'id': job_id}, {'$set': fields}, return_document=ReturnDocument.AFTER
        )
        if not doc:
            raise NotFoundError(f"Scheduled job {job_id} not found")
        return ScheduledJob(**doc)

    async def toggle_job(self, shop: str, job_id: str) -> ScheduledJob:
        job = await self.get_job(shop, job_id)
        return await self._set(shop, job_id, {'is_enabled': not job.is_enabled})

    async def update_schedule(self, shop: str, job_id: str, schedule: str,
                              config: Dict[str, Any] = None, now: datetime = None) -> ScheduledJob:
        fields = {
            'schedule': Schedule(schedule).value,
            'next_run_at': compute_next_run(schedule, now or datetime.utcnow()),
        }
        if config is not None:
            fields['config'] = config
        return await self._set(shop, job_id, fields)

    async def delete_job(self, shop: str, job_id: str) -> bool:
        result = await self.db.scheduled_jobs.delete_one({'shop': shop, 'id': job_id})
        if result.deleted_count == 0:
            raise NotFoundError(f"Scheduled job {job_id} not found")
        return True

    # Execution
    async def _claim(self, shop: str, job_id: str, now: datetime) -> Optional[ScheduledJob]:
        """Take the job unless a live run holds it; runs older than the lease are taken over"""
        stale_before = now - timedelta(seconds=scheduler_config.run_lease_seconds)
        doc = await self.db.scheduled_jobs.find_one_and_update(
            {
                'shop': shop,
                'id': job_id,
                '$or': [
                    {'last_status': {'$in': CLAIMABLE}},
                    {'last_status': RunStatus.RUNNING.value, 'last_run_at': {'$lt': stale_before}},
                ],
            },
            {'$set': {'last_status': RunStatus.RUNNING.value, 'last_run_at': now}},
            return_document=ReturnDocument.AFTER,
        )
        return ScheduledJob(**doc) if doc else None

    async def _record_outcome(self, job: ScheduledJob, status: RunStatus, error: Optional[str],
                              now: datetime) -> datetime:
        next_run_at = compute_next_run(job.schedule, now)
        await self.db.scheduled_jobs.update_one(
            {'id': job.id},
            {
                '$set': {'last_status': status.value, 'last_error': error, 'next_run_at': next_run_at},
                '$inc': {'run_count': 1},
            },
        )
        return next_run_at

    async def run_job(self, shop: str, job_id: str, now: datetime = None) -> Dict[str, Any]:
        """Claim the job, run its handler and record the outcome"""
        now = now or datetime.utcnow()
        await self.get_job(shop, job_id)
        job = await self._claim(shop, job_id, now)
        if job is None:
            logger.info(f"Scheduled job {job_id} is already running")
            return {'job_id': job_id, 'status': 'already_running'}

        result = None
        error = None
        handler = self.handlers.get(job.job_type)
        try:
            if handler is None:
                raise LookupError(f"No handler for job type {job.job_type}")
            if asyncio.iscoroutinefunction(handler):
                result = await handler(job)
            else:
                result = handler(job)
            status = RunStatus.SUCCESS
        except asyncio.CancelledError:
            logger.warning(f"Scheduled job {job.job_type} for {shop} was cancelled")
            await asyncio.shield(self._record_outcome(job, RunStatus.FAILED, 'cancelled', now))
            raise
        except Exception as e:
            logger.error(f"Scheduled job {job.job_type} for {shop} failed: {e}")
            error = str(e)
            status = RunStatus.FAILED

        next_run_at = await self._record_outcome(job, status, error, now)
        if error and self.alerts:
            self.alerts.job_failed_alert(shop, job.job_type, error)

        return {
            'job_id': job_id,
            'job_type': job.job_type,
            'status': status.value,
            'result': result,
            'error': error,
            'next_run_at': next_run_at.isoformat(),
        }

    async def run_due_jobs(self, now: datetime = None) -> List[Dict[str, Any]]:
        """Run every enabled job whose next run time has passed"""
        now = now or datetime.utcnow()
        docs = await self.db.scheduled_jobs.find({
            'is_enabled': True,
            'next_run_at': {'$lte': now},
        }).to_list(None)

        results = []
        for doc in docs:
            logger.info(f"Running scheduled job: {doc['job_type']} for {doc['shop']}")
            results.append(await self.run_job(doc['shop'], doc['id'], now))
        return results

    async def _run_loop(self):
        """Main scheduler loop"""
        while self.running:
            try:
                await self.run_due_jobs()
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}")
            await asyncio.sleep(scheduler_config.tick_seconds)

    def start(self):
        """Start the scheduler"""
        if not self.running:
            self.running = True
            self._task_handle = asyncio.create_task(self._run_loop())
            logger.info("Job scheduler started")

    def stop(self):
        """Stop the scheduler"""
        self.running = False
        if self._task_handle:
            self._task_handle.cancel()
        logger.info("Job scheduler stopped")

    def get_status(self) -> Dict[str, Any]:
        return {
            'running': self.running,
            'tick_seconds': scheduler_config.tick_seconds,
            'job_types': sorted(self.handlers),
        }
