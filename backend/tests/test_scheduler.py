"""Scheduled job runner"""
import asyncio
from datetime import datetime, timedelta

import pytest

from ssrelay.errors import NotFoundError
from ssrelay.models import JobType, RunStatus, Schedule
from ssrelay.utils.scheduler import ScheduledJobRunner, compute_next_run

NOW = datetime(2024, 3, 15, 10, 0)


class TestComputeNextRun:

    def test_daily_is_next_day_at_three(self):
        assert compute_next_run(Schedule.DAILY, NOW) == datetime(2024, 3, 16, 3, 0)

    def test_daily_before_three_still_next_day(self):
        assert compute_next_run('daily', datetime(2024, 3, 15, 1, 30)) == datetime(2024, 3, 16, 3, 0)

    def test_hourly_is_top_of_next_hour(self):
        assert compute_next_run('hourly', datetime(2024, 3, 15, 10, 47, 12)) == datetime(2024, 3, 15, 11, 0)
        assert compute_next_run('hourly', datetime(2024, 3, 15, 23, 5)) == datetime(2024, 3, 16, 0, 0)

    def test_weekly_from_wednesday(self):
        assert compute_next_run('weekly', datetime(2024, 3, 13, 9, 0)) == datetime(2024, 3, 17, 3, 0)

    def test_weekly_on_sunday_before_three_is_same_day(self):
        assert compute_next_run('weekly', datetime(2024, 3, 17, 1, 0)) == datetime(2024, 3, 17, 3, 0)

    def test_weekly_on_sunday_after_three_is_next_week(self):
        assert compute_next_run('weekly', datetime(2024, 3, 17, 3, 0)) == datetime(2024, 3, 24, 3, 0)

    def test_unknown_schedule(self):
        with pytest.raises(ValueError):
            compute_next_run('fortnightly', NOW)


@pytest.fixture
def calls():
    return []


@pytest.fixture
def runner(db, calls):
    async def ok(job):
        calls.append(job.job_type)
        return {'synced': 3}

    async def boom(job):
        calls.append(job.job_type)
        raise RuntimeError('SSActiveWear returned 503')

    return ScheduledJobRunner(db, handlers={
        JobType.CATALOG_SYNC.value: ok,
        JobType.INVENTORY_SYNC.value: boom,
        JobType.CLEANUP.value: ok,
    })


class TestRunJob:

    async def test_create_sets_next_run(self, runner, shop):
        job = await runner.create_job(shop, 'catalog_sync', 'daily', now=NOW)
        assert job.next_run_at == datetime(2024, 3, 16, 3, 0)
        assert job.last_status == RunStatus.PENDING

    async def test_create_is_one_per_type(self, runner, shop, db):
        first = await runner.create_job(shop, 'catalog_sync', now=NOW)
        second = await runner.create_job(shop, 'catalog_sync', 'hourly', now=NOW)
        assert second.id == first.id
        assert await db.scheduled_jobs.count_documents({'shop': shop}) == 1

    async def test_success_records_outcome(self, runner, shop, calls):
        job = await runner.create_job(shop, 'catalog_sync', 'hourly', now=NOW)
        result = await runner.run_job(shop, job.id, now=datetime(2024, 3, 15, 10, 47))

        assert result['status'] == 'success'
        assert result['result'] == {'synced': 3}
        assert calls == ['catalog_sync']
        stored = await runner.get_job(shop, job.id)
        assert stored.run_count == 1
        assert stored.last_status == RunStatus.SUCCESS
        assert stored.last_error is None
        assert stored.last_run_at == datetime(2024, 3, 15, 10, 47)
        assert stored.next_run_at == datetime(2024, 3, 15, 11, 0)

    async def test_failure_records_error(self, runner, shop):
        job = await runner.create_job(shop, 'inventory_sync', now=NOW)
        result = await runner.run_job(shop, job.id, now=NOW)

        assert result['status'] == 'failed'
        stored = await runner.get_job(shop, job.id)
        assert stored.last_status == RunStatus.FAILED
        assert stored.last_error == 'SSActiveWear returned 503'
        assert stored.run_count == 1

    async def test_failed_job_can_run_again(self, runner, shop):
        job = await runner.create_job(shop, 'inventory_sync', now=NOW)
        await runner.run_job(shop, job.id, now=NOW)
        await runner.run_job(shop, job.id, now=NOW)
        assert (await runner.get_job(shop, job.id)).run_count == 2

    async def test_running_job_cannot_be_claimed_twice(self, runner, shop, db, calls):
        job = await runner.create_job(shop, 'catalog_sync', now=NOW)
        await db.scheduled_jobs.update_one({'id': job.id}, {'$set': {'last_status': 'running'}})

        result = await runner.run_job(shop, job.id, now=NOW)

        assert result['status'] == 'already_running'
        assert calls == []
        assert (await runner.get_job(shop, job.id)).run_count == 0

    async def test_missing_handler_fails_the_run(self, runner, shop):
        job = await runner.create_job(shop, 'order_status', now=NOW)
        result = await runner.run_job(shop, job.id, now=NOW)
        assert result['status'] == 'failed'
        assert 'No handler' in result['error']

    async def test_unknown_job(self, runner, shop):
        with pytest.raises(NotFoundError):
            await runner.run_job(shop, 'missing')

    async def test_disabled_job_runs_manually(self, runner, shop, calls):
        job = await runner.create_job(shop, 'catalog_sync', is_enabled=False, now=NOW)
        result = await runner.run_job(shop, job.id, now=NOW)
        assert result['status'] == 'success'


class TestRunDueJobs:

    async def test_runs_only_enabled_due_jobs(self, runner, shop, calls):
        await runner.create_job(shop, 'catalog_sync', 'hourly', now=NOW)
        await runner.create_job(shop, 'cleanup', 'hourly', is_enabled=False, now=NOW)
        await runner.create_job(shop, 'inventory_sync', 'weekly', now=NOW)

        results = await runner.run_due_jobs(now=datetime(2024, 3, 15, 11, 30))

        assert calls == ['catalog_sync']
        assert [r['status'] for r in results] == ['success']

    async def test_toggle_and_reschedule(self, runner, shop):
        job = await runner.create_job(shop, 'catalog_sync', now=NOW)
        toggled = await runner.toggle_job(shop, job.id)
        assert toggled.is_enabled is False

        updated = await runner.update_schedule(shop, job.id, 'weekly', now=NOW)
        assert updated.schedule == 'weekly'
        assert updated.next_run_at == datetime(2024, 3, 17, 3, 0)

    async def test_delete(self, runner, shop):
        job = await runner.create_job(shop, 'catalog_sync', now=NOW)
        assert await runner.delete_job(shop, job.id)
        with pytest.raises(NotFoundError):
            await runner.delete_job(shop, job.id)


class TestInterruptedRuns:

    async def test_cancelled_run_is_recorded_and_released(self, db, shop):
        started = asyncio.Event()

        async def slow(job):
            started.set()
            await asyncio.sleep(10)

        async def quick(job):
            return {'synced': 0}

        runner = ScheduledJobRunner(db, handlers={JobType.CATALOG_SYNC.value: slow})
        job = await runner.create_job(shop, 'catalog_sync', now=NOW)
        task = asyncio.create_task(runner.run_job(shop, job.id, now=NOW))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        stored = await runner.get_job(shop, job.id)
        assert stored.last_status == RunStatus.FAILED
        assert stored.last_error == 'cancelled'
        assert stored.run_count == 1

        runner.register_handler(JobType.CATALOG_SYNC, quick)
        result = await runner.run_job(shop, job.id, now=NOW)
        assert result['status'] == 'success'

    async def test_stale_running_claim_is_taken_over(self, runner, shop, db, calls):
        job = await runner.create_job(shop, 'catalog_sync', now=NOW)
        await db.scheduled_jobs.update_one({'id': job.id}, {'$set': {
            'last_status': 'running', 'last_run_at': NOW - timedelta(hours=2),
        }})

        result = await runner.run_job(shop, job.id, now=NOW)

        assert result['status'] == 'success'
        assert calls == ['catalog_sync']

    async def test_recent_running_claim_is_respected(self, runner, shop, db, calls):
        job = await runner.create_job(shop, 'catalog_sync', now=NOW)
        await db.scheduled_jobs.update_one({'id': job.id}, {'$set': {
            'last_status': 'running', 'last_run_at': NOW - timedelta(minutes=5),
        }})

        result = await runner.run_job(shop, job.id, now=NOW)

        assert result['status'] == 'already_running'
        assert calls == []
