"""
Tests for the periodic job runner.
"""

import asyncio
import pytest
from datetime import date, datetime, timedelta, timezone

NOW = datetime(2024, 3, 10, 14, 0, tzinfo=timezone.utc)


class BrokenGenerator:
    """Generator stand-in whose every call fails."""

    async def generate_due_instances(self, now, lookahead_days=None):
        raise RuntimeError("database is down")

    async def expire_finished_templates(self, now):
        raise RuntimeError("database is down")

    async def archive_completed_instances(self, now):
        raise RuntimeError("database is down")

    async def repair_templates(self):
        raise RuntimeError("database is down")

    async def detach_orphaned_instances(self):
        raise RuntimeError("database is down")


class TestRunTick:
    """Tests for TaskScheduler.run_tick()."""

    @pytest.mark.asyncio
    async def test_generates_then_dispatches(self, tasks, owner, generator, dispatcher, channel, config):
        """A template's instance created by the tick is reminded in the same tick."""
        from taskly.recurrence import RepeatRule
        from taskly.scheduler import TaskScheduler

        template = await tasks.create_template(
            owner_id=owner.id, title="Water plants", rule=RepeatRule("daily"), due_date=date(2024, 3, 1)
        )
        scheduler = TaskScheduler(generator, dispatcher, config)

        result = await scheduler.run_tick(NOW)

        assert result.errors == []
        assert result.generation.created == 1
        assert result.dispatch.sent == 1
        instance = (await tasks.list_instances(template.id))[0]
        assert instance.due_date == date(2024, 3, 10)
        assert instance.notification_sent is True
        assert "Water plants" in channel.sent[0]["text"]

    @pytest.mark.asyncio
    async def test_generation_failure_does_not_block_dispatch(self, tasks, owner, dispatcher, channel, config):
        from taskly.scheduler import TaskScheduler

        await tasks.create(owner_id=owner.id, title="Pay rent", due_date=date(2024, 3, 10))
        scheduler = TaskScheduler(BrokenGenerator(), dispatcher, config)

        result = await scheduler.run_tick(NOW)

        assert result.generation is None
        assert result.errors == ["generation: database is down"]
        assert result.dispatch.sent == 1
        assert result.to_dict()["generation"] is None

    @pytest.mark.asyncio
    async def test_uses_clock_when_no_instant_given(self, generator, dispatcher, config):
        from taskly.scheduler import TaskScheduler

        scheduler = TaskScheduler(generator, dispatcher, config, clock=lambda: NOW)

        result = await scheduler.run_tick()

        assert result.started_at == NOW

    @pytest.mark.asyncio
    async def test_concurrent_ticks_send_once(self, tasks, owner, generator, dispatcher, channel, config):
        from taskly.scheduler import TaskScheduler

        await tasks.create(owner_id=owner.id, title="Pay rent", due_date=date(2024, 3, 10))
        scheduler = TaskScheduler(generator, dispatcher, config)

        results = await asyncio.gather(scheduler.run_tick(NOW), scheduler.run_tick(NOW))

        assert sum(r.dispatch.sent for r in results) == 1
        assert len(channel.sent) == 1


class TestOtherJobs:
    """Tests for advance generation and maintenance."""

    @pytest.mark.asyncio
    async def test_advance_generation_fills_the_week(self, tasks, owner, generator, dispatcher, config):
        from taskly.recurrence import RepeatRule
        from taskly.scheduler import TaskScheduler

        template = await tasks.create_template(
            owner_id=owner.id, title="Stretch", rule=RepeatRule("daily"), due_date=date(2024, 3, 1)
        )
        config.scheduler.advance_days = 3
        scheduler = TaskScheduler(generator, dispatcher, config)

        result = await scheduler.run_advance_generation(NOW)

        assert result.created == 4
        dates = [i.due_date for i in await tasks.list_instances(template.id)]
        assert dates == [date(2024, 3, 10), date(2024, 3, 11), date(2024, 3, 12), date(2024, 3, 13)]

    @pytest.mark.asyncio
    async def test_advance_generation_failure_returns_none(self, dispatcher, config):
        from taskly.scheduler import TaskScheduler

        scheduler = TaskScheduler(BrokenGenerator(), dispatcher, config)

        assert await scheduler.run_advance_generation(NOW) is None

    @pytest.mark.asyncio
    async def test_maintenance(self, tasks, owner, generator, dispatcher, config):
        from taskly.recurrence import RepeatRule
        from taskly.scheduler import TaskScheduler

        await tasks.create_template(
            owner_id=owner.id,
            title="Course",
            rule=RepeatRule("weekly"),
            due_date=date(2024, 1, 1),
            repeat_end_date=date(2024, 2, 1),
        )
        scheduler = TaskScheduler(generator, dispatcher, config)

        summary = await scheduler.run_maintenance(NOW)

        assert summary == {
            "repaired_templates": 0,
            "detached_instances": 0,
            "expired_templates": 1,
            "archived_instances": 0,
            "deleted_notifications": 0,
        }

    @pytest.mark.asyncio
    async def test_maintenance_steps_are_independent(self, dispatcher, config):
        from taskly.scheduler import TaskScheduler

        scheduler = TaskScheduler(BrokenGenerator(), dispatcher, config)

        summary = await scheduler.run_maintenance(NOW)

        assert summary == {
            "repaired_templates": None,
            "detached_instances": None,
            "expired_templates": None,
            "archived_instances": None,
            "deleted_notifications": 0,
        }

    @pytest.mark.asyncio
    async def test_maintenance_repairs_recurring_data(self, tasks, owner, generator, dispatcher, config):
        """A template saved without repeat settings generates again after maintenance."""
        from taskly.models.task import TaskTemplate
        from taskly.recurrence import RepeatRule
        from taskly.scheduler import TaskScheduler

        broken = TaskTemplate(owner_id=owner.id, title="Legacy", due_date=date(2024, 3, 1), rule=RepeatRule("daily"))
        await tasks._insert(broken)
        await tasks.adapter.execute(
            "UPDATE tasks SET repeat_type = NULL, repeat_interval = NULL WHERE id = $1", broken.id
        )
        scheduler = TaskScheduler(generator, dispatcher, config)

        assert (await scheduler.run_tick(NOW)).generation.failed == 1
        summary = await scheduler.run_maintenance(NOW)
        result = await scheduler.run_tick(NOW)

        assert summary["repaired_templates"] == 1
        assert result.generation.created == 1


class TestLifecycle:
    """Tests for start() and stop()."""

    @pytest.mark.asyncio
    async def test_start_registers_jobs_and_stop(self, generator, dispatcher, config):
        from taskly.scheduler import ADVANCE_JOB, MAINTENANCE_JOB, TICK_JOB, TaskScheduler

        scheduler = TaskScheduler(generator, dispatcher, config)

        handle = scheduler.start()
        try:
            assert handle.running is True
            assert sorted(handle.job_ids) == sorted([TICK_JOB, ADVANCE_JOB, MAINTENANCE_JOB])
            assert scheduler.start().running is True
        finally:
            await handle.stop()

        assert scheduler.running is False
        assert scheduler.job_ids() == []

    @pytest.mark.asyncio
    async def test_first_tick_runs_at_startup(self, generator, dispatcher, config):
        """The tick is due immediately, not one interval after start()."""
        from taskly.scheduler import ADVANCE_JOB, TICK_JOB, TaskScheduler

        scheduler = TaskScheduler(generator, dispatcher, config)
        assert scheduler.next_run_times() == {}

        started = datetime.now(timezone.utc)
        handle = scheduler.start()
        try:
            next_runs = scheduler.next_run_times()
            assert next_runs[TICK_JOB] - started < timedelta(seconds=5)
            assert next_runs[ADVANCE_JOB] > started
        finally:
            await handle.stop()

    @pytest.mark.asyncio
    async def test_stop_waits_for_inflight_tick(self, generator, dispatcher, config):
        from taskly.scheduler import TaskScheduler

        release = asyncio.Event()
        finished = []

        class SlowGenerator:
            async def generate_due_instances(self, now, lookahead_days=None):
                await release.wait()
                finished.append(now)
                return await generator.generate_due_instances(now, lookahead_days)

        scheduler = TaskScheduler(SlowGenerator(), dispatcher, config)
        tick = asyncio.create_task(scheduler.run_tick(NOW))
        await asyncio.sleep(0)

        stopping = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0)
        assert not stopping.done()

        release.set()
        await stopping

        assert finished == [NOW]
        assert tick.done()
