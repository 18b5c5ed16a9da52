"""Tests for the in-process renewal scheduler."""

import asyncio
from datetime import datetime

import pytest

from billing.services.renewal_service import RenewalReport
from billing.workers.renewal_scheduler import RenewalScheduler, seconds_until_midnight


class FakeRenewalService:
    """Renewal service double counting passes and overlap."""

    def __init__(self, pass_seconds: float = 0.0):
        self.pass_seconds = pass_seconds
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.completed = 0
        self.started = asyncio.Event()
        self.ran = asyncio.Event()

    async def run_once(self) -> RenewalReport:
        self.calls += 1
        self.started.set()
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.pass_seconds)
        finally:
            self.active -= 1
        self.completed += 1
        self.ran.set()
        return RenewalReport(processed=1, renewed=1)


class FailingRenewalService(FakeRenewalService):
    async def run_once(self) -> RenewalReport:
        self.calls += 1
        self.ran.set()
        raise RuntimeError("database is down")


class TestSecondsUntilMidnight:
    """Test the delay to the first scheduled pass."""

    def test_one_hour_before_midnight(self):
        assert seconds_until_midnight(datetime(2026, 1, 1, 23, 0)) == 3600

    def test_just_after_midnight(self):
        assert seconds_until_midnight(datetime(2026, 1, 1, 0, 0, 1)) == 86399

    def test_crosses_month_end(self):
        assert seconds_until_midnight(datetime(2026, 1, 31, 12, 0)) == 12 * 3600


class TestRenewalScheduler:
    """Test starting, stopping and serializing renewal passes."""

    @pytest.mark.asyncio
    async def test_start_runs_a_pass_immediately(self):
        service = FakeRenewalService()
        scheduler = RenewalScheduler(service)

        await scheduler.start()
        await asyncio.wait_for(service.ran.wait(), timeout=1)

        assert service.calls == 1
        assert scheduler.running
        await scheduler.stop()
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_task(self):
        service = FakeRenewalService()
        scheduler = RenewalScheduler(service)

        await scheduler.start()
        await scheduler.start()
        await asyncio.wait_for(service.ran.wait(), timeout=1)
        await scheduler.stop()

        assert service.calls == 1

    @pytest.mark.asyncio
    async def test_failing_pass_keeps_scheduler_alive(self):
        service = FailingRenewalService()
        scheduler = RenewalScheduler(service)

        await scheduler.start()
        await asyncio.wait_for(service.ran.wait(), timeout=1)
        await asyncio.sleep(0)

        assert scheduler.running
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_passes_never_overlap(self):
        service = FakeRenewalService(pass_seconds=0.05)
        scheduler = RenewalScheduler(service)

        reports = await asyncio.gather(*(scheduler.run_once() for _ in range(3)))

        assert service.calls == 3
        assert service.max_active == 1
        assert all(report.renewed == 1 for report in reports)

    @pytest.mark.asyncio
    async def test_stop_waits_for_pass_in_flight(self):
        service = FakeRenewalService(pass_seconds=0.1)
        scheduler = RenewalScheduler(service)

        await scheduler.start()
        await asyncio.wait_for(service.started.wait(), timeout=1)
        assert service.active == 1
        await scheduler.stop()

        assert service.completed == 1
        assert service.active == 0
        assert service.calls == 1
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        scheduler = RenewalScheduler(FakeRenewalService())

        await scheduler.stop()

        assert not scheduler.running
