"""Shared fixtures for the automation core tests.

Every test gets a fresh temp-file SQLite DatabaseManager, a controllable
clock and a fake scheduler whose jobs are fired by hand instead of by
wall-clock timers.
"""
import inspect
import os
import shutil
import tempfile
from datetime import datetime, timedelta

import pytest

from database import DatabaseManager
from events import EventBus
from business.availability import AvailabilityChecker
from business.reminders import ReminderService, ReminderConfig
from business.autopilot import AutopilotService
from business.notifications import AdminNotifier

# Monday
FIXED_NOW = datetime(2024, 1, 29, 10, 0, 0)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now=FIXED_NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeScheduler:
    """In-memory stand-in for business.scheduler.Scheduler."""

    def __init__(self):
        self.jobs = {}
        self.running = False

    def add_interval_task(self, task_func, seconds=None, minutes=None,
                          task_id="interval_task", task_name=None):
        interval = (seconds or 0) + (minutes or 0) * 60
        if interval <= 0:
            raise ValueError("Interval must be positive")
        self.jobs[task_id] = (task_func, interval)

    def remove_job(self, job_id):
        self.jobs.pop(job_id, None)

    def has_job(self, job_id):
        return job_id in self.jobs

    def interval_of(self, job_id):
        return self.jobs[job_id][1]

    def start(self):
        self.running = True

    def stop(self):
        self.running = False

    async def fire(self, job_id):
        task_func, _ = self.jobs[job_id]
        result = task_func()
        if inspect.isawaitable(result):
            result = await result
        return result


class RecordingNotifier(AdminNotifier):
    """Collects notifications instead of delivering them."""

    def __init__(self):
        self.notifications = []

    async def notify_admin(self, notification):
        self.notifications.append(notification)


@pytest.fixture
def temp_db():
    """Yield a fresh DatabaseManager bound to a temp SQLite database."""
    temp_dir = tempfile.mkdtemp(prefix="studio-tests-")
    db_path = os.path.join(temp_dir, "test.db")
    manager = DatabaseManager(database_url=f"sqlite:///{db_path}")
    manager.create_tables()

    try:
        yield manager
    finally:
        manager.close()
        shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def event_bus(scheduler, clock):
    return EventBus(scheduler=scheduler, max_retries=3, interval_seconds=1.0, clock=clock)


@pytest.fixture
def reminder_service(temp_db, event_bus, clock):
    return ReminderService(temp_db, event_bus, config=ReminderConfig(), clock=clock)


@pytest.fixture
def checker(temp_db):
    return AvailabilityChecker(temp_db)


@pytest.fixture
def autopilot(temp_db, event_bus, reminder_service, checker, scheduler, notifier, clock):
    return AutopilotService(
        temp_db, event_bus, reminder_service, checker,
        scheduler=scheduler, notifier=notifier, clock=clock, tenant_page_size=2
    )


@pytest.fixture
def tenant(temp_db):
    return temp_db.tenants.get_or_create("Salon Mitte", slug="mitte")


@pytest.fixture
def other_tenant(temp_db):
    return temp_db.tenants.get_or_create("Salon Nord", slug="nord")
