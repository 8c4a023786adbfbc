"""Autopilot service tests.

Sweeps and event handlers are fired by hand through the fake scheduler, and
queued events are processed with event_bus.drain().
"""
from datetime import datetime, timedelta

import pytest

from business.autopilot import AutopilotService
from business.errors import (
    AppointmentNotFoundError, EmployeeNotFoundError, EmployeeUnavailableError,
    TaskNotFoundError,
)
from business.notifications import AdminNotifier
from database.models import AppointmentStatus, TaskStatus

TUESDAY = datetime(2024, 1, 30)


class FailingNotifier(AdminNotifier):
    """Notifier whose delivery always fails."""

    def __init__(self):
        self.calls = 0

    async def notify_admin(self, notification):
        self.calls += 1
        raise ConnectionError("mail server down")


def _queued_names(event_bus):
    return [str(event.event_name) for event in event_bus._queue]


def _book(db, tenant_id, employee_id, start, hours=1, **fields):
    return db.appointments.add(
        tenant_id, start, start + timedelta(hours=hours), employee_id=employee_id, **fields
    )


@pytest.fixture
def anna(temp_db, tenant):
    return temp_db.staff.add(tenant.id, "Anna", work_start="09:00", work_end="17:00")


@pytest.fixture
def ben(temp_db, tenant):
    return temp_db.staff.add(tenant.id, "Ben", work_start="09:00", work_end="17:00")


# ============================================================
# Lifecycle
# ============================================================
class TestLifecycle:
    """Tests for start / stop / running."""

    def test_start_registers_sweep(self, autopilot, scheduler):
        assert not autopilot.running

        autopilot.start(15)

        assert autopilot.running
        assert scheduler.interval_of(AutopilotService.SWEEP_JOB_ID) == 15 * 60
        assert autopilot.get_status() == {
            "enabled": True, "running": True, "interval_minutes": 15,
        }

    def test_restart_keeps_single_job(self, autopilot, scheduler):
        autopilot.start(15)
        autopilot.start()

        assert list(scheduler.jobs) == [AutopilotService.SWEEP_JOB_ID]
        assert scheduler.interval_of(AutopilotService.SWEEP_JOB_ID) == 15 * 60

    def test_stop(self, autopilot, scheduler):
        autopilot.start(15)
        autopilot.stop()
        autopilot.stop()

        assert not autopilot.running
        assert not scheduler.has_job(AutopilotService.SWEEP_JOB_ID)

    @pytest.mark.parametrize("interval", [0, -5])
    def test_non_positive_interval_keeps_running_job(self, autopilot, scheduler, interval):
        autopilot.start(15)

        with pytest.raises(ValueError):
            autopilot.start(interval)

        assert autopilot.running
        assert autopilot.interval_minutes == 15
        assert scheduler.interval_of(AutopilotService.SWEEP_JOB_ID) == 15 * 60

    def test_start_without_scheduler(self, temp_db, event_bus, reminder_service, checker):
        service = AutopilotService(temp_db, event_bus, reminder_service, checker)
        with pytest.raises(RuntimeError):
            service.start(15)

    @pytest.mark.asyncio
    async def test_sweep_runs_from_scheduler(self, autopilot, scheduler):
        autopilot.start(15)
        summary = await scheduler.fire(AutopilotService.SWEEP_JOB_ID)
        assert summary["enabled"] is True
        assert summary["errors"] == []


# ============================================================
# Disabled Autopilot
# ============================================================
class TestDisabled:
    """Tests for the enabled switch."""

    @pytest.mark.asyncio
    async def test_sweep_is_noop(self, autopilot, temp_db, tenant, clock, event_bus):
        temp_db.tasks.add(tenant.id, "Alt", deadline=clock.now - timedelta(days=1))
        autopilot.set_enabled(False)

        assert await autopilot.run_periodic_tasks() == {"enabled": False}
        assert event_bus.get_queue_status()["queue_length"] == 0

    @pytest.mark.asyncio
    async def test_handlers_are_noop(self, autopilot, temp_db, tenant, anna, event_bus,
                                     notifier):
        booked = _book(temp_db, tenant.id, anna.id, TUESDAY.replace(hour=10))
        autopilot.set_enabled(False)

        event_bus.emit("employee.sick", {"tenant_id": tenant.id, "employee_id": anna.id})
        await event_bus.drain()

        assert temp_db.appointments.get(booked.id).status == AppointmentStatus.OPEN.value
        assert notifier.notifications == []

    def test_scheduler_job_stays_registered(self, autopilot):
        autopilot.start(15)
        autopilot.set_enabled(False)
        assert autopilot.get_status()["running"] is True
        assert autopilot.get_status()["enabled"] is False


# ============================================================
# Sweep
# ============================================================
class TestSweep:
    """Tests for the periodic sweep."""

    @pytest.mark.asyncio
    async def test_summary(self, autopilot, temp_db, tenant, anna, clock, event_bus):
        task = temp_db.tasks.add(tenant.id, "Bestellung", deadline=clock.now - timedelta(hours=2))
        temp_db.tasks.add(tenant.id, "Fertig", deadline=clock.now - timedelta(hours=2),
                          status=TaskStatus.DONE.value)
        temp_db.invoices.add(tenant.id, 80, due_date=clock.now - timedelta(days=25))
        temp_db.inventory.add(tenant.id, "Shampoo", quantity=2, min_threshold=5)
        temp_db.inventory.add(tenant.id, "Farbe", quantity=20, min_threshold=5)
        _book(temp_db, tenant.id, anna.id, TUESDAY.replace(hour=10))
        _book(temp_db, tenant.id, anna.id, clock.now - timedelta(days=3))
        temp_db.appointments.flag_for_reassignment(anna.id, clock.now - timedelta(days=7))

        summary = await autopilot.run_periodic_tasks()

        assert summary == {
            "enabled": True,
            "overdue_tasks": 1,
            "reminders_created": 1,
            "low_inventory": 1,
            "needs_reassignment": 1,
            "errors": [],
        }
        assert _queued_names(event_bus) == [
            "task.overdue", "invoice.reminder_created", "inventory.low",
        ]
        overdue = event_bus._queue[0].payload
        assert overdue["task_id"] == task.id
        assert overdue["tenant_id"] == tenant.id
        low = event_bus._queue[2].payload
        assert low["item_name"] == "Shampoo"
        assert low["current_quantity"] == 2
        assert low["min_threshold"] == 5

    @pytest.mark.asyncio
    async def test_level_three_reminder_only_once(self, autopilot, temp_db, tenant, clock):
        invoice = temp_db.invoices.add(tenant.id, 80, due_date=clock.now - timedelta(days=25))

        first = await autopilot.run_periodic_tasks()
        second = await autopilot.run_periodic_tasks()

        assert first["reminders_created"] == 1
        assert second["reminders_created"] == 0
        reminders = temp_db.reminders.get_by_invoice(invoice.id)
        assert [(r.level, r.method) for r in reminders] == [(3, "autopilot")]
        assert temp_db.invoices.get(invoice.id).reminder_level == 3

    @pytest.mark.asyncio
    async def test_escalates_as_time_passes(self, autopilot, temp_db, tenant, clock):
        invoice = temp_db.invoices.add(tenant.id, 80, due_date=clock.now - timedelta(days=4))

        await autopilot.run_periodic_tasks()
        clock.advance(days=1)
        await autopilot.run_periodic_tasks()
        clock.advance(days=6)
        await autopilot.run_periodic_tasks()

        levels = [r.level for r in temp_db.reminders.get_by_invoice(invoice.id)]
        assert levels == [2, 1]

    @pytest.mark.asyncio
    async def test_reminders_across_tenant_pages(self, autopilot, temp_db, tenant,
                                                 other_tenant, clock):
        third = temp_db.tenants.get_or_create("Salon Süd", slug="sued")
        for tenant_id in (tenant.id, other_tenant.id, third.id):
            temp_db.invoices.add(tenant_id, 50, due_date=clock.now - timedelta(days=12))

        summary = await autopilot.run_periodic_tasks()
        assert summary["reminders_created"] == 3

    @pytest.mark.asyncio
    async def test_paid_invoice_gets_no_reminder(self, autopilot, temp_db, tenant, clock):
        invoice = temp_db.invoices.add(tenant.id, 80, due_date=clock.now - timedelta(days=25))
        temp_db.invoices.mark_paid(invoice.id, clock.now)

        summary = await autopilot.run_periodic_tasks()
        assert summary["reminders_created"] == 0

    @pytest.mark.asyncio
    async def test_low_inventory_reported_every_sweep(self, autopilot, temp_db, tenant,
                                                      event_bus):
        temp_db.inventory.add(tenant.id, "Shampoo", quantity=0, min_threshold=3)

        await autopilot.run_periodic_tasks()
        await autopilot.run_periodic_tasks()

        assert _queued_names(event_bus) == ["inventory.low", "inventory.low"]

    @pytest.mark.asyncio
    async def test_failing_step_does_not_stop_others(self, autopilot, temp_db, tenant,
                                                     clock, monkeypatch):
        temp_db.invoices.add(tenant.id, 80, due_date=clock.now - timedelta(days=25))
        temp_db.inventory.add(tenant.id, "Shampoo", quantity=0, min_threshold=3)

        async def broken():
            raise RuntimeError("database timeout")

        monkeypatch.setattr(autopilot, "check_overdue_tasks", broken)
        summary = await autopilot.run_periodic_tasks()

        assert summary["errors"] == ["overdue_tasks"]
        assert summary["overdue_tasks"] == 0
        assert summary["reminders_created"] == 1
        assert summary["low_inventory"] == 1


# ============================================================
# Employee Sick
# ============================================================
class TestEmployeeSick:
    """Tests for the employee.sick handler."""

    @pytest.mark.asyncio
    async def test_flags_from_today_and_notifies(self, autopilot, temp_db, tenant, anna, ben,
                                                 clock, event_bus, notifier):
        yesterday = _book(temp_db, tenant.id, anna.id, clock.now - timedelta(days=1))
        this_morning = _book(temp_db, tenant.id, anna.id, clock.now.replace(hour=9))
        tomorrow = _book(temp_db, tenant.id, anna.id, TUESDAY.replace(hour=10))
        cancelled = _book(temp_db, tenant.id, anna.id, TUESDAY.replace(hour=12),
                          status=AppointmentStatus.CANCELLED.value)
        colleague = _book(temp_db, tenant.id, ben.id, TUESDAY.replace(hour=10))

        event_bus.emit("employee.sick", {
            "tenant_id": tenant.id, "employee_id": anna.id, "employee_name": "Anna",
        })
        await event_bus.drain()

        status = lambda a: temp_db.appointments.get(a.id).status
        assert status(yesterday) == AppointmentStatus.OPEN.value
        assert status(this_morning) == AppointmentStatus.NEEDS_REASSIGNMENT.value
        assert status(tomorrow) == AppointmentStatus.NEEDS_REASSIGNMENT.value
        assert status(cancelled) == AppointmentStatus.CANCELLED.value
        assert status(colleague) == AppointmentStatus.OPEN.value

        assert len(notifier.notifications) == 1
        notification = notifier.notifications[0]
        assert notification.type == "employee_sick"
        assert notification.tenant_id == tenant.id
        assert notification.message == (
            "Mitarbeiter Anna ist krank. 2 Termin(e) müssen neu zugewiesen werden."
        )

    @pytest.mark.asyncio
    async def test_repeated_event_flags_nothing_new(self, autopilot, temp_db, tenant, anna,
                                                    event_bus, notifier):
        _book(temp_db, tenant.id, anna.id, TUESDAY.replace(hour=10))
        payload = {"tenant_id": tenant.id, "employee_id": anna.id, "employee_name": "Anna"}

        event_bus.emit("employee.sick", payload)
        event_bus.emit("employee.sick", payload)
        await event_bus.drain()

        messages = [n.message for n in notifier.notifications]
        assert messages[1] == "Mitarbeiter Anna ist krank. 0 Termin(e) müssen neu zugewiesen werden."

    @pytest.mark.asyncio
    async def test_notifier_failure_is_swallowed(self, temp_db, event_bus, reminder_service,
                                                 checker, scheduler, clock, tenant, anna):
        failing = FailingNotifier()
        AutopilotService(
            temp_db, event_bus, reminder_service, checker,
            scheduler=scheduler, notifier=failing, clock=clock
        )
        booked = _book(temp_db, tenant.id, anna.id, TUESDAY.replace(hour=10))

        event_bus.emit("employee.sick", {"tenant_id": tenant.id, "employee_id": anna.id})
        await event_bus.drain()

        assert failing.calls == 1
        assert event_bus.get_queue_status()["dropped"] == 0
        assert temp_db.appointments.get(booked.id).status == \
            AppointmentStatus.NEEDS_REASSIGNMENT.value

    @pytest.mark.asyncio
    async def test_other_tenant_untouched(self, autopilot, temp_db, tenant, other_tenant,
                                          anna, event_bus):
        booked = _book(temp_db, tenant.id, anna.id, TUESDAY.replace(hour=10))

        event_bus.emit("employee.sick", {"tenant_id": other_tenant.id, "employee_id": anna.id})
        await event_bus.drain()

        assert temp_db.appointments.get(booked.id).status == AppointmentStatus.OPEN.value


# ============================================================
# Employee Vacation
# ============================================================
class TestEmployeeVacation:
    """Tests for the employee.vacation handler."""

    @pytest.mark.asyncio
    async def test_flags_inclusive_day_range(self, autopilot, temp_db, tenant, anna, event_bus):
        before = _book(temp_db, tenant.id, anna.id, datetime(2024, 2, 4, 16))
        first_day = _book(temp_db, tenant.id, anna.id, datetime(2024, 2, 5, 9))
        last_day = _book(temp_db, tenant.id, anna.id, datetime(2024, 2, 7, 16))
        after = _book(temp_db, tenant.id, anna.id, datetime(2024, 2, 8, 0))

        event_bus.emit("employee.vacation", {
            "tenant_id": tenant.id, "employee_id": anna.id,
            "start_date": "2024-02-05", "end_date": "2024-02-07",
        })
        await event_bus.drain()

        status = lambda a: temp_db.appointments.get(a.id).status
        assert status(before) == AppointmentStatus.OPEN.value
        assert status(first_day) == AppointmentStatus.NEEDS_REASSIGNMENT.value
        assert status(last_day) == AppointmentStatus.NEEDS_REASSIGNMENT.value
        assert status(after) == AppointmentStatus.OPEN.value

    @pytest.mark.asyncio
    async def test_missing_dates_are_ignored(self, autopilot, temp_db, tenant, anna, event_bus):
        booked = _book(temp_db, tenant.id, anna.id, datetime(2024, 2, 5, 9))

        event_bus.emit("employee.vacation", {"tenant_id": tenant.id, "employee_id": anna.id})
        await event_bus.drain()

        assert temp_db.appointments.get(booked.id).status == AppointmentStatus.OPEN.value
        assert event_bus.get_queue_status()["dropped"] == 0


# ============================================================
# Invoice Paid
# ============================================================
class TestInvoicePaid:
    """Tests for the invoice.paid handler."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_name", ["invoice.paid", "payment.paid"])
    async def test_stops_reminders(self, autopilot, reminder_service, temp_db, tenant,
                                   clock, event_bus, event_name):
        invoice = temp_db.invoices.add(tenant.id, 80, due_date=clock.now - timedelta(days=12))
        await reminder_service.create_reminder(tenant.id, invoice.id, 2)

        event_bus.emit(event_name, {"tenant_id": tenant.id, "invoice_id": invoice.id})
        await event_bus.drain()

        assert temp_db.invoices.get(invoice.id).reminder_level == 0

    @pytest.mark.asyncio
    async def test_unknown_invoice_is_not_retried(self, autopilot, event_bus, tenant):
        event_bus.emit("invoice.paid", {"tenant_id": tenant.id, "invoice_id": 999})
        await event_bus.drain()
        assert event_bus.get_queue_status()["dropped"] == 0


# ============================================================
# Assign Task
# ============================================================
class TestAssignTask:
    """Tests for the task assignment handler."""

    @pytest.mark.asyncio
    async def test_assign(self, autopilot, temp_db, tenant):
        task = temp_db.tasks.add(tenant.id, "Lieferung prüfen")
        assigned = await autopilot.assign_task(tenant.id, task.id, 42)
        assert assigned.assigned_to == 42

    @pytest.mark.asyncio
    async def test_task_of_other_tenant(self, autopilot, temp_db, tenant, other_tenant):
        task = temp_db.tasks.add(other_tenant.id, "Fremd")
        with pytest.raises(TaskNotFoundError):
            await autopilot.assign_task(tenant.id, task.id, 42)
        assert temp_db.tasks.get(task.id).assigned_to is None

    @pytest.mark.asyncio
    async def test_unknown_task(self, autopilot, tenant):
        with pytest.raises(TaskNotFoundError):
            await autopilot.assign_task(tenant.id, 999, 42)


# ============================================================
# Reschedule
# ============================================================
class TestReschedule:
    """Tests for appointment rescheduling."""

    @pytest.fixture
    def flagged(self, temp_db, tenant, anna):
        morning = _book(temp_db, tenant.id, anna.id, TUESDAY.replace(hour=10))
        evening = _book(temp_db, tenant.id, anna.id, TUESDAY.replace(hour=18))
        temp_db.appointments.flag_for_reassignment(anna.id, TUESDAY)
        return morning, evening

    @pytest.mark.asyncio
    async def test_checks_availability(self, autopilot, temp_db, anna, ben, flagged):
        morning, evening = flagged

        result = await autopilot.reschedule_appointments(anna.id, ben.id)

        assert result["rescheduled"] == 1
        assert result["skipped"] == [{
            "appointment_id": evening.id,
            "reason": "Termin liegt außerhalb der Arbeitszeiten (09:00 - 17:00)",
        }]
        moved = temp_db.appointments.get(morning.id)
        assert moved.employee_id == ben.id
        assert moved.status == AppointmentStatus.OPEN.value
        left = temp_db.appointments.get(evening.id)
        assert left.employee_id == anna.id
        assert left.status == AppointmentStatus.NEEDS_REASSIGNMENT.value

    @pytest.mark.asyncio
    async def test_admin_override(self, autopilot, temp_db, anna, ben, flagged):
        result = await autopilot.reschedule_appointments(anna.id, ben.id, admin_override=True)

        assert result == {"rescheduled": 2, "skipped": []}
        assert temp_db.appointments.get_needing_reassignment(employee_id=anna.id) == []

    @pytest.mark.asyncio
    async def test_nothing_flagged(self, autopilot, anna, ben):
        assert await autopilot.reschedule_appointments(anna.id, ben.id) == {
            "rescheduled": 0, "skipped": [],
        }

    @pytest.mark.asyncio
    async def test_unknown_new_employee(self, autopilot, anna, flagged):
        with pytest.raises(EmployeeNotFoundError):
            await autopilot.reschedule_appointments(anna.id, 999)


# ============================================================
# Reassign Appointment
# ============================================================
class TestReassignAppointment:
    """Tests for appointment reassignment."""

    @pytest.mark.asyncio
    async def test_reassign(self, autopilot, temp_db, tenant, anna, ben):
        booked = _book(temp_db, tenant.id, anna.id, TUESDAY.replace(hour=10))
        temp_db.appointments.flag_for_reassignment(anna.id, TUESDAY)

        updated = await autopilot.reassign_appointment(booked.id, ben.id)

        assert updated.employee_id == ben.id
        assert updated.status == AppointmentStatus.OPEN.value

    @pytest.mark.asyncio
    async def test_unavailable_employee(self, autopilot, temp_db, tenant, anna, ben):
        booked = _book(temp_db, tenant.id, anna.id, TUESDAY.replace(hour=10))
        temp_db.staff.mark_sick(ben.id)

        with pytest.raises(EmployeeUnavailableError) as exc_info:
            await autopilot.reassign_appointment(booked.id, ben.id)

        assert exc_info.value.reason == "Mitarbeiter ist krank gemeldet"
        assert str(exc_info.value) == (
            "Mitarbeiter ist nicht verfügbar: Mitarbeiter ist krank gemeldet"
        )
        assert temp_db.appointments.get(booked.id).employee_id == anna.id

    @pytest.mark.asyncio
    async def test_admin_override(self, autopilot, temp_db, tenant, anna, ben):
        booked = _book(temp_db, tenant.id, anna.id, TUESDAY.replace(hour=10))
        temp_db.staff.mark_sick(ben.id)

        updated = await autopilot.reassign_appointment(booked.id, ben.id, admin_override=True)
        assert updated.employee_id == ben.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [
        AppointmentStatus.CANCELLED.value, AppointmentStatus.COMPLETED.value,
    ])
    async def test_closed_appointment(self, autopilot, temp_db, tenant, anna, ben, status):
        booked = _book(temp_db, tenant.id, anna.id, TUESDAY.replace(hour=10), status=status)
        with pytest.raises(ValueError):
            await autopilot.reassign_appointment(booked.id, ben.id)

    @pytest.mark.asyncio
    async def test_unknown_appointment(self, autopilot, ben):
        with pytest.raises(AppointmentNotFoundError):
            await autopilot.reassign_appointment(999, ben.id)

    @pytest.mark.asyncio
    async def test_employee_of_other_tenant(self, autopilot, temp_db, tenant, other_tenant, anna):
        stranger = temp_db.staff.add(other_tenant.id, "Fremd")
        booked = _book(temp_db, tenant.id, anna.id, TUESDAY.replace(hour=10))
        with pytest.raises(EmployeeNotFoundError):
            await autopilot.reassign_appointment(booked.id, stranger.id)


# ============================================================
# Invoice Draft
# ============================================================
class TestInvoiceDraft:
    """Tests for invoice draft creation."""

    @pytest.mark.asyncio
    async def test_draft_number_from_clock(self, autopilot, tenant, clock):
        draft = await autopilot.create_invoice_draft(tenant.id, 1, 49.5)
        assert draft == f"INV-{int(clock.now.timestamp() * 1000)}"
        assert draft.startswith("INV-")
