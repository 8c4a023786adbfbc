"""Autopilot 服务

订阅领域事件并执行自动化动作，同时在调度器上注册周期巡检任务。

状态：
    - enabled: 总开关。关闭后事件处理和巡检都直接返回，但巡检任务保持注册
    - running: 巡检任务是否已注册在调度器上

巡检（run_periodic_tasks）依次执行四个相互隔离的步骤：
    1. 逾期未完成任务 -> 发布 task.overdue
    2. 逐个租户检查逾期账单 -> 等级提升时生成催款记录
    3. 低库存物品 -> 每次巡检都发布 inventory.low（不去重）
    4. 统计待改派的未来预约（只记录日志，改派由管理员操作）

事件总线对失败事件整体重试，因此这里的事件处理都可以安全地重复执行。
"""
from datetime import datetime, date, time, timedelta
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from config.settings import settings
from database import DatabaseManager
from database.models import AppointmentStatus, Task
from events import EventBus, EventName, EventPayload
from .availability import AvailabilityChecker
from .errors import (
    ReminderError, InvoiceNotFoundError, TaskNotFoundError,
    AppointmentNotFoundError, EmployeeNotFoundError, EmployeeUnavailableError
)
from .notifications import AdminNotifier, AdminNotification, LoggingNotifier
from .reminders import ReminderService

# 已结束的预约不能再改派
CLOSED_APPOINTMENT_STATUSES = (
    AppointmentStatus.CANCELLED.value,
    AppointmentStatus.COMPLETED.value,
)


def _to_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(str(value)).date()


class AutopilotService:
    """Autopilot 服务

    Example::

        autopilot = AutopilotService(db, bus, reminders, checker, scheduler=scheduler)
        autopilot.start(60)          # 每60分钟巡检一次
        summary = await autopilot.run_periodic_tasks()
    """

    SWEEP_JOB_ID = "autopilot_sweep"

    def __init__(
        self,
        db: DatabaseManager,
        event_bus: EventBus,
        reminders: ReminderService,
        availability: AvailabilityChecker,
        scheduler: Optional[Any] = None,
        notifier: Optional[AdminNotifier] = None,
        clock: Callable[[], datetime] = datetime.now,
        tenant_page_size: Optional[int] = None
    ):
        self.db = db
        self.event_bus = event_bus
        self.reminders = reminders
        self.availability = availability
        self.notifier = notifier or LoggingNotifier()
        self.enabled = True
        self.interval_minutes: float = settings.autopilot_interval_minutes
        self.tenant_page_size = tenant_page_size or settings.tenant_page_size
        self._scheduler = scheduler
        self._clock = clock
        self._subscribe_to_events()

    def _subscribe_to_events(self):
        bus = self.event_bus
        bus.subscribe(EventName.APPOINTMENT_CREATED, self.handle_appointment_created)
        bus.subscribe(EventName.EMPLOYEE_SICK, self.handle_employee_sick)
        bus.subscribe(EventName.EMPLOYEE_VACATION, self.handle_employee_vacation)
        bus.subscribe(EventName.TASK_OVERDUE, self.handle_task_overdue)
        bus.subscribe(EventName.INVOICE_PAID, self.handle_invoice_paid)
        bus.subscribe(EventName.PAYMENT_PAID, self.handle_invoice_paid)

    # ================================================================
    # 启停
    # ================================================================

    def start(self, interval_minutes: Optional[float] = None):
        """注册巡检任务，已注册时先移除旧任务

        Args:
            interval_minutes: 巡检间隔（分钟），默认读取配置

        Raises:
            RuntimeError: 没有注入调度器
            ValueError: interval_minutes 不是正数（已注册的任务保持不变）
        """
        if self._scheduler is None:
            raise RuntimeError("AutopilotService has no scheduler")
        if interval_minutes is not None:
            if interval_minutes <= 0:
                raise ValueError(f"Interval must be positive, got {interval_minutes}")
            self.interval_minutes = interval_minutes
        if self.running:
            self.stop()

        self._scheduler.add_interval_task(
            self.run_periodic_tasks,
            minutes=self.interval_minutes,
            task_id=self.SWEEP_JOB_ID,
            task_name="autopilot sweep"
        )
        logger.info(f"Autopilot started with {self.interval_minutes:g} minute interval")

    def stop(self):
        """移除巡检任务（正在执行的巡检会继续跑完）"""
        if self.running:
            self._scheduler.remove_job(self.SWEEP_JOB_ID)
            logger.info("Autopilot stopped")

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.has_job(self.SWEEP_JOB_ID)

    def set_enabled(self, enabled: bool):
        self.enabled = enabled
        logger.info(f"Autopilot {'enabled' if enabled else 'disabled'}")

    def get_status(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "running": self.running,
            "interval_minutes": self.interval_minutes,
        }

    # ================================================================
    # 事件处理
    # ================================================================

    async def handle_appointment_created(self, payload: EventPayload):
        if not self.enabled:
            return
        logger.info(
            f"Appointment {payload.get('appointment_id')} created, "
            f"checking for follow-up actions"
        )

    async def handle_employee_sick(self, payload: EventPayload):
        """员工病假：把今天起的预约标记为待改派，并通知管理员"""
        if not self.enabled:
            return
        employee_id = payload.get("employee_id")
        if employee_id is None:
            return

        today_start = datetime.combine(self._clock().date(), time.min)
        flagged = self.flag_appointments_for_reassignment(
            payload.get("tenant_id"), employee_id, today_start
        )
        name = payload.get("employee_name") or employee_id
        await self._notify(AdminNotification(
            type="employee_sick",
            message=(
                f"Mitarbeiter {name} ist krank. "
                f"{flagged} Termin(e) müssen neu zugewiesen werden."
            ),
            tenant_id=payload.get("tenant_id"),
        ))

    async def handle_employee_vacation(self, payload: EventPayload):
        """员工休假：把休假期间（按天，含首尾）的预约标记为待改派"""
        if not self.enabled:
            return
        employee_id = payload.get("employee_id")
        start_date = _to_date(payload.get("start_date"))
        end_date = _to_date(payload.get("end_date"))
        if employee_id is None or start_date is None or end_date is None:
            return

        self.flag_appointments_for_reassignment(
            payload.get("tenant_id"),
            employee_id,
            datetime.combine(start_date, time.min),
            datetime.combine(end_date + timedelta(days=1), time.min),
        )

    async def handle_task_overdue(self, payload: EventPayload):
        if not self.enabled:
            return
        logger.info(f"Task {payload.get('task_id')} overdue, checking for escalation")

    async def handle_invoice_paid(self, payload: EventPayload):
        """账单付款后停止催款"""
        if not self.enabled:
            return
        invoice_id = payload.get("invoice_id")
        if invoice_id is None:
            return
        try:
            await self.reminders.stop_reminders(invoice_id)
        except InvoiceNotFoundError:
            logger.warning(f"Paid invoice {invoice_id} not found, nothing to stop")

    async def _notify(self, notification: AdminNotification):
        try:
            await self.notifier.notify_admin(notification)
        except Exception:
            logger.exception(f"Failed to notify admin: {notification.type}")

    # ================================================================
    # 周期巡检
    # ================================================================

    async def run_periodic_tasks(self) -> Dict[str, Any]:
        """执行一次巡检

        Returns:
            巡检摘要：各步骤处理的数量，以及失败的步骤名列表
        """
        if not self.enabled:
            return {"enabled": False}

        logger.info("Autopilot running periodic tasks...")
        summary: Dict[str, Any] = {
            "enabled": True,
            "overdue_tasks": 0,
            "reminders_created": 0,
            "low_inventory": 0,
            "needs_reassignment": 0,
            "errors": [],
        }
        steps = (
            ("overdue_tasks", self.check_overdue_tasks),
            ("reminders_created", self.process_reminders),
            ("low_inventory", self.check_low_inventory),
            ("needs_reassignment", self.check_reassignments),
        )
        for key, step in steps:
            try:
                summary[key] = await step()
            except Exception:
                logger.exception(f"Autopilot step '{key}' failed")
                summary["errors"].append(key)

        logger.info(f"Autopilot periodic tasks completed: {summary}")
        return summary

    async def check_overdue_tasks(self) -> int:
        tasks: List[Task] = self.db.tasks.get_overdue(self._clock())
        for task in tasks:
            self.event_bus.emit(EventName.TASK_OVERDUE, {
                "tenant_id": task.tenant_id,
                "task_id": task.id,
                "assigned_to": task.assigned_to,
                "deadline": task.deadline,
            })
        return len(tasks)

    async def process_reminders(self) -> int:
        created = 0
        for tenant_id in self.db.tenants.iter_tenant_ids(self.tenant_page_size):
            invoices = await self.reminders.get_overdue_invoices(tenant_id)
            for invoice in invoices:
                level = self.reminders.calculate_reminder_level(invoice)
                if level <= (invoice.reminder_level or 0):
                    continue
                try:
                    await self.reminders.create_reminder(
                        tenant_id, invoice.id, level, method="autopilot"
                    )
                except (ReminderError, InvoiceNotFoundError) as e:
                    logger.warning(f"Skipped reminder for invoice {invoice.id}: {e}")
                    continue
                created += 1
        return created

    async def check_low_inventory(self) -> int:
        items = self.db.inventory.get_low_stock()
        for item in items:
            self.event_bus.emit(EventName.INVENTORY_LOW, {
                "tenant_id": item.tenant_id,
                "item_id": item.id,
                "item_name": item.name,
                "current_quantity": item.quantity,
                "min_threshold": item.min_threshold,
            })
        return len(items)

    async def check_reassignments(self) -> int:
        appointments = self.db.appointments.get_needing_reassignment(
            from_time=self._clock()
        )
        if appointments:
            logger.info(f"Found {len(appointments)} appointments needing reassignment")
        return len(appointments)

    # ================================================================
    # 管理员操作
    # ================================================================

    async def assign_task(self, tenant_id: int, task_id: int, user_id: int) -> Task:
        """把任务分配给用户

        Raises:
            TaskNotFoundError: 任务不存在或不属于该租户
        """
        task = self.db.tasks.get(task_id)
        if task is None or task.tenant_id != tenant_id:
            raise TaskNotFoundError(f"Task {task_id} not found for tenant {tenant_id}")

        task = self.db.tasks.assign(task_id, user_id)
        logger.info(f"Task {task_id} assigned to user {user_id}")
        return task

    def flag_appointments_for_reassignment(
        self,
        tenant_id: Optional[int],
        employee_id: int,
        start: datetime,
        end: Optional[datetime] = None
    ) -> int:
        """把员工在 [start, end) 内开始的预约标记为 NEEDS_REASSIGNMENT

        Returns:
            本次新标记的数量
        """
        flagged = self.db.appointments.flag_for_reassignment(
            employee_id, start, end, tenant_id=tenant_id
        )
        if flagged:
            logger.info(
                f"Marked {flagged} appointment(s) of employee {employee_id} "
                f"as needing reassignment"
            )
        return flagged

    async def reschedule_appointments(
        self,
        old_employee_id: int,
        new_employee_id: int,
        admin_override: bool = False
    ) -> Dict[str, Any]:
        """把旧员工所有待改派预约转给新员工，状态恢复为 OPEN

        未设置 admin_override 时逐个检查新员工的可用性，
        不可用的预约保持 NEEDS_REASSIGNMENT 并在结果中列出。

        Returns:
            {"rescheduled": 改派数量, "skipped": [{"appointment_id", "reason"}]}

        Raises:
            EmployeeNotFoundError: 新员工不存在
        """
        new_employee = self.db.staff.get(new_employee_id)
        if new_employee is None:
            raise EmployeeNotFoundError(f"Employee {new_employee_id} not found")

        appointments = self.db.appointments.get_needing_reassignment(
            tenant_id=new_employee.tenant_id, employee_id=old_employee_id
        )

        skipped = []
        movable = []
        for appointment in appointments:
            if not admin_override:
                result = self.availability.check_availability(
                    new_employee_id, appointment.start_time, appointment.end_time,
                    tenant_id=new_employee.tenant_id
                )
                if not result.is_available:
                    skipped.append({"appointment_id": appointment.id, "reason": result.reason})
                    continue
            movable.append(appointment.id)

        rescheduled = self.db.appointments.bulk_reassign(
            old_employee_id, new_employee_id, appointment_ids=movable
        )
        logger.info(
            f"Rescheduled {rescheduled} appointments from employee {old_employee_id} "
            f"to {new_employee_id}, skipped {len(skipped)}"
        )
        return {"rescheduled": rescheduled, "skipped": skipped}

    async def reassign_appointment(
        self,
        appointment_id: int,
        new_employee_id: int,
        admin_override: bool = False
    ):
        """把单个预约改派给新员工，状态恢复为 OPEN

        Raises:
            AppointmentNotFoundError: 预约不存在
            EmployeeNotFoundError: 新员工不存在或不属于预约所在租户
            EmployeeUnavailableError: 新员工不可用（admin_override 时跳过检查）
            ValueError: 预约已取消或已完成
        """
        appointment = self.db.appointments.get(appointment_id)
        if appointment is None:
            raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
        if appointment.status in CLOSED_APPOINTMENT_STATUSES:
            raise ValueError(
                f"Appointment {appointment_id} is {appointment.status} and cannot be reassigned"
            )

        employee = self.db.staff.get(new_employee_id)
        if employee is None or employee.tenant_id != appointment.tenant_id:
            raise EmployeeNotFoundError(f"Employee {new_employee_id} not found")

        if not admin_override:
            result = self.availability.check_availability(
                new_employee_id, appointment.start_time, appointment.end_time,
                tenant_id=appointment.tenant_id
            )
            if not result.is_available:
                raise EmployeeUnavailableError(
                    f"Mitarbeiter ist nicht verfügbar: {result.reason}", result.reason
                )

        updated = self.db.appointments.reassign(appointment_id, new_employee_id)
        logger.info(f"Appointment {appointment_id} reassigned to employee {new_employee_id}")
        return updated

    async def create_invoice_draft(self, tenant_id: int, customer_id: int,
                                   amount: float) -> str:
        """生成账单草稿编号（只生成编号，不落库）"""
        draft_id = f"INV-{int(self._clock().timestamp() * 1000)}"
        logger.info(f"Created invoice draft {draft_id} for customer {customer_id}")
        return draft_id
