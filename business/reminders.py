"""账单催款服务

根据账单逾期天数计算催款等级（1-3），生成催款记录，并在状态变化时
发布事件。同一账单的催款等级只增不减，只有付款/停止催款时归零。

默认阈值（逾期天数）：
    - 等级1：3天
    - 等级2：10天
    - 等级3：20天
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from loguru import logger

from config.settings import settings
from database import DatabaseManager
from database.models import Invoice, InvoiceReminder, InvoiceStatus, ReminderStatus
from events import EventBus, EventName
from .errors import (
    ReminderError, InvoicePaidError, InvoiceNotFoundError, ReminderNotFoundError
)

MAX_REMINDER_LEVEL = 3


@dataclass
class ReminderConfig:
    """催款等级阈值（逾期天数）"""
    level1_days: int = 3
    level2_days: int = 10
    level3_days: int = 20

    @classmethod
    def from_settings(cls) -> "ReminderConfig":
        return cls(
            level1_days=settings.reminder_level1_days,
            level2_days=settings.reminder_level2_days,
            level3_days=settings.reminder_level3_days,
        )


class ReminderService:
    """催款服务

    Attributes:
        db: 数据库管理器
        event_bus: 事件总线
        config: 默认阈值，单次调用可以覆盖
    """

    def __init__(
        self,
        db: DatabaseManager,
        event_bus: EventBus,
        config: Optional[ReminderConfig] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.db = db
        self.event_bus = event_bus
        self.config = config or ReminderConfig()
        self._clock = clock

    async def get_overdue_invoices(self, tenant_id: int) -> List[Invoice]:
        """租户的逾期未付账单，逾期最久的在前"""
        return self.db.invoices.get_overdue(tenant_id, self._clock())

    def calculate_days_overdue(self, due_date: Optional[datetime]) -> int:
        """逾期天数（向下取整，未到期为0）"""
        if due_date is None:
            return 0
        return max(0, (self._clock() - due_date) // timedelta(days=1))

    def calculate_reminder_level(self, invoice: Invoice,
                                 config: Optional[ReminderConfig] = None) -> int:
        """根据逾期天数计算应达到的催款等级

        Args:
            invoice: 账单（只用到 due_date）
            config: 阈值（可选，默认使用服务配置）

        Returns:
            0-3，未设置到期时间或未达到等级1阈值时为0
        """
        if invoice.due_date is None:
            return 0

        config = config or self.config
        days_overdue = (self._clock() - invoice.due_date) // timedelta(days=1)

        if days_overdue >= config.level3_days:
            return 3
        if days_overdue >= config.level2_days:
            return 2
        if days_overdue >= config.level1_days:
            return 1
        return 0

    async def create_reminder(
        self,
        tenant_id: int,
        invoice_id: int,
        level: int,
        method: str = "manual",
        ai_text: Optional[str] = None
    ) -> InvoiceReminder:
        """生成催款记录

        同一事务中把账单的 reminder_level 设为 level、状态设为 OVERDUE，
        然后发布 invoice.reminder_created。

        Raises:
            ReminderError: level 不在 1-3 之间，或低于账单当前等级
            InvoiceNotFoundError: 账单不存在或不属于该租户
            InvoicePaidError: 账单已付款
        """
        if not 1 <= level <= MAX_REMINDER_LEVEL:
            raise ReminderError(f"Reminder level must be between 1 and {MAX_REMINDER_LEVEL}, got {level}")

        with self.db.get_session() as session:
            invoice = self.db.invoices.get_for_update(invoice_id, session)
            if invoice is None or invoice.tenant_id != tenant_id:
                raise InvoiceNotFoundError(f"Invoice {invoice_id} not found for tenant {tenant_id}")
            if invoice.status == InvoiceStatus.PAID.value:
                raise InvoicePaidError(f"Invoice {invoice_id} is already paid")
            if level < (invoice.reminder_level or 0):
                raise ReminderError(
                    f"Reminder level {level} is lower than current level {invoice.reminder_level} "
                    f"of invoice {invoice_id}"
                )

            reminder = self.db.reminders.create_with_invoice_update(
                tenant_id, invoice_id, level,
                reminder_date=self._clock(), method=method, ai_text=ai_text,
                session=session
            )
            if reminder is None:
                raise ReminderError(f"Invoice {invoice_id} changed while creating reminder")
            session.commit()

        self.event_bus.emit(EventName.INVOICE_REMINDER_CREATED, {
            "tenant_id": tenant_id,
            "invoice_id": invoice_id,
            "reminder_id": reminder.id,
            "level": level,
        })
        logger.info(f"Created reminder level {level} for invoice {invoice_id}")
        return reminder

    async def mark_reminder_sent(self, reminder_id: int) -> InvoiceReminder:
        """标记催款已发送，发布 invoice.reminder_sent"""
        return self._set_status(
            reminder_id, ReminderStatus.SENT, EventName.INVOICE_REMINDER_SENT
        )

    async def mark_reminder_failed(self, reminder_id: int) -> InvoiceReminder:
        """标记催款发送失败，发布 invoice.reminder_failed"""
        return self._set_status(
            reminder_id, ReminderStatus.FAILED, EventName.INVOICE_REMINDER_FAILED
        )

    def _set_status(self, reminder_id: int, status: ReminderStatus,
                    event_name: EventName) -> InvoiceReminder:
        reminder = self.db.reminders.set_status(reminder_id, status.value)
        if reminder is None:
            raise ReminderNotFoundError(f"Reminder {reminder_id} not found")

        self.event_bus.emit(event_name, {
            "tenant_id": reminder.tenant_id,
            "invoice_id": reminder.invoice_id,
            "reminder_id": reminder.id,
            "level": reminder.level,
        })
        return reminder

    async def get_invoice_reminders(self, invoice_id: int) -> List[InvoiceReminder]:
        """账单的所有催款记录，最新的在前"""
        return self.db.reminders.get_by_invoice(invoice_id)

    async def stop_reminders(self, invoice_id: int) -> Invoice:
        """停止催款：把账单催款等级归零，发布 invoice.reminder_stopped

        可以重复调用。

        Raises:
            InvoiceNotFoundError: 账单不存在
        """
        invoice = self.db.invoices.set_reminder_level(invoice_id, 0)
        if invoice is None:
            raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")

        self.event_bus.emit(EventName.INVOICE_REMINDER_STOPPED, {
            "tenant_id": invoice.tenant_id,
            "invoice_id": invoice_id,
        })
        logger.info(f"Stopped reminders for invoice {invoice_id}")
        return invoice
