"""事件名称与负载约定。

事件名称集合是封闭的，只能新增名称，不能修改已有负载的结构。

所有负载都是字典，至少包含：
    - tenant_id: 租户ID
    - timestamp: 事件时间（emit 时缺省自动补齐）
    - user_id: 触发用户ID（可选）

以及各事件自己的标识字段，例如：
    - appointment.created: appointment_id, customer_id?, employee_id?,
      start_time, end_time
    - employee.sick: employee_id, employee_name, return_date?
    - employee.vacation: employee_id, employee_name, start_date, end_date
    - task.overdue: task_id, assigned_to?, deadline
    - invoice.paid / payment.paid: invoice_id, amount, customer_id?
    - inventory.low: item_id, item_name, current_quantity, min_threshold
    - invoice.reminder_created / _sent / _failed: invoice_id, reminder_id, level
    - invoice.reminder_stopped: invoice_id
"""
from enum import Enum
from typing import Dict, Any, Callable, Awaitable, Union

EventPayload = Dict[str, Any]
EventHandler = Callable[[EventPayload], Union[None, Awaitable[None]]]


class EventName(str, Enum):
    """所有事件名称"""

    # Customer
    CUSTOMER_CREATED = "customer.created"
    CUSTOMER_UPDATED = "customer.updated"
    CUSTOMER_ARCHIVED = "customer.archived"

    # Appointment
    APPOINTMENT_CREATED = "appointment.created"
    APPOINTMENT_UPDATED = "appointment.updated"
    APPOINTMENT_CANCELLED = "appointment.cancelled"
    APPOINTMENT_COMPLETED = "appointment.completed"
    APPOINTMENT_RESCHEDULED = "appointment.rescheduled"

    # Employee
    EMPLOYEE_CREATED = "employee.created"
    EMPLOYEE_UPDATED = "employee.updated"
    EMPLOYEE_SICK = "employee.sick"
    EMPLOYEE_VACATION = "employee.vacation"
    EMPLOYEE_AVAILABLE = "employee.available"

    # Task
    TASK_CREATED = "task.created"
    TASK_UPDATED = "task.updated"
    TASK_COMPLETED = "task.completed"
    TASK_OVERDUE = "task.overdue"

    # Invoice
    INVOICE_CREATED = "invoice.created"
    INVOICE_OVERDUE = "invoice.overdue"
    INVOICE_PAID = "invoice.paid"

    # Invoice reminders
    INVOICE_REMINDER_CREATED = "invoice.reminder_created"
    INVOICE_REMINDER_SENT = "invoice.reminder_sent"
    INVOICE_REMINDER_FAILED = "invoice.reminder_failed"
    INVOICE_REMINDER_ESCALATED = "invoice.reminder_escalated"
    INVOICE_REMINDER_STOPPED = "invoice.reminder_stopped"

    # Payment
    PAYMENT_CREATED = "payment.created"
    PAYMENT_PAID = "payment.paid"
    PAYMENT_FAILED = "payment.failed"
    PAYMENT_REFUNDED = "payment.refunded"

    # Inventory
    INVENTORY_LOW = "inventory.low"
    INVENTORY_UPDATED = "inventory.updated"

    # Expense
    EXPENSE_CREATED = "expense.created"
    EXPENSE_RECURRING_GENERATED = "expense.recurring_generated"

    # System
    SYSTEM_DAILY_REPORT_GENERATED = "system.daily_report_generated"
    SYSTEM_AUTOMATION_TRIGGERED = "system.automation_triggered"
    AI_USAGE_RECORDED = "ai.usage_recorded"

    def __str__(self) -> str:
        return self.value


# 日志中用于标识负载的字段，按优先级排列
_PAYLOAD_ID_KEYS = (
    "appointment_id", "customer_id", "task_id", "employee_id",
    "reminder_id", "invoice_id", "payment_id", "item_id", "usage_id",
)


def payload_id(payload: EventPayload) -> str:
    """从负载中取出最具代表性的标识，用于日志。

    Args:
        payload: 事件负载。

    Returns:
        标识字符串，找不到时返回 "unknown"。
    """
    for key in _PAYLOAD_ID_KEYS:
        value = payload.get(key)
        if value is not None:
            return f"{key}={value}"
    return "unknown"


def parse_event_name(event_name: Union[str, EventName]) -> EventName:
    """把字符串转换为 EventName。

    Raises:
        ValueError: 未知的事件名称。
    """
    if isinstance(event_name, EventName):
        return event_name
    try:
        return EventName(event_name)
    except ValueError:
        raise ValueError(f"Unknown event name: {event_name}")
