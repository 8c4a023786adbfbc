"""业务记录仓库：核心业务数据的数据访问层。

管理系统中的核心业务记录（预约、账单、催款记录、待办任务），
这些记录是日常经营活动产生的交易数据，也是 Autopilot 巡检的对象。

预约状态 NEEDS_REASSIGNMENT 的进入（flag）与退出（reassign）都在这里
以单条 UPDATE 事务完成，重复调用不会产生额外影响。
"""
from typing import Optional, List, Any, Iterable
from datetime import datetime
from sqlalchemy.orm import Session
from loguru import logger

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import (
    Appointment, AppointmentStatus, Invoice, InvoiceStatus,
    InvoiceReminder, ReminderStatus, Task, TaskStatus
)

# 可以被标记为"需要改派"的预约状态
REASSIGNABLE_STATUSES = (
    AppointmentStatus.OPEN.value,
    AppointmentStatus.ACCEPTED.value,
    AppointmentStatus.RESCHEDULED.value,
)


class AppointmentRepository(BaseCRUD):
    """预约 仓库。

    除常规增查外，提供员工不可用时的批量标记与改派：
    - flag_for_reassignment: 把某员工时间段内的预约标记为 NEEDS_REASSIGNMENT
    - reassign / bulk_reassign: 改派给新员工并恢复为 OPEN
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def add(self, tenant_id: int, start_time: datetime, end_time: datetime,
            employee_id: Optional[int] = None,
            customer_id: Optional[int] = None,
            session: Optional[Session] = None, **fields: Any) -> Appointment:
        """创建预约。

        Args:
            tenant_id: 租户ID。
            start_time / end_time: 起止时间。
            employee_id: 负责员工ID（可选）。
            customer_id: 顾客ID（可选）。
            **fields: 其他字段（title、price、status 等）。

        Returns:
            新创建的 Appointment 对象。
        """
        return self.create(
            Appointment, session=session, tenant_id=tenant_id,
            start_time=start_time, end_time=end_time,
            employee_id=employee_id, customer_id=customer_id, **fields
        )

    def get(self, appointment_id: int,
            session: Optional[Session] = None) -> Optional[Appointment]:
        return self.get_by_id(Appointment, appointment_id, session=session)

    def list_by_status(self, tenant_id: int, status: str,
                       session: Optional[Session] = None
                       ) -> List[Appointment]:
        """按状态列出租户的预约（按开始时间排序）。"""
        return self.get_all(
            Appointment,
            filters={"tenant_id": tenant_id, "status": status},
            order_by=Appointment.start_time,
            session=session,
        )

    def get_needing_reassignment(self, tenant_id: Optional[int] = None,
                                 employee_id: Optional[int] = None,
                                 from_time: Optional[datetime] = None,
                                 session: Optional[Session] = None
                                 ) -> List[Appointment]:
        """获取状态为 NEEDS_REASSIGNMENT 的预约。

        Args:
            tenant_id: 只查询该租户（可选）。
            employee_id: 只查询该员工（可选）。
            from_time: 只返回 start_time >= from_time 的预约（可选）。

        Returns:
            预约列表（按开始时间排序）。
        """
        def _query(sess):
            query = sess.query(Appointment).filter(
                Appointment.status == AppointmentStatus.NEEDS_REASSIGNMENT.value
            )
            if tenant_id is not None:
                query = query.filter(Appointment.tenant_id == tenant_id)
            if employee_id is not None:
                query = query.filter(Appointment.employee_id == employee_id)
            if from_time is not None:
                query = query.filter(Appointment.start_time >= from_time)
            return query.order_by(Appointment.start_time).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def flag_for_reassignment(self, employee_id: int, start: datetime,
                              end: Optional[datetime] = None,
                              tenant_id: Optional[int] = None,
                              session: Optional[Session] = None) -> int:
        """把员工在 [start, end) 内开始的预约标记为 NEEDS_REASSIGNMENT。

        只处理 OPEN / ACCEPTED / RESCHEDULED 的预约，已标记、已取消、
        已完成的预约保持不变，因此重复调用是幂等的。

        Args:
            employee_id: 员工ID。
            start: 起始时间（含）。
            end: 结束时间（不含，可选，默认不限）。
            tenant_id: 只处理该租户的预约（可选）。

        Returns:
            本次被标记的预约数量。
        """
        def _do(sess):
            query = sess.query(Appointment).filter(
                Appointment.employee_id == employee_id,
                Appointment.start_time >= start,
                Appointment.status.in_(REASSIGNABLE_STATUSES),
            )
            if end is not None:
                query = query.filter(Appointment.start_time < end)
            if tenant_id is not None:
                query = query.filter(Appointment.tenant_id == tenant_id)
            return query.update(
                {
                    Appointment.status:
                        AppointmentStatus.NEEDS_REASSIGNMENT.value,
                    Appointment.updated_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )

        if session:
            return _do(session)

        with self._get_session() as sess:
            flagged = _do(sess)
            sess.commit()

        if flagged:
            logger.debug(
                f"Flagged {flagged} appointment(s) of employee "
                f"{employee_id} for reassignment"
            )
        return flagged

    def reassign(self, appointment_id: int, employee_id: int,
                 session: Optional[Session] = None
                 ) -> Optional[Appointment]:
        """把单个预约改派给新员工，状态恢复为 OPEN。

        Returns:
            更新后的 Appointment 对象，不存在返回 None。
        """
        return self.update_by_id(
            Appointment, appointment_id, session=session,
            employee_id=employee_id,
            status=AppointmentStatus.OPEN.value,
        )

    def bulk_reassign(self, old_employee_id: int, new_employee_id: int,
                      appointment_ids: Optional[Iterable[int]] = None,
                      session: Optional[Session] = None) -> int:
        """把旧员工所有 NEEDS_REASSIGNMENT 预约批量改派给新员工。

        Args:
            old_employee_id: 原员工ID。
            new_employee_id: 新员工ID。
            appointment_ids: 只改派这些预约（可选，默认全部）。

        Returns:
            被改派的预约数量。
        """
        def _do(sess):
            query = sess.query(Appointment).filter(
                Appointment.employee_id == old_employee_id,
                Appointment.status == AppointmentStatus.NEEDS_REASSIGNMENT.value,
            )
            if appointment_ids is not None:
                ids = list(appointment_ids)
                if not ids:
                    return 0
                query = query.filter(Appointment.id.in_(ids))
            return query.update(
                {
                    Appointment.employee_id: new_employee_id,
                    Appointment.status: AppointmentStatus.OPEN.value,
                    Appointment.updated_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )

        if session:
            return _do(session)

        with self._get_session() as sess:
            count = _do(sess)
            sess.commit()
            return count


class InvoiceRepository(BaseCRUD):
    """账单 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def add(self, tenant_id: int, amount: Any,
            due_date: Optional[datetime] = None,
            customer_id: Optional[int] = None,
            session: Optional[Session] = None, **fields: Any) -> Invoice:
        """创建账单。

        Args:
            tenant_id: 租户ID。
            amount: 金额。
            due_date: 到期时间（可选）。
            customer_id: 顾客ID（可选）。
            **fields: 其他字段（invoice_number、status 等）。

        Returns:
            新创建的 Invoice 对象。
        """
        return self.create(
            Invoice, session=session, tenant_id=tenant_id, amount=amount,
            due_date=due_date, customer_id=customer_id, **fields
        )

    def get(self, invoice_id: int,
            session: Optional[Session] = None) -> Optional[Invoice]:
        return self.get_by_id(Invoice, invoice_id, session=session)

    def get_for_update(self, invoice_id: int,
                       session: Session) -> Optional[Invoice]:
        """在调用方事务中读取并锁定账单（SQLite 忽略行锁）。"""
        return session.query(Invoice).filter(
            Invoice.id == invoice_id
        ).with_for_update().first()

    def get_overdue(self, tenant_id: int, now: datetime,
                    session: Optional[Session] = None) -> List[Invoice]:
        """获取租户的逾期未付账单。

        条件：状态为 PENDING 或 OVERDUE、due_date 早于 now、未付款。

        Args:
            tenant_id: 租户ID。
            now: 当前时间。

        Returns:
            逾期账单列表，按 due_date 升序（逾期最久的在前）。
        """
        def _query(sess):
            return sess.query(Invoice).filter(
                Invoice.tenant_id == tenant_id,
                Invoice.status.in_([
                    InvoiceStatus.PENDING.value, InvoiceStatus.OVERDUE.value
                ]),
                Invoice.due_date.isnot(None),
                Invoice.due_date < now,
                Invoice.paid_at.is_(None),
            ).order_by(Invoice.due_date.asc(), Invoice.id.asc()).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def set_reminder_level(self, invoice_id: int, level: int,
                           session: Optional[Session] = None
                           ) -> Optional[Invoice]:
        """直接设置账单的催款等级。"""
        return self.update_by_id(
            Invoice, invoice_id, session=session, reminder_level=level
        )

    def mark_paid(self, invoice_id: int, paid_at: datetime,
                  session: Optional[Session] = None) -> Optional[Invoice]:
        """标记账单已付款。

        Returns:
            更新后的 Invoice 对象，不存在返回 None。
        """
        return self.update_by_id(
            Invoice, invoice_id, session=session,
            status=InvoiceStatus.PAID.value, paid_at=paid_at
        )


class ReminderRepository(BaseCRUD):
    """催款记录 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def create_with_invoice_update(self, tenant_id: int, invoice_id: int,
                                   level: int, reminder_date: datetime,
                                   method: str = "manual",
                                   ai_text: Optional[str] = None,
                                   session: Optional[Session] = None
                                   ) -> Optional[InvoiceReminder]:
        """新建催款记录，并在同一事务中更新账单。

        账单的 reminder_level 设为 level，状态设为 OVERDUE。写入前在同一
        事务内重新检查账单：已付款或 level 低于当前等级时不做任何修改。
        传入 session 时只 flush，由调用方提交。

        Args:
            tenant_id: 租户ID。
            invoice_id: 账单ID。
            level: 催款等级（1-3）。
            reminder_date: 催款时间。
            method: 生成方式。
            ai_text: 催款文本（可选）。

        Returns:
            新创建的 InvoiceReminder 对象；账单不存在、已付款或 level
            低于当前等级时返回 None。
        """
        def _do(sess):
            invoice = sess.query(Invoice).filter(
                Invoice.id == invoice_id
            ).with_for_update().first()
            if invoice is None:
                return None
            if invoice.status == InvoiceStatus.PAID.value:
                return None
            if level < (invoice.reminder_level or 0):
                return None

            reminder = InvoiceReminder(
                tenant_id=tenant_id,
                invoice_id=invoice_id,
                level=level,
                status=ReminderStatus.PENDING.value,
                method=method,
                ai_text=ai_text,
                reminder_date=reminder_date,
            )
            sess.add(reminder)
            invoice.reminder_level = level
            invoice.status = InvoiceStatus.OVERDUE.value
            sess.flush()
            return reminder

        if session:
            return _do(session)

        with self._get_session() as sess:
            reminder = _do(sess)
            if reminder is not None:
                sess.commit()
                sess.refresh(reminder)
            return reminder

    def get(self, reminder_id: int,
            session: Optional[Session] = None) -> Optional[InvoiceReminder]:
        return self.get_by_id(InvoiceReminder, reminder_id, session=session)

    def set_status(self, reminder_id: int, status: str,
                   session: Optional[Session] = None
                   ) -> Optional[InvoiceReminder]:
        """更新催款记录状态（PENDING / SENT / FAILED）。"""
        return self.update_by_id(
            InvoiceReminder, reminder_id, session=session, status=status
        )

    def get_by_invoice(self, invoice_id: int,
                       session: Optional[Session] = None
                       ) -> List[InvoiceReminder]:
        """获取账单的所有催款记录，最新的在前。"""
        def _query(sess):
            return sess.query(InvoiceReminder).filter(
                InvoiceReminder.invoice_id == invoice_id
            ).order_by(
                InvoiceReminder.reminder_date.desc(),
                InvoiceReminder.id.desc(),
            ).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)


class TaskRepository(BaseCRUD):
    """待办任务 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def add(self, tenant_id: int, title: str,
            session: Optional[Session] = None, **fields: Any) -> Task:
        """创建任务。"""
        return self.create(
            Task, session=session, tenant_id=tenant_id, title=title, **fields
        )

    def get(self, task_id: int,
            session: Optional[Session] = None) -> Optional[Task]:
        return self.get_by_id(Task, task_id, session=session)

    def get_overdue(self, now: datetime, tenant_id: Optional[int] = None,
                    session: Optional[Session] = None) -> List[Task]:
        """获取逾期未完成的任务。

        Args:
            now: 当前时间。
            tenant_id: 只查询该租户（可选，默认所有租户）。

        Returns:
            deadline < now 且状态不是 DONE 的任务列表（按截止时间排序）。
        """
        def _query(sess):
            query = sess.query(Task).filter(
                Task.deadline.isnot(None),
                Task.deadline < now,
                Task.status != TaskStatus.DONE.value,
            )
            if tenant_id is not None:
                query = query.filter(Task.tenant_id == tenant_id)
            return query.order_by(Task.deadline, Task.id).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def assign(self, task_id: int, user_id: int,
               session: Optional[Session] = None) -> Optional[Task]:
        """把任务分配给用户。"""
        return self.update_by_id(
            Task, task_id, session=session, assigned_to=user_id
        )

    def set_priority(self, task_id: int, priority: str,
                     session: Optional[Session] = None) -> Optional[Task]:
        """设置任务优先级。"""
        return self.update_by_id(
            Task, task_id, session=session, priority=priority
        )
