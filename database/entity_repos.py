"""实体仓库：基础实体的数据访问层。

管理系统中的基础实体（租户、员工与休假、顾客、库存物品），
这些实体是各类服务型门店（美发、美甲、工作室等）的共性部分。

每个仓库继承 BaseCRUD 获得通用能力，并添加领域特定的查询方法。
"""
from typing import Optional, List, Iterator, Any
from sqlalchemy.orm import Session

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import (
    Tenant, Employee, VacationRequest, VacationStatus, Customer, InventoryItem
)


class TenantRepository(BaseCRUD):
    """租户/门店 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def get_or_create(self, name: str, slug: Optional[str] = None,
                      session: Optional[Session] = None) -> Tenant:
        """获取或创建租户（按 slug 匹配，未提供 slug 时按名称匹配）。

        Args:
            name: 门店名称。
            slug: 门店短标识（可选）。
            session: 外部会话（可选）。

        Returns:
            Tenant 对象。
        """
        def _do(sess):
            query = sess.query(Tenant)
            if slug:
                query = query.filter(Tenant.slug == slug)
            else:
                query = query.filter(Tenant.name == name)
            tenant = query.first()
            if not tenant:
                tenant = Tenant(name=name, slug=slug)
                sess.add(tenant)
                sess.flush()
                sess.refresh(tenant)
            return tenant

        if session:
            return _do(session)

        with self._get_session() as sess:
            tenant = _do(sess)
            sess.commit()
            return tenant

    def iter_tenant_ids(self, page_size: int = 100) -> Iterator[int]:
        """按 ID 顺序分页遍历所有租户ID。

        每页使用独立的短会话，遍历期间新增的租户只要 ID 更大也会被访问到。

        Args:
            page_size: 每页条数。

        Yields:
            租户ID。
        """
        if page_size <= 0:
            raise ValueError("page_size must be positive")

        last_id = 0
        while True:
            with self._get_session() as sess:
                rows = sess.query(Tenant.id).filter(
                    Tenant.id > last_id
                ).order_by(Tenant.id).limit(page_size).all()
            if not rows:
                return
            for (tenant_id,) in rows:
                yield tenant_id
            last_id = rows[-1][0]
            if len(rows) < page_size:
                return


class StaffRepository(BaseCRUD):
    """员工/Staff 仓库。

    管理员工排班属性、病假状态以及休假申请：
    - 病假上报 / 康复
    - 休假申请、批准、拒绝
    - 查询已批准休假（供可用性检查使用）
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def add(self, tenant_id: int, name: str,
            session: Optional[Session] = None, **fields: Any) -> Employee:
        """创建员工。

        Args:
            tenant_id: 所属租户ID。
            name: 员工姓名。
            **fields: 其他字段（work_start、days_off 等）。

        Returns:
            新创建的 Employee 对象。
        """
        return self.create(
            Employee, session=session, tenant_id=tenant_id, name=name, **fields
        )

    def get(self, employee_id: int,
            session: Optional[Session] = None) -> Optional[Employee]:
        """按ID获取员工，不存在返回 None。"""
        return self.get_by_id(Employee, employee_id, session=session)

    def get_active_staff(self, tenant_id: int, include_sick: bool = True,
                         session: Optional[Session] = None) -> List[Employee]:
        """获取租户下所有在职员工。

        Args:
            tenant_id: 租户ID。
            include_sick: 是否包含病假中的员工，默认 True。

        Returns:
            在职员工列表（按ID排序）。
        """
        filters = {"tenant_id": tenant_id, "is_active": True}
        if not include_sick:
            filters["is_sick"] = False
        return self.get_all(
            Employee, filters=filters, order_by=Employee.id, session=session
        )

    def mark_sick(self, employee_id: int,
                  session: Optional[Session] = None) -> Optional[Employee]:
        """标记员工病假，并累加病假天数。

        Returns:
            更新后的 Employee 对象，不存在返回 None。
        """
        def _do(sess):
            employee = sess.get(Employee, employee_id)
            if employee is None:
                return None
            employee.is_sick = True
            employee.sick_days = (employee.sick_days or 0) + 1
            sess.flush()
            sess.refresh(employee)
            return employee

        if session:
            return _do(session)

        with self._get_session() as sess:
            employee = _do(sess)
            if employee is not None:
                sess.commit()
            return employee

    def mark_recovered(self, employee_id: int,
                       session: Optional[Session] = None) -> Optional[Employee]:
        """标记员工康复。"""
        return self.update_by_id(
            Employee, employee_id, session=session, is_sick=False
        )

    def deactivate(self, employee_id: int,
                   session: Optional[Session] = None) -> Optional[Employee]:
        """停用员工。"""
        return self.update_by_id(
            Employee, employee_id, session=session, is_active=False
        )

    # ================================================================
    # 休假申请
    # ================================================================

    def request_vacation(self, employee_id: int, start_date: Any,
                         end_date: Any, days: Optional[int] = None,
                         reason: Optional[str] = None) -> VacationRequest:
        """提交休假申请（状态 PENDING）。

        Args:
            employee_id: 员工ID。
            start_date: 开始日期（含），YYYY-MM-DD 或 date。
            end_date: 结束日期（含），YYYY-MM-DD 或 date。
            days: 占用天数（可选，默认按自然日计算）。
            reason: 申请理由（可选）。

        Returns:
            新创建的 VacationRequest 对象。

        Raises:
            ValueError: 员工不存在，或结束日期早于开始日期。
        """
        start = self._parse_date(start_date, "Vacation start date")
        end = self._parse_date(end_date, "Vacation end date")
        if end < start:
            raise ValueError("Vacation end date must not be before start date")

        with self._get_session() as sess:
            employee = sess.get(Employee, employee_id)
            if employee is None:
                raise ValueError(f"Employee {employee_id} not found")

            request = VacationRequest(
                tenant_id=employee.tenant_id,
                employee_id=employee_id,
                start_date=start,
                end_date=end,
                days=days if days is not None else (end - start).days + 1,
                status=VacationStatus.PENDING.value,
                reason=reason,
            )
            sess.add(request)
            sess.commit()
            sess.refresh(request)
            return request

    def approve_vacation(self, request_id: int,
                         reason: Optional[str] = None
                         ) -> Optional[VacationRequest]:
        """批准休假申请。

        同一事务中累加员工已用年假天数，并把 next_available_date
        设为休假结束日期。重复批准不会重复累加。

        Returns:
            更新后的 VacationRequest 对象，不存在返回 None。
        """
        with self._get_session() as sess:
            request = sess.get(VacationRequest, request_id)
            if request is None:
                return None
            if request.status != VacationStatus.APPROVED.value:
                request.status = VacationStatus.APPROVED.value
                employee = sess.get(Employee, request.employee_id)
                employee.vacation_days_used = (
                    (employee.vacation_days_used or 0) + (request.days or 0)
                )
                employee.next_available_date = request.end_date
            if reason:
                request.reason = reason
            sess.commit()
            sess.refresh(request)
            return request

    def deny_vacation(self, request_id: int,
                      reason: Optional[str] = None
                      ) -> Optional[VacationRequest]:
        """拒绝休假申请。"""
        fields = {"status": VacationStatus.DENIED.value}
        if reason:
            fields["reason"] = reason
        return self.update_by_id(VacationRequest, request_id, **fields)

    def get_approved_vacations(self, employee_id: int,
                               session: Optional[Session] = None
                               ) -> List[VacationRequest]:
        """获取员工所有已批准的休假。"""
        return self.get_all(
            VacationRequest,
            filters={
                "employee_id": employee_id,
                "status": VacationStatus.APPROVED.value,
            },
            order_by=VacationRequest.start_date,
            session=session,
        )


class CustomerRepository(BaseCRUD):
    """顾客 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def add(self, tenant_id: int, first_name: str,
            session: Optional[Session] = None, **fields: Any) -> Customer:
        """创建顾客。"""
        return self.create(
            Customer, session=session, tenant_id=tenant_id,
            first_name=first_name, **fields
        )

    def get(self, customer_id: int,
            session: Optional[Session] = None) -> Optional[Customer]:
        return self.get_by_id(Customer, customer_id, session=session)


class InventoryRepository(BaseCRUD):
    """库存物品 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def add(self, tenant_id: int, name: str, quantity: int = 0,
            min_threshold: int = 0, session: Optional[Session] = None,
            **fields: Any) -> InventoryItem:
        """创建库存物品。"""
        return self.create(
            InventoryItem, session=session, tenant_id=tenant_id, name=name,
            quantity=quantity, min_threshold=min_threshold, **fields
        )

    def get_low_stock(self, tenant_id: Optional[int] = None,
                      session: Optional[Session] = None
                      ) -> List[InventoryItem]:
        """获取低库存物品。

        Args:
            tenant_id: 只查询该租户（可选，默认所有租户）。

        Returns:
            quantity <= min_threshold 的物品列表。
        """
        def _query(sess):
            query = sess.query(InventoryItem).filter(
                InventoryItem.quantity <= InventoryItem.min_threshold
            )
            if tenant_id is not None:
                query = query.filter(InventoryItem.tenant_id == tenant_id)
            return query.order_by(InventoryItem.id).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def update_quantity(self, item_id: int, quantity_change: int,
                        session: Optional[Session] = None
                        ) -> Optional[InventoryItem]:
        """更新库存数量（增/减）。

        Args:
            item_id: 物品ID。
            quantity_change: 变动数量（正数入库，负数出库）。

        Returns:
            更新后的 InventoryItem 对象，不存在返回 None。
        """
        def _do(sess):
            item = sess.get(InventoryItem, item_id)
            if item:
                item.quantity = (item.quantity or 0) + quantity_change
                sess.flush()
                sess.refresh(item)
            return item

        if session:
            return _do(session)

        with self._get_session() as sess:
            item = _do(sess)
            if item:
                sess.commit()
            return item

