"""数据库管理器：统一门面（Facade）。

DatabaseManager 是 database 模块的统一入口，组合了所有子仓库，
提供两套 API：

1. **子仓库访问**（细粒度）：
   通过 ``db.staff``、``db.appointments`` 等属性直接访问子仓库，
   返回 ORM 对象，适合服务层使用。

2. **便捷方法**（粗粒度）：
   提供扁平化的方法（如 ``get_staff_list()``、``get_reassignment_queue()``），
   返回字典/基本类型，适合 API 适配层和运维脚本。

所有业务实体都按租户隔离，便捷方法都要求显式传入 tenant_id。
"""
from typing import Optional, List, Dict, Any
from sqlalchemy.orm import Session

from .connection import DatabaseConnection
from .entity_repos import (
    TenantRepository, StaffRepository, CustomerRepository,
    InventoryRepository
)
from .business_repos import (
    AppointmentRepository, InvoiceRepository, ReminderRepository,
    TaskRepository
)
from .models import AppointmentStatus


class DatabaseManager:
    """数据库管理器：统一门面。

    组合了所有子仓库，提供统一的数据库访问接口。

    Attributes:
        conn: 数据库连接管理器。
        tenants: 租户仓库。
        staff: 员工与休假仓库。
        customers: 顾客仓库。
        inventory: 库存仓库。
        appointments: 预约仓库。
        invoices: 账单仓库。
        reminders: 催款记录仓库。
        tasks: 任务仓库。

    Example::

        db = DatabaseManager("sqlite:///data/studio.db")
        db.create_tables()

        # 通过子仓库访问（返回 ORM 对象）
        tenant = db.tenants.get_or_create("Salon Mitte", slug="mitte")
        employee = db.staff.add(tenant.id, "Anna", work_start="09:00")

        # 通过便捷方法访问（返回字典）
        staff = db.get_staff_list(tenant.id)
    """

    def __init__(self, database_url: Optional[str] = None) -> None:
        """初始化数据库管理器。

        Args:
            database_url: 数据库连接URL。如果为None则使用settings配置。
        """
        # 基础设施层
        self.conn = DatabaseConnection(database_url)

        # 实体仓库
        self.tenants = TenantRepository(self.conn)
        self.staff = StaffRepository(self.conn)
        self.customers = CustomerRepository(self.conn)
        self.inventory = InventoryRepository(self.conn)

        # 业务记录仓库
        self.appointments = AppointmentRepository(self.conn)
        self.invoices = InvoiceRepository(self.conn)
        self.reminders = ReminderRepository(self.conn)
        self.tasks = TaskRepository(self.conn)

    # ================================================================
    # 基础设施方法
    # ================================================================

    def create_tables(self) -> None:
        """创建所有数据库表（幂等操作）。"""
        self.conn.create_tables()

    def get_session(self) -> Session:
        """获取数据库会话。"""
        return self.conn.get_session()

    @property
    def database_url(self) -> str:
        """数据库连接URL。"""
        return self.conn.database_url

    @property
    def engine(self):
        """SQLAlchemy 引擎对象。"""
        return self.conn.engine

    def close(self) -> None:
        """关闭数据库连接，释放所有资源。"""
        self.conn.close()

    # ================================================================
    # 便捷查询方法
    # ================================================================

    def get_staff_list(self, tenant_id: int, include_sick: bool = True
                       ) -> List[Dict[str, Any]]:
        """获取租户的在职员工列表。

        Args:
            tenant_id: 租户ID。
            include_sick: 是否包含病假中的员工，默认 True。

        Returns:
            员工信息字典列表。
        """
        employees = self.staff.get_active_staff(
            tenant_id, include_sick=include_sick
        )
        return [
            {
                "id": e.id,
                "name": e.name,
                "work_start": e.work_start,
                "work_end": e.work_end,
                "days_off": list(e.days_off or []),
                "is_sick": e.is_sick,
                "is_active": e.is_active,
            }
            for e in employees
        ]

    def get_reassignment_queue(self, tenant_id: int
                               ) -> List[Dict[str, Any]]:
        """获取租户待改派的预约（供管理员处理）。

        Returns:
            预约信息字典列表（按开始时间排序）。
        """
        appointments = self.appointments.list_by_status(
            tenant_id, AppointmentStatus.NEEDS_REASSIGNMENT.value
        )
        return [
            {
                "id": a.id,
                "title": a.title,
                "employee_id": a.employee_id,
                "customer_id": a.customer_id,
                "start_time": a.start_time.isoformat(),
                "end_time": a.end_time.isoformat(),
            }
            for a in appointments
        ]
