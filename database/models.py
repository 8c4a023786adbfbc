"""SQLAlchemy ORM 模型定义。

本模块定义了自动化核心读写的所有数据库表，包括：
- 租户（门店）与员工、休假申请
- 顾客、预约
- 账单与催款记录
- 待办任务、库存

所有业务实体都带有 tenant_id，任何查询都不应跨租户。
状态字段以字符串存储，取值由下方的枚举类定义。
"""
from enum import Enum
from typing import Dict, Any, List, Optional
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Date, DateTime,
    DECIMAL, ForeignKey, JSON
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from datetime import datetime, date

# SQLAlchemy declarative base，所有模型都继承自此类
# 设置 __allow_unmapped__ = True 以兼容 SQLAlchemy 2.0 的类型注解要求
Base = declarative_base()

Base.__allow_unmapped__ = True


class VacationStatus(str, Enum):
    """休假申请状态"""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"


class AppointmentStatus(str, Enum):
    """预约状态

    NEEDS_REASSIGNMENT 只由系统（Autopilot）设置，管理员改派后回到 OPEN。
    """
    OPEN = "OPEN"
    ACCEPTED = "ACCEPTED"
    CANCELLED = "CANCELLED"
    RESCHEDULED = "RESCHEDULED"
    COMPLETED = "COMPLETED"
    NEEDS_REASSIGNMENT = "NEEDS_REASSIGNMENT"


class InvoiceStatus(str, Enum):
    """账单状态"""
    PENDING = "PENDING"
    OVERDUE = "OVERDUE"
    PAID = "PAID"


class ReminderStatus(str, Enum):
    """催款记录状态"""
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class TaskStatus(str, Enum):
    """任务状态"""
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class TaskPriority(str, Enum):
    """任务优先级"""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class Tenant(Base):
    """租户（门店）表模型。

    每个租户是一个相互隔离的客户组织，所有业务实体都归属于某个租户。

    Attributes:
        id: 主键，自增整数。
        name: 门店名称，必填，最大长度100字符。
        slug: 门店短标识，唯一，最大长度50字符。
        created_at: 创建时间。
    """
    __tablename__ = "tenants"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(100), nullable=False)
    slug: Optional[str] = Column(String(50), unique=True)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    # Relationships
    employees: List["Employee"] = relationship("Employee", back_populates="tenant")


class Employee(Base):
    """员工表模型。

    存储员工的排班属性与状态。工作时间、休息时间为 ``HH:MM`` 字符串，
    未设置时视为"不限制"；days_off 为英文星期名列表（如 ``["Sunday"]``）。

    Attributes:
        id: 主键，自增整数。
        tenant_id: 所属租户ID，必填。
        user_id: 关联的登录用户ID，可选。
        name: 员工姓名，必填，最大长度100字符。
        work_start / work_end: 上下班时间，可选。
        break_start / break_end: 休息时间段，可选。
        days_off: 每周固定休息日列表，默认空列表。
        is_sick: 是否病假中，默认False。
        is_active: 是否在职，默认True。
        sick_days: 累计病假天数，默认0。
        vacation_days_used: 已用年假天数，默认0。
        next_available_date: 休假结束后的下一个可用日期，可选。
        created_at: 创建时间。

    Relationships:
        tenant: 所属租户。
        vacation_requests: 该员工的休假申请列表。
        appointments: 分配给该员工的预约列表。
    """
    __tablename__ = "employees"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id: int = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    user_id: Optional[int] = Column(Integer)
    name: str = Column(String(100), nullable=False)
    work_start: Optional[str] = Column(String(5))  # HH:MM
    work_end: Optional[str] = Column(String(5))
    break_start: Optional[str] = Column(String(5))
    break_end: Optional[str] = Column(String(5))
    days_off: List[str] = Column(JSON, default=list)
    is_sick: bool = Column(Boolean, default=False)
    is_active: bool = Column(Boolean, default=True)
    sick_days: int = Column(Integer, default=0)
    vacation_days_used: int = Column(Integer, default=0)
    next_available_date: Optional[date] = Column(Date)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    # Relationships
    tenant: "Tenant" = relationship("Tenant", back_populates="employees")
    vacation_requests: List["VacationRequest"] = relationship(
        "VacationRequest", back_populates="employee"
    )
    appointments: List["Appointment"] = relationship("Appointment", back_populates="employee")


class VacationRequest(Base):
    """休假申请表模型。

    只有 APPROVED 状态的申请会影响员工可用性。起止日期均包含在内。

    Attributes:
        id: 主键，自增整数。
        tenant_id: 所属租户ID。
        employee_id: 申请员工ID，必填。
        start_date: 开始日期（含）。
        end_date: 结束日期（含）。
        days: 占用的年假天数。
        status: PENDING / APPROVED / DENIED，默认PENDING。
        reason: 申请或审批备注，可选。
        created_at: 创建时间。
    """
    __tablename__ = "vacation_requests"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id: int = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    employee_id: int = Column(Integer, ForeignKey("employees.id"), nullable=False)
    start_date: date = Column(Date, nullable=False)
    end_date: date = Column(Date, nullable=False)
    days: int = Column(Integer, default=0)
    status: str = Column(String(20), default=VacationStatus.PENDING.value)
    reason: Optional[str] = Column(Text)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    # Relationships
    employee: "Employee" = relationship("Employee", back_populates="vacation_requests")


class Customer(Base):
    """顾客表模型。

    Attributes:
        id: 主键，自增整数。
        tenant_id: 所属租户ID。
        first_name: 名，必填。
        last_name: 姓，可选。
        email / phone: 联系方式，可选。
        tags: 标签列表（JSON），默认空列表。
        notes: 备注，可选。
        created_at: 创建时间。
    """
    __tablename__ = "customers"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id: int = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    first_name: str = Column(String(100), nullable=False)
    last_name: Optional[str] = Column(String(100))
    email: Optional[str] = Column(String(200))
    phone: Optional[str] = Column(String(30))
    tags: List[str] = Column(JSON, default=list)
    notes: Optional[str] = Column(Text)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)


class Appointment(Base):
    """预约表模型（核心业务表）。

    Attributes:
        id: 主键，自增整数。
        tenant_id: 所属租户ID，必填。
        employee_id: 负责员工ID，可选。
        customer_id: 顾客ID，可选。
        title: 预约标题。
        start_time / end_time: 起止时间。
        status: 预约状态，取值见 AppointmentStatus，默认OPEN。
        price: 价格，DECIMAL(10,2)，可选。
        created_at / updated_at: 创建、更新时间。
    """
    __tablename__ = "appointments"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id: int = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    employee_id: Optional[int] = Column(Integer, ForeignKey("employees.id"))
    customer_id: Optional[int] = Column(Integer, ForeignKey("customers.id"))
    title: str = Column(String(200), default="")
    start_time: datetime = Column(DateTime, nullable=False)
    end_time: datetime = Column(DateTime, nullable=False)
    status: str = Column(String(30), default=AppointmentStatus.OPEN.value, index=True)
    price: Optional[float] = Column(DECIMAL(10, 2))
    created_at: datetime = Column(DateTime, default=datetime.utcnow)
    updated_at: datetime = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    employee: Optional["Employee"] = relationship("Employee", back_populates="appointments")
    customer: Optional["Customer"] = relationship("Customer")


class Invoice(Base):
    """账单表模型。

    reminder_level 记录已到达的催款等级（0 表示未催款），
    随逾期时间单调递增，仅在付款/停止催款时重置为0。

    Attributes:
        id: 主键，自增整数。
        tenant_id: 所属租户ID。
        customer_id: 顾客ID，可选。
        invoice_number: 账单编号。
        amount: 金额，DECIMAL(10,2)。
        due_date: 到期时间，可选。
        status: PENDING / OVERDUE / PAID，默认PENDING。
        paid_at: 付款时间，可选。
        reminder_level: 当前催款等级，默认0。
        created_at: 创建时间。

    Relationships:
        reminders: 该账单的催款记录列表。
    """
    __tablename__ = "invoices"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id: int = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    customer_id: Optional[int] = Column(Integer, ForeignKey("customers.id"))
    invoice_number: str = Column(String(50), default="")
    amount: float = Column(DECIMAL(10, 2), default=0)
    due_date: Optional[datetime] = Column(DateTime)
    status: str = Column(String(20), default=InvoiceStatus.PENDING.value, index=True)
    paid_at: Optional[datetime] = Column(DateTime)
    reminder_level: int = Column(Integer, default=0)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    # Relationships
    reminders: List["InvoiceReminder"] = relationship("InvoiceReminder", back_populates="invoice")


class InvoiceReminder(Base):
    """催款记录表模型。

    每个账单每到达一个等级生成一条记录，同一账单的等级不递减。

    Attributes:
        id: 主键，自增整数。
        tenant_id: 所属租户ID。
        invoice_id: 账单ID，必填。
        level: 催款等级（1-3）。
        status: PENDING / SENT / FAILED，默认PENDING。
        method: 生成方式（manual / automation / autopilot）。
        ai_text: 生成的催款文本，可选。
        reminder_date: 催款时间。
    """
    __tablename__ = "invoice_reminders"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id: int = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    invoice_id: int = Column(Integer, ForeignKey("invoices.id"), nullable=False)
    level: int = Column(Integer, nullable=False)
    status: str = Column(String(20), default=ReminderStatus.PENDING.value)
    method: str = Column(String(30), default="manual")
    ai_text: Optional[str] = Column(Text)
    reminder_date: datetime = Column(DateTime, default=datetime.utcnow)

    # Relationships
    invoice: "Invoice" = relationship("Invoice", back_populates="reminders")


class Task(Base):
    """待办任务表模型。

    Attributes:
        id: 主键，自增整数。
        tenant_id: 所属租户ID。
        title: 标题，必填。
        description: 描述，可选。
        status: TODO / IN_PROGRESS / DONE，默认TODO。
        priority: LOW / MEDIUM / HIGH / URGENT，默认MEDIUM。
        deadline: 截止时间，可选。
        assigned_to: 负责用户ID，可选。
        created_at: 创建时间。
    """
    __tablename__ = "tasks"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id: int = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    title: str = Column(String(200), nullable=False)
    description: Optional[str] = Column(Text)
    status: str = Column(String(20), default=TaskStatus.TODO.value)
    priority: str = Column(String(20), default=TaskPriority.MEDIUM.value)
    deadline: Optional[datetime] = Column(DateTime)
    assigned_to: Optional[int] = Column(Integer)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)


class InventoryItem(Base):
    """库存物品表模型。

    quantity <= min_threshold 时视为低库存。

    Attributes:
        id: 主键，自增整数。
        tenant_id: 所属租户ID。
        name: 物品名称，必填。
        quantity: 当前数量，默认0。
        min_threshold: 最低库存阈值，默认0。
        unit: 计量单位，可选。
        extra_data: JSON扩展字段（供应商、批次等），默认空字典。
    """
    __tablename__ = "inventory_items"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id: int = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    name: str = Column(String(100), nullable=False)
    quantity: int = Column(Integer, default=0)
    min_threshold: int = Column(Integer, default=0)
    unit: Optional[str] = Column(String(20))
    extra_data: Dict[str, Any] = Column(JSON, default=dict)
