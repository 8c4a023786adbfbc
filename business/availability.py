"""员工可用性检查

判断某员工能否在给定时间段 [start, end) 被预约。检查按固定顺序短路，
第一项不通过的检查决定结果：

1. 员工不存在（或不属于指定租户）
2. 病假中
3. 已批准的休假与时间段重叠（按天比较，边界相接也算重叠）
4. 开始日期是员工的固定休息日（英文星期名）
5. 设置了上下班时间时，时间段必须完全落在工作时间内且不跨午夜
   （正好结束在次日 00:00 视为 24:00）
6. 另外设置了休息时间时，时间段不能与休息时间重叠

检查只读数据库，不修改任何状态。员工不存在不会抛异常，
而是返回 is_available=False，调用方只需要判断布尔值。
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, time, timedelta
from typing import Optional, List, Dict, Any

from loguru import logger

from database import DatabaseManager
from database.models import Employee, VacationRequest

WEEKDAY_NAMES = (
    "Monday", "Tuesday", "Wednesday", "Thursday",
    "Friday", "Saturday", "Sunday",
)

REASON_NOT_FOUND = "Mitarbeiter nicht gefunden"
REASON_SICK = "Mitarbeiter ist krank gemeldet"
REASON_VACATION = "Mitarbeiter hat Urlaub"


@dataclass
class AvailabilityDetails:
    """各项检查的结果标记，只有导致不可用的那一项为 True"""
    is_sick: bool = False
    has_vacation: bool = False
    is_day_off: bool = False
    outside_work_hours: bool = False
    in_break_time: bool = False


@dataclass
class AvailabilityResult:
    """可用性检查结果"""
    is_available: bool
    reason: Optional[str] = None
    details: AvailabilityDetails = field(default_factory=AvailabilityDetails)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "is_available": self.is_available,
            "details": asdict(self.details),
        }
        if self.reason is not None:
            data["reason"] = self.reason
        return data


def parse_clock_time(value: Optional[str]) -> Optional[int]:
    """把 ``HH:MM`` 转换为当天的分钟数

    Returns:
        分钟数；未设置返回 None

    Raises:
        ValueError: 格式无效
    """
    if not value:
        return None
    hours, minutes = value.strip().split(":")
    hours, minutes = int(hours), int(minutes)
    if not (0 <= hours <= 24 and 0 <= minutes < 60) or hours * 60 + minutes > 24 * 60:
        raise ValueError(f"Invalid time of day: {value}")
    return hours * 60 + minutes


def _minutes_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def _end_minutes(start: datetime, end: datetime) -> Optional[int]:
    """结束时刻相对开始日期的分钟数，跨过午夜返回 None

    正好结束在次日 00:00 视为当天的 24:00。
    """
    if end.date() == start.date():
        return _minutes_of_day(end)
    if end == datetime.combine(start.date() + timedelta(days=1), time.min):
        return 24 * 60
    return None


class AvailabilityChecker:
    """员工可用性检查器

    Example::

        checker = AvailabilityChecker(db)
        result = checker.check_availability(employee_id, start, end)
        if not result.is_available:
            print(result.reason)
    """

    def __init__(self, db: DatabaseManager):
        self.db = db

    def check_availability(
        self,
        employee_id: int,
        interval_start: datetime,
        interval_end: datetime,
        tenant_id: Optional[int] = None
    ) -> AvailabilityResult:
        """检查员工在时间段内是否可用

        Args:
            employee_id: 员工ID
            interval_start: 开始时间（含）
            interval_end: 结束时间（不含）
            tenant_id: 只在该租户内查找员工（可选）

        Returns:
            AvailabilityResult

        Raises:
            ValueError: interval_start 不早于 interval_end
        """
        if interval_start >= interval_end:
            raise ValueError("interval_start must be before interval_end")

        with self.db.get_session() as session:
            employee = self.db.staff.get(employee_id, session=session)
            if employee is None or (tenant_id is not None and employee.tenant_id != tenant_id):
                return AvailabilityResult(False, REASON_NOT_FOUND)

            vacations = self.db.staff.get_approved_vacations(employee_id, session=session)
            return self._evaluate(employee, vacations, interval_start, interval_end)

    def get_available_employees(self, tenant_id: int, interval_start: datetime,
                                interval_end: datetime) -> List[int]:
        """列出租户内在该时间段可用的员工ID（只考虑在职且未病假的员工）"""
        employees = self.db.staff.get_active_staff(tenant_id, include_sick=False)
        return [
            employee.id for employee in employees
            if self.check_availability(
                employee.id, interval_start, interval_end, tenant_id=tenant_id
            ).is_available
        ]

    def _evaluate(self, employee: Employee, vacations: List[VacationRequest],
                  start: datetime, end: datetime) -> AvailabilityResult:
        if employee.is_sick:
            return AvailabilityResult(False, REASON_SICK, AvailabilityDetails(is_sick=True))

        start_day, end_day = start.date(), end.date()
        for vacation in vacations:
            if start_day <= vacation.end_date and end_day >= vacation.start_date:
                return AvailabilityResult(
                    False, REASON_VACATION, AvailabilityDetails(has_vacation=True)
                )

        weekday = WEEKDAY_NAMES[start.weekday()]
        if weekday in (employee.days_off or []):
            return AvailabilityResult(
                False,
                f"Mitarbeiter hat an diesem Tag frei ({weekday})",
                AvailabilityDetails(is_day_off=True),
            )

        if employee.work_start and employee.work_end:
            return self._check_work_hours(employee, start, end)

        return AvailabilityResult(True)

    def _check_work_hours(self, employee: Employee, start: datetime,
                          end: datetime) -> AvailabilityResult:
        try:
            work_start = parse_clock_time(employee.work_start)
            work_end = parse_clock_time(employee.work_end)
        except ValueError:
            logger.warning(
                f"Unparseable work hours for employee {employee.id}: "
                f"{employee.work_start!r} - {employee.work_end!r}, skipping check"
            )
            return AvailabilityResult(True)

        start_minutes = _minutes_of_day(start)
        end_minutes = _end_minutes(start, end)
        if end_minutes is None or start_minutes < work_start or end_minutes > work_end:
            return AvailabilityResult(
                False,
                f"Termin liegt außerhalb der Arbeitszeiten "
                f"({employee.work_start} - {employee.work_end})",
                AvailabilityDetails(outside_work_hours=True),
            )

        if employee.break_start and employee.break_end:
            try:
                break_start = parse_clock_time(employee.break_start)
                break_end = parse_clock_time(employee.break_end)
            except ValueError:
                logger.warning(
                    f"Unparseable break time for employee {employee.id}: "
                    f"{employee.break_start!r} - {employee.break_end!r}, skipping check"
                )
                return AvailabilityResult(True)

            if start_minutes < break_end and end_minutes > break_start:
                return AvailabilityResult(
                    False,
                    f"Termin fällt in die Pausenzeit "
                    f"({employee.break_start} - {employee.break_end})",
                    AvailabilityDetails(in_break_time=True),
                )

        return AvailabilityResult(True)
