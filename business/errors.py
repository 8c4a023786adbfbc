"""业务层异常

- 参数/状态校验失败：ValueError 的子类，同步抛给调用方
- 需要修改的记录不存在：LookupError 的子类
"""


class ReminderError(ValueError):
    """催款参数无效（等级越界或低于当前等级等）"""


class InvoicePaidError(ReminderError):
    """账单已付款，不能再催款"""


class EmployeeUnavailableError(ValueError):
    """新员工在预约时间段内不可用"""

    def __init__(self, message: str, reason: str = ""):
        super().__init__(message)
        self.reason = reason


class InvoiceNotFoundError(LookupError):
    """账单不存在或不属于该租户"""


class ReminderNotFoundError(LookupError):
    """催款记录不存在"""


class TaskNotFoundError(LookupError):
    """任务不存在或不属于该租户"""


class AppointmentNotFoundError(LookupError):
    """预约不存在"""


class EmployeeNotFoundError(LookupError):
    """员工不存在或不属于该租户"""
