"""管理员通知接口 - 用于解耦通知渠道"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from loguru import logger


@dataclass
class AdminNotification:
    """发给门店管理员的通知

    Attributes:
        type: 通知类型（如 employee_sick）
        message: 通知正文
        tenant_id: 租户ID
    """
    type: str
    message: str
    tenant_id: Optional[int] = None


class AdminNotifier(ABC):
    """
    管理员通知抽象基类

    具体渠道（邮件、推送等）只需要实现这个接口，
    Autopilot 只依赖接口，不关心投递方式
    """

    @abstractmethod
    async def notify_admin(self, notification: AdminNotification) -> None:
        """
        发送通知

        Args:
            notification: 通知内容
        """
        pass


class LoggingNotifier(AdminNotifier):
    """只写日志的默认实现"""

    async def notify_admin(self, notification: AdminNotification) -> None:
        logger.info(
            f"Notification to admin of tenant {notification.tenant_id} "
            f"[{notification.type}]: {notification.message}"
        )
