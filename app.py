#!/usr/bin/env python3
"""门店自动化核心 - 应用入口

组装数据库、事件总线、催款服务、可用性检查和 Autopilot，
并在调度器上运行两个周期任务：
1. 事件总线队列消费（默认每秒一次）
2. Autopilot 巡检（默认每60分钟一次）

使用方式：
    python app.py

    # 指定数据库
    python app.py --db sqlite:///data/studio.db

    # 巡检间隔 15 分钟
    python app.py --interval 15

    # 只执行一次巡检后退出
    python app.py --once

环境变量（在 .env 文件中配置，运行 python scripts/setup_env.py 生成）：
    DATABASE_URL                数据库连接地址
    AUTOPILOT_ENABLED           false 时不自动启动巡检
    AUTOPILOT_INTERVAL_MINUTES  巡检间隔（分钟）
    EVENT_BUS_INTERVAL_SECONDS  队列消费间隔（秒）
    LOG_LEVEL                   日志级别
"""
import argparse
import asyncio
import signal
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from loguru import logger

from config.settings import settings
from database import DatabaseManager
from events import EventBus
from business.scheduler import Scheduler
from business.availability import AvailabilityChecker
from business.reminders import ReminderService, ReminderConfig
from business.autopilot import AutopilotService
from business.notifications import AdminNotifier


def configure_logging(level: Optional[str] = None):
    """替换 loguru 默认输出为统一格式的 stderr 输出"""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=(level or settings.log_level).upper(),
    )


@dataclass
class Application:
    """组装好的应用组件"""
    db: DatabaseManager
    scheduler: Any
    event_bus: EventBus
    reminders: ReminderService
    availability: AvailabilityChecker
    autopilot: AutopilotService

    def start(self, autopilot: bool = True, interval_minutes: Optional[float] = None):
        """启动调度器、队列消费任务以及（可选）Autopilot 巡检"""
        self.scheduler.start()
        self.event_bus.start()
        if autopilot:
            self.autopilot.start(interval_minutes)
        else:
            logger.info("Autopilot auto-start disabled")

    async def run_once(self) -> Dict[str, Any]:
        """执行一次巡检并处理完队列中的事件"""
        summary = await self.autopilot.run_periodic_tasks()
        await self.event_bus.drain()
        return summary

    async def shutdown(self):
        """停止周期任务，处理完剩余事件，关闭数据库"""
        logger.info("Shutting down...")
        self.autopilot.stop()
        self.event_bus.stop()
        self.scheduler.stop()
        try:
            await self.event_bus.drain()
        finally:
            self.db.close()
        logger.info("Stopped")


def build_application(
    database_url: Optional[str] = None,
    scheduler: Optional[Any] = None,
    clock: Optional[Callable[[], datetime]] = None,
    notifier: Optional[AdminNotifier] = None
) -> Application:
    """按依赖顺序构建所有组件

    Args:
        database_url: 数据库连接URL，默认读取配置
        scheduler: 调度器，默认创建 APScheduler 封装（测试可注入假调度器）
        clock: 时间来源，默认 datetime.now
        notifier: 管理员通知实现，默认只写日志
    """
    clock = clock or datetime.now
    scheduler = scheduler or Scheduler()

    db = DatabaseManager(database_url)
    event_bus = EventBus(scheduler=scheduler, clock=clock)
    reminders = ReminderService(
        db, event_bus, config=ReminderConfig.from_settings(), clock=clock
    )
    availability = AvailabilityChecker(db)
    autopilot = AutopilotService(
        db, event_bus, reminders, availability,
        scheduler=scheduler, notifier=notifier, clock=clock
    )
    return Application(db, scheduler, event_bus, reminders, availability, autopilot)


async def main():
    parser = argparse.ArgumentParser(description="门店自动化核心")
    parser.add_argument("--db", default=None,
                        help="数据库连接 URL（默认读取 DATABASE_URL）")
    parser.add_argument("--interval", type=float, default=None,
                        help="巡检间隔（分钟）")
    parser.add_argument("--no-autopilot", action="store_true",
                        help="不启动 Autopilot 巡检")
    parser.add_argument("--once", action="store_true",
                        help="执行一次巡检后退出")
    parser.add_argument("--log-level", default=None,
                        help="日志级别（默认读取 LOG_LEVEL）")
    args = parser.parse_args()

    configure_logging(args.log_level)

    app = build_application(args.db)
    app.db.create_tables()
    logger.info(f"数据库已连接: {app.db.database_url}")

    if args.once:
        try:
            summary = await app.run_once()
            logger.info(f"巡检结果: {summary}")
        finally:
            app.db.close()
        return

    try:
        app.start(
            autopilot=settings.autopilot_enabled and not args.no_autopilot,
            interval_minutes=args.interval,
        )

        # 使用 asyncio 的信号处理，确保事件循环能响应退出信号
        loop = asyncio.get_running_loop()
        shutdown_event = asyncio.Event()
        _shutdown_requested = False

        def signal_handler(signum):
            """处理退出信号"""
            nonlocal _shutdown_requested
            if _shutdown_requested:
                # 第二次收到信号，强制退出
                logger.warning("再次收到退出信号，强制退出...")
                for task in asyncio.all_tasks(loop):
                    task.cancel()
                return
            _shutdown_requested = True
            logger.info(f"收到信号 {signum}，正在关闭服务...")
            shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler, sig)

        logger.info("服务已启动，按 Ctrl+C 停止")
        await shutdown_event.wait()

    except asyncio.CancelledError:
        logger.info("任务被取消，正在清理...")
    finally:
        await app.shutdown()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        pass
