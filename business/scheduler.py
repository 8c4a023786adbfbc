"""定时任务调度器 - 通用的周期任务框架

事件总线的队列消费和 Autopilot 巡检都是注册在这里的周期任务。
业务逻辑通过回调函数注入，调度器本身不包含业务逻辑；
测试中可以替换为手动触发的假调度器，无需等待真实时钟。
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from typing import Callable, Optional
from loguru import logger


class Scheduler:
    """定时任务调度器

    对 APScheduler 的 AsyncIOScheduler 的薄封装。
    同一任务ID重复注册会替换旧任务；同一任务同一时间只运行一个实例，
    错过的触发会合并为一次。
    """

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        """初始化调度器

        Args:
            scheduler: 外部传入的 AsyncIOScheduler（可选）
        """
        self.scheduler = scheduler or AsyncIOScheduler()
        # AsyncIOScheduler.shutdown 会延迟到事件循环中执行，不能用它的 running 判断是否已停止
        self._started = self.scheduler.running

    def add_interval_task(
        self,
        task_func: Callable,
        seconds: Optional[float] = None,
        minutes: Optional[float] = None,
        task_id: str = 'interval_task',
        task_name: Optional[str] = None
    ):
        """添加固定间隔任务

        Args:
            task_func: 任务函数（async 函数）
            seconds: 间隔秒数
            minutes: 间隔分钟数
            task_id: 任务ID
            task_name: 任务名称（默认同任务ID）

        Raises:
            ValueError: 未给出正的间隔
        """
        interval = (seconds or 0) + (minutes or 0) * 60
        if interval <= 0:
            raise ValueError("Interval must be positive")

        self.scheduler.add_job(
            task_func,
            trigger=IntervalTrigger(seconds=interval),
            id=task_id,
            name=task_name or task_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        logger.info(f"Added interval task '{task_name or task_id}' every {interval:g}s")

    def has_job(self, job_id: str) -> bool:
        """任务是否已注册"""
        return self.scheduler.get_job(job_id) is not None

    def start(self):
        """启动调度器（需在运行中的事件循环内调用）"""
        if not self._started:
            self.scheduler.start()
            self._started = True
            logger.info("Scheduler started")

    def stop(self):
        """停止调度器，不等待正在运行的任务，可以重复调用"""
        if self._started:
            self._started = False
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self._started

    def remove_job(self, job_id: str):
        """移除任务

        Args:
            job_id: 任务ID
        """
        try:
            self.scheduler.remove_job(job_id)
            logger.info(f"Job {job_id} removed")
        except Exception as e:
            logger.warning(f"Failed to remove job {job_id}: {e}")
