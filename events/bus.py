"""进程内事件总线

emit 只把事件放入内存队列，从不阻塞也从不抛异常；
调度器按固定间隔调用 process_next，每次取出一个事件（FIFO），
并发执行该事件的所有订阅者。

重试策略：任一订阅者失败时，整个事件（retries + 1）重新排到队尾，
因此已成功的订阅者会被再次调用，订阅者需要保证幂等。
max_retries 是一个事件的最大处理次数，超过后丢弃并记录错误日志。
队列只存在于内存中，进程退出时未处理的事件会丢失。
"""
import asyncio
import inspect
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Union

from loguru import logger

from config.settings import settings
from .types import EventName, EventPayload, EventHandler, payload_id, parse_event_name


@dataclass
class QueuedEvent:
    """队列中的事件

    Attributes:
        event_name: 事件名称
        payload: 事件负载（emit 时的副本）
        enqueued_at: 首次入队时间
        retries: 已失败的处理次数
        event_id: 稳定的事件ID，重试时保持不变
    """
    event_name: EventName
    payload: EventPayload
    enqueued_at: datetime
    retries: int = 0
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)


class EventBus:
    """事件总线

    Example::

        bus = EventBus(scheduler=scheduler)
        unsubscribe = bus.subscribe("appointment.created", on_created)
        bus.emit("appointment.created", {"tenant_id": 1, "appointment_id": 7})
        bus.start()  # 注册周期消费任务
    """

    DRAIN_JOB_ID = "event_bus_drain"

    def __init__(
        self,
        scheduler: Optional[Any] = None,
        max_retries: Optional[int] = None,
        interval_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        """初始化事件总线

        Args:
            scheduler: 提供 add_interval_task / remove_job / has_job 的调度器（可选）
            max_retries: 每个事件的最大处理次数，默认读取配置
            interval_seconds: 队列消费间隔，默认读取配置
            clock: 时间来源
        """
        self.max_retries = max_retries if max_retries is not None else settings.event_bus_max_retries
        self.interval_seconds = interval_seconds or settings.event_bus_interval_seconds
        self._scheduler = scheduler
        self._clock = clock
        self._handlers: Dict[EventName, List[EventHandler]] = defaultdict(list)
        self._queue: Deque[QueuedEvent] = deque()
        self._processing = False
        self._dropped = 0

    # ================================================================
    # 订阅 / 发布
    # ================================================================

    def subscribe(self, event_name: Union[str, EventName],
                  handler: EventHandler) -> Callable[[], None]:
        """订阅事件

        同一个 handler 重复订阅同一事件只登记一次。

        Args:
            event_name: 事件名称
            handler: 普通函数或协程函数，参数为事件负载

        Returns:
            取消订阅函数，只移除本次登记的 handler

        Raises:
            ValueError: 未知的事件名称
        """
        name = parse_event_name(event_name)
        handlers = self._handlers[name]
        if handler not in handlers:
            handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[name]:
                self._handlers[name].remove(handler)

        return unsubscribe

    def handler_count(self, event_name: Union[str, EventName]) -> int:
        """某事件当前的订阅者数量"""
        return len(self._handlers.get(parse_event_name(event_name), ()))

    def emit(self, event_name: Union[str, EventName],
             payload: Optional[EventPayload] = None) -> None:
        """发布事件（放入队列）

        负载会被复制；缺少 timestamp 时补上当前时间。
        任何错误只记录日志，不会抛给调用方。
        """
        try:
            name = parse_event_name(event_name)
            data = dict(payload or {})
            if data.get("timestamp") is None:
                data["timestamp"] = self._clock()

            self._queue.append(QueuedEvent(
                event_name=name,
                payload=data,
                enqueued_at=self._clock(),
            ))
            logger.info(f"Event queued: {name} ({payload_id(data)})")
        except Exception:
            logger.exception(f"Failed to queue event: {event_name}")

    # ================================================================
    # 队列处理
    # ================================================================

    async def process_next(self) -> bool:
        """处理队首的一个事件

        Returns:
            是否取出了事件（正在处理或队列为空时返回 False）
        """
        if self._processing or not self._queue:
            return False

        self._processing = True
        try:
            event = self._queue.popleft()
            await self._process_event(event)
        except Exception:
            logger.exception("Error processing event queue")
        finally:
            self._processing = False
        return True

    async def drain(self) -> int:
        """连续处理直到队列为空（关闭时 / 测试用）

        Returns:
            处理的次数（含重试）
        """
        processed = 0
        while await self.process_next():
            processed += 1
        return processed

    async def _process_event(self, event: QueuedEvent):
        handlers = list(self._handlers.get(event.event_name, ()))
        if not handlers:
            logger.debug(f"No handlers for event: {event.event_name}")
            return

        results = await asyncio.gather(
            *(self._run_handler(handler, event) for handler in handlers)
        )
        if all(results):
            return

        event.retries += 1
        if event.retries < self.max_retries:
            self._queue.append(event)
            logger.info(
                f"Event requeued for retry: {event.event_name} "
                f"[{event.event_id}] retries={event.retries}"
            )
        else:
            self._dropped += 1
            logger.error(
                f"Event dropped after {event.retries} attempts: "
                f"{event.event_name} [{event.event_id}] ({payload_id(event.payload)})"
            )

    async def _run_handler(self, handler: EventHandler, event: QueuedEvent) -> bool:
        try:
            result = handler(event.payload)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Handler failed for event: {event.event_name} [{event.event_id}]")
            return False
        logger.debug(f"Handler executed successfully for: {event.event_name}")
        return True

    # ================================================================
    # 周期任务
    # ================================================================

    def start(self):
        """在调度器上注册队列消费任务（重复调用会替换旧任务）"""
        if self._scheduler is None:
            raise RuntimeError("EventBus has no scheduler")
        self._scheduler.add_interval_task(
            self.process_next,
            seconds=self.interval_seconds,
            task_id=self.DRAIN_JOB_ID,
            task_name="event bus drain"
        )

    def stop(self):
        """移除队列消费任务，队列中的事件保留"""
        if self._scheduler is not None and self._scheduler.has_job(self.DRAIN_JOB_ID):
            self._scheduler.remove_job(self.DRAIN_JOB_ID)

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.has_job(self.DRAIN_JOB_ID)

    # ================================================================
    # 状态
    # ================================================================

    def get_queue_status(self) -> Dict[str, Any]:
        """队列状态（健康检查用）"""
        return {
            "queue_length": len(self._queue),
            "processing": self._processing,
            "dropped": self._dropped,
        }

    def clear_queue(self):
        """清空队列（测试用）"""
        self._queue.clear()
