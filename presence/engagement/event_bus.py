"""
参与事件总线 - Engagement Event Bus

把一帧处理产生的参与事件投递给终端侧消费者（界面、音频、员工签到）:
- 同一帧的事件严格按产生顺序投递
- 单个事件的所有回调并发执行，回调失败不影响引擎
- 保留最近的事件，便于按类型或人员回看
"""

import asyncio
import inspect
from collections import Counter, deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional
from loguru import logger

from presence.engagement.events import EngagementEvent, EngagementEventType


EventCallback = Callable[[EngagementEvent], Any]


@dataclass(frozen=True)
class Subscription:
    """一条订阅；priority 越大越先被调度"""
    callback: EventCallback
    priority: int = 0

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.callback)

    def invoke(self, event: EngagementEvent):
        # 同步回调（例如直接操作音频设备）放到线程里，避免阻塞检测循环
        if self.is_async:
            return self.callback(event)
        return asyncio.to_thread(self.callback, event)


class EngagementEventBus:
    """参与事件总线"""

    def __init__(self, max_history: int = 100):
        self._subscriptions: Dict[EngagementEventType, List[Subscription]] = {}
        self._recent: Deque[EngagementEvent] = deque(maxlen=max_history)

        self._published_by_type: Counter = Counter()
        self._delivered = 0
        self._failed = 0

    # ==================== 订阅 ====================

    def subscribe(
        self,
        event_type: EngagementEventType,
        callback: EventCallback,
        priority: int = 0
    ):
        """
        订阅事件

        Args:
            event_type: 事件类型
            callback: 同步函数或协程函数，参数为 EngagementEvent
            priority: 同一事件内的调度顺序，相同优先级按订阅先后
        """
        subscriptions = self._subscriptions.setdefault(event_type, [])
        subscriptions.append(Subscription(callback=callback, priority=priority))
        subscriptions.sort(key=lambda s: -s.priority)
        logger.debug(f"{event_type.value} 新增订阅 (优先级={priority}, 共 {len(subscriptions)} 个)")

    def unsubscribe(self, event_type: EngagementEventType, callback: EventCallback):
        subscriptions = self._subscriptions.get(event_type)
        if not subscriptions:
            return
        self._subscriptions[event_type] = [s for s in subscriptions if s.callback != callback]
        logger.debug(f"{event_type.value} 取消订阅")

    def get_subscribers(self, event_type: EngagementEventType) -> List[EventCallback]:
        return [s.callback for s in self._subscriptions.get(event_type, [])]

    @property
    def subscriber_count(self) -> int:
        return sum(len(subs) for subs in self._subscriptions.values())

    # ==================== 投递 ====================

    async def publish(self, event: EngagementEvent):
        """
        投递一个事件并等待所有回调完成

        回调抛出的异常只记录日志，不会传回引擎
        """
        self._recent.append(event)
        self._published_by_type[event.event_type] += 1

        subscriptions = self._subscriptions.get(event.event_type)
        if not subscriptions:
            return

        outcomes = await asyncio.gather(
            *(s.invoke(event) for s in subscriptions),
            return_exceptions=True
        )
        for subscription, outcome in zip(subscriptions, outcomes):
            if isinstance(outcome, Exception):
                self._failed += 1
                name = getattr(subscription.callback, "__qualname__", repr(subscription.callback))
                logger.error(f"{event.event_type.value} 回调 {name} 失败: {outcome}")
            else:
                self._delivered += 1

    async def publish_all(self, events: List[EngagementEvent]):
        """按产生顺序投递一帧的全部事件"""
        for event in events:
            await self.publish(event)

    # ==================== 回看与统计 ====================

    def get_event_history(
        self,
        event_type: Optional[EngagementEventType] = None,
        count: int = 10
    ) -> List[EngagementEvent]:
        """最近的事件（旧 -> 新），可按类型过滤"""
        events = [e for e in self._recent if event_type is None or e.event_type == event_type]
        return events[-count:]

    def get_person_history(self, person_id: str) -> List[EngagementEvent]:
        """某个人员的最近事件，用于排查单个访客的层级变化"""
        return [e for e in self._recent if e.person_id == person_id]

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "events_published": sum(self._published_by_type.values()),
            "events_processed": self._delivered,
            "events_failed": self._failed,
            "subscribers_count": self.subscriber_count,
            "published_by_type": {et.value: n for et, n in self._published_by_type.items()},
            "event_types": {et.value: len(subs) for et, subs in self._subscriptions.items() if subs}
        }

    def clear_history(self):
        self._recent.clear()

    def reset_statistics(self):
        self._published_by_type.clear()
        self._delivered = 0
        self._failed = 0
