"""
事件分发器 - Kiosk Dispatcher

订阅事件总线，把参与事件转发给终端行为（环境音乐、问候、员工签到）
"""

import inspect
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from loguru import logger

from presence.engagement.event_bus import EngagementEventBus
from presence.engagement.events import EngagementEvent, EngagementEventType


class KioskBehaviors(ABC):
    """
    终端行为接口

    方法可以是普通函数或协程
    """

    @abstractmethod
    def start_ambient_audio(self, people_count: int, max_proximity: int) -> Any:
        """有人进入环境区时开始播放环境音乐"""

    @abstractmethod
    def stop_ambient_audio(self) -> Any:
        """环境区清空时停止播放"""

    @abstractmethod
    def start_greeting(self, person_id: str, context: Dict[str, Any]) -> Any:
        """人员走近并注视时开始问候"""

    @abstractmethod
    def end_greeting(self, person_id: str) -> Any:
        """人员离开接近区时结束问候"""

    @abstractmethod
    def open_staff_checkin(self, person_id: str, context: Dict[str, Any]) -> Any:
        """持续凝视时打开员工签到"""

    @abstractmethod
    def close_staff_checkin(self) -> Any:
        """无人凝视时关闭员工签到"""


class KioskDispatcher:
    """
    事件到终端行为的转发

    Args:
        bus: 事件总线
        behaviors: 终端行为实现
        ambient_audio_enabled / greeting_enabled / staff_checkin_enabled: 单项开关
    """

    def __init__(
        self,
        bus: EngagementEventBus,
        behaviors: KioskBehaviors,
        ambient_audio_enabled: bool = True,
        greeting_enabled: bool = True,
        staff_checkin_enabled: bool = True
    ):
        self.bus = bus
        self.behaviors = behaviors
        self.ambient_audio_enabled = ambient_audio_enabled
        self.greeting_enabled = greeting_enabled
        self.staff_checkin_enabled = staff_checkin_enabled

        self._handlers = {
            EngagementEventType.AMBIENT_DETECTED: self._on_ambient_detected,
            EngagementEventType.AMBIENT_CLEARED: self._on_ambient_cleared,
            EngagementEventType.WALKUP_DETECTED: self._on_walkup_detected,
            EngagementEventType.WALKUP_ENDED: self._on_walkup_ended,
            EngagementEventType.STARE_DETECTED: self._on_stare_detected,
            EngagementEventType.STARING_CLEARED: self._on_staring_cleared,
        }
        self._attached = False
        self.greeting_person_id: Optional[str] = None

    def attach(self, priority: int = 0):
        """订阅所有需要转发的事件"""
        if self._attached:
            return
        for event_type, handler in self._handlers.items():
            self.bus.subscribe(event_type, handler, priority=priority)
        self._attached = True
        logger.info("KioskDispatcher 已订阅事件总线")

    def detach(self):
        if not self._attached:
            return
        for event_type, handler in self._handlers.items():
            self.bus.unsubscribe(event_type, handler)
        self._attached = False
        logger.info("KioskDispatcher 已取消订阅")

    async def _call(self, method, *args):
        result = method(*args)
        if inspect.isawaitable(result):
            await result

    async def _on_ambient_detected(self, event: EngagementEvent):
        if not self.ambient_audio_enabled:
            return
        logger.info(f"开始环境音乐 (人数={event.get('people_count')})")
        await self._call(
            self.behaviors.start_ambient_audio,
            event.get("people_count", 0),
            event.get("max_proximity", 0)
        )

    async def _on_ambient_cleared(self, event: EngagementEvent):
        if not self.ambient_audio_enabled:
            return
        logger.info("停止环境音乐")
        await self._call(self.behaviors.stop_ambient_audio)

    async def _on_walkup_detected(self, event: EngagementEvent):
        if not self.greeting_enabled:
            return
        # 同一时间只问候一人
        if self.greeting_person_id is not None:
            logger.debug(f"问候进行中 ({self.greeting_person_id})，忽略 {event.person_id}")
            return
        self.greeting_person_id = event.person_id
        logger.info(f"开始问候 {event.person_id}")
        await self._call(self.behaviors.start_greeting, event.person_id, event.to_dict()["data"])

    async def _on_walkup_ended(self, event: EngagementEvent):
        if not self.greeting_enabled or event.person_id != self.greeting_person_id:
            return
        self.greeting_person_id = None
        logger.info(f"结束问候 {event.person_id}")
        await self._call(self.behaviors.end_greeting, event.person_id)

    async def _on_stare_detected(self, event: EngagementEvent):
        if not self.staff_checkin_enabled:
            return
        logger.info(f"打开员工签到 ({event.person_id})")
        await self._call(self.behaviors.open_staff_checkin, event.person_id, event.to_dict()["data"])

    async def _on_staring_cleared(self, event: EngagementEvent):
        if not self.staff_checkin_enabled:
            return
        logger.info("关闭员工签到")
        await self._call(self.behaviors.close_staff_checkin)
