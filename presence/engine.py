"""
存在感知引擎 - Proximity Engine

负责：
- 按固定周期从数据源拉取关键点并驱动一次完整处理
- 处理顺序: 身份匹配 -> 运动/视线 -> 区域分类 -> 会话生命周期 -> 事件发布
- 启用/停用生命周期，数据源故障时整体停用
"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional
from loguru import logger

from presence.exceptions import LandmarkSourceError, PresenceError
from presence.perception.core.enums import SessionOutcome
from presence.perception.core.types import FrameBatch, PersonSnapshot
from presence.perception.filters import PresenceFilter
from presence.perception.gaze import GazeEstimator
from presence.perception.motion import MotionEstimator
from presence.perception.sources import LandmarkSource
from presence.perception.tracker import IdentityTracker
from presence.engagement.event_bus import EngagementEventBus
from presence.engagement.events import EngagementEvent, EngagementEventType
from presence.engagement.lifecycle import SessionLifecycle
from presence.engagement.sessions import LearningSessionManager, SessionRecord
from presence.engagement.store import JsonlSessionStore, SessionStore
from presence.engagement.tuning import ThresholdAdjustment, ThresholdTuner
from presence.engagement.zones import AggregateState, ZoneClassifier
from presence.utils.config import EngineConfig


def _now_ms() -> float:
    return time.time() * 1000.0


class ProximityEngine:
    """
    存在感知引擎

    单个 asyncio 任务循环；一次处理内部没有并发，
    所有人员在同一个追踪集合上顺序更新。
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        source: Optional[LandmarkSource] = None,
        bus: Optional[EngagementEventBus] = None,
        store: Optional[SessionStore] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        self.config = config or EngineConfig()
        self.source = source
        self.bus = bus or EngagementEventBus()
        self.clock = clock or _now_ms

        if store is None and self.config.sessions.store_path:
            store = JsonlSessionStore(self.config.sessions.store_path)
        self.store = store

        # 各组件持有配置段的引用，运行时修改在下一次处理生效
        self.motion = MotionEstimator(self.config.motion)
        self.gaze = GazeEstimator(self.config.gaze)
        self.tracker = IdentityTracker(self.config.tracker, self.motion, self.gaze)
        self.presence_filter = PresenceFilter(self.config.filters)
        self.classifier = ZoneClassifier(self.config.zones, presence_filter=self.presence_filter)
        self.sessions = LearningSessionManager(self.config.sessions, store=store, clock=self.clock)
        self.lifecycle = SessionLifecycle(self.sessions, self.config.zones)
        self.tuner = ThresholdTuner(self.config.tuning)

        self.sessions.add_listener(self._on_session_ended)
        self._ended_sessions: List[EngagementEvent] = []

        self._enabled = False
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self.error: Optional[PresenceError] = None

        self._stats = {
            "frames_processed": 0,
            "frames_skipped": 0,
            "loop_errors": 0
        }

        logger.info(f"ProximityEngine 初始化完成, 检测周期={self.config.detection_interval_ms}ms")

    # ==================== 生命周期 ====================

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def enable(self) -> bool:
        """
        启用引擎：打开数据源并启动检测循环

        Returns:
            bool: 是否成功；失败时 error 保存原因
        """
        if self._enabled:
            logger.warning("引擎已在运行中")
            return True
        if self.source is None:
            raise PresenceError("未配置关键点数据源", component="engine")

        self.error = None
        try:
            await self.source.open()
        except LandmarkSourceError as e:
            await self._fail(e)
            return False

        if self.config.tuning.enabled and self.store is not None:
            try:
                await asyncio.to_thread(self.apply_tuning)
            except Exception as e:
                logger.error(f"加载会话统计失败: {e}")

        self._enabled = True
        self._running = True
        self._loop_task = asyncio.create_task(self._detection_loop())
        logger.info(f"存在感知已启用 (数据源={self.source.name})")
        return True

    async def disable(self):
        """停用引擎：结束所有会话、释放数据源、清空追踪状态"""
        self._running = False
        if self._loop_task:
            if self._loop_task is not asyncio.current_task():
                self._loop_task.cancel()
                try:
                    await self._loop_task
                except asyncio.CancelledError:
                    pass
            self._loop_task = None

        events = self._teardown()
        await self.bus.publish_all(events)

        if self.source is not None:
            try:
                await self.source.close()
            except LandmarkSourceError as e:
                logger.error(f"关闭数据源失败: {e}")

        await self.sessions.flush()
        self._enabled = False
        logger.info("存在感知已停用")

    def _teardown(self) -> List[EngagementEvent]:
        """所有人员按淘汰路径退出，聚合标志清空后再结束剩余会话"""
        now_ms = self.clock()
        result = self.classifier.evict_all(self.tracker.snapshots(), now_ms)
        self.lifecycle.apply(result.transitions)
        self.sessions.end_all(SessionOutcome.ABANDONED, now_ms=now_ms)

        self.tracker.clear()
        self.classifier.reset()
        return result.events + self._drain_session_events()

    async def _fail(self, error: LandmarkSourceError):
        """数据源故障：记录、发布 tracking_error、整体停用（不重试）"""
        logger.error(f"关键点数据源故障: {error}")
        self.error = error
        await self.bus.publish(EngagementEvent(
            EngagementEventType.TRACKING_ERROR,
            self.clock(),
            data=error.to_dict()
        ))
        await self.disable()

    async def _detection_loop(self):
        """检测循环"""
        logger.info("开始检测循环")

        while self._running:
            try:
                batch = self.source.read()
                if batch is None:
                    self._stats["frames_skipped"] += 1
                else:
                    events = self.process_frame(batch)
                    await self.bus.publish_all(events)

                await asyncio.sleep(self.config.detection_interval_ms / 1000.0)

            except asyncio.CancelledError:
                break
            except LandmarkSourceError as e:
                await self._fail(e)
                break
            except Exception as e:
                self._stats["loop_errors"] += 1
                logger.error(f"检测循环错误: {e}")
                await asyncio.sleep(self.config.detection_interval_ms / 1000.0)

    # ==================== 单次处理 ====================

    def process_frame(self, batch: FrameBatch, now_ms: Optional[float] = None) -> List[EngagementEvent]:
        """
        对一帧执行一次完整处理

        Args:
            batch: 本帧检测结果
            now_ms: 时间戳；默认取 batch.timestamp_ms，再默认取时钟

        Returns:
            本次处理产生的事件（按发生顺序，会话结束事件在最后）
        """
        if now_ms is None:
            now_ms = batch.timestamp_ms if batch.timestamp_ms is not None else self.clock()

        update = self.tracker.update(batch.poses, batch.faces, now_ms)
        result = self.classifier.evaluate(self.tracker.persons.values(), update, now_ms)
        self.lifecycle.apply(result.transitions)

        self._stats["frames_processed"] += 1
        if update.skipped_detections:
            logger.debug(f"本帧跳过 {update.skipped_detections} 个无效检测")

        return result.events + self._drain_session_events()

    async def feed(self, batch: FrameBatch, now_ms: Optional[float] = None) -> List[EngagementEvent]:
        """处理一帧并发布事件（供外部驱动帧率时使用）"""
        events = self.process_frame(batch, now_ms=now_ms)
        await self.bus.publish_all(events)
        return events

    def _on_session_ended(self, record: SessionRecord):
        self._ended_sessions.append(EngagementEvent(
            EngagementEventType.SESSION_ENDED,
            record.created_at.timestamp() * 1000.0,
            person_id=record.person_id,
            data=record.to_dict()
        ))

    def _drain_session_events(self) -> List[EngagementEvent]:
        events, self._ended_sessions = self._ended_sessions, []
        return events

    # ==================== 状态查询 ====================

    @property
    def aggregates(self) -> AggregateState:
        return self.classifier.aggregates

    @property
    def ambient_detected(self) -> bool:
        return self.classifier.aggregates.ambient_detected

    @property
    def walkup_detected(self) -> bool:
        return self.classifier.aggregates.walkup_detected

    @property
    def staring(self) -> bool:
        return self.classifier.aggregates.staring

    @property
    def max_proximity_level(self) -> int:
        return self.classifier.aggregates.max_proximity_level

    @property
    def active_people_count(self) -> int:
        return self.classifier.aggregates.active_people_count

    @property
    def tracked_people(self) -> List[PersonSnapshot]:
        return self.tracker.snapshots()

    def get_zone_states(self) -> Dict[str, Dict[str, Any]]:
        return {pid: state.to_dict() for pid, state in self.classifier.states.items()}

    # ==================== 会话信号 ====================

    def record_interaction(self, person_id: Optional[str] = None) -> bool:
        return self.sessions.record_interaction(person_id)

    def record_conversion(self, person_id: Optional[str] = None) -> bool:
        return self.sessions.record_conversion(person_id)

    def get_session_status(self, person_id: Optional[str] = None):
        return self.sessions.get_session_status(person_id)

    # ==================== 配置与调参 ====================

    def update_config(self, changes: Optional[Dict[str, Any]] = None, **kwargs):
        """
        运行时调整配置

        Example:
            engine.update_config(walkup_threshold=65)
            engine.update_config({"zones.stare_duration_ms": 10000})

        Raises:
            ConfigurationError: 未知键或违反阈值顺序（配置保持原状）
        """
        merged = dict(changes or {})
        merged.update(kwargs)
        self.config.update(merged)
        logger.info(f"配置已更新: {merged}")

    def apply_tuning(self, now_s: Optional[float] = None) -> Optional[ThresholdAdjustment]:
        """
        根据已保存的会话结果计算阈值调整；非被动模式下立即应用

        Returns:
            调整建议（未启用调参或没有存储时为 None）
        """
        if not self.config.tuning.enabled or self.store is None:
            return None

        records = self.store.load_records(
            tenant_id=self.config.sessions.tenant_id,
            limit=self.config.tuning.window
        )
        adjustment = self.tuner.evaluate(records, self.config.zones, now_s=now_s)
        if adjustment is None:
            return None

        if self.tuner.applies_changes:
            self.update_config(adjustment.changes)
            self.tuner.mark_applied(now_s)
            logger.info(f"阈值已自动调整: {adjustment.changes}")
        else:
            logger.info(f"被动模式，仅记录阈值建议: {adjustment.changes}")
        return adjustment

    def get_statistics(self) -> Dict[str, Any]:
        """获取统计信息"""
        return {
            **self._stats,
            "enabled": self._enabled,
            "error": self.error.to_dict() if self.error else None,
            "tracked_people": len(self.tracker),
            "aggregates": self.classifier.aggregates.to_dict(),
            "sessions": self.sessions.get_statistics(),
            "event_bus": self.bus.get_statistics()
        }
