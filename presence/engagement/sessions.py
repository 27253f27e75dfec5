"""
学习会话管理 - Learning Session Manager

负责:
- 每人最多一个活动会话的生命周期管理
- 记录交互与转化信号
- 计算最终结果并交给存储层（尽力写入，不阻塞追踪）
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union
from loguru import logger

from presence.perception.core.enums import Intent, SessionOutcome, ZoneTier
from presence.perception.core.types import HeadPose, TrajectorySample, Velocity2D
from presence.engagement.store import SessionStore
from presence.utils.config import SessionConfig


def _now_ms() -> float:
    return time.time() * 1000.0


def resolve_outcome(
    explicit: SessionOutcome,
    converted: bool,
    engaged_duration_ms: float,
    promotion_ms: float = 2000.0
) -> SessionOutcome:
    """
    计算会话最终结果

    - 已转化 -> converted
    - 交互时长超过 promotion_ms 且显式结果为 abandoned -> engaged
    - 其他情况使用显式结果
    """
    if converted:
        return SessionOutcome.CONVERTED
    if engaged_duration_ms > promotion_ms and explicit == SessionOutcome.ABANDONED:
        return SessionOutcome.ENGAGED
    return explicit


@dataclass(frozen=True)
class SessionStartParams:
    """会话开始时捕获的字段（拷贝，不引用追踪人员）"""
    person_id: str
    proximity_level: int
    intent: Intent
    confidence: float = 0.0
    baseline: float = 0.0
    threshold: float = 0.0
    triggered_action: Optional[ZoneTier] = None
    is_looking_at_kiosk: Optional[bool] = None
    head_pose: Optional[HeadPose] = None
    distance_score: int = 0
    trajectory: Tuple[TrajectorySample, ...] = ()
    velocity: Optional[Velocity2D] = None


@dataclass
class LearningSession:
    """进行中的学习会话"""
    id: str
    person_id: str
    tenant_id: str
    proximity_level: int
    intent: Intent
    confidence: float
    baseline: float
    threshold: float
    hour_of_day: int
    day_of_week: int
    triggered_action: Optional[ZoneTier]
    started_at: datetime
    start_ms: float
    is_looking_at_kiosk: Optional[bool] = None
    head_pose: Optional[HeadPose] = None
    distance_score: int = 0
    trajectory: Tuple[TrajectorySample, ...] = ()
    velocity: Optional[Velocity2D] = None
    first_interaction_ms: Optional[float] = None
    last_interaction_ms: Optional[float] = None
    converted: bool = False

    @property
    def has_interaction(self) -> bool:
        return self.first_interaction_ms is not None

    def status(self, now_ms: float) -> Dict[str, Any]:
        return {
            "active": True,
            "person_id": self.person_id,
            "session_id": self.id,
            "triggered_action": self.triggered_action.value if self.triggered_action else None,
            "duration_ms": now_ms - self.start_ms,
            "engaged": self.has_interaction,
            "converted": self.converted,
            "is_looking_at_kiosk": self.is_looking_at_kiosk
        }


@dataclass(frozen=True)
class SessionRecord:
    """已结束会话的不可变记录"""
    id: str
    person_id: str
    tenant_id: str
    proximity_level: int
    intent: Intent
    confidence: float
    baseline: float
    threshold: float
    hour_of_day: int
    day_of_week: int
    triggered_action: Optional[ZoneTier]
    outcome: SessionOutcome
    engaged_duration_ms: float
    converted: bool
    total_duration_ms: float
    started_at: datetime
    created_at: datetime
    first_interaction_ms: Optional[float] = None
    last_interaction_ms: Optional[float] = None
    feedback_was_correct: Optional[bool] = None
    is_looking_at_kiosk: Optional[bool] = None
    head_pose: Optional[HeadPose] = None
    distance_score: int = 0
    trajectory: Tuple[TrajectorySample, ...] = ()
    velocity: Optional[Velocity2D] = None

    def to_dict(self) -> Dict[str, Any]:
        """持久化格式"""
        return {
            "id": self.id,
            "person_id": self.person_id,
            "tenant_id": self.tenant_id,
            "proximity_level": self.proximity_level,
            "intent": self.intent.value,
            "confidence": self.confidence,
            "baseline": self.baseline,
            "threshold": self.threshold,
            "hour_of_day": self.hour_of_day,
            "day_of_week": self.day_of_week,
            "triggered_action": self.triggered_action.value if self.triggered_action else None,
            "outcome": self.outcome.value,
            "engaged_duration_ms": self.engaged_duration_ms,
            "converted": self.converted,
            "total_duration_ms": self.total_duration_ms,
            "feedback_was_correct": self.feedback_was_correct,
            "started_at": self.started_at.isoformat(),
            "created_at": self.created_at.isoformat(),
            "first_interaction_ms": self.first_interaction_ms,
            "last_interaction_ms": self.last_interaction_ms,
            "is_looking_at_kiosk": self.is_looking_at_kiosk,
            "head_pose_yaw": self.head_pose.yaw if self.head_pose else None,
            "head_pose_pitch": self.head_pose.pitch if self.head_pose else None,
            "head_pose_roll": self.head_pose.roll if self.head_pose else None,
            "distance_score": self.distance_score,
            "trajectory_data": [s.to_dict() for s in self.trajectory],
            "velocity_x": self.velocity.dx if self.velocity else None,
            "velocity_y": self.velocity.dy if self.velocity else None
        }


class LearningSessionManager:
    """
    学习会话管理器

    会话按 person_id 存放，同一人员同时最多一个活动会话
    """

    def __init__(
        self,
        config: SessionConfig,
        store: Optional[SessionStore] = None,
        clock: Callable[[], float] = _now_ms
    ):
        self.config = config
        self.store = store
        self.clock = clock

        self._active: Dict[str, LearningSession] = {}
        self._pending_writes: Set[asyncio.Task] = set()
        self._listeners: List[Callable[[SessionRecord], None]] = []

        self._stats = {
            "sessions_started": 0,
            "sessions_ended": 0,
            "writes_succeeded": 0,
            "writes_failed": 0
        }

        logger.info(
            f"LearningSessionManager 初始化完成, tenant={config.tenant_id}, "
            f"enabled={config.enabled}, store={type(store).__name__ if store else None}"
        )

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def add_listener(self, listener: Callable[[SessionRecord], None]):
        """注册会话结束监听器"""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[SessionRecord], None]):
        self._listeners = [l for l in self._listeners if l != listener]

    # ==================== 生命周期 ====================

    def start(self, params: SessionStartParams, now_ms: Optional[float] = None) -> Optional[LearningSession]:
        """
        开始新会话

        如果该人员已有活动会话，先结束它（有交互记为 engaged，否则 abandoned）

        Returns:
            新会话；学习关闭时返回 None
        """
        if not self.enabled:
            return None

        now_ms = self.clock() if now_ms is None else now_ms

        previous = self._active.get(params.person_id)
        if previous is not None:
            outcome = SessionOutcome.ENGAGED if previous.has_interaction else SessionOutcome.ABANDONED
            self.end(params.person_id, outcome, now_ms=now_ms)

        started_at = datetime.fromtimestamp(now_ms / 1000.0)
        session = LearningSession(
            id=str(uuid.uuid4()),
            person_id=params.person_id,
            tenant_id=self.config.tenant_id,
            proximity_level=params.proximity_level,
            intent=params.intent,
            confidence=params.confidence,
            baseline=params.baseline,
            threshold=params.threshold,
            hour_of_day=started_at.hour,
            # 0 = 周日
            day_of_week=started_at.isoweekday() % 7,
            triggered_action=params.triggered_action,
            started_at=started_at,
            start_ms=now_ms,
            is_looking_at_kiosk=params.is_looking_at_kiosk,
            head_pose=params.head_pose,
            distance_score=params.distance_score,
            trajectory=tuple(params.trajectory),
            velocity=params.velocity
        )

        self._active[params.person_id] = session
        self._stats["sessions_started"] += 1

        action = session.triggered_action.value if session.triggered_action else None
        logger.info(
            f"会话开始: {session.id} 人员={session.person_id} "
            f"触发={action} 意图={session.intent.value}"
        )
        return session

    def end(
        self,
        person_id: str,
        outcome: SessionOutcome = SessionOutcome.ABANDONED,
        now_ms: Optional[float] = None,
        feedback_was_correct: Optional[bool] = None
    ) -> Optional[SessionRecord]:
        """
        结束会话并提交持久化

        Returns:
            结束后的记录；没有活动会话时返回 None
        """
        session = self._active.pop(person_id, None)
        if session is None:
            return None

        now_ms = self.clock() if now_ms is None else now_ms
        total_duration = max(0.0, now_ms - session.start_ms)

        engaged_duration = 0.0
        if session.first_interaction_ms is not None:
            last = session.last_interaction_ms if session.last_interaction_ms is not None else now_ms
            engaged_duration = max(0.0, last - session.first_interaction_ms)

        final = resolve_outcome(
            outcome,
            session.converted,
            engaged_duration,
            self.config.engaged_promotion_ms
        )

        record = SessionRecord(
            id=session.id,
            person_id=session.person_id,
            tenant_id=session.tenant_id,
            proximity_level=session.proximity_level,
            intent=session.intent,
            confidence=session.confidence,
            baseline=session.baseline,
            threshold=session.threshold,
            hour_of_day=session.hour_of_day,
            day_of_week=session.day_of_week,
            triggered_action=session.triggered_action,
            outcome=final,
            engaged_duration_ms=engaged_duration,
            converted=session.converted,
            total_duration_ms=total_duration,
            started_at=session.started_at,
            created_at=datetime.fromtimestamp(now_ms / 1000.0),
            first_interaction_ms=session.first_interaction_ms,
            last_interaction_ms=session.last_interaction_ms,
            feedback_was_correct=feedback_was_correct,
            is_looking_at_kiosk=session.is_looking_at_kiosk,
            head_pose=session.head_pose,
            distance_score=session.distance_score,
            trajectory=session.trajectory,
            velocity=session.velocity
        )

        self._stats["sessions_ended"] += 1
        logger.info(
            f"会话结束: {record.id} 人员={person_id} 结果={final.value} "
            f"时长={total_duration / 1000:.1f}s"
        )

        self._emit(record)
        return record

    def end_all(
        self,
        outcome: SessionOutcome = SessionOutcome.ABANDONED,
        now_ms: Optional[float] = None
    ) -> List[SessionRecord]:
        """结束所有活动会话"""
        records = []
        for person_id in list(self._active):
            record = self.end(person_id, outcome, now_ms=now_ms)
            if record is not None:
                records.append(record)
        return records

    # ==================== 参与信号 ====================

    def record_interaction(
        self,
        person_id: Optional[str] = None,
        now_ms: Optional[float] = None
    ) -> bool:
        """
        记录交互（触摸屏幕、选择等）

        Args:
            person_id: 人员 id；为空时作用于最近开始的活动会话

        Returns:
            bool: 是否找到会话
        """
        session = self._resolve(person_id)
        if session is None:
            return False

        now_ms = self.clock() if now_ms is None else now_ms
        if session.first_interaction_ms is None:
            session.first_interaction_ms = now_ms
        session.last_interaction_ms = now_ms
        logger.debug(f"记录交互: {session.id} 人员={session.person_id}")
        return True

    def record_conversion(
        self,
        person_id: Optional[str] = None,
        now_ms: Optional[float] = None
    ) -> bool:
        """记录转化（完成操作），同时视为一次交互"""
        session = self._resolve(person_id)
        if session is None:
            return False

        self.record_interaction(session.person_id, now_ms=now_ms)
        session.converted = True
        logger.info(f"记录转化: {session.id} 人员={session.person_id}")
        return True

    def update_engagement(
        self,
        person_id: str,
        is_looking_at_kiosk: Optional[bool] = None,
        head_pose: Optional[HeadPose] = None,
        trajectory: Optional[Tuple[TrajectorySample, ...]] = None
    ) -> bool:
        """会话进行中更新视线与轨迹数据"""
        session = self._active.get(person_id)
        if session is None:
            return False

        if is_looking_at_kiosk is not None:
            session.is_looking_at_kiosk = is_looking_at_kiosk
        if head_pose is not None:
            session.head_pose = head_pose
        if trajectory is not None:
            session.trajectory = tuple(trajectory)
        return True

    def _resolve(self, person_id: Optional[str]) -> Optional[LearningSession]:
        if person_id is not None:
            return self._active.get(person_id)
        if not self._active:
            return None
        return max(self._active.values(), key=lambda s: s.start_ms)

    # ==================== 查询 ====================

    def get_active(self, person_id: str) -> Optional[LearningSession]:
        """获取活动会话（内部状态，仅供引擎使用）"""
        return self._active.get(person_id)

    def has_active(self, person_id: str) -> bool:
        return person_id in self._active

    @property
    def active_count(self) -> int:
        return len(self._active)

    def get_session_status(
        self,
        person_id: Optional[str] = None,
        now_ms: Optional[float] = None
    ) -> Union[Dict[str, Any], List[Dict[str, Any]]]:
        """
        获取会话状态

        Args:
            person_id: 指定人员时返回单个状态字典，否则返回所有活动会话的列表
        """
        now_ms = self.clock() if now_ms is None else now_ms

        if person_id is not None:
            session = self._active.get(person_id)
            if session is None:
                return {"active": False, "person_id": person_id}
            return session.status(now_ms)

        return [s.status(now_ms) for s in self._active.values()]

    def get_statistics(self) -> Dict[str, Any]:
        return {**self._stats, "active_sessions": len(self._active), "pending_writes": len(self._pending_writes)}

    # ==================== 持久化 ====================

    def _emit(self, record: SessionRecord):
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception as e:
                logger.error(f"会话结束监听器执行失败: {e}")

        if self.store is None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            # 没有事件循环时直接写入
            self._write(record)
            return

        task = loop.create_task(self._write_async(record))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _write_async(self, record: SessionRecord):
        try:
            await asyncio.to_thread(self.store.save, record.to_dict())
            self._stats["writes_succeeded"] += 1
        except Exception as e:
            self._stats["writes_failed"] += 1
            logger.error(f"会话记录保存失败 {record.id}: {e}")

    def _write(self, record: SessionRecord):
        try:
            self.store.save(record.to_dict())
            self._stats["writes_succeeded"] += 1
        except Exception as e:
            self._stats["writes_failed"] += 1
            logger.error(f"会话记录保存失败 {record.id}: {e}")

    async def flush(self):
        """等待所有后台写入完成"""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)
