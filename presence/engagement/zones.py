"""
区域分类器 - Zone Classifier

每个追踪人员一个显式有限状态机:
    NONE -> AMBIENT -> WALKUP -> STARE
每个检测周期按人员顺序评估一次，带退出迟滞和凝视驻留时间；
随后在所有人员上聚合出系统级触发标志。
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional
from loguru import logger

from presence.perception.core.enums import DisengagementReason, Intent, ZoneTier
from presence.perception.core.types import PersonSnapshot, TrackedPerson
from presence.perception.filters import PresenceFilter
from presence.perception.tracker import TrackerUpdate
from presence.engagement.events import EngagementEvent, EngagementEventType
from presence.utils.config import ZoneConfig


_WALKUP_TIERS = (ZoneTier.WALKUP, ZoneTier.STARE)


@dataclass
class ZoneState:
    """
    单个人员的区域状态

    in_walkup 在 WALKUP 进入时置位，人员继续进入 STARE 时保持，
    直接进入 STARE（没有经过接近阶段）时不置位。
    """
    person_id: str
    tier: ZoneTier = ZoneTier.NONE
    in_walkup: bool = False
    stare_start_ms: Optional[float] = None

    @property
    def in_ambient(self) -> bool:
        return self.tier == ZoneTier.AMBIENT

    @property
    def is_staring(self) -> bool:
        return self.tier == ZoneTier.STARE

    def to_dict(self) -> Dict[str, object]:
        return {
            "person_id": self.person_id,
            "tier": self.tier.value,
            "in_ambient": self.in_ambient,
            "in_walkup": self.in_walkup,
            "is_staring": self.is_staring,
            "stare_start_ms": self.stare_start_ms
        }


@dataclass(frozen=True)
class TierTransition:
    """层级变化，供会话生命周期使用"""
    person_id: str
    previous: ZoneTier
    current: ZoneTier
    person: PersonSnapshot
    timestamp_ms: float
    evicted: bool = False

    @property
    def is_upward(self) -> bool:
        return self.current.rank > self.previous.rank


@dataclass(frozen=True)
class AggregateState:
    """系统级聚合状态"""
    ambient_detected: bool = False
    walkup_detected: bool = False
    staring: bool = False
    max_proximity_level: int = 0
    active_people_count: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "ambient_detected": self.ambient_detected,
            "walkup_detected": self.walkup_detected,
            "staring": self.staring,
            "max_proximity_level": self.max_proximity_level,
            "active_people_count": self.active_people_count
        }


@dataclass
class ClassificationResult:
    """一次分类的输出"""
    events: List[EngagementEvent] = field(default_factory=list)
    transitions: List[TierTransition] = field(default_factory=list)
    aggregates: AggregateState = field(default_factory=AggregateState)


class ZoneClassifier:
    """
    区域分类器

    所有事件都从这里发出；会话的开始/结束由 SessionLifecycle 根据
    transitions 在分类之后执行。
    """

    def __init__(self, config: ZoneConfig, presence_filter: Optional[PresenceFilter] = None):
        self.config = config
        self.presence_filter = presence_filter
        self.states: Dict[str, ZoneState] = {}
        self.aggregates = AggregateState()

        logger.info(
            f"ZoneClassifier 初始化完成, 阈值 ambient={config.ambient_threshold} "
            f"walkup={config.walkup_threshold} stare={config.stare_threshold} "
            f"驻留={config.stare_duration_ms}ms"
        )

    def evaluate(
        self,
        persons: Iterable[TrackedPerson],
        update: TrackerUpdate,
        now_ms: float
    ) -> ClassificationResult:
        """
        评估一帧

        Args:
            persons: 当前所有追踪人员（含本帧未匹配的）
            update: 本帧追踪结果（新进入 / 淘汰）
            now_ms: 本帧时间戳

        顺序: 进入事件 -> 逐人层级评估 -> 淘汰 -> 聚合
        """
        result = ClassificationResult()
        persons = list(persons)
        by_id = {p.id: p for p in persons}

        for person_id in update.entered:
            person = by_id.get(person_id)
            result.events.append(EngagementEvent(
                EngagementEventType.PERSON_ENTERED,
                now_ms,
                person_id=person_id,
                data={
                    "proximity": person.distance_score if person else 0,
                    "is_looking": person.is_looking_at_kiosk if person else False
                }
            ))

        for person in persons:
            # 本帧没有新数据的人员保持原状态，直到重新匹配或被淘汰
            if not person.is_visible:
                continue
            self._evaluate_person(person, now_ms, result)

        for snapshot in update.evicted:
            self._evict(snapshot, now_ms, result)

        self._aggregate(persons, now_ms, result)
        return result

    # ==================== 单人状态机 ====================

    def _evaluate_person(self, person: TrackedPerson, now_ms: float, result: ClassificationResult):
        state = self.states.get(person.id)
        if state is None:
            state = ZoneState(person_id=person.id)
            self.states[person.id] = state

        previous = state.tier
        target = self._next_tier(person, state, now_ms)
        if (
            target.rank > previous.rank and
            self.presence_filter is not None and
            not self.presence_filter.admits(person, now_ms)
        ):
            # 未通过环境过滤时只允许保持或下降
            target = previous
        if target == previous:
            return

        snapshot = person.snapshot()
        self._exit_effects(state, target, snapshot, now_ms, result)
        self._entry_effects(state, target, snapshot, now_ms, result)

        state.tier = target
        result.transitions.append(TierTransition(
            person_id=person.id,
            previous=previous,
            current=target,
            person=snapshot,
            timestamp_ms=now_ms
        ))
        logger.info(f"{person.id} 层级变化: {previous.value} -> {target.value} (距离={person.distance_score})")

    def _next_tier(self, person: TrackedPerson, state: ZoneState, now_ms: float) -> ZoneTier:
        """按守卫条件选出满足的最高层级"""
        z = self.config
        distance = person.distance_score
        looking = person.is_looking_at_kiosk

        if state.is_staring:
            stare_ok = distance >= z.stare_threshold - z.stare_exit_margin and looking
        else:
            stare_condition = (
                distance >= z.stare_threshold and
                person.intent == Intent.STOPPED and
                looking
            )
            if stare_condition:
                if state.stare_start_ms is None:
                    state.stare_start_ms = now_ms
                    logger.debug(f"{person.id} 开始计时凝视 (距离={distance})")
                stare_ok = now_ms - state.stare_start_ms >= z.stare_duration_ms
            else:
                state.stare_start_ms = None
                stare_ok = False

        if state.in_walkup:
            walkup_ok = distance >= z.walkup_threshold - z.walkup_exit_margin and looking
        else:
            walkup_ok = (
                distance >= z.walkup_threshold and
                person.intent == Intent.APPROACHING and
                looking and
                (self.presence_filter is None or
                 self.presence_filter.validates_walkup(person, z.walkup_threshold))
            )

        ambient_floor = z.ambient_threshold
        if state.in_ambient:
            ambient_floor -= z.ambient_exit_margin
        ambient_ok = ambient_floor <= distance < z.walkup_threshold

        if stare_ok:
            return ZoneTier.STARE
        if walkup_ok:
            return ZoneTier.WALKUP
        if ambient_ok:
            return ZoneTier.AMBIENT
        return ZoneTier.NONE

    def _exit_effects(
        self,
        state: ZoneState,
        target: ZoneTier,
        person: PersonSnapshot,
        now_ms: float,
        result: ClassificationResult,
        reason: Optional[DisengagementReason] = None
    ):
        if state.is_staring and target != ZoneTier.STARE:
            duration = now_ms - state.stare_start_ms if state.stare_start_ms is not None else 0.0
            state.stare_start_ms = None
            result.events.append(EngagementEvent(
                EngagementEventType.STARE_ENDED,
                now_ms,
                person_id=person.id,
                data={"stare_duration_ms": duration}
            ))
            logger.info(f"{person.id} 凝视结束 (持续 {duration / 1000:.1f}s)")

        if state.in_walkup and target not in _WALKUP_TIERS:
            state.in_walkup = False
            if reason is None:
                reason = (
                    DisengagementReason.LOOKED_AWAY
                    if not person.is_looking_at_kiosk
                    else DisengagementReason.MOVED_AWAY
                )
            result.events.append(EngagementEvent(
                EngagementEventType.WALKUP_ENDED,
                now_ms,
                person_id=person.id
            ))
            result.events.append(EngagementEvent(
                EngagementEventType.DISENGAGEMENT,
                now_ms,
                person_id=person.id,
                data={"reason": reason.value}
            ))
            logger.info(f"{person.id} 离开接近区 ({reason.value})")

    def _entry_effects(
        self,
        state: ZoneState,
        target: ZoneTier,
        person: PersonSnapshot,
        now_ms: float,
        result: ClassificationResult
    ):
        head_pose = person.head_pose.to_dict() if person.head_pose else None

        if target == ZoneTier.WALKUP and not state.in_walkup:
            state.in_walkup = True
            result.events.append(EngagementEvent(
                EngagementEventType.WALKUP_DETECTED,
                now_ms,
                person_id=person.id,
                data={
                    "proximity": person.distance_score,
                    "is_looking": person.is_looking_at_kiosk,
                    "head_pose": head_pose
                }
            ))
            logger.info(f"{person.id} 进入接近区 (距离={person.distance_score}, 注视)")

        if target == ZoneTier.STARE and not state.is_staring:
            duration = now_ms - state.stare_start_ms if state.stare_start_ms is not None else 0.0
            result.events.append(EngagementEvent(
                EngagementEventType.STARE_DETECTED,
                now_ms,
                person_id=person.id,
                data={
                    "proximity": person.distance_score,
                    "stare_duration_ms": duration,
                    "is_looking": person.is_looking_at_kiosk,
                    "head_pose": head_pose
                }
            ))
            logger.info(f"{person.id} 检测到凝视! 持续 {duration / 1000:.1f}s")

    def _evict(self, person: PersonSnapshot, now_ms: float, result: ClassificationResult):
        """人员被淘汰：先发出层级退出事件，再发出离开事件"""
        state = self.states.pop(person.id, None)
        if state is not None:
            previous = state.tier
            self._exit_effects(
                state, ZoneTier.NONE, person, now_ms, result,
                reason=DisengagementReason.MOVED_AWAY
            )
            state.tier = ZoneTier.NONE
            result.transitions.append(TierTransition(
                person_id=person.id,
                previous=previous,
                current=ZoneTier.NONE,
                person=person,
                timestamp_ms=now_ms,
                evicted=True
            ))

        result.events.append(EngagementEvent(
            EngagementEventType.PERSON_EXITED,
            now_ms,
            person_id=person.id
        ))

    def evict_all(self, persons: Iterable[PersonSnapshot], now_ms: float) -> ClassificationResult:
        """
        停用时淘汰所有人员

        每个人员按淘汰路径发出退出事件，随后聚合标志回到初始状态
        """
        result = ClassificationResult()
        for snapshot in persons:
            self._evict(snapshot, now_ms, result)
        self._aggregate([], now_ms, result)
        return result

    # ==================== 聚合 ====================

    def _aggregate(self, persons: List[TrackedPerson], now_ms: float, result: ClassificationResult):
        states = [self.states[p.id] for p in persons if p.id in self.states]
        current = AggregateState(
            ambient_detected=any(s.in_ambient for s in states),
            walkup_detected=any(s.in_walkup for s in states),
            staring=any(s.is_staring for s in states),
            max_proximity_level=max((p.distance_score for p in persons), default=0),
            active_people_count=len(persons)
        )
        previous = self.aggregates

        if current.ambient_detected != previous.ambient_detected:
            if current.ambient_detected:
                result.events.append(EngagementEvent(
                    EngagementEventType.AMBIENT_DETECTED,
                    now_ms,
                    data={
                        "people_count": current.active_people_count,
                        "max_proximity": current.max_proximity_level
                    }
                ))
                logger.info(f"环境区有人 (人数={current.active_people_count})")
            else:
                result.events.append(EngagementEvent(EngagementEventType.AMBIENT_CLEARED, now_ms))
                logger.info("环境区已清空")

        if current.walkup_detected != previous.walkup_detected:
            result.events.append(EngagementEvent(
                EngagementEventType.WALKUP_ZONE_OCCUPIED
                if current.walkup_detected else EngagementEventType.WALKUP_ZONE_CLEARED,
                now_ms
            ))

        if current.staring != previous.staring:
            result.events.append(EngagementEvent(
                EngagementEventType.STARING_STARTED
                if current.staring else EngagementEventType.STARING_CLEARED,
                now_ms
            ))

        self.aggregates = current
        result.aggregates = current

    def get_state(self, person_id: str) -> Optional[ZoneState]:
        return self.states.get(person_id)

    def reset(self):
        """清空所有区域与聚合状态"""
        self.states.clear()
        self.aggregates = AggregateState()
