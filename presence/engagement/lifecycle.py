"""
会话生命周期 - Session Lifecycle

把区域层级变化映射为学习会话的开始与结束:
- 向上进入某层级: 结束当前会话，以该层级为触发动作开始新会话
  (接近会话升级为凝视记为 engaged，其余记为 abandoned)
- 在非 NONE 层级之间向下: 保留当前会话
- 回到 NONE 或被淘汰: 以 abandoned 结束（仍按交互/转化规则修正）
"""

from typing import Iterable, List
from loguru import logger

from presence.perception.core.enums import SessionOutcome, ZoneTier
from presence.engagement.sessions import LearningSessionManager, SessionRecord, SessionStartParams
from presence.engagement.zones import TierTransition
from presence.utils.config import ZoneConfig


class SessionLifecycle:
    """根据层级变化驱动 LearningSessionManager"""

    def __init__(self, sessions: LearningSessionManager, zones: ZoneConfig):
        self.sessions = sessions
        self.zones = zones

    def apply(self, transitions: Iterable[TierTransition]) -> List[SessionRecord]:
        """
        应用一帧的层级变化

        Returns:
            本帧结束的会话记录
        """
        ended = []
        for transition in transitions:
            ended.extend(self._apply_one(transition))
        return ended

    def _apply_one(self, transition: TierTransition) -> List[SessionRecord]:
        person_id = transition.person_id
        now_ms = transition.timestamp_ms
        ended = []

        if transition.current == ZoneTier.NONE:
            record = self.sessions.end(person_id, SessionOutcome.ABANDONED, now_ms=now_ms)
            if record is not None:
                ended.append(record)
            return ended

        if not transition.is_upward:
            return ended

        active = self.sessions.get_active(person_id)
        if active is not None:
            outcome = SessionOutcome.ABANDONED
            if transition.current == ZoneTier.STARE and active.triggered_action == ZoneTier.WALKUP:
                outcome = SessionOutcome.ENGAGED
            record = self.sessions.end(person_id, outcome, now_ms=now_ms)
            if record is not None:
                ended.append(record)

        self.sessions.start(self._start_params(transition), now_ms=now_ms)
        return ended

    def _start_params(self, transition: TierTransition) -> SessionStartParams:
        person = transition.person
        # 基线取首个轨迹采样的距离分数
        baseline = person.trajectory[0].distance_score if person.trajectory else 0

        return SessionStartParams(
            person_id=person.id,
            proximity_level=person.distance_score,
            intent=person.intent,
            confidence=person.confidence,
            baseline=baseline,
            threshold=self._threshold_for(transition.current),
            triggered_action=transition.current,
            is_looking_at_kiosk=person.is_looking_at_kiosk,
            head_pose=person.head_pose,
            distance_score=person.distance_score,
            trajectory=person.trajectory,
            velocity=person.velocity
        )

    def _threshold_for(self, tier: ZoneTier) -> float:
        if tier == ZoneTier.STARE:
            return self.zones.stare_threshold
        if tier == ZoneTier.WALKUP:
            return self.zones.walkup_threshold
        if tier == ZoneTier.AMBIENT:
            return self.zones.ambient_threshold
        logger.warning(f"层级 {tier.value} 没有对应阈值")
        return 0.0
