"""
环境过滤 - Presence Filter

负责:
- 过滤追踪质量不足、移动过快、靠近画面边缘或出现时间过短的人员
- 识别经过通道里的过路人（死区）
- 进入接近区前的多信号意图校验
"""

from typing import List
import numpy as np
from loguru import logger

from presence.perception.core.enums import Intent
from presence.perception.core.types import TrackedPerson
from presence.utils.config import FilterConfig


class PresenceFilter:
    """
    环境过滤器

    只读取人员当前状态，不修改追踪数据
    """

    def __init__(self, config: FilterConfig):
        self.config = config

    def rejections(self, person: TrackedPerson, now_ms: float) -> List[str]:
        """
        列出人员未通过的过滤条件

        Returns:
            原因列表，全部通过时为空
        """
        c = self.config
        reasons = []

        if person.confidence <= c.min_confidence:
            reasons.append("low_confidence")
        if person.velocity.speed >= c.max_speed:
            reasons.append("too_fast")

        x, y = person.center
        upper = 1.0 - c.boundary_margin
        if not (c.boundary_margin < x < upper and c.boundary_margin < y < upper):
            reasons.append("near_edge")

        visibility = person.pose.average_visibility() if person.pose is not None else 0.0
        if visibility <= c.min_visibility:
            reasons.append("low_visibility")

        if now_ms - person.first_seen_ms < c.min_duration_ms:
            reasons.append("too_brief")
        if x < c.passing_lane_x:
            reasons.append("passing_lane")
        if self.is_accelerating(person):
            reasons.append("accelerating")

        return reasons

    def admits(self, person: TrackedPerson, now_ms: float) -> bool:
        """过滤关闭或全部条件通过时返回 True"""
        if not self.config.enabled:
            return True
        reasons = self.rejections(person, now_ms)
        if reasons:
            logger.debug(f"{person.id} 未通过环境过滤: {reasons}")
            return False
        return True

    def is_accelerating(self, person: TrackedPerson) -> bool:
        """当前速度明显高于轨迹平均速度，说明人员仍在加速经过"""
        samples = list(person.trajectory)
        if len(samples) <= 5:
            return False

        points = np.array([(s.x, s.y, s.timestamp_ms) for s in samples])
        elapsed_s = np.diff(points[:, 2]) / 1000.0
        steps = np.hypot(np.diff(points[:, 0]), np.diff(points[:, 1]))
        speeds = steps[elapsed_s > 0] / elapsed_s[elapsed_s > 0]
        if speeds.size == 0:
            return False
        return person.velocity.speed > float(speeds.mean()) * self.config.acceleration_ratio

    def intent_signals(self, person: TrackedPerson, walkup_threshold: int) -> int:
        """
        统计与"走近"一致的信号数

        - 距离超过接近阈值
        - 水平或垂直速度超过 approach_speed
        - 正在注视且视线置信度足够
        - 意图为 APPROACHING
        """
        c = self.config
        signals = 0
        if person.distance_score > walkup_threshold:
            signals += 1
        if person.velocity.dx > c.approach_speed or person.velocity.dy > c.approach_speed:
            signals += 1
        if person.is_looking_at_kiosk and person.gaze_confidence > c.min_gaze_confidence:
            signals += 1
        if person.intent == Intent.APPROACHING:
            signals += 1
        return signals

    def validates_walkup(self, person: TrackedPerson, walkup_threshold: int) -> bool:
        """校验关闭时恒为 True"""
        if not self.config.validate_intent:
            return True
        signals = self.intent_signals(person, walkup_threshold)
        if signals < self.config.min_intent_signals:
            logger.debug(f"{person.id} 意图校验未通过 ({signals}/{self.config.min_intent_signals})")
            return False
        return True
