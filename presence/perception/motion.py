"""
运动与距离估计 - Motion & Distance Estimator

负责:
- 根据肩宽估计接近程度（0-100，越近越大）
- 根据位置变化计算速度
- 根据轨迹判断移动意图
- 计算追踪质量置信度
"""

from collections import Counter, deque
from typing import Sequence, Tuple
import math
import numpy as np

from presence.exceptions import MalformedLandmarkError
from presence.perception.core.enums import Intent
from presence.perception.core.types import (
    PoseDetection,
    TrackedPerson,
    TrajectorySample,
    Velocity2D,
)
from presence.utils.config import MotionConfig


LEFT_SHOULDER = 11
RIGHT_SHOULDER = 12


def shoulder_points(pose: PoseDetection):
    """取出左右肩关键点，缺失或坐标非有限值时抛出 MalformedLandmarkError"""
    left = pose.get(LEFT_SHOULDER)
    right = pose.get(RIGHT_SHOULDER)
    missing = [
        i for i, lm in ((LEFT_SHOULDER, left), (RIGHT_SHOULDER, right))
        if lm is None or not (math.isfinite(lm.x) and math.isfinite(lm.y))
    ]
    if missing:
        raise MalformedLandmarkError(
            "姿态检测缺少肩部关键点",
            missing_indices=missing,
            context={"landmark_count": len(pose.landmarks)}
        )
    return left, right


def torso_center(pose: PoseDetection) -> Tuple[float, float]:
    """躯干中心（两肩中点）"""
    left, right = shoulder_points(pose)
    return ((left.x + right.x) / 2, (left.y + right.y) / 2)


class MotionEstimator:
    """
    运动估计器

    所有阈值来自 MotionConfig，运行时修改立即生效
    """

    def __init__(self, config: MotionConfig):
        self.config = config

    def distance_score(self, pose: PoseDetection) -> int:
        """
        估计接近程度

        肩宽越大说明离摄像头越近，按比例缩放后截断到 [0, 100]
        """
        left, right = shoulder_points(pose)
        shoulder_width = float(np.hypot(left.x - right.x, left.y - right.y))
        score = round(shoulder_width * self.config.distance_scale)
        return int(min(100, max(0, score)))

    def classify_intent(
        self,
        trajectory: Sequence[TrajectorySample],
        velocity: Velocity2D
    ) -> Intent:
        """
        根据最近的轨迹判断意图

        Args:
            trajectory: 轨迹（旧 -> 新）
            velocity: 当前速度

        Returns:
            Intent: 未平滑的原始意图
        """
        if len(trajectory) < self.config.intent_min_samples:
            return Intent.UNKNOWN

        recent = list(trajectory)[-self.config.intent_window:]
        distance_change = recent[-1].distance_score - recent[0].distance_score

        if velocity.speed < self.config.stopped_speed:
            return Intent.STOPPED
        if distance_change > self.config.distance_delta:
            return Intent.APPROACHING
        if distance_change < -self.config.distance_delta:
            return Intent.LEAVING
        return Intent.PASSING

    def smooth_intent(self, history: Sequence[Intent]) -> Intent:
        """
        多数投票平滑意图

        需要达到 intent_agreement 比例的一致才采用多数意图，否则沿用最新的原始意图
        """
        if not history:
            return Intent.UNKNOWN

        recent = list(history)[-self.config.intent_smoothing_window:]
        intent, count = Counter(recent).most_common(1)[0]
        if count >= len(recent) * self.config.intent_agreement:
            return intent
        return recent[-1]

    def update(
        self,
        person: TrackedPerson,
        pose: PoseDetection,
        center: Tuple[float, float],
        now_ms: float
    ):
        """用本帧检测更新人员的速度、距离、轨迹和意图"""
        elapsed_s = (now_ms - person.last_seen_ms) / 1000.0
        if elapsed_s > 0:
            person.velocity = Velocity2D(
                dx=(center[0] - person.center[0]) / elapsed_s,
                dy=(center[1] - person.center[1]) / elapsed_s
            )

        person.distance_score = self.distance_score(pose)
        person.trajectory.append(TrajectorySample(
            x=center[0],
            y=center[1],
            timestamp_ms=now_ms,
            distance_score=person.distance_score
        ))

        raw_intent = self.classify_intent(person.trajectory, person.velocity)
        window = self.config.intent_smoothing_window
        if person.intent_history.maxlen is not None and person.intent_history.maxlen < window:
            # 平滑窗口在运行时被调大
            person.intent_history = deque(person.intent_history, maxlen=window)
        person.intent_history.append(raw_intent)
        if self.config.intent_smoothing_window > 1:
            person.intent = self.smooth_intent(person.intent_history)
        else:
            person.intent = raw_intent

        person.center = center
        person.last_seen_ms = now_ms
        person.pose = pose

    def person_confidence(self, person: TrackedPerson) -> int:
        """
        追踪质量置信度（0-100）

        - 姿态可见度: 0-30
        - 视线检测: 0-30
        - 轨迹一致性: 0-20
        - 距离可靠性: 0-20
        """
        confidence = 0.0

        if person.pose is not None:
            confidence += person.pose.average_visibility() * 30

        if person.head_pose is not None and person.is_looking_at_kiosk:
            confidence += person.gaze_confidence * 30

        if len(person.trajectory) > 5:
            points = np.array([(s.x, s.y) for s in list(person.trajectory)[-10:]])
            direct = float(np.linalg.norm(points[-1] - points[0]))
            path = float(np.linalg.norm(np.diff(points, axis=0), axis=1).sum())
            if path > 0:
                confidence += (direct / path) * 20

        if 20 < person.distance_score < 200:
            confidence += 20
        elif 10 <= person.distance_score <= 300:
            confidence += 10

        return int(min(100, round(confidence)))
