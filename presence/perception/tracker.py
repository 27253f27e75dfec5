"""
身份追踪 - Identity Tracker

负责:
- 按空间距离把每帧检测匹配到已追踪人员
- 创建新人员 / 淘汰长期丢失的人员
- 在匹配完成后驱动运动、距离与视线估计
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple
import numpy as np
from loguru import logger

from presence.exceptions import MalformedLandmarkError
from presence.perception.core.types import (
    FaceDetection,
    PersonSnapshot,
    PoseDetection,
    TrackedPerson,
    TRAJECTORY_CAPACITY,
)
from presence.perception.gaze import GazeEstimator
from presence.perception.motion import MotionEstimator, torso_center
from presence.utils.config import TrackerConfig


@dataclass
class TrackerUpdate:
    """一次追踪更新的结果"""
    entered: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    evicted: List[PersonSnapshot] = field(default_factory=list)
    skipped_detections: int = 0


class IdentityTracker:
    """
    多人身份追踪器

    人员按 id 存放在 persons 字典中，淘汰即按键删除。
    字典保持插入顺序，同一帧内的人员处理顺序因此是确定的。
    """

    def __init__(
        self,
        config: TrackerConfig,
        motion: MotionEstimator,
        gaze: GazeEstimator
    ):
        self.config = config
        self.motion = motion
        self.gaze = gaze

        self.persons: Dict[str, TrackedPerson] = {}
        self._next_id = 1

        logger.info(
            f"IdentityTracker 初始化完成, 匹配半径={config.match_radius}, "
            f"最大丢失帧数={config.max_frames_lost}"
        )

    def update(
        self,
        poses: Sequence[PoseDetection],
        faces: Sequence[FaceDetection],
        now_ms: float
    ) -> TrackerUpdate:
        """
        用一帧检测更新追踪集合

        顺序: 身份匹配 -> 运动/视线估计 -> 老化与淘汰

        Args:
            poses: 本帧姿态检测（按帧内顺序）
            faces: 本帧人脸检测
            now_ms: 本帧时间戳（毫秒）
        """
        result = TrackerUpdate()
        matched: Set[str] = set()
        assignments: List[Tuple[TrackedPerson, PoseDetection, Tuple[float, float], bool]] = []

        # 1. 身份匹配
        for index, pose in enumerate(poses):
            try:
                center = torso_center(pose)
            except MalformedLandmarkError as e:
                result.skipped_detections += 1
                logger.warning(f"跳过第 {index} 个检测: {e} (缺失索引 {e.missing_indices})")
                continue

            person_id = self._nearest_unmatched(center, matched)
            if person_id is None:
                person = self._create_person(center, now_ms)
                result.entered.append(person.id)
                is_new = True
            else:
                person = self.persons[person_id]
                result.updated.append(person.id)
                is_new = False

            matched.add(person.id)
            assignments.append((person, pose, center, is_new))

        # 2. 运动、距离与视线
        used_faces: Set[int] = set()
        for person, pose, center, is_new in assignments:
            person.frames_lost = 0
            self.motion.update(person, pose, center, now_ms)

            face_index = self.gaze.match_face(center, faces, used_faces)
            if face_index is not None:
                used_faces.add(face_index)
                self.gaze.apply(person, faces[face_index])

            person.confidence = self.motion.person_confidence(person)
            if is_new:
                logger.info(
                    f"新人员进入: {person.id} 距离={person.distance_score} "
                    f"注视={person.is_looking_at_kiosk}"
                )

        # 3. 老化与淘汰
        for person_id in list(self.persons):
            if person_id in matched:
                continue
            person = self.persons[person_id]
            person.frames_lost += 1
            if person.frames_lost > self.config.max_frames_lost:
                result.evicted.append(person.snapshot())
                del self.persons[person_id]
                logger.info(f"人员离开: {person_id} (连续 {person.frames_lost} 帧未检测到)")

        return result

    def _nearest_unmatched(
        self,
        center: Tuple[float, float],
        matched: Set[str]
    ) -> Optional[str]:
        """在匹配半径内找最近的、本帧尚未匹配的人员"""
        candidates = [pid for pid in self.persons if pid not in matched]
        if not candidates:
            return None

        centers = np.array([self.persons[pid].center for pid in candidates])
        distances = np.hypot(centers[:, 0] - center[0], centers[:, 1] - center[1])
        # argmin 在距离相等时取第一个，即最早进入的人员
        best = int(np.argmin(distances))
        if distances[best] < self.config.match_radius:
            return candidates[best]
        return None

    def _create_person(self, center: Tuple[float, float], now_ms: float) -> TrackedPerson:
        person_id = f"person-{self._next_id}"
        self._next_id += 1

        history_size = max(10, self.motion.config.intent_smoothing_window)
        person = TrackedPerson(
            id=person_id,
            center=center,
            first_seen_ms=now_ms,
            last_seen_ms=now_ms,
            trajectory=deque(maxlen=TRAJECTORY_CAPACITY),
            intent_history=deque(maxlen=history_size)
        )
        self.persons[person_id] = person
        return person

    def get(self, person_id: str) -> Optional[TrackedPerson]:
        return self.persons.get(person_id)

    def snapshots(self) -> List[PersonSnapshot]:
        """所有追踪人员的快照"""
        return [p.snapshot() for p in self.persons.values()]

    def remove(self, person_id: str) -> Optional[PersonSnapshot]:
        """强制移除人员"""
        person = self.persons.pop(person_id, None)
        return person.snapshot() if person else None

    def clear(self):
        """清空追踪状态，id 从头开始"""
        self.persons.clear()
        self._next_id = 1
        logger.info("追踪状态已清空")

    def __len__(self) -> int:
        return len(self.persons)
