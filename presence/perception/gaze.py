"""
视线估计 - Gaze Estimator

根据人脸关键点估计头部姿态，并判断是否注视自助终端
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Set
import math
import numpy as np
from loguru import logger

from presence.perception.core.types import FaceDetection, HeadPose, TrackedPerson
from presence.utils.config import GazeConfig


NOSE_TIP = 1
LEFT_EYE_OUTER = 33
RIGHT_EYE_OUTER = 263


@dataclass(frozen=True)
class GazeReading:
    """单帧视线读数"""
    head_pose: HeadPose
    is_looking_at_kiosk: bool
    confidence: float


class GazeEstimator:
    """视线估计器"""

    def __init__(self, config: GazeConfig):
        self.config = config

    def head_pose(self, face: FaceDetection) -> Optional[HeadPose]:
        """
        估计头部姿态

        - yaw: 鼻尖相对双眼中点的水平偏移，按眼距归一化
        - pitch: 鼻尖相对双眼中点的垂直偏移
        - roll: 双眼连线的角度

        Returns:
            HeadPose，关键点缺失时返回 None
        """
        nose = face.get(NOSE_TIP)
        left_eye = face.get(LEFT_EYE_OUTER)
        right_eye = face.get(RIGHT_EYE_OUTER)
        if nose is None or left_eye is None or right_eye is None:
            return None

        eye_center_x = (left_eye.x + right_eye.x) / 2
        eye_center_y = (left_eye.y + right_eye.y) / 2
        eye_distance = abs(left_eye.x - right_eye.x)

        yaw = ((nose.x - eye_center_x) / eye_distance) * self.config.yaw_scale if eye_distance > 0 else 0.0
        pitch = (nose.y - eye_center_y) * self.config.pitch_scale

        eye_dx = right_eye.x - left_eye.x
        eye_dy = right_eye.y - left_eye.y
        roll = math.degrees(math.atan2(eye_dy, eye_dx)) if eye_dx != 0 else 0.0

        return HeadPose(yaw=round(yaw), pitch=round(pitch), roll=round(roll))

    def is_looking(self, head_pose: Optional[HeadPose]) -> bool:
        """头部朝向在容差范围内即视为注视终端"""
        if head_pose is None:
            return False
        return (
            abs(head_pose.yaw) <= self.config.yaw_tolerance and
            abs(head_pose.pitch) <= self.config.pitch_tolerance
        )

    def read(self, face: FaceDetection) -> Optional[GazeReading]:
        """从人脸检测得到视线读数"""
        pose = self.head_pose(face)
        if pose is None:
            return None
        return GazeReading(
            head_pose=pose,
            is_looking_at_kiosk=self.is_looking(pose),
            confidence=self.config.face_confidence
        )

    def match_face(
        self,
        center: Tuple[float, float],
        faces: Sequence[FaceDetection],
        used: Set[int]
    ) -> Optional[int]:
        """
        为姿态中心匹配最近的人脸

        Args:
            center: 躯干中心
            faces: 本帧人脸检测
            used: 本帧已被占用的人脸索引

        Returns:
            人脸索引，半径内没有人脸时返回 None
        """
        candidates = [
            (i, face.get(NOSE_TIP)) for i, face in enumerate(faces)
            if i not in used and face.get(NOSE_TIP) is not None
        ]
        if not candidates:
            return None

        noses = np.array([(lm.x, lm.y) for _, lm in candidates])
        distances = np.hypot(noses[:, 0] - center[0], noses[:, 1] - center[1])
        best = int(np.argmin(distances))
        if distances[best] < self.config.face_match_radius:
            return candidates[best][0]
        return None

    def apply(self, person: TrackedPerson, face: Optional[FaceDetection]):
        """
        更新人员的视线状态

        没有匹配到人脸（或人脸关键点不完整）时保持上一次的值
        """
        if face is None:
            return

        reading = self.read(face)
        if reading is None:
            logger.debug(f"{person.id} 人脸关键点不完整，保留上次视线状态")
            return

        person.head_pose = reading.head_pose
        person.is_looking_at_kiosk = reading.is_looking_at_kiosk
        person.gaze_confidence = reading.confidence
