"""
感知层统一数据模型

关键点输入、追踪人员以及对外发布的不可变快照都定义在这里。
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Tuple, List, Deque
import math

from presence.perception.core.enums import Intent


TRAJECTORY_CAPACITY = 30


# ==================== 关键点输入 ====================

@dataclass(frozen=True)
class Landmark:
    """归一化关键点"""
    x: float
    y: float
    z: float = 0.0
    visibility: float = 1.0

    def distance_to(self, other: 'Landmark') -> float:
        """二维欧氏距离"""
        return math.hypot(self.x - other.x, self.y - other.y)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z, "visibility": self.visibility}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Landmark':
        visibility = data.get("visibility")
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            z=float(data.get("z", 0.0)),
            visibility=1.0 if visibility is None else float(visibility)
        )


def _landmarks_from(items: Optional[List[Any]]) -> Tuple[Optional[Landmark], ...]:
    # None 占位表示该索引的关键点缺失
    result = []
    for item in items or []:
        if item is None:
            result.append(None)
        elif isinstance(item, Landmark):
            result.append(item)
        else:
            result.append(Landmark.from_dict(item))
    return tuple(result)


@dataclass(frozen=True)
class PoseDetection:
    """单个人体姿态检测结果（MediaPipe 33点拓扑）"""
    landmarks: Tuple[Optional[Landmark], ...] = ()

    def get(self, index: int) -> Optional[Landmark]:
        if 0 <= index < len(self.landmarks):
            return self.landmarks[index]
        return None

    def average_visibility(self) -> float:
        points = [lm for lm in self.landmarks if lm is not None]
        if not points:
            return 0.0
        return sum(lm.visibility for lm in points) / len(points)

    def to_dict(self) -> Dict[str, Any]:
        return {"landmarks": [lm.to_dict() if lm else None for lm in self.landmarks]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PoseDetection':
        items = data.get("landmarks", data.get("pose_landmarks"))
        return cls(landmarks=_landmarks_from(items))


@dataclass(frozen=True)
class FaceDetection:
    """单个人脸关键点检测结果（MediaPipe face mesh 拓扑）"""
    landmarks: Tuple[Optional[Landmark], ...] = ()

    def get(self, index: int) -> Optional[Landmark]:
        if 0 <= index < len(self.landmarks):
            return self.landmarks[index]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"landmarks": [lm.to_dict() if lm else None for lm in self.landmarks]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FaceDetection':
        return cls(landmarks=_landmarks_from(data.get("landmarks")))


@dataclass(frozen=True)
class FrameBatch:
    """一帧的全部检测结果；姿态与人脸列表之间没有顺序约定"""
    poses: Tuple[PoseDetection, ...] = ()
    faces: Tuple[FaceDetection, ...] = ()
    timestamp_ms: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return not self.poses

    def to_dict(self) -> Dict[str, Any]:
        return {
            "poses": [p.to_dict() for p in self.poses],
            "faces": [f.to_dict() for f in self.faces],
            "timestamp_ms": self.timestamp_ms
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FrameBatch':
        poses = tuple(
            p if isinstance(p, PoseDetection) else PoseDetection.from_dict(p)
            for p in data.get("poses", [])
        )
        faces = tuple(
            f if isinstance(f, FaceDetection) else FaceDetection.from_dict(f)
            for f in data.get("faces", [])
        )
        return cls(poses=poses, faces=faces, timestamp_ms=data.get("timestamp_ms"))


# ==================== 运动与朝向 ====================

@dataclass(frozen=True)
class HeadPose:
    """头部姿态（角度）"""
    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {"yaw": self.yaw, "pitch": self.pitch, "roll": self.roll}


@dataclass(frozen=True)
class Velocity2D:
    """归一化坐标下的速度（每秒）"""
    dx: float = 0.0
    dy: float = 0.0

    @property
    def speed(self) -> float:
        return math.hypot(self.dx, self.dy)

    def to_dict(self) -> Dict[str, float]:
        return {"dx": self.dx, "dy": self.dy}


@dataclass(frozen=True)
class TrajectorySample:
    """轨迹采样点"""
    x: float
    y: float
    timestamp_ms: float
    distance_score: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "x": self.x,
            "y": self.y,
            "timestamp_ms": self.timestamp_ms,
            "distance_score": self.distance_score
        }


# ==================== 追踪人员 ====================

@dataclass
class TrackedPerson:
    """
    追踪中的人员

    由 IdentityTracker 独占持有，对外只发布 snapshot()
    """
    id: str
    center: Tuple[float, float]
    first_seen_ms: float
    last_seen_ms: float
    trajectory: Deque[TrajectorySample] = field(
        default_factory=lambda: deque(maxlen=TRAJECTORY_CAPACITY)
    )
    velocity: Velocity2D = field(default_factory=Velocity2D)
    distance_score: int = 0
    intent: Intent = Intent.UNKNOWN
    intent_history: Deque[Intent] = field(default_factory=lambda: deque(maxlen=10))
    head_pose: Optional[HeadPose] = None
    is_looking_at_kiosk: bool = False
    gaze_confidence: float = 0.0
    confidence: int = 0
    frames_lost: int = 0
    pose: Optional[PoseDetection] = None

    @property
    def is_visible(self) -> bool:
        """本帧是否匹配到检测"""
        return self.frames_lost == 0

    def snapshot(self) -> 'PersonSnapshot':
        """生成不可变快照"""
        return PersonSnapshot(
            id=self.id,
            center=self.center,
            trajectory=tuple(self.trajectory),
            velocity=self.velocity,
            distance_score=self.distance_score,
            intent=self.intent,
            head_pose=self.head_pose,
            is_looking_at_kiosk=self.is_looking_at_kiosk,
            confidence=self.confidence,
            frames_lost=self.frames_lost,
            first_seen_ms=self.first_seen_ms,
            last_seen_ms=self.last_seen_ms
        )


@dataclass(frozen=True)
class PersonSnapshot:
    """追踪人员的不可变快照"""
    id: str
    center: Tuple[float, float]
    trajectory: Tuple[TrajectorySample, ...]
    velocity: Velocity2D
    distance_score: int
    intent: Intent
    head_pose: Optional[HeadPose]
    is_looking_at_kiosk: bool
    confidence: int
    frames_lost: int
    first_seen_ms: float
    last_seen_ms: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "center": {"x": self.center[0], "y": self.center[1]},
            "trajectory": [s.to_dict() for s in self.trajectory],
            "velocity": self.velocity.to_dict(),
            "distance_score": self.distance_score,
            "intent": self.intent.value,
            "head_pose": self.head_pose.to_dict() if self.head_pose else None,
            "is_looking_at_kiosk": self.is_looking_at_kiosk,
            "confidence": self.confidence,
            "frames_lost": self.frames_lost
        }
