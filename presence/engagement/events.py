"""
参与事件类型定义 - Engagement Event Types

区域分类器、会话管理器与引擎发布的全部事件都在这里定义，
外部消费者只会拿到不可变的事件载荷。
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


class EngagementEventType(Enum):
    """事件类型"""
    PERSON_ENTERED = "person_entered"
    PERSON_EXITED = "person_exited"
    AMBIENT_DETECTED = "ambient_detected"
    AMBIENT_CLEARED = "ambient_cleared"
    WALKUP_DETECTED = "walkup_detected"
    WALKUP_ENDED = "walkup_ended"
    STARE_DETECTED = "stare_detected"
    STARE_ENDED = "stare_ended"
    DISENGAGEMENT = "disengagement"
    WALKUP_ZONE_OCCUPIED = "walkup_zone_occupied"
    WALKUP_ZONE_CLEARED = "walkup_zone_cleared"
    STARING_STARTED = "staring_started"
    STARING_CLEARED = "staring_cleared"
    SESSION_ENDED = "session_ended"
    TRACKING_ERROR = "tracking_error"


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class EngagementEvent:
    """参与事件"""
    event_type: EngagementEventType
    timestamp_ms: float
    person_id: Optional[str] = None
    data: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "data", _freeze(dict(self.data)))

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            "event_type": self.event_type.value,
            "timestamp_ms": self.timestamp_ms,
            "person_id": self.person_id,
            "data": _thaw(self.data)
        }
