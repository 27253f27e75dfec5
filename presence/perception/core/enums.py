"""
感知层枚举类型定义
"""

from enum import Enum


class Intent(Enum):
    """移动意图"""
    UNKNOWN = "unknown"
    STOPPED = "stopped"
    APPROACHING = "approaching"
    LEAVING = "leaving"
    PASSING = "passing"


class ZoneTier(Enum):
    """距离/注意力层级"""
    NONE = "none"
    AMBIENT = "ambient"
    WALKUP = "walkup"
    STARE = "stare"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]


_TIER_RANK = {
    ZoneTier.NONE: 0,
    ZoneTier.AMBIENT: 1,
    ZoneTier.WALKUP: 2,
    ZoneTier.STARE: 3,
}


class SessionOutcome(Enum):
    """学习会话结果"""
    ABANDONED = "abandoned"
    ENGAGED = "engaged"
    CONVERTED = "converted"


class DisengagementReason(Enum):
    """脱离原因"""
    LOOKED_AWAY = "looked_away"
    MOVED_AWAY = "moved_away"
