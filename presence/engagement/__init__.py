"""参与模块：区域分类、学习会话、事件分发与阈值调整"""
from presence.engagement.events import EngagementEvent, EngagementEventType
from presence.engagement.event_bus import EngagementEventBus
from presence.engagement.dispatcher import KioskBehaviors, KioskDispatcher
from presence.engagement.zones import ZoneClassifier, ZoneState, AggregateState
from presence.engagement.sessions import LearningSessionManager, SessionRecord, resolve_outcome
from presence.engagement.store import SessionStore, JsonlSessionStore, MemorySessionStore
from presence.engagement.tuning import ThresholdTuner, ThresholdAdjustment

__all__ = [
    "EngagementEvent",
    "EngagementEventType",
    "EngagementEventBus",
    "KioskBehaviors",
    "KioskDispatcher",
    "ZoneClassifier",
    "ZoneState",
    "AggregateState",
    "LearningSessionManager",
    "SessionRecord",
    "resolve_outcome",
    "SessionStore",
    "JsonlSessionStore",
    "MemorySessionStore",
    "ThresholdTuner",
    "ThresholdAdjustment",
]
