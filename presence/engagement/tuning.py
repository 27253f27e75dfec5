"""
阈值自适应调整 - Threshold Tuner

根据最近的会话结果调整区域阈值:
- 放弃率过高 (>30%): 触发太早，阈值上调 10%
- 放弃率低 (<15%) 且参与率高 (>40%): 阈值下调 10%

被动模式下只计算建议，不修改配置。
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence
from loguru import logger

from presence.perception.core.enums import SessionOutcome
from presence.utils.config import TuningConfig, ZoneConfig


@dataclass(frozen=True)
class TuningStats:
    """最近会话的结果统计（百分比）"""
    total: int
    abandonment_rate: float
    engagement_rate: float
    conversion_rate: float


@dataclass(frozen=True)
class ThresholdAdjustment:
    """一次阈值调整建议"""
    factor: float
    reason: str
    previous: Dict[str, int]
    changes: Dict[str, int] = field(default_factory=dict)
    stats: Optional[TuningStats] = None


class ThresholdTuner:
    """阈值调整器"""

    _THRESHOLD_KEYS = ("ambient_threshold", "walkup_threshold", "stare_threshold")

    def __init__(self, config: TuningConfig):
        self.config = config
        self.last_adjustment_s: Optional[float] = None

    def analyze(self, records: Sequence[Dict[str, Any]]) -> TuningStats:
        """
        统计最近 window 条记录（records 按时间倒序）

        Args:
            records: SessionRecord.to_dict() 格式的记录
        """
        recent = list(records)[:self.config.window]
        total = len(recent)
        if total == 0:
            return TuningStats(total=0, abandonment_rate=0.0, engagement_rate=0.0, conversion_rate=0.0)

        outcomes = [r.get("outcome") for r in recent]

        def rate(outcome: SessionOutcome) -> float:
            return outcomes.count(outcome.value) / total * 100.0

        stats = TuningStats(
            total=total,
            abandonment_rate=rate(SessionOutcome.ABANDONED),
            engagement_rate=rate(SessionOutcome.ENGAGED),
            conversion_rate=rate(SessionOutcome.CONVERTED)
        )
        logger.debug(
            f"会话统计: {total} 条, 放弃 {stats.abandonment_rate:.1f}%, "
            f"参与 {stats.engagement_rate:.1f}%"
        )
        return stats

    def recommend(
        self,
        zones: ZoneConfig,
        stats: TuningStats,
        now_s: Optional[float] = None
    ) -> Optional[ThresholdAdjustment]:
        """
        给出阈值调整建议

        Returns:
            调整建议；样本不足、处于限频期或无需调整时返回 None
        """
        c = self.config
        now_s = time.time() if now_s is None else now_s

        if stats.total < c.min_sessions:
            logger.debug(f"会话样本不足 ({stats.total} < {c.min_sessions})，跳过阈值调整")
            return None

        if self.last_adjustment_s is not None and now_s - self.last_adjustment_s < c.min_interval_s:
            elapsed_h = (now_s - self.last_adjustment_s) / 3600.0
            logger.info(f"阈值调整限频: 距上次调整 {elapsed_h:.1f}h")
            return None

        if stats.abandonment_rate > c.high_abandonment_rate:
            factor = c.increase_factor
            reason = f"放弃率过高 ({stats.abandonment_rate:.1f}%)，上调阈值"
        elif stats.abandonment_rate < c.low_abandonment_rate and stats.engagement_rate > c.high_engagement_rate:
            factor = c.decrease_factor
            reason = (
                f"放弃率低 ({stats.abandonment_rate:.1f}%) 且参与率高 "
                f"({stats.engagement_rate:.1f}%)，下调阈值"
            )
        else:
            return None

        previous = {key: getattr(zones, key) for key in self._THRESHOLD_KEYS}
        scaled = {
            key: max(c.min_threshold, min(c.max_threshold, int(round(value * factor))))
            for key, value in previous.items()
        }
        # 保持 stare >= walkup >= ambient
        scaled["walkup_threshold"] = max(scaled["walkup_threshold"], scaled["ambient_threshold"])
        scaled["stare_threshold"] = max(scaled["stare_threshold"], scaled["walkup_threshold"])

        changes = {key: value for key, value in scaled.items() if value != previous[key]}
        if not changes:
            logger.info(f"{reason}，但阈值已到达边界")
            return None

        logger.info(f"{reason}: {previous} -> {scaled}")
        return ThresholdAdjustment(
            factor=factor,
            reason=reason,
            previous=previous,
            changes=changes,
            stats=stats
        )

    def evaluate(
        self,
        records: Sequence[Dict[str, Any]],
        zones: ZoneConfig,
        now_s: Optional[float] = None
    ) -> Optional[ThresholdAdjustment]:
        """analyze + recommend"""
        return self.recommend(zones, self.analyze(records), now_s=now_s)

    def mark_applied(self, now_s: Optional[float] = None):
        """记录一次已应用的调整（用于限频）"""
        self.last_adjustment_s = time.time() if now_s is None else now_s

    @property
    def applies_changes(self) -> bool:
        return self.config.enabled and not self.config.passive

