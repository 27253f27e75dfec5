"""
配置管理 - Config Manager

负责:
- 加载配置文件
- 配置验证
- 运行时配置访问与调整
"""

import math
import os
from copy import deepcopy
from dataclasses import dataclass, field, fields, asdict
from typing import Dict, Any, Optional
from pathlib import Path
import yaml
from loguru import logger

from presence.exceptions import ConfigurationError


# ==================== 配置段 ====================

def _section_from_dict(cls, data: Optional[Dict[str, Any]]):
    """按字段名构造配置段，忽略未知键"""
    data = data or {}
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        logger.warning(f"{cls.__name__} 忽略未知配置项: {sorted(unknown)}")
    return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class TrackerConfig:
    """身份追踪配置"""
    match_radius: float = 0.2
    max_frames_lost: int = 15

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'TrackerConfig':
        return _section_from_dict(cls, data)


@dataclass
class MotionConfig:
    """距离与意图估计配置"""
    distance_scale: float = 200.0
    intent_window: int = 5
    intent_min_samples: int = 3
    stopped_speed: float = 0.05
    distance_delta: float = 5.0
    # 1 表示不做时间平滑
    intent_smoothing_window: int = 1
    intent_agreement: float = 0.7

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'MotionConfig':
        return _section_from_dict(cls, data)


@dataclass
class GazeConfig:
    """视线估计配置"""
    yaw_tolerance: float = 35.0
    pitch_tolerance: float = 25.0
    face_match_radius: float = 0.15
    yaw_scale: float = 90.0
    pitch_scale: float = 100.0
    face_confidence: float = 0.8

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'GazeConfig':
        return _section_from_dict(cls, data)


@dataclass
class ZoneConfig:
    """三层区域阈值配置"""
    ambient_threshold: int = 30
    walkup_threshold: int = 60
    stare_threshold: int = 60
    stare_duration_ms: float = 15000.0
    ambient_exit_margin: int = 5
    walkup_exit_margin: int = 10
    stare_exit_margin: int = 10

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ZoneConfig':
        return _section_from_dict(cls, data)


@dataclass
class FilterConfig:
    """
    环境过滤配置

    关闭时所有可见人员都参与区域评估；开启后未通过过滤的人员不能进入更高层级
    """
    enabled: bool = False
    min_confidence: int = 70
    max_speed: float = 0.8
    boundary_margin: float = 0.1
    min_visibility: float = 0.6
    min_duration_ms: float = 1000.0
    # 画面左侧的经过通道
    passing_lane_x: float = 0.2
    acceleration_ratio: float = 1.2
    # 进入接近区前的多信号意图校验
    validate_intent: bool = False
    min_intent_signals: int = 3
    approach_speed: float = 0.05
    min_gaze_confidence: float = 0.7

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'FilterConfig':
        return _section_from_dict(cls, data)


@dataclass
class SessionConfig:
    """学习会话配置"""
    enabled: bool = True
    tenant_id: str = "default"
    engaged_promotion_ms: float = 2000.0
    store_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'SessionConfig':
        return _section_from_dict(cls, data)


@dataclass
class TuningConfig:
    """阈值自适应调整配置"""
    enabled: bool = False
    passive: bool = True
    window: int = 100
    min_sessions: int = 10
    high_abandonment_rate: float = 30.0
    low_abandonment_rate: float = 15.0
    high_engagement_rate: float = 40.0
    increase_factor: float = 1.1
    decrease_factor: float = 0.9
    min_threshold: int = 5
    max_threshold: int = 95
    min_interval_s: float = 3600.0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'TuningConfig':
        return _section_from_dict(cls, data)


def _field_names(section) -> set:
    return {f.name for f in fields(section)}


def _field_default(section, name: str) -> Any:
    return next(f.default for f in fields(section) if f.name == name)


def _coerce(default: Any, value: Any, key: str) -> Any:
    """按字段默认值的类型转换新值，字符串按 YAML 语法解析"""
    if default is None or value is None:
        return value
    if isinstance(value, str) and not isinstance(default, str):
        value = yaml.safe_load(value)
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ConfigurationError(f"配置项 {key} 需要布尔值", key=key, context={"value": value})
        return value
    if isinstance(default, int):
        if isinstance(value, bool) or not float(value).is_integer():
            raise ConfigurationError(f"配置项 {key} 需要整数", key=key, context={"value": value})
        return int(value)
    if isinstance(default, float):
        if isinstance(value, bool) or not math.isfinite(float(value)):
            raise ConfigurationError(f"配置项 {key} 需要有限数值", key=key, context={"value": value})
        return float(value)
    if isinstance(default, str):
        return str(value)
    return value


_SECTIONS = {
    "tracker": TrackerConfig,
    "motion": MotionConfig,
    "gaze": GazeConfig,
    "zones": ZoneConfig,
    "filters": FilterConfig,
    "sessions": SessionConfig,
    "tuning": TuningConfig,
}


@dataclass
class EngineConfig:
    """
    引擎完整配置

    所有阈值都可以在运行时通过 update() 调整；各组件持有配置段的引用，
    修改在下一次检测周期生效。
    """
    detection_interval_ms: float = 500.0
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    motion: MotionConfig = field(default_factory=MotionConfig)
    gaze: GazeConfig = field(default_factory=GazeConfig)
    zones: ZoneConfig = field(default_factory=ZoneConfig)
    filters: FilterConfig = field(default_factory=FilterConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    tuning: TuningConfig = field(default_factory=TuningConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'EngineConfig':
        data = data or {}
        engine = data.get("engine", {})
        config = cls(
            detection_interval_ms=float(engine.get(
                "detection_interval_ms",
                data.get("detection_interval_ms", 500.0)
            )),
            **{name: section.from_dict(data.get(name)) for name, section in _SECTIONS.items()}
        )
        config.validate()
        return config

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["engine"] = {"detection_interval_ms": result.pop("detection_interval_ms")}
        return result

    def validate(self):
        """校验配置约束"""
        z = self.zones
        if not (z.stare_threshold >= z.walkup_threshold >= z.ambient_threshold):
            raise ConfigurationError(
                "阈值必须满足 stare >= walkup >= ambient",
                key="zones",
                context={
                    "ambient_threshold": z.ambient_threshold,
                    "walkup_threshold": z.walkup_threshold,
                    "stare_threshold": z.stare_threshold
                }
            )
        if not 0 <= z.ambient_threshold <= 100:
            raise ConfigurationError("ambient_threshold 超出 0-100 范围", key="zones.ambient_threshold")
        if z.stare_duration_ms < 0:
            raise ConfigurationError("stare_duration_ms 不能为负", key="zones.stare_duration_ms")
        if self.detection_interval_ms <= 0:
            raise ConfigurationError("detection_interval_ms 必须为正", key="detection_interval_ms")
        if self.tracker.match_radius <= 0:
            raise ConfigurationError("match_radius 必须为正", key="tracker.match_radius")
        if self.tracker.max_frames_lost < 0:
            raise ConfigurationError("max_frames_lost 不能为负", key="tracker.max_frames_lost")
        if self.motion.intent_min_samples < 2 or self.motion.intent_window < 2:
            raise ConfigurationError("意图窗口至少需要2个采样", key="motion")
        if self.motion.intent_smoothing_window < 1:
            raise ConfigurationError("intent_smoothing_window 至少为1", key="motion.intent_smoothing_window")
        f = self.filters
        if not 1 <= f.min_intent_signals <= 4:
            raise ConfigurationError("min_intent_signals 必须在 1-4 之间", key="filters.min_intent_signals")
        if not 0 <= f.boundary_margin < 0.5:
            raise ConfigurationError("boundary_margin 必须在 0-0.5 之间", key="filters.boundary_margin")

    def update(self, changes: Dict[str, Any]):
        """
        运行时调整配置

        Args:
            changes: 键可以是 "zones.walkup_threshold" 形式的路径，
                     也可以是在所有配置段中唯一的字段名（如 "walkup_threshold"）

        Raises:
            ConfigurationError: 未知键或校验失败（此时配置保持原状）
        """
        backup = deepcopy(self)
        try:
            for key, value in changes.items():
                target, name = self._resolve(key)
                setattr(target, name, _coerce(_field_default(target, name), value, key))
            self.validate()
        except ConfigurationError:
            self._restore(backup)
            raise
        except (TypeError, ValueError, yaml.YAMLError) as e:
            self._restore(backup)
            raise ConfigurationError(f"配置更新失败: {e}", context={"changes": changes}) from e

    def _resolve(self, key: str):
        if key in ("detection_interval_ms", "engine.detection_interval_ms"):
            return self, "detection_interval_ms"
        if "." in key:
            section_name, name = key.split(".", 1)
            section = getattr(self, section_name, None)
            if section_name in _SECTIONS and name in _field_names(section):
                return section, name
            raise ConfigurationError(f"未知配置项: {key}", key=key)
        owners = [
            getattr(self, section_name)
            for section_name in _SECTIONS
            if key in _field_names(getattr(self, section_name))
        ]
        if len(owners) != 1:
            raise ConfigurationError(f"配置项不存在或不唯一: {key}", key=key)
        return owners[0], key

    def _restore(self, backup: 'EngineConfig'):
        # 原地恢复，保持组件持有的配置段引用有效
        self.detection_interval_ms = backup.detection_interval_ms
        for section_name in _SECTIONS:
            section = getattr(self, section_name)
            for f in fields(section):
                setattr(section, f.name, getattr(getattr(backup, section_name), f.name))


# ==================== 配置文件管理 ====================

class ConfigManager:
    """
    配置管理器

    加载顺序: 默认配置文件 -> 自定义配置文件 -> 环境变量
    """

    DEFAULT_CONFIG_PATH = "config/default_config.yaml"

    ENV_MAPPINGS = {
        "PRESENCE_LOG_LEVEL": "system.log_level",
        "PRESENCE_TENANT_ID": "sessions.tenant_id",
        "PRESENCE_SESSION_STORE": "sessions.store_path",
        "PRESENCE_DETECTION_INTERVAL_MS": "engine.detection_interval_ms",
        "PRESENCE_AMBIENT_THRESHOLD": "zones.ambient_threshold",
        "PRESENCE_WALKUP_THRESHOLD": "zones.walkup_threshold",
        "PRESENCE_STARE_THRESHOLD": "zones.stare_threshold",
        "PRESENCE_STARE_DURATION_MS": "zones.stare_duration_ms",
    }

    def __init__(self, config_path: Optional[str] = None):
        self.config: Dict[str, Any] = {}
        self.config_path = config_path

        self._load_config()

    def _load_config(self):
        """加载配置"""
        default_path = Path(__file__).parent.parent.parent / self.DEFAULT_CONFIG_PATH
        if default_path.exists():
            self.config = self._load_yaml(default_path)
            logger.info(f"加载默认配置: {default_path}")
        else:
            logger.warning(f"默认配置文件不存在: {default_path}")
            self.config = self._get_builtin_defaults()

        if self.config_path:
            custom_path = Path(self.config_path)
            if custom_path.exists():
                custom_config = self._load_yaml(custom_path)
                self.config = self._merge_config(self.config, custom_config)
                logger.info(f"加载自定义配置: {custom_path}")
            else:
                logger.warning(f"自定义配置文件不存在: {self.config_path}")

        self._override_from_env()

    def _load_yaml(self, path: Path) -> Dict[str, Any]:
        """加载YAML文件"""
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"加载配置文件失败: {path} - {e}")
            return {}

    def _get_builtin_defaults(self) -> Dict[str, Any]:
        """获取内置默认配置"""
        defaults = EngineConfig().to_dict()
        defaults["system"] = {
            "name": "kiosk-presence",
            "log_level": "INFO",
            "log_file": None
        }
        return defaults

    def _merge_config(
        self,
        base: Dict[str, Any],
        override: Dict[str, Any]
    ) -> Dict[str, Any]:
        """合并配置"""
        result = dict(base)

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def _override_from_env(self):
        """从环境变量覆盖配置"""
        for env_var, config_path in self.ENV_MAPPINGS.items():
            value = os.getenv(env_var)
            if value:
                self.set(config_path, yaml.safe_load(value))

    def get(self, path: str, default: Any = None) -> Any:
        """
        获取配置值

        Args:
            path: 配置路径 (如 "zones.walkup_threshold")
            default: 默认值
        """
        parts = path.split(".")
        value = self.config

        try:
            for part in parts:
                value = value[part]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, path: str, value: Any):
        """设置配置值"""
        parts = path.split(".")
        config = self.config

        for part in parts[:-1]:
            if part not in config or not isinstance(config[part], dict):
                config[part] = {}
            config = config[part]

        config[parts[-1]] = value

    def get_section(self, section: str) -> Dict[str, Any]:
        """获取配置段"""
        return self.get(section, {})

    def to_dict(self) -> Dict[str, Any]:
        """获取完整配置"""
        return dict(self.config)

    def engine_config(self) -> EngineConfig:
        """构造类型化的引擎配置"""
        return EngineConfig.from_dict(self.config)

    def save(self, path: Optional[str] = None):
        """保存配置"""
        save_path = path or self.config_path
        if not save_path:
            logger.warning("未指定保存路径")
            return

        try:
            with open(save_path, 'w', encoding='utf-8') as f:
                yaml.dump(self.config, f, allow_unicode=True, default_flow_style=False)
            logger.info(f"配置已保存: {save_path}")
        except OSError as e:
            logger.error(f"配置保存失败: {e}")

    def validate(self) -> bool:
        """
        验证配置

        Returns:
            bool: 配置是否有效
        """
        required_sections = ["engine", "tracker", "zones", "sessions"]

        for section in required_sections:
            if section not in self.config:
                logger.warning(f"缺少必需配置段: {section}")
                return False

        try:
            self.engine_config()
        except ConfigurationError as e:
            logger.warning(f"配置校验失败: {e}")
            return False

        return True
