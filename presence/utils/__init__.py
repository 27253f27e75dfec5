"""工具模块"""
from presence.utils.config import ConfigManager, EngineConfig
from presence.utils.log_setup import setup_logging

__all__ = ["ConfigManager", "EngineConfig", "setup_logging"]
