# -*- coding: utf-8 -*-
"""Kiosk Presence 主包"""
from presence.engine import ProximityEngine
from presence.utils.config import ConfigManager, EngineConfig

__version__ = "0.1.0"

__all__ = ["ProximityEngine", "ConfigManager", "EngineConfig"]
