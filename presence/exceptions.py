"""
存在感知异常定义

提供标准化的异常类型，用于追踪、会话与持久化的错误处理
"""

from typing import Dict, Any, Optional
from datetime import datetime


class PresenceError(Exception):
    """基础异常"""

    def __init__(
        self,
        message: str,
        component: str,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.component = component
        self.context = context or {}
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            "error_type": self.__class__.__name__,
            "message": str(self),
            "component": self.component,
            "context": self.context,
            "timestamp": self.timestamp.isoformat()
        }


class LandmarkSourceError(PresenceError):
    """关键点数据源（摄像头/模型）获取失败"""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, component="source", context=context)
        self.source_name = source_name


class MalformedLandmarkError(PresenceError):
    """关键点数据缺失或格式错误"""

    def __init__(
        self,
        message: str,
        missing_indices: Optional[list] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, component="landmarks", context=context)
        self.missing_indices = missing_indices or []


class PersistenceError(PresenceError):
    """会话记录持久化错误"""

    def __init__(
        self,
        message: str,
        store_type: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, component="persistence", context=context)
        self.store_type = store_type


class ConfigurationError(PresenceError):
    """配置错误"""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, component="config", context=context)
        self.key = key
