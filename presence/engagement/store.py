"""
会话记录存储 - Session Store

学习会话结束后写入的持久化边界。写入由 LearningSessionManager
在后台线程中尽力完成，失败只记录日志。
"""

import json
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional
from loguru import logger

from presence.exceptions import PersistenceError


class SessionStore(ABC):
    """会话记录存储接口"""

    @abstractmethod
    def save(self, record: Dict[str, Any]):
        """写入一条已结束的会话记录"""

    @abstractmethod
    def load_records(
        self,
        tenant_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """按写入时间倒序读取记录"""


class MemorySessionStore(SessionStore):
    """内存存储，用于测试和离线分析"""

    def __init__(self):
        self.records: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def save(self, record: Dict[str, Any]):
        with self._lock:
            self.records.append(dict(record))

    def load_records(
        self,
        tenant_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        with self._lock:
            records = [
                r for r in reversed(self.records)
                if tenant_id is None or r.get("tenant_id") == tenant_id
            ]
        return records[:limit] if limit is not None else records


class JsonlSessionStore(SessionStore):
    """
    JSON Lines 文件存储

    每条记录一行，只追加
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        logger.info(f"JsonlSessionStore 初始化完成, 存储路径: {self.path}")

    def save(self, record: Dict[str, Any]):
        line = json.dumps(record, ensure_ascii=False, default=str)
        try:
            with self._lock, open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            raise PersistenceError(
                f"写入会话记录失败: {e}",
                store_type="jsonl",
                context={"path": str(self.path), "session_id": record.get("id")}
            ) from e

    def load_records(
        self,
        tenant_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []

        records = []
        with self._lock, open(self.path, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError as e:
                    logger.warning(f"跳过损坏的会话记录 {self.path}:{line_no} - {e}")

        records = [
            r for r in reversed(records)
            if tenant_id is None or r.get("tenant_id") == tenant_id
        ]
        return records[:limit] if limit is not None else records
