"""
关键点数据源 - Landmark Sources

引擎每个检测周期调用一次 read() 获取最新一帧。
摄像头采集与关键点模型推理都在数据源之外，这里只定义接口和回放实现。
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union
import yaml
from loguru import logger

from presence.exceptions import LandmarkSourceError
from presence.perception.core.types import FrameBatch


FrameInput = Union[FrameBatch, Dict[str, Any], None]


class LandmarkSource(ABC):
    """关键点数据源接口"""

    name: str = "source"

    @abstractmethod
    async def open(self):
        """
        打开数据源（申请摄像头、加载模型等）

        Raises:
            LandmarkSourceError: 获取失败
        """

    @abstractmethod
    def read(self) -> Optional[FrameBatch]:
        """
        读取最新一帧

        Returns:
            FrameBatch；尚未就绪时返回 None

        Raises:
            LandmarkSourceError: 读取失败
        """

    @abstractmethod
    async def close(self):
        """释放数据源"""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass


class ReplayLandmarkSource(LandmarkSource):
    """
    回放数据源

    按顺序返回预先录制的帧，列表中的 None 表示该周期帧未就绪。
    用于测试、演示和离线分析。
    """

    def __init__(
        self,
        frames: Optional[Sequence[FrameInput]] = None,
        loop: bool = False,
        fail_on_open: bool = False,
        name: str = "replay"
    ):
        self.frames: List[Optional[FrameBatch]] = [self._to_batch(f) for f in frames or []]
        self.loop = loop
        self.fail_on_open = fail_on_open
        self.name = name

        self._index = 0
        self._open = False

    @staticmethod
    def _to_batch(frame: FrameInput) -> Optional[FrameBatch]:
        if frame is None or isinstance(frame, FrameBatch):
            return frame
        return FrameBatch.from_dict(frame)

    @classmethod
    def from_file(cls, path: Union[str, Path], **kwargs) -> 'ReplayLandmarkSource':
        """
        从 JSON 或 YAML 文件加载帧

        文件内容可以是帧列表，也可以是 {"frames": [...]}
        """
        path = Path(path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise LandmarkSourceError(
                f"加载回放文件失败: {e}",
                source_name=str(path)
            ) from e

        if isinstance(data, dict):
            data = data.get("frames", [])
        if not isinstance(data, list):
            raise LandmarkSourceError("回放文件格式错误: 需要帧列表", source_name=str(path))

        logger.info(f"加载回放文件: {path} ({len(data)} 帧)")
        kwargs.setdefault("name", path.stem)
        return cls(frames=data, **kwargs)

    async def open(self):
        if self.fail_on_open:
            raise LandmarkSourceError("数据源不可用", source_name=self.name)
        self._index = 0
        self._open = True
        logger.info(f"回放数据源已打开: {self.name} ({len(self.frames)} 帧)")

    def read(self) -> Optional[FrameBatch]:
        if not self._open:
            raise LandmarkSourceError("数据源未打开", source_name=self.name)

        if self._index >= len(self.frames):
            if not self.loop or not self.frames:
                return None
            self._index = 0

        frame = self.frames[self._index]
        self._index += 1
        return frame

    async def close(self):
        if self._open:
            logger.info(f"回放数据源已关闭: {self.name}")
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def exhausted(self) -> bool:
        return not self.loop and self._index >= len(self.frames)
