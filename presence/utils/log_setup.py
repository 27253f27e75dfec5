"""
日志配置

基于 loguru，默认输出到 stderr，可选按大小轮转的文件输出
"""

import sys
from typing import Optional
from loguru import logger


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """
    配置日志输出

    Args:
        level: 日志级别
        log_file: 日志文件路径（可选）
    """
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)

    if log_file:
        logger.add(
            log_file,
            level=level,
            rotation="10 MB",
            retention=5,
            encoding="utf-8",
            enqueue=True
        )

    logger.debug(f"日志已配置: level={level}, file={log_file}")
