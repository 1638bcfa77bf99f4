"""
日志模块

使用 loguru 提供统一的日志记录功能。
"""

import os
import sys
from typing import Optional

from loguru import logger

LEVEL_ALIASES = {
    "trace": "TRACE",
    "debug": "DEBUG",
    "info": "INFO",
    "warn": "WARNING",
    "warning": "WARNING",
    "err": "ERROR",
    "error": "ERROR",
    "fatal": "CRITICAL",
    "critical": "CRITICAL",
}


def normalize_level(level: str) -> str:
    """将命令行日志级别转换为 loguru 级别名，未知级别回退到 INFO"""
    return LEVEL_ALIASES.get(level.strip().lower(), "INFO")


def setup_logger(
    level: Optional[str] = None,
    sink=sys.stderr,
    enqueue: bool = False,
    colorize: Optional[bool] = None,
) -> None:
    """
    设置日志记录器

    Args:
        level: 日志级别 (TRACE, DEBUG, INFO, WARNING, ERROR)
        sink: 输出目标
        enqueue: 是否启用队列（多进程安全）
        colorize: 是否启用颜色，None 表示由 loguru 自动检测
    """
    # 未显式指定时从环境变量获取日志级别
    if level is None:
        level = "DEBUG" if os.environ.get("LOCKFETCH_DEBUG", "0") == "1" else "INFO"
    else:
        level = normalize_level(level)

    # 移除默认处理器
    logger.remove()

    logger.add(
        sink=sink,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}",
        enqueue=enqueue,
        level=level,
        colorize=colorize,
        backtrace=(level in ("TRACE", "DEBUG")),
        diagnose=(level in ("TRACE", "DEBUG")),
    )

    if level in ("TRACE", "DEBUG"):
        logger.debug("DEBUG 模式已启用")


__all__ = ["logger", "setup_logger", "normalize_level"]
