"""
LockFetch - 基于锁文件的外部资源下载工具

按锁文件中记录的完整性字符串下载、校验并放置外部文件，
支持镜像回退和内容寻址的远程缓存。
"""

__version__ = "0.1.0"

from lockfetch.config import LockFetchConfig, load_config
from lockfetch.exceptions import LockFetchError
from lockfetch.lock import Lock
from lockfetch.resource import Resource

__all__ = [
    "__version__",
    "Lock",
    "Resource",
    "LockFetchConfig",
    "LockFetchError",
    "load_config",
]
