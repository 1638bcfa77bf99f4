"""
LockFetch 下载层

包含内容抓取与完整性校验。并发下载管理在 lockfetch.download.manager 中，
它依赖资源模型，需单独导入。
"""

from lockfetch.download.fetcher import BaseFetcher, HttpFetcher
from lockfetch.download.verifier import (
    RECOMMENDED_ALGO,
    available_algorithms,
    compute_integrity,
    verify_integrity,
)

__all__ = [
    "BaseFetcher",
    "HttpFetcher",
    "RECOMMENDED_ALGO",
    "available_algorithms",
    "compute_integrity",
    "verify_integrity",
]
