"""
核心操作

命令行使用的异步操作函数：添加、删除、更新资源以及批量下载。
每个函数在未传入抓取器时自行创建 HttpFetcher，并只关闭自己创建的抓取器。
"""

import contextlib
from typing import AsyncIterator, Iterable, List, Optional, Sequence

from loguru import logger

from lockfetch.config import LockFetchConfig
from lockfetch.download.fetcher import BaseFetcher, HttpFetcher
from lockfetch.download.manager import DownloadResult
from lockfetch.download.verifier import RECOMMENDED_ALGO
from lockfetch.hooks import HookManager
from lockfetch.lock import Lock
from lockfetch.resource import Resource


@contextlib.asynccontextmanager
async def _open_fetcher(
    fetcher: Optional[BaseFetcher], config: LockFetchConfig
) -> AsyncIterator[BaseFetcher]:
    if fetcher is not None:
        yield fetcher
        return
    async with HttpFetcher(config.fetcher) as owned:
        yield owned


async def add_resources(
    lock_path: str,
    urls: Sequence[str],
    algo: str = RECOMMENDED_ALGO,
    tags: Iterable[str] = (),
    filename: Optional[str] = None,
    cache_uri: Optional[str] = None,
    dynamic: bool = False,
    *,
    fetcher: Optional[BaseFetcher] = None,
    config: Optional[LockFetchConfig] = None,
) -> Resource:
    """
    把一个资源（可含多个镜像 URL）添加到锁文件并保存

    锁文件不存在时会创建。
    """
    config = config or LockFetchConfig()
    async with _open_fetcher(fetcher, config) as active:
        lock = Lock.load(
            lock_path, create_if_missing=True, fetcher=active, config=config
        )
        resource = await lock.add_resource(
            urls,
            algo,
            tags=tags,
            filename=filename,
            cache_uri=cache_uri,
            dynamic=dynamic,
        )
    lock.save()
    return resource


async def delete_resources(
    lock_path: str,
    urls: Sequence[str],
    *,
    fetcher: Optional[BaseFetcher] = None,
    config: Optional[LockFetchConfig] = None,
) -> int:
    """从锁文件中删除包含任一 URL 的资源并保存，返回删除数量"""
    config = config or LockFetchConfig()
    async with _open_fetcher(fetcher, config) as active:
        lock = Lock.load(lock_path, fetcher=active, config=config)
        removed = 0
        for url in urls:
            removed += await lock.delete_resource(url)
    lock.save()
    return removed


async def update_resource(
    lock_path: str,
    url: str,
    *,
    fetcher: Optional[BaseFetcher] = None,
    config: Optional[LockFetchConfig] = None,
) -> Resource:
    """重新计算包含该 URL 的资源的完整性字符串（锁文件会立即保存）"""
    config = config or LockFetchConfig()
    async with _open_fetcher(fetcher, config) as active:
        lock = Lock.load(lock_path, fetcher=active, config=config)
        return await lock.update_resource(url)


async def download_resources(
    lock_path: str,
    directory: str,
    tags: Iterable[str] = (),
    notags: Iterable[str] = (),
    perm: str = "",
    *,
    fetcher: Optional[BaseFetcher] = None,
    config: Optional[LockFetchConfig] = None,
    hooks: Optional[HookManager] = None,
) -> List[DownloadResult]:
    """下载锁文件中筛选后的资源到目录"""
    config = config or LockFetchConfig()
    async with _open_fetcher(fetcher, config) as active:
        lock = Lock.load(lock_path, fetcher=active, config=config)
        logger.debug(f"[下载] {lock_path} -> {directory}")
        return await lock.download(
            directory, tags=tags, notags=notags, perm=perm, hooks=hooks
        )


__all__ = [
    "add_resources",
    "delete_resources",
    "update_resource",
    "download_resources",
]
