"""
下载管理器

为每个资源创建一个并发任务，收集每个任务的结果并统计。
单个资源失败不会取消其他资源。
"""

import asyncio
import contextlib
from dataclasses import dataclass
from typing import List, Optional, Sequence

from loguru import logger

from lockfetch.cache import CacheClient
from lockfetch.config import NO_FILE_MODE
from lockfetch.download.fetcher import BaseFetcher
from lockfetch.hooks import HookContext, HookManager, HookType
from lockfetch.resource import DownloadOutcome, Resource


@dataclass
class DownloadStats:
    """下载统计"""

    total: int = 0
    downloaded: int = 0
    cached: int = 0
    skipped: int = 0
    failed: int = 0


@dataclass
class DownloadResult:
    """单个资源的最终结果，成功时 error 为 None"""

    resource: Resource
    outcome: Optional[DownloadOutcome] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class DownloadManager:
    """下载管理器"""

    def __init__(
        self,
        fetcher: BaseFetcher,
        cache: Optional[CacheClient] = None,
        max_concurrent: Optional[int] = None,
        overwrite_corrupt: bool = False,
        hooks: Optional[HookManager] = None,
    ):
        self.fetcher = fetcher
        self.cache = cache
        self.max_concurrent = max_concurrent
        self.overwrite_corrupt = overwrite_corrupt
        self.hooks = hooks or HookManager()
        self.stats = DownloadStats()
        self._semaphore: Optional[asyncio.Semaphore] = None

    def _slot(self):
        if self._semaphore is None:
            return contextlib.nullcontext()
        return self._semaphore

    async def download_one(
        self, index: int, resource: Resource, directory: str, mode: int
    ) -> DownloadResult:
        """下载单个资源，异常被捕获并作为结果返回"""
        async with self._slot():
            await self.hooks.execute_hook(
                HookType.RESOURCE_START,
                HookContext(directory=directory, index=index, resource=resource),
            )
            try:
                outcome = await resource.download(
                    directory,
                    mode,
                    fetcher=self.fetcher,
                    cache=self.cache,
                    overwrite_corrupt=self.overwrite_corrupt,
                )
            except Exception as e:
                self.stats.failed += 1
                logger.error(f"[错误] 下载 '{resource.urls[0]}' 失败: {e}")
                await self.hooks.execute_hook(
                    HookType.RESOURCE_FAILED,
                    HookContext(
                        directory=directory, index=index, resource=resource, error=e
                    ),
                )
                return DownloadResult(resource=resource, error=e)

            if outcome is DownloadOutcome.SKIPPED:
                self.stats.skipped += 1
            elif outcome is DownloadOutcome.CACHED:
                self.stats.cached += 1
            else:
                self.stats.downloaded += 1
            await self.hooks.execute_hook(
                HookType.RESOURCE_DONE,
                HookContext(
                    directory=directory, index=index, resource=resource, outcome=outcome
                ),
            )
            return DownloadResult(resource=resource, outcome=outcome)

    async def run(
        self, resources: Sequence[Resource], directory: str, mode: int = NO_FILE_MODE
    ) -> List[DownloadResult]:
        """
        并发下载所有资源并等待全部完成

        Returns:
            与 resources 顺序一致的结果列表
        """
        self.stats = DownloadStats(total=len(resources))
        self._semaphore = (
            asyncio.Semaphore(self.max_concurrent) if self.max_concurrent else None
        )
        limit = self.max_concurrent or "不限"
        logger.info(f"[启动] 开始下载 {len(resources)} 个资源，最大并发数: {limit}")

        await self.hooks.execute_hook(
            HookType.PRE_DOWNLOAD,
            HookContext(resources=resources, directory=directory),
        )
        try:
            results = await asyncio.gather(
                *(
                    self.download_one(i, resource, directory, mode)
                    for i, resource in enumerate(resources)
                )
            )
        finally:
            await self.hooks.execute_hook(
                HookType.POST_DOWNLOAD,
                HookContext(resources=resources, directory=directory),
            )

        logger.debug(
            f"[统计] 下载 {self.stats.downloaded}, 缓存 {self.stats.cached}, "
            f"跳过 {self.stats.skipped}, 失败 {self.stats.failed}"
        )
        return list(results)

    def get_stats(self) -> DownloadStats:
        """获取下载统计"""
        return self.stats
