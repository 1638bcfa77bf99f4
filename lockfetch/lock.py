"""
锁文件

有序的资源列表，以 TOML 格式保存（每个资源一个 [[Resource]] 表）。
提供加载、保存、添加、删除、更新以及批量下载。
"""

import os
from typing import Iterable, List, Optional, Sequence, Tuple

import toml
from loguru import logger

from lockfetch.cache import CacheClient
from lockfetch.config import LockFetchConfig, parse_file_mode
from lockfetch.download.fetcher import BaseFetcher
from lockfetch.download.manager import DownloadManager, DownloadResult
from lockfetch.download.verifier import RECOMMENDED_ALGO, parse_algorithm
from lockfetch.exceptions import (
    AggregateDownloadError,
    LockFetchError,
    LockNotFoundError,
    LockParseError,
    NothingToDownloadError,
    ResourceAlreadyPresentError,
    ResourceNotFoundError,
)
from lockfetch.hooks import HookManager
from lockfetch.resource import Resource


class Lock:
    """
    锁文件

    同一时间只应由一个控制流修改；批量下载只读取资源列表，不修改锁文件。
    """

    def __init__(
        self,
        path: str,
        resources: Optional[List[Resource]] = None,
        *,
        fetcher: BaseFetcher,
        config: Optional[LockFetchConfig] = None,
        cache: Optional[CacheClient] = None,
    ):
        self.path = path
        self._resources: List[Resource] = list(resources or [])
        self.fetcher = fetcher
        self.config = config or LockFetchConfig()
        self.cache = cache or CacheClient.from_env(
            fetcher, self.config.cache_token_env
        )

    @classmethod
    def load(
        cls,
        path: str,
        create_if_missing: bool = False,
        *,
        fetcher: BaseFetcher,
        config: Optional[LockFetchConfig] = None,
        cache: Optional[CacheClient] = None,
    ) -> "Lock":
        """
        加载锁文件

        Args:
            path: 锁文件路径
            create_if_missing: 文件不存在时是否创建空锁文件（保存前不会写盘）

        Raises:
            LockNotFoundError: 文件不存在且不允许创建
            LockParseError: 文件内容不是合法的锁文件
        """
        if not os.path.exists(path):
            if create_if_missing:
                return cls(path, fetcher=fetcher, config=config, cache=cache)
            raise LockNotFoundError(
                f"file '{path}' does not exist", context={"path": path}
            )

        try:
            data = toml.load(path)
        except toml.TomlDecodeError as e:
            raise LockParseError(
                f"cannot parse lock file '{path}': {e}", context={"path": path}
            )

        resources = []
        for i, entry in enumerate(data.get("Resource", [])):
            if not isinstance(entry, dict) or "Urls" not in entry:
                raise LockParseError(
                    f"resource #{i} in '{path}' needs Urls",
                    context={"path": path, "index": i},
                )
            if "Integrity" not in entry and not entry.get("Dynamic", False):
                raise LockParseError(
                    f"resource #{i} in '{path}' needs Integrity",
                    context={"path": path, "index": i},
                )
            for key in ("Urls", "Tags"):
                if key in entry and not isinstance(entry[key], list):
                    raise LockParseError(
                        f"resource #{i} in '{path}': {key} must be a list",
                        context={"path": path, "index": i, "key": key},
                    )
            try:
                resources.append(Resource.from_dict(entry))
            except LockFetchError as e:
                raise LockParseError(
                    f"resource #{i} in '{path}' is invalid: {e.message}",
                    context={"path": path, "index": i},
                )

        logger.debug(f"[锁文件] 已加载 {path}，共 {len(resources)} 个资源")
        return cls(path, resources, fetcher=fetcher, config=config, cache=cache)

    @property
    def resources(self) -> Tuple[Resource, ...]:
        return tuple(self._resources)

    def __len__(self) -> int:
        return len(self._resources)

    def contains(self, url: str) -> bool:
        """锁文件中是否有资源包含该 URL"""
        return any(r.contains(url) for r in self._resources)

    async def add_resource(
        self,
        urls: Sequence[str],
        algo: str = RECOMMENDED_ALGO,
        tags: Iterable[str] = (),
        filename: Optional[str] = None,
        cache_uri: Optional[str] = None,
        dynamic: bool = False,
    ) -> Resource:
        """
        添加资源

        Raises:
            ResourceAlreadyPresentError: 任一 URL 已存在
            MissingCredentialError: 配置了缓存但没有令牌
            CacheError: 写入缓存失败
        """
        seen = set()
        for url in urls:
            if self.contains(url) or url in seen:
                raise ResourceAlreadyPresentError(
                    f"resource '{url}' is already present", context={"url": url}
                )
            seen.add(url)

        if cache_uri:
            self.cache.require_token()

        resource = await Resource.create(
            list(urls),
            algo,
            fetcher=self.fetcher,
            tags=tags,
            filename=filename,
            cache_uri=cache_uri,
            dynamic=dynamic,
            cache=self.cache,
        )
        self._resources.append(resource)
        logger.success(f"[添加] {urls[0]} ({resource.integrity})")
        return resource

    async def delete_resource(self, url: str) -> int:
        """
        删除所有包含该 URL 的资源，并尽力删除对应的缓存对象

        Returns:
            删除的资源数量
        """
        kept, removed = [], []
        for resource in self._resources:
            (removed if resource.contains(url) else kept).append(resource)
        self._resources = kept

        for resource in removed:
            if resource.cache_uri and resource.integrity:
                await self.cache.delete_quietly(resource.cache_uri, resource.integrity)
            logger.info(f"[删除] {resource.urls[0]}")

        if not removed:
            logger.warning(f"[删除] 锁文件中没有包含 '{url}' 的资源")
        return len(removed)

    async def update_resource(self, url: str) -> Resource:
        """
        重新下载资源的第一个 URL 并更新完整性字符串，立即保存锁文件

        Raises:
            ResourceNotFoundError: 没有资源包含该 URL
        """
        for index, resource in enumerate(self._resources):
            if resource.contains(url):
                break
        else:
            raise ResourceNotFoundError(
                f"resource '{url}' not found", context={"url": url}
            )

        algo = (
            parse_algorithm(resource.integrity)
            if resource.integrity
            else RECOMMENDED_ALGO
        )
        updated = await Resource.create(
            resource.urls,
            algo,
            fetcher=self.fetcher,
            tags=resource.tags,
            filename=resource.filename,
            cache_uri=resource.cache_uri,
            dynamic=resource.dynamic,
            cache=self.cache if resource.cache_uri and self.cache.available else None,
            strict_cache=False,
        )
        self._resources[index] = updated
        self.save()

        if updated.integrity != resource.integrity:
            logger.success(
                f"[更新] {resource.urls[0]}: {resource.integrity} -> {updated.integrity}"
            )
            if resource.cache_uri and resource.integrity and self.cache.available:
                await self.cache.delete_quietly(resource.cache_uri, resource.integrity)
        else:
            logger.info(f"[更新] {resource.urls[0]} 内容未变化")
        return updated

    def save(self) -> None:
        """把资源列表写回锁文件（直接覆盖）"""
        data = {"Resource": [r.to_dict() for r in self._resources]}
        with open(self.path, "w", encoding="utf-8") as f:
            f.write(toml.dumps(data))
        logger.debug(f"[锁文件] 已保存 {self.path}")

    def filter_resources(
        self, tags: Iterable[str] = (), notags: Iterable[str] = ()
    ) -> List[Resource]:
        """保留包含全部 tags 且不包含任何 notags 的资源"""
        tags, notags = list(tags), list(notags)
        return [
            r
            for r in self._resources
            if r.has_all_tags(tags) and not r.has_any_tag(notags)
        ]

    async def download(
        self,
        directory: str,
        tags: Iterable[str] = (),
        notags: Iterable[str] = (),
        perm: str = "",
        hooks: Optional[HookManager] = None,
    ) -> List[DownloadResult]:
        """
        并发下载筛选后的资源

        Raises:
            InvalidPermissionError: perm 不是合法的八进制权限
            NothingToDownloadError: 筛选后没有资源
            AggregateDownloadError: 任一资源失败，包含所有失败原因
        """
        mode = parse_file_mode(perm)
        if not os.path.isdir(directory):
            raise LockFetchError(
                f"'{directory}' is not a directory", context={"dir": directory}
            )

        selected = self.filter_resources(tags, notags)
        if not selected:
            raise NothingToDownloadError("nothing to download")

        manager = DownloadManager(
            self.fetcher,
            cache=self.cache,
            max_concurrent=self.config.max_concurrent,
            overwrite_corrupt=self.config.overwrite_corrupt,
            hooks=hooks,
        )
        results = await manager.run(selected, directory, mode)

        failed = [r for r in results if r.error is not None]
        if failed:
            raise AggregateDownloadError(
                [r.error for r in failed],
                sources=[r.resource.urls[0] for r in failed],
            )

        stats = manager.get_stats()
        logger.success(
            f"[完成] {stats.total} 个资源: {stats.downloaded} 下载, "
            f"{stats.cached} 缓存, {stats.skipped} 跳过"
        )
        return results
