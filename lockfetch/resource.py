"""
资源模型

一个资源由一个或多个候选 URL 和一个完整性字符串描述，
并负责 "本地已有文件 -> 缓存 -> 源地址镜像" 的下载/校验/落盘状态机。
"""

import os
import posixpath
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import unquote, urlparse

from loguru import logger

from lockfetch.cache import CacheClient, object_url
from lockfetch.config import NO_FILE_MODE
from lockfetch.download.fetcher import BaseFetcher, content_addressed_name, discard
from lockfetch.download.verifier import (
    RECOMMENDED_ALGO,
    compute_integrity,
    parse_algorithm,
    verify_integrity,
)
from lockfetch.exceptions import (
    CacheCorruptError,
    DownloadError,
    ExistingFileCorruptError,
    FetchError,
    IntegrityMismatchError,
    LockFetchError,
)


class DownloadOutcome(Enum):
    """单个资源的下载结果"""

    SKIPPED = "skipped"  # 本地文件已存在且校验通过
    CACHED = "cached"  # 从缓存取回
    DOWNLOADED = "downloaded"  # 从源地址下载


def apply_mode(path: str, mode: int) -> None:
    if mode != NO_FILE_MODE:
        os.chmod(path, mode)


def place(part_path: str, target: str, mode: int) -> None:
    """把已校验的临时文件原子地重命名为最终文件"""
    os.replace(part_path, target)
    apply_mode(target, mode)


@dataclass
class Resource:
    """待下载的外部资源"""

    urls: List[str]
    integrity: str
    tags: List[str] = field(default_factory=list)
    filename: Optional[str] = None
    cache_uri: Optional[str] = None
    dynamic: bool = False

    def __post_init__(self):
        if not self.urls:
            raise LockFetchError("empty url list")
        if not self.integrity and not self.dynamic:
            raise LockFetchError("missing integrity", context={"url": self.urls[0]})

    @classmethod
    async def create(
        cls,
        urls: List[str],
        algo: str = RECOMMENDED_ALGO,
        *,
        fetcher: BaseFetcher,
        tags: Iterable[str] = (),
        filename: Optional[str] = None,
        cache_uri: Optional[str] = None,
        dynamic: bool = False,
        cache: Optional[CacheClient] = None,
        strict_cache: bool = True,
    ) -> "Resource":
        """
        从 URL 创建资源

        只下载一次 urls[0] 计算完整性字符串；配置了缓存时用同一个文件写入缓存。

        Args:
            strict_cache: 为 True 时缓存写入失败会使创建失败，否则只记录警告
        """
        if not urls:
            raise LockFetchError("empty url list")

        path = await fetcher.fetch_to_temp_file(urls[0])
        try:
            integrity = await compute_integrity(path, algo)
            resource = cls(
                urls=list(urls),
                integrity=integrity,
                tags=list(tags),
                filename=filename or None,
                cache_uri=cache_uri or None,
                dynamic=dynamic,
            )
            if resource.cache_uri and cache is not None:
                if strict_cache:
                    await cache.put(resource.cache_uri, integrity, path)
                else:
                    await cache.put_quietly(resource.cache_uri, integrity, path)
        finally:
            discard(path)

        logger.debug(f"[资源] {urls[0]} -> {integrity}")
        return resource

    @property
    def local_name(self) -> str:
        """本地文件名：优先使用 filename，否则取第一个 URL 路径的最后一段"""
        if self.filename:
            return self.filename
        name = posixpath.basename(unquote(urlparse(self.urls[0]).path))
        if not name:
            raise DownloadError(
                f"cannot derive a file name from '{self.urls[0]}', set a filename",
                context={"url": self.urls[0]},
            )
        return name

    def contains(self, url: str) -> bool:
        return url in self.urls

    def has_all_tags(self, tags: Iterable[str]) -> bool:
        return all(tag in self.tags for tag in tags)

    def has_any_tag(self, tags: Iterable[str]) -> bool:
        return any(tag in self.tags for tag in tags)

    async def download(
        self,
        directory: str,
        mode: int = NO_FILE_MODE,
        *,
        fetcher: BaseFetcher,
        cache: Optional[CacheClient] = None,
        overwrite_corrupt: bool = False,
    ) -> DownloadOutcome:
        """
        下载资源到目录

        依次尝试：已存在的本地文件、缓存、按顺序的源地址镜像。
        除动态资源外，任何写入最终路径的文件都已通过完整性校验。
        动态资源总是从源地址下载，内容与记录的完整性字符串不符时只记录警告。

        Args:
            directory: 目标目录
            mode: 文件权限，NO_FILE_MODE 表示不修改
            fetcher: 抓取器
            cache: 缓存客户端，None 表示不使用缓存
            overwrite_corrupt: 本地已有文件校验失败时是否重新下载覆盖

        Raises:
            ExistingFileCorruptError: 本地已有文件与完整性字符串不符
            CacheCorruptError: 缓存对象与完整性字符串不符
            FetchError / IntegrityMismatchError: 所有镜像都失败时的第一个错误
        """
        if not self.dynamic:
            parse_algorithm(self.integrity)
        target = os.path.join(directory, self.local_name)

        if self.dynamic:
            await self._try_origin(directory, target, mode, fetcher)
            return DownloadOutcome.DOWNLOADED

        if os.path.isfile(target):
            if await self._try_existing(target, mode, overwrite_corrupt):
                return DownloadOutcome.SKIPPED

        if self.cache_uri and cache is not None and cache.available:
            if await self._try_cache(directory, target, mode, cache):
                return DownloadOutcome.CACHED

        await self._try_origin(directory, target, mode, fetcher)

        if self.cache_uri and cache is not None:
            if cache.available:
                await cache.put_quietly(self.cache_uri, self.integrity, target)
            else:
                logger.debug(f"[缓存] 未配置令牌，跳过写入缓存: {self.local_name}")
        return DownloadOutcome.DOWNLOADED

    async def _try_existing(
        self, target: str, mode: int, overwrite_corrupt: bool
    ) -> bool:
        try:
            await verify_integrity(target, self.integrity, target)
        except IntegrityMismatchError as e:
            if not overwrite_corrupt:
                raise ExistingFileCorruptError(target, e.expected, e.actual) from e
            logger.warning(f"[警告] '{target}' 已存在但校验失败，将重新下载")
            return False
        apply_mode(target, mode)
        logger.info(f"[跳过] '{self.local_name}' 已存在且校验通过")
        return True

    async def _try_cache(
        self, directory: str, target: str, mode: int, cache: CacheClient
    ) -> bool:
        cache_url = object_url(self.cache_uri, self.integrity)
        part = os.path.join(directory, content_addressed_name(f"{cache_url}\n{target}"))
        try:
            try:
                await cache.get(self.cache_uri, self.integrity, part)
            except FetchError as e:
                logger.warning(f"[缓存] 无法从缓存下载，回退到源地址: {e}")
                return False
            try:
                await verify_integrity(part, self.integrity, cache_url)
            except IntegrityMismatchError as e:
                raise CacheCorruptError(cache_url, e.expected, e.actual) from e
            place(part, target, mode)
        finally:
            discard(part)
        logger.info(f"[缓存] '{self.local_name}' 已从缓存取回")
        return True

    async def _try_origin(
        self, directory: str, target: str, mode: int, fetcher: BaseFetcher
    ) -> None:
        first_error: Optional[LockFetchError] = None
        for url in self.urls:
            part = os.path.join(directory, content_addressed_name(f"{url}\n{target}"))
            try:
                await fetcher.fetch(url, part)
                if self.dynamic:
                    await self._note_drift(part, url)
                else:
                    await verify_integrity(part, self.integrity, url)
                place(part, target, mode)
            except (FetchError, IntegrityMismatchError) as e:
                logger.warning(f"[镜像] {url} 不可用: {e}")
                if first_error is None:
                    first_error = e
                continue
            finally:
                discard(part)
            logger.info(f"[完成] '{self.local_name}' 已从 {url} 下载")
            return

        assert first_error is not None, "no mirror succeeded but no error recorded"
        raise first_error

    async def _note_drift(self, part: str, url: str) -> None:
        """动态资源：内容与记录不符时记录实际完整性字符串"""
        if not self.integrity:
            return
        actual = await compute_integrity(part, parse_algorithm(self.integrity))
        if actual != self.integrity:
            logger.warning(
                f"[动态] '{self.local_name}' 内容已变化: 记录 {self.integrity}, "
                f"实际 {actual} ({url})"
            )

    def to_dict(self) -> Dict[str, Any]:
        """转换为锁文件中的表结构，空的可选字段省略"""
        data: Dict[str, Any] = {"Urls": list(self.urls)}
        if self.integrity:
            data["Integrity"] = self.integrity
        if self.tags:
            data["Tags"] = list(self.tags)
        if self.filename:
            data["Filename"] = self.filename
        if self.cache_uri:
            data["CacheUri"] = self.cache_uri
        if self.dynamic:
            data["Dynamic"] = True
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Resource":
        """从锁文件中的表结构创建资源"""
        return cls(
            urls=list(data["Urls"]),
            integrity=data.get("Integrity", ""),
            tags=list(data.get("Tags", [])),
            filename=data.get("Filename") or None,
            cache_uri=data.get("CacheUri") or None,
            dynamic=bool(data.get("Dynamic", False)),
        )
