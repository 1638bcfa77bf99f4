"""
内容抓取器

单次 HTTP 请求的抽象与 aiohttp 实现：GET 到文件、PUT 文件、DELETE、HEAD 取大小。
"""

import asyncio
import hashlib
import os
import tempfile
from abc import ABC, abstractmethod
from typing import Dict, Optional

import aiofiles
import aiohttp
from loguru import logger

from lockfetch.config import FetcherConfig
from lockfetch.exceptions import FetchError

PART_PREFIX = ".lockfetch-"
PART_SUFFIX = ".part"


def content_addressed_name(url: str) -> str:
    """根据 URL 自身的摘要生成确定的临时文件名"""
    digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:32]
    return f"{PART_PREFIX}{digest}{PART_SUFFIX}"


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


def discard(path: str) -> None:
    """删除临时文件，文件不存在时忽略"""
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


class BaseFetcher(ABC):
    """
    抓取器接口

    资源、锁文件和缓存客户端都通过构造参数接收抓取器，测试中可替换为假实现。
    """

    @abstractmethod
    async def fetch(self, url: str, dest: str, token: Optional[str] = None) -> None:
        """
        下载 URL 到指定路径（单次尝试，不重试）

        Raises:
            FetchError: 网络错误、DNS 错误或非 2xx 状态码
        """

    @abstractmethod
    async def put(self, url: str, source: str, token: Optional[str] = None) -> None:
        """上传本地文件到 URL"""

    @abstractmethod
    async def delete(self, url: str, token: Optional[str] = None) -> None:
        """删除远程对象"""

    @abstractmethod
    async def content_length(self, url: str) -> Optional[int]:
        """通过 HEAD 请求获取资源大小，服务器未提供时返回 None"""

    async def fetch_to_temp_file(self, url: str, token: Optional[str] = None) -> str:
        """下载到私有临时文件并返回其路径，调用方负责删除"""
        fd, path = tempfile.mkstemp(prefix="lockfetch-")
        os.close(fd)
        try:
            await self.fetch(url, path, token)
        except BaseException:
            discard(path)
            raise
        return path

    async def fetch_to_dir(
        self, url: str, directory: str, token: Optional[str] = None
    ) -> str:
        """
        下载到目标目录内以 URL 摘要命名的临时文件

        与最终文件处于同一文件系统，之后的重命名是原子操作。
        """
        path = os.path.join(directory, content_addressed_name(url))
        try:
            await self.fetch(url, path, token)
        except BaseException:
            discard(path)
            raise
        return path

    async def close(self) -> None:
        """释放底层资源"""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class HttpFetcher(BaseFetcher):
    """基于 aiohttp 的抓取器"""

    def __init__(
        self,
        config: Optional[FetcherConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config or FetcherConfig()
        self._session = session
        self._owned_session = session is None

    @property
    def session(self) -> aiohttp.ClientSession:
        """获取或创建 aiohttp session"""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(
                total=self.config.total_timeout,
                sock_connect=self.config.connect_timeout,
                sock_read=self.config.read_timeout,
            )
            connector = None
            if not self.config.verify_ssl:
                connector = aiohttp.TCPConnector(ssl=False)
            self._session = aiohttp.ClientSession(
                timeout=timeout, connector=connector
            )
            self._owned_session = True
        return self._session

    @staticmethod
    def _headers(token: Optional[str]) -> Dict[str, str]:
        headers = {"Accept": "*/*"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    @staticmethod
    def _check_status(url: str, response: aiohttp.ClientResponse) -> None:
        if not 200 <= response.status < 300:
            raise FetchError(
                url,
                f"HTTP {response.status} {response.reason or ''}".strip(),
                status=response.status,
            )

    async def fetch(self, url: str, dest: str, token: Optional[str] = None) -> None:
        logger.debug(f"[请求] GET {url}")
        try:
            async with self.session.get(url, headers=self._headers(token)) as response:
                self._check_status(url, response)
                async with aiofiles.open(dest, "wb") as f:
                    async for chunk in response.content.iter_chunked(
                        self.config.chunk_size
                    ):
                        await f.write(chunk)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            discard(dest)
            raise FetchError(url, _describe(e)) from e
        except BaseException:
            # 不保留写了一半的文件
            discard(dest)
            raise

    async def put(self, url: str, source: str, token: Optional[str] = None) -> None:
        logger.debug(f"[请求] PUT {url}")
        try:
            with open(source, "rb") as body:
                async with self.session.put(
                    url, data=body, headers=self._headers(token)
                ) as response:
                    self._check_status(url, response)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FetchError(url, _describe(e)) from e

    async def delete(self, url: str, token: Optional[str] = None) -> None:
        logger.debug(f"[请求] DELETE {url}")
        try:
            async with self.session.delete(
                url, headers=self._headers(token)
            ) as response:
                self._check_status(url, response)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FetchError(url, _describe(e)) from e

    async def content_length(self, url: str) -> Optional[int]:
        try:
            async with self.session.head(
                url,
                headers={**self._headers(None), "Accept-Encoding": "identity"},
                allow_redirects=True,
            ) as response:
                self._check_status(url, response)
                length = response.headers.get("Content-Length")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FetchError(url, _describe(e)) from e
        if length is None:
            return None
        try:
            return int(length)
        except ValueError:
            return None

    async def close(self) -> None:
        """关闭抓取器"""
        if self._owned_session and self._session and not self._session.closed:
            await self._session.close()
