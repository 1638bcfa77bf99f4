"""
内容寻址缓存客户端

把远程 HTTP 端点当作以完整性字符串为键的对象存储：
GET/PUT/DELETE {base}/{integrity}，均携带 Bearer 令牌。
"""

import os
from typing import Optional

from loguru import logger

from lockfetch.config import CACHE_TOKEN_ENV
from lockfetch.download.fetcher import BaseFetcher
from lockfetch.exceptions import CacheError, FetchError, MissingCredentialError


def object_url(base: str, integrity: str) -> str:
    """计算缓存对象地址"""
    return f"{base.rstrip('/')}/{integrity}"


def cache_token_from_env(var: str = CACHE_TOKEN_ENV) -> Optional[str]:
    """从环境变量读取缓存令牌，未设置或为空时返回 None"""
    return os.environ.get(var) or None


class CacheClient:
    """
    缓存客户端

    缓存只是不可信的存储：get 取回的内容由调用方自行校验。
    """

    def __init__(
        self,
        fetcher: BaseFetcher,
        token: Optional[str] = None,
        token_env: str = CACHE_TOKEN_ENV,
    ):
        self.fetcher = fetcher
        self.token = token
        self.token_env = token_env

    @classmethod
    def from_env(
        cls, fetcher: BaseFetcher, token_env: str = CACHE_TOKEN_ENV
    ) -> "CacheClient":
        return cls(fetcher, cache_token_from_env(token_env), token_env)

    @property
    def available(self) -> bool:
        """是否配置了访问令牌"""
        return bool(self.token)

    def require_token(self) -> str:
        """写入或删除前检查令牌，缺失时在任何网络请求前失败"""
        if not self.token:
            raise MissingCredentialError(
                f"{self.token_env} environment variable is not set",
                context={"env": self.token_env},
            )
        return self.token

    async def get(self, base: str, integrity: str, dest: str) -> None:
        """下载缓存对象到 dest"""
        url = object_url(base, integrity)
        logger.debug(f"[缓存] 读取 {url}")
        await self.fetcher.fetch(url, dest, self.token)

    async def put(self, base: str, integrity: str, source: str) -> None:
        """上传文件到缓存"""
        token = self.require_token()
        url = object_url(base, integrity)
        logger.debug(f"[缓存] 上传 {url}")
        try:
            await self.fetcher.put(url, source, token)
        except FetchError as e:
            raise CacheError(
                f"failed to upload to cache: {e.message}",
                context={"url": url, "cause": e.message},
            ) from e
        logger.info(f"[缓存] 已上传 {url}")

    async def delete(self, base: str, integrity: str) -> None:
        """删除缓存对象"""
        token = self.require_token()
        url = object_url(base, integrity)
        logger.debug(f"[缓存] 删除 {url}")
        try:
            await self.fetcher.delete(url, token)
        except FetchError as e:
            raise CacheError(
                f"failed to delete from cache: {e.message}",
                context={"url": url, "cause": e.message},
            ) from e

    async def put_quietly(self, base: str, integrity: str, source: str) -> bool:
        """尽力上传，失败只记录警告"""
        try:
            await self.put(base, integrity, source)
        except CacheError as e:
            logger.warning(f"[缓存] 无法写入缓存 {object_url(base, integrity)}: {e}")
            return False
        return True

    async def delete_quietly(self, base: str, integrity: str) -> bool:
        """尽力删除，失败只记录警告"""
        try:
            await self.delete(base, integrity)
        except CacheError as e:
            logger.warning(f"[缓存] 无法从缓存删除 {object_url(base, integrity)}: {e}")
            return False
        return True
