"""
LockFetch 统一异常体系

提供分层的异常结构，支持错误代码、上下文信息和 JSON 序列化。
"""

from typing import Any, Dict, List, Optional


class LockFetchError(Exception):
    """LockFetch 基础异常类"""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self._get_default_code()
        self.context = context or {}

    def _get_default_code(self) -> str:
        """获取默认错误代码"""
        return "E000"

    def to_dict(self) -> Dict[str, Any]:
        """将异常转换为字典格式"""
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "type": self.__class__.__name__,
        }

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class LockError(LockFetchError):
    """锁文件相关错误"""

    def _get_default_code(self) -> str:
        return "E100"


class LockNotFoundError(LockError):
    """锁文件不存在"""

    def _get_default_code(self) -> str:
        return "E101"


class ResourceAlreadyPresentError(LockError):
    """资源 URL 已存在于锁文件中"""

    def _get_default_code(self) -> str:
        return "E102"


class ResourceNotFoundError(LockError):
    """锁文件中找不到指定资源"""

    def _get_default_code(self) -> str:
        return "E103"


class LockParseError(LockError):
    """锁文件解析错误"""

    def _get_default_code(self) -> str:
        return "E104"


class IntegrityError(LockFetchError):
    """完整性字符串相关错误"""

    def _get_default_code(self) -> str:
        return "E200"


class UnknownAlgorithmError(IntegrityError):
    """未注册的哈希算法"""

    def _get_default_code(self) -> str:
        return "E201"


class MalformedDigestError(IntegrityError):
    """完整性字符串格式错误"""

    def _get_default_code(self) -> str:
        return "E202"


class IntegrityMismatchError(IntegrityError):
    """内容摘要与期望值不一致"""

    def __init__(
        self,
        source: str,
        expected: str,
        actual: str,
        code: Optional[str] = None,
    ):
        super().__init__(
            f"integrity mismatch for '{source}': got '{actual}' expected '{expected}'",
            code=code,
            context={"source": source, "expected": expected, "actual": actual},
        )
        self.source = source
        self.expected = expected
        self.actual = actual

    def _get_default_code(self) -> str:
        return "E203"


class ExistingFileCorruptError(IntegrityMismatchError):
    """目标目录中已存在的文件校验失败"""

    def _get_default_code(self) -> str:
        return "E204"


class CacheCorruptError(IntegrityMismatchError):
    """缓存返回的对象校验失败"""

    def _get_default_code(self) -> str:
        return "E205"


class IntegrityIOError(IntegrityError):
    """计算摘要时无法读取文件"""

    def _get_default_code(self) -> str:
        return "E206"


class DownloadError(LockFetchError):
    """下载相关错误"""

    def _get_default_code(self) -> str:
        return "E300"


class FetchError(DownloadError):
    """单次 HTTP 请求失败（网络、DNS 或非 2xx 状态码）"""

    def __init__(self, url: str, cause: Any, status: Optional[int] = None):
        super().__init__(
            f"failed to download '{url}': {cause}",
            context={"url": url, "cause": str(cause), "status": status},
        )
        self.url = url
        self.cause = cause
        self.status = status

    def _get_default_code(self) -> str:
        return "E301"


class NothingToDownloadError(DownloadError):
    """标签过滤后没有任何资源"""

    def _get_default_code(self) -> str:
        return "E302"


class AggregateDownloadError(DownloadError):
    """批量下载中一个或多个资源失败"""

    def __init__(
        self,
        errors: List[BaseException],
        sources: Optional[List[str]] = None,
    ):
        if sources is None:
            lines = [str(e) for e in errors]
        else:
            lines = [f"{src}: {e}" for src, e in zip(sources, errors)]
        super().__init__(
            f"{len(errors)} resource(s) failed to download:\n" + "\n".join(lines),
            context={"errors": lines},
        )
        self.errors = list(errors)

    def _get_default_code(self) -> str:
        return "E303"


class CacheError(LockFetchError):
    """缓存相关错误"""

    def _get_default_code(self) -> str:
        return "E400"


class MissingCredentialError(CacheError):
    """缓存写入或删除时缺少访问令牌"""

    def _get_default_code(self) -> str:
        return "E401"


class ConfigError(LockFetchError):
    """配置相关错误"""

    def _get_default_code(self) -> str:
        return "E500"


class InvalidPermissionError(ConfigError):
    """文件权限字符串不是合法的八进制数"""

    def _get_default_code(self) -> str:
        return "E501"


class ConfigParseError(ConfigError):
    """配置解析错误"""

    def _get_default_code(self) -> str:
        return "E502"


class ConfigValidationError(ConfigError):
    """配置验证错误"""

    def _get_default_code(self) -> str:
        return "E503"


__all__ = [
    # 基础异常
    "LockFetchError",
    # 锁文件异常
    "LockError",
    "LockNotFoundError",
    "ResourceAlreadyPresentError",
    "ResourceNotFoundError",
    "LockParseError",
    # 完整性异常
    "IntegrityError",
    "UnknownAlgorithmError",
    "MalformedDigestError",
    "IntegrityMismatchError",
    "ExistingFileCorruptError",
    "CacheCorruptError",
    "IntegrityIOError",
    # 下载异常
    "DownloadError",
    "FetchError",
    "NothingToDownloadError",
    "AggregateDownloadError",
    # 缓存异常
    "CacheError",
    "MissingCredentialError",
    # 配置异常
    "ConfigError",
    "InvalidPermissionError",
    "ConfigParseError",
    "ConfigValidationError",
]
