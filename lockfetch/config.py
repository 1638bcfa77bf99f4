"""
配置模块

定义抓取器与下载流程的配置数据类，以及配置文件加载、权限字符串解析。
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import toml
import yaml

from lockfetch.exceptions import (
    ConfigParseError,
    ConfigValidationError,
    InvalidPermissionError,
)

CACHE_TOKEN_ENV = "LOCKFETCH_CACHE_TOKEN"
DEFAULT_LOCK_FILE = "lockfetch.lock"
NO_FILE_MODE = 0


@dataclass
class FetcherConfig:
    """HTTP 抓取器配置（单次请求的超时等）"""

    connect_timeout: float = 30.0
    read_timeout: float = 300.0
    total_timeout: Optional[float] = None
    verify_ssl: bool = True
    chunk_size: int = 1024 * 1024

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FetcherConfig":
        config = cls()
        for key in ("connect_timeout", "read_timeout", "total_timeout"):
            if key in data:
                value = data[key]
                if value is not None and (
                    not isinstance(value, (int, float)) or value <= 0
                ):
                    raise ConfigValidationError(
                        f"{key} 必须为正数", context={"key": key, "value": value}
                    )
                setattr(config, key, None if value is None else float(value))
        if "verify_ssl" in data:
            config.verify_ssl = bool(data["verify_ssl"])
        if "chunk_size" in data:
            chunk_size = data["chunk_size"]
            if not isinstance(chunk_size, int) or chunk_size <= 0:
                raise ConfigValidationError(
                    "chunk_size 必须为正整数", context={"value": chunk_size}
                )
            config.chunk_size = chunk_size
        return config


@dataclass
class LockFetchConfig:
    """LockFetch 主配置"""

    fetcher: FetcherConfig = field(default_factory=FetcherConfig)
    max_concurrent: Optional[int] = None  # None 表示不限制并发
    overwrite_corrupt: bool = False
    cache_token_env: str = CACHE_TOKEN_ENV
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LockFetchConfig":
        """从字典创建配置"""
        if not isinstance(data, dict):
            raise ConfigValidationError("配置顶层必须为表/字典")

        config = cls(fetcher=FetcherConfig.from_dict(data.get("fetcher", {}) or {}))

        max_concurrent = data.get("max_concurrent")
        if max_concurrent is not None:
            if not isinstance(max_concurrent, int) or max_concurrent <= 0:
                raise ConfigValidationError(
                    "max_concurrent 必须为正整数",
                    context={"value": max_concurrent},
                )
        config.max_concurrent = max_concurrent

        config.overwrite_corrupt = bool(data.get("overwrite_corrupt", False))

        token_env = data.get("cache_token_env", CACHE_TOKEN_ENV)
        if not isinstance(token_env, str) or not token_env:
            raise ConfigValidationError("cache_token_env 必须为非空字符串")
        config.cache_token_env = token_env

        config.log_level = str(data.get("log_level", "INFO"))
        return config


def load_config(config_path: str) -> LockFetchConfig:
    """加载配置文件（支持 TOML / JSON / YAML）"""
    path = Path(config_path)

    if not path.exists():
        raise ConfigParseError(f"配置文件不存在: {config_path}")

    suffix = path.suffix.lower()

    try:
        if suffix == ".toml":
            data = toml.load(config_path)
        elif suffix == ".json":
            data = json.loads(path.read_text())
        elif suffix in (".yaml", ".yml"):
            data = yaml.safe_load(path.read_text()) or {}
        else:
            raise ConfigParseError(f"不支持的配置文件格式: {suffix}")
    except (toml.TomlDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigParseError(
            f"配置文件解析失败: {config_path}", context={"error": str(e)}
        )

    return LockFetchConfig.from_dict(data)


def parse_file_mode(perm: str) -> int:
    """
    将八进制权限字符串转换为文件模式

    空字符串表示不修改权限，返回 NO_FILE_MODE。
    """
    if not perm:
        return NO_FILE_MODE
    try:
        mode = int(perm, 8)
    except ValueError:
        raise InvalidPermissionError(
            f"'{perm}' is not a valid permission definition",
            context={"perm": perm},
        )
    if mode < 0 or mode > 0o7777:
        raise InvalidPermissionError(
            f"'{perm}' is not a valid permission definition",
            context={"perm": perm},
        )
    return mode
