"""
完整性校验器

计算、解析并校验带算法前缀的内容摘要（"<algo>-<base64>"）。
"""

import base64
import hashlib
from typing import Callable, Dict

import aiofiles

from lockfetch.exceptions import (
    IntegrityIOError,
    IntegrityMismatchError,
    MalformedDigestError,
    UnknownAlgorithmError,
)

ALGORITHMS: Dict[str, Callable[[], "hashlib._Hash"]] = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
    "sha384": hashlib.sha384,
    "sha512": hashlib.sha512,
}

RECOMMENDED_ALGO = "sha256"

# 每次读取 10MB
CHUNK_SIZE = 10 * 1024 * 1024

if RECOMMENDED_ALGO not in ALGORITHMS:
    raise RuntimeError(f"cannot find recommended algorithm '{RECOMMENDED_ALGO}'")


def available_algorithms() -> str:
    return ", ".join(sorted(ALGORITHMS))


def new_hasher(algo: str):
    """根据算法名创建哈希对象"""
    factory = ALGORITHMS.get(algo)
    if factory is None:
        raise UnknownAlgorithmError(
            f"unknown hash algorithm '{algo}' "
            f"(available algorithms: {available_algorithms()})",
            context={"algo": algo},
        )
    return factory()


def format_integrity(algo: str, digest: bytes) -> str:
    return f"{algo}-{base64.b64encode(digest).decode('ascii')}"


def integrity_of_bytes(data: bytes, algo: str = RECOMMENDED_ALGO) -> str:
    """计算内存中数据的完整性字符串"""
    hasher = new_hasher(algo)
    hasher.update(data)
    return format_integrity(algo, hasher.digest())


def parse_algorithm(integrity: str) -> str:
    """从完整性字符串中提取算法名"""
    algo, sep, payload = integrity.partition("-")
    if not sep or not algo or not payload:
        raise MalformedDigestError(
            f"invalid SRI '{integrity}'", context={"integrity": integrity}
        )
    new_hasher(algo)
    return algo


async def compute_integrity(file_path: str, algo: str = RECOMMENDED_ALGO) -> str:
    """
    计算文件的完整性字符串

    分块读取文件，不会一次性载入内存。

    Args:
        file_path: 文件路径
        algo: 哈希算法名

    Returns:
        "<algo>-<base64>" 格式的完整性字符串
    """
    hasher = new_hasher(algo)
    try:
        async with aiofiles.open(file_path, "rb") as f:
            while True:
                data = await f.read(CHUNK_SIZE)
                if not data:
                    break
                hasher.update(data)
    except OSError as e:
        raise IntegrityIOError(
            f"cannot open file '{file_path}'",
            context={"path": file_path, "error": str(e)},
        ) from e
    return format_integrity(algo, hasher.digest())


async def verify_integrity(file_path: str, expected: str, source: str) -> None:
    """
    校验文件内容是否与期望的完整性字符串完全一致

    Args:
        file_path: 文件路径
        expected: 期望的完整性字符串
        source: 文件来源（URL 或路径），写入错误信息便于诊断

    Raises:
        IntegrityMismatchError: 摘要不一致
    """
    algo = parse_algorithm(expected)
    actual = await compute_integrity(file_path, algo)
    if actual != expected:
        raise IntegrityMismatchError(source, expected, actual)

