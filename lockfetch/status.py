"""
状态行插件

在批量下载期间输出单行进度：旋转指示、进度条、资源计数、字节数和耗时。
"""

import asyncio
import sys
import time
from typing import Callable, Dict, List, Optional, TextIO

from loguru import logger

from lockfetch.download.fetcher import BaseFetcher
from lockfetch.exceptions import FetchError
from lockfetch.hooks import HookContext, HookType, LockFetchPlugin

SPIN_CHARS = "-\\|/"
BAR_LENGTH = 20
PAD = " " * 10


def format_size(num_bytes: int) -> str:
    """把字节数格式化为易读的大小"""
    size = float(num_bytes)
    for unit in ("B", "kB", "MB", "GB"):
        if size < 1000 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1000
    return f"{size:.1f} GB"


class StatusLinePlugin(LockFetchPlugin):
    """
    下载状态行插件

    资源大小通过 HEAD 请求第一个 URL 获得；任一资源无法获取大小时不显示进度条。
    """

    name = "status"
    version = "1.0.0"
    description = "显示批量下载状态行"

    def __init__(
        self,
        fetcher: BaseFetcher,
        stream: TextIO = sys.stderr,
        tick: Optional[float] = 0.05,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        self.fetcher = fetcher
        self.stream = stream
        self.tick = tick
        self.clock = clock
        self._sizes: List[int] = []
        self._total_resources = 0
        self._total_bytes = 0
        self._done_resources = 0
        self._done_bytes = 0
        self._sized = False
        self._spin = 0
        self._start = 0.0
        self._ticker: Optional[asyncio.Task] = None

    def register_hooks(self) -> Dict[HookType, Callable]:
        """注册 Hook 处理器"""
        return {
            HookType.PRE_DOWNLOAD: self.on_pre_download,
            HookType.RESOURCE_DONE: self.on_resource_finished,
            HookType.RESOURCE_FAILED: self.on_resource_finished,
            HookType.POST_DOWNLOAD: self.on_post_download,
        }

    async def _init_sizes(self, context: HookContext) -> None:
        self._sizes = [0] * len(context.resources)
        self._total_bytes = 0
        self._sized = True
        for i, resource in enumerate(context.resources):
            try:
                size = await self.fetcher.content_length(resource.urls[0])
            except FetchError as e:
                logger.debug(f"[状态] 无法获取资源大小: {e}")
                size = None
            if size is None:
                self._sized = False
                return
            self._sizes[i] = size
            self._total_bytes += size

    async def on_pre_download(self, context: HookContext) -> None:
        """下载开始前"""
        self._total_resources = len(context.resources)
        self._done_resources = 0
        self._done_bytes = 0
        self._spin = 0
        await self._init_sizes(context)
        self._start = self.clock()
        self._write(self.status_string())
        if self.tick:
            self._ticker = asyncio.create_task(self._run_ticker())

    def on_resource_finished(self, context: HookContext) -> None:
        """单个资源结束（成功或失败）"""
        self._done_resources += 1
        if self._sized and context.index is not None:
            self._done_bytes += self._sizes[context.index]
        self._write(self.status_string())

    async def on_post_download(self, context: HookContext) -> None:
        """下载结束"""
        if self._ticker is not None:
            self._ticker.cancel()
            try:
                await self._ticker
            except asyncio.CancelledError:
                pass
            self._ticker = None
        self._write(self.status_string())
        self.stream.write("\n")
        self.stream.flush()

    async def _run_ticker(self) -> None:
        while True:
            await asyncio.sleep(self.tick)
            self._spin = (self._spin + 1) % len(SPIN_CHARS)
            self._write(self.status_string())

    def _write(self, line: str) -> None:
        self.stream.write(line)
        self.stream.flush()

    def status_string(self) -> str:
        """生成当前状态行，以 \\r 开头以覆盖上一行"""
        if self._done_resources < self._total_resources:
            spinner = SPIN_CHARS[self._spin]
        else:
            spinner = "✔"

        complete = f"{self._done_resources}/{self._total_resources} Resources"
        elapsed = f"{int(round(self.clock() - self._start))}s elapsed"

        if not self._sized:
            return "\r" + spinner + "[]" + PAD + complete + PAD + elapsed

        bar = ""
        if self._total_bytes > 0:
            length = min(BAR_LENGTH, self._total_bytes)
            filled = self._done_bytes * length // self._total_bytes
            bar = "█" * filled + " " * (length - filled)
        sizes = f"{format_size(self._done_bytes)} / {format_size(self._total_bytes)}"
        return (
            "\r" + spinner + "[" + bar + "]" + PAD + complete + PAD + sizes + PAD + elapsed
        )
