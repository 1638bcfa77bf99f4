"""
CLI 模块

命令行接口实现。
"""

import asyncio
import os
from typing import Optional

import click
from loguru import logger

from lockfetch import __version__
from lockfetch.config import DEFAULT_LOCK_FILE, LockFetchConfig, load_config
from lockfetch.core import (
    add_resources,
    delete_resources,
    download_resources,
    update_resource,
)
from lockfetch.download.fetcher import HttpFetcher
from lockfetch.download.verifier import RECOMMENDED_ALGO
from lockfetch.exceptions import LockFetchError
from lockfetch.hooks import HookManager
from lockfetch.logger import setup_logger
from lockfetch.status import StatusLinePlugin

LOG_LEVELS = ["trace", "debug", "info", "warn", "warning", "error", "fatal"]


def _run(coro):
    """运行异步操作，把 LockFetchError 转换为命令行错误"""
    try:
        return asyncio.run(coro)
    except LockFetchError as e:
        raise click.ClickException(e.message)


@click.group()
@click.option(
    "-f",
    "--lock-file",
    default=lambda: os.path.join(os.getcwd(), DEFAULT_LOCK_FILE),
    show_default="$PWD/lockfetch.lock",
    help="锁文件路径",
)
@click.option(
    "-l",
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="日志级别（默认取配置文件，否则为 info）",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="配置文件路径（TOML / JSON / YAML）",
)
@click.version_option(version=__version__, prog_name="lockfetch")
@click.pass_context
def main(
    ctx: click.Context,
    lock_file: str,
    log_level: Optional[str],
    config_path: Optional[str],
):
    """LockFetch - 下载外部资源并校验其完整性"""
    if config_path:
        try:
            config = load_config(config_path)
        except LockFetchError as e:
            raise click.ClickException(e.message)
    else:
        config = LockFetchConfig()

    setup_logger(level=log_level or config.log_level)

    ctx.ensure_object(dict)
    ctx.obj["lock_file"] = lock_file
    ctx.obj["config"] = config


@main.command()
@click.argument("urls", nargs=-1, required=True)
@click.option("--algo", default=RECOMMENDED_ALGO, show_default=True, help="完整性算法")
@click.option("--filename", default=None, help="下载时使用的目标文件名")
@click.option("--tag", "tags", multiple=True, help="资源标签（可多次使用）")
@click.option("--cache-url", default=None, help="缓存地址")
@click.option("--dynamic", is_flag=True, help="内容会在上游变化的资源")
@click.pass_context
def add(ctx, urls, algo, filename, tags, cache_url, dynamic):
    """添加新资源（多个 URL 视为同一资源的镜像）"""
    _run(
        add_resources(
            ctx.obj["lock_file"],
            list(urls),
            algo,
            tags=list(tags),
            filename=filename,
            cache_uri=cache_url,
            dynamic=dynamic,
            config=ctx.obj["config"],
        )
    )


@main.command()
@click.argument("urls", nargs=-1, required=True)
@click.pass_context
def delete(ctx, urls):
    """删除包含给定 URL 的资源"""
    _run(delete_resources(ctx.obj["lock_file"], list(urls), config=ctx.obj["config"]))


@main.command()
@click.argument("url")
@click.pass_context
def update(ctx, url):
    """重新计算资源的完整性字符串"""
    _run(update_resource(ctx.obj["lock_file"], url, config=ctx.obj["config"]))


async def _download_with_status(
    lock_file: str,
    directory: str,
    tags,
    notags,
    perm: str,
    config: LockFetchConfig,
    status: bool,
):
    async with HttpFetcher(config.fetcher) as fetcher:
        hooks = HookManager()
        if status:
            hooks.register_plugin(StatusLinePlugin(fetcher))
        return await download_resources(
            lock_file,
            directory,
            tags,
            notags,
            perm,
            fetcher=fetcher,
            config=config,
            hooks=hooks,
        )


@main.command()
@click.option("--dir", "directory", default=".", show_default=True, help="保存文件的目标目录")
@click.option("--tag", "tags", multiple=True, help="只下载带有该标签的资源")
@click.option("--notag", "notags", multiple=True, help="只下载不带该标签的资源")
@click.option("--perm", default="", help="下载文件的权限（如 '644'）")
@click.option("--status/--no-status", default=True, help="是否显示状态行")
@click.pass_context
def download(ctx, directory, tags, notags, perm, status):
    """下载锁文件中定义的资源"""
    logger.debug(f"[下载] 标签: {list(tags)}，排除: {list(notags)}，权限: {perm or '-'}")
    _run(
        _download_with_status(
            ctx.obj["lock_file"],
            directory,
            list(tags),
            list(notags),
            perm,
            ctx.obj["config"],
            status,
        )
    )


if __name__ == "__main__":
    main()
