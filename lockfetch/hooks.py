"""
下载事件 Hook 系统

定义 Hook 类型、插件接口和 Hook 调用管理。
进度显示等观察者通过 Hook 接收事件，不参与下载状态机本身。
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence

from loguru import logger

if TYPE_CHECKING:
    from lockfetch.resource import DownloadOutcome, Resource


class HookType(Enum):
    """Hook 类型定义"""

    PRE_DOWNLOAD = auto()  # 批量下载开始前
    RESOURCE_START = auto()  # 单个资源开始处理
    RESOURCE_DONE = auto()  # 单个资源成功
    RESOURCE_FAILED = auto()  # 单个资源失败
    POST_DOWNLOAD = auto()  # 批量下载结束后（无论成功与否）


@dataclass
class HookContext:
    """Hook 上下文信息"""

    resources: Sequence["Resource"] = ()
    directory: Optional[str] = None
    index: Optional[int] = None
    resource: Optional["Resource"] = None
    outcome: Optional["DownloadOutcome"] = None
    error: Optional[BaseException] = None


@dataclass
class HookResult:
    """Hook 执行结果"""

    success: bool = True
    data: Any = None
    error: Optional[str] = None


class LockFetchPlugin(ABC):
    """
    插件基类

    所有插件必须继承此类并实现 register_hooks。
    """

    name: str = ""
    version: str = "1.0.0"
    description: str = ""

    def __init__(self):
        self._enabled = True

    @property
    def enabled(self) -> bool:
        """插件是否启用"""
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool):
        self._enabled = value

    @abstractmethod
    def register_hooks(self) -> Dict[HookType, Callable]:
        """
        注册 Hook 处理器

        Returns:
            Dict[HookType, Callable]: Hook 类型到处理函数的映射
        """


class HookManager:
    """
    Hook 管理器

    负责插件注册和 Hook 调用。处理器抛出的异常只记录日志，不会中断下载。
    """

    def __init__(self):
        self._plugins: Dict[str, LockFetchPlugin] = {}
        self._hooks: Dict[HookType, List[Callable]] = {hook: [] for hook in HookType}
        self._owners: Dict[HookType, List[str]] = {hook: [] for hook in HookType}

    def register_plugin(self, plugin: LockFetchPlugin) -> bool:
        """
        注册插件

        Returns:
            bool: 是否注册成功
        """
        if plugin.name in self._plugins:
            logger.warning(f"插件 {plugin.name} 已存在，跳过注册")
            return False

        self._plugins[plugin.name] = plugin
        for hook_type, handler in plugin.register_hooks().items():
            self._hooks[hook_type].append(handler)
            self._owners[hook_type].append(plugin.name)

        logger.debug(f"插件 {plugin.name} v{plugin.version} 注册成功")
        return True

    def unregister_plugin(self, plugin_name: str) -> bool:
        """卸载插件"""
        if plugin_name not in self._plugins:
            logger.warning(f"插件 {plugin_name} 不存在")
            return False

        for hook_type in HookType:
            owners = self._owners[hook_type]
            self._hooks[hook_type] = [
                handler
                for handler, owner in zip(self._hooks[hook_type], owners)
                if owner != plugin_name
            ]
            self._owners[hook_type] = [o for o in owners if o != plugin_name]

        del self._plugins[plugin_name]
        logger.debug(f"插件 {plugin_name} 已卸载")
        return True

    async def execute_hook(
        self, hook_type: HookType, context: HookContext
    ) -> List[HookResult]:
        """
        执行指定类型的所有 Hook

        Returns:
            List[HookResult]: 所有 Hook 的执行结果
        """
        results = []
        for handler, owner in zip(self._hooks[hook_type], self._owners[hook_type]):
            if not self._plugins[owner].enabled:
                continue
            try:
                result = handler(context)
                if asyncio.iscoroutine(result):
                    result = await result

                if result is None:
                    result = HookResult()
                elif not isinstance(result, HookResult):
                    result = HookResult(data=result)
                results.append(result)

            except Exception as e:
                logger.error(f"Hook {hook_type.name} 执行失败 ({owner}): {e}")
                results.append(HookResult(success=False, error=str(e)))

        return results

    def get_plugin(self, name: str) -> Optional[LockFetchPlugin]:
        """获取指定名称的插件"""
        return self._plugins.get(name)

    def list_plugins(self) -> List[Dict[str, Any]]:
        """列出所有已注册的插件"""
        return [
            {
                "name": p.name,
                "version": p.version,
                "description": p.description,
                "enabled": p.enabled,
            }
            for p in self._plugins.values()
        ]
