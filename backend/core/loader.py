# backend/core/loader.py

import importlib
import importlib.resources
import json
import logging
import traceback
from typing import Dict, List, Optional, Set

from backend.core.contracts import Container, HookManager, PluginRegisterFunc

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 100


class PluginLoader:
    """
    发现 plugins/*/manifest.json，按 (priority, name) 排序后依次调用各插件的 register_plugin。
    enabled 可以限制只加载部分插件。
    """
    def __init__(self, container: Container, hook_manager: HookManager, enabled: Optional[Set[str]] = None):
        self._container = container
        self._hook_manager = hook_manager
        self._enabled = enabled

    def load_plugins(self) -> List[str]:
        # 此时日志系统可能还未配置，使用 print
        print("\n--- 插件系统：开始加载 ---")

        plugins = self._discover_plugins()
        if self._enabled is not None:
            plugins = [p for p in plugins if p["name"] in self._enabled]
        if not plugins:
            print("警告：未发现任何插件。")
            print("--- 插件系统：加载完成 ---\n")
            return []

        plugins.sort(key=lambda p: (p["manifest"].get("priority", DEFAULT_PRIORITY), p["name"]))
        print("插件加载顺序已确定：")
        for i, info in enumerate(plugins, start=1):
            print(f"  {i}. {info['name']} (优先级: {info['manifest'].get('priority', DEFAULT_PRIORITY)})")

        self._register_plugins(plugins)

        logger.info("所有插件均已加载并注册完毕。")
        print("--- 插件系统：加载完成 ---\n")
        return [p["name"] for p in plugins]

    def _discover_plugins(self) -> List[Dict]:
        discovered = []
        try:
            root = importlib.resources.files('plugins')
        except ModuleNotFoundError:
            return discovered

        for plugin_path in root.iterdir():
            if not plugin_path.is_dir() or plugin_path.name.startswith(('__', '.')):
                continue
            manifest_path = plugin_path / "manifest.json"
            if not manifest_path.is_file():
                continue
            try:
                manifest = json.loads(manifest_path.read_text(encoding='utf-8'))
            except (OSError, json.JSONDecodeError) as e:
                print(f"警告：跳过无法解析的插件清单 {manifest_path}: {e}")
                continue
            discovered.append({
                "name": manifest.get("name", plugin_path.name),
                "manifest": manifest,
                "import_path": f"plugins.{plugin_path.name}",
            })
        return discovered

    def _register_plugins(self, plugins: List[Dict]) -> None:
        for info in plugins:
            try:
                module = importlib.import_module(info["import_path"])
                register_func: PluginRegisterFunc = getattr(module, "register_plugin")
                register_func(self._container, self._hook_manager)
            except Exception as e:
                # 插件之间存在依赖，任何一个失败都终止启动
                print("\n" + "=" * 80)
                print(f"!!! 致命错误：加载插件 '{info['name']}' ({info['import_path']}) 失败 !!!")
                print("=" * 80)
                traceback.print_exc()
                print("=" * 80)
                raise RuntimeError(f"无法加载插件 {info['name']}") from e
