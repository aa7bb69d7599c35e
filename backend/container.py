# backend/container.py

import logging
import threading
from typing import Any, Callable, Dict, Set

from backend.core.contracts import Container as ContainerInterface

logger = logging.getLogger(__name__)


class Container(ContainerInterface):
    """线程安全的依赖注入容器：按名称注册工厂，单例延迟创建，并检测循环依赖。"""
    def __init__(self):
        self._factories: Dict[str, Callable] = {}
        self._singletons: Dict[str, bool] = {}
        self._instances: Dict[str, Any] = {}
        # 工厂内部会递归 resolve，因此必须是可重入锁
        self._lock = threading.RLock()
        self._local = threading.local()

    def _resolution_stack(self) -> Set[str]:
        if not hasattr(self._local, 'stack'):
            self._local.stack = set()
        return self._local.stack

    def register(self, name: str, factory: Callable, singleton: bool = True) -> None:
        if name in self._factories:
            logger.warning(f"Overwriting service registration for '{name}'")
        with self._lock:
            self._factories[name] = factory
            self._singletons[name] = singleton
            self._instances.pop(name, None)

    def register_instance(self, name: str, instance: Any) -> None:
        """直接放入一个现成实例（例如测试中的替身）。"""
        with self._lock:
            self._factories[name] = lambda: instance
            self._singletons[name] = True
            self._instances[name] = instance
        logger.debug(f"Registered ready-made instance for '{name}'.")

    def is_resolved(self, name: str) -> bool:
        return name in self._instances

    @staticmethod
    def _build(factory: Callable, container: "Container") -> Any:
        # 工厂既可以接收容器，也可以无参
        try:
            return factory(container)
        except TypeError:
            return factory()

    def resolve(self, name: str) -> Any:
        stack = self._resolution_stack()
        if name in stack:
            path = " -> ".join(list(stack) + [name])
            raise RuntimeError(f"Circular dependency detected: {path}")

        stack.add(name)
        try:
            singleton = self._singletons.get(name, True)
            if singleton and name in self._instances:
                return self._instances[name]

            if name not in self._factories:
                raise ValueError(f"Service '{name}' not found in container.")

            if not singleton:
                return self._build(self._factories[name], self)

            with self._lock:
                if name not in self._instances:
                    self._instances[name] = self._build(self._factories[name], self)
                    logger.debug(f"Resolved service '{name}'. Singleton: True")
                return self._instances[name]
        finally:
            stack.discard(name)
