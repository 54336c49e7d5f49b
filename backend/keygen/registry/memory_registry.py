"""
进程内注册中心

按地址列表共享一个内存存储，语义与 ZooKeeper 节点一致：
- 每个节点有版本号，每次写入加一
- 带 digest 创建的节点只允许同一 digest 访问（对应 CREATOR_ALL_ACL）

用于本地运行和测试，不需要启动外部服务。
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any

from keygen.registry.base import RegistryCenter
from keygen.registry.errors import (
    NodeNotFoundError,
    RegistryAuthError,
    RegistryUnavailableError,
)

logger = logging.getLogger(__name__)


@dataclass
class _Node:
    value: str
    version: int = 0
    owner: str | None = None  # 创建者的 digest，None 表示所有人可访问


class MemoryStore:
    """一个"集群"的全部节点"""

    def __init__(self) -> None:
        self.nodes: dict[str, _Node] = {}
        self.lock = threading.Lock()
        self.online = True  # 置为 False 可模拟注册中心不可达


_stores: dict[str, MemoryStore] = {}
_stores_lock = threading.Lock()


def get_store(server_list: str) -> MemoryStore:
    """获取（必要时创建）地址列表对应的内存存储"""
    with _stores_lock:
        store = _stores.get(server_list)
        if store is None:
            store = _stores[server_list] = MemoryStore()
        return store


def reset_stores() -> None:
    """清空所有内存存储"""
    with _stores_lock:
        _stores.clear()


class MemoryRegistryCenter(RegistryCenter):
    """进程内注册中心会话"""

    type_name = "memory"

    def __init__(self, server_list: str, digest: str = "", *, timeout: float = 10.0) -> None:
        super().__init__(server_list, digest, timeout=timeout)
        self._store: MemoryStore | None = None

    @property
    def store(self) -> MemoryStore:
        if self._store is None:
            raise RegistryUnavailableError(f"Session to {self.server_list} is not connected")
        if not self._store.online:
            raise RegistryUnavailableError(f"Registry {self.server_list} is unreachable")
        return self._store

    def connect(self) -> None:
        self._store = get_store(self.server_list)
        if not self._store.online:
            raise RegistryUnavailableError(f"Registry {self.server_list} is unreachable")
        logger.info(f"Memory registry session opened: {self.server_list}")

    def _check_acl(self, path: str, node: _Node) -> None:
        if node.owner is not None and node.owner != self.digest:
            raise RegistryAuthError(f"Not authorized to access {path}")

    def read(self, path: str) -> tuple[str, Any]:
        store = self.store
        with store.lock:
            node = store.nodes.get(path)
            if node is None:
                raise NodeNotFoundError(path)
            self._check_acl(path, node)
            return node.value, node.version

    def create_if_absent(self, path: str, value: str) -> bool:
        store = self.store
        with store.lock:
            if path in store.nodes:
                return False
            store.nodes[path] = _Node(value=value, owner=self.digest or None)
            return True

    def compare_and_swap(self, path: str, expected_version: Any, value: str) -> bool:
        store = self.store
        with store.lock:
            node = store.nodes.get(path)
            if node is None:
                raise NodeNotFoundError(path)
            self._check_acl(path, node)
            if node.version != expected_version:
                return False
            node.value = value
            node.version += 1
            return True

    def close(self) -> None:
        self._store = None
