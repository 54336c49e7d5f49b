"""
注册中心会话池

同一进程内的多个生成器共享后端会话：
- 会话按 (注册中心类型, 地址列表) 缓存，第一次使用时创建并连接
- 会话的 digest 一旦确定就不能更换：用不同的 digest 复用同一地址列表会抛出
  RegistryAuthError，既不会静默成功，也不会沿用旧身份
- 同一个 (类型, 地址列表, leaf key) 只允许一个存活的生成器持有，
  否则两个生成器会各自补充号段、互不协调

会话池是显式对象，测试可以创建独立的池；服务默认使用全局池。
"""
from __future__ import annotations

import logging
import threading
import weakref
from typing import Any

from keygen.core.config import settings
from keygen.generator.errors import LeafKeyConflictError
from keygen.registry.base import RegistryCenter
from keygen.registry.errors import RegistryAuthError, RegistryCenterError
from keygen.registry.memory_registry import MemoryRegistryCenter
from keygen.registry.redis_registry import RedisRegistryCenter
from keygen.registry.zookeeper_registry import ZookeeperRegistryCenter

logger = logging.getLogger(__name__)

# 注册中心类型 -> 实现类
REGISTRY_CENTER_TYPES: dict[str, type[RegistryCenter]] = {
    ZookeeperRegistryCenter.type_name: ZookeeperRegistryCenter,
    RedisRegistryCenter.type_name: RedisRegistryCenter,
    MemoryRegistryCenter.type_name: MemoryRegistryCenter,
}

DEFAULT_REGISTRY_CENTER_TYPE = ZookeeperRegistryCenter.type_name


class RegistrySessionPool:
    """注册中心会话池"""

    def __init__(
        self,
        *,
        timeout: float | None = None,
        center_types: dict[str, type[RegistryCenter]] | None = None,
    ) -> None:
        """
        Args:
            timeout: 会话超时时间（秒），默认读取 LEAF_SESSION_TIMEOUT_SECONDS
            center_types: 可用的注册中心实现，默认使用 REGISTRY_CENTER_TYPES
        """
        self.timeout = settings.LEAF_SESSION_TIMEOUT_SECONDS if timeout is None else timeout
        self.center_types = center_types or REGISTRY_CENTER_TYPES
        self._sessions: dict[tuple[str, str], RegistryCenter] = {}
        self._owners: weakref.WeakValueDictionary[tuple[str, str, str], Any] = (
            weakref.WeakValueDictionary()
        )
        self._connect_locks: dict[tuple[str, str], threading.Lock] = {}
        self._lock = threading.Lock()

    def connect(self, registry_center_type: str, server_list: str, digest: str = "") -> RegistryCenter:
        """
        获取会话，不存在时创建并连接

        Raises:
            RegistryAuthError: 地址列表已有使用其他 digest 的会话
            RegistryUnavailableError: 连接失败
        """
        key = (registry_center_type, server_list)
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                connect_lock = self._connect_locks.setdefault(key, threading.Lock())
        if session is not None:
            return self._check_digest(session, digest)

        # 建连是网络 I/O，只按地址列表串行，不占用池锁
        with connect_lock:
            with self._lock:
                session = self._sessions.get(key)
            if session is not None:
                return self._check_digest(session, digest)

            center_cls = self.center_types.get(registry_center_type)
            if center_cls is None:
                raise RegistryCenterError(f"Unsupported registry center type: {registry_center_type}")
            session = center_cls(server_list, digest, timeout=self.timeout)
            session.connect()
            with self._lock:
                self._sessions[key] = session
            logger.info(f"Registry session pooled: {registry_center_type} {server_list}")
            return session

    @staticmethod
    def _check_digest(session: RegistryCenter, digest: str) -> RegistryCenter:
        if session.digest != digest:
            logger.warning(
                f"Digest mismatch for pooled {session.type_name} session on {session.server_list}"
            )
            raise RegistryAuthError(
                f"Session to {session.server_list} is already authenticated with another digest"
            )
        return session

    def claim(self, registry_center_type: str, server_list: str, leaf_key: str, owner: Any) -> None:
        """
        登记 leaf key 的持有者

        Raises:
            LeafKeyConflictError: 已有另一个存活的持有者
        """
        key = (registry_center_type, server_list, leaf_key)
        with self._lock:
            current = self._owners.get(key)
            if current is not None and current is not owner:
                raise LeafKeyConflictError(leaf_key, server_list)
            self._owners[key] = owner

    def release(self, registry_center_type: str, server_list: str, leaf_key: str, owner: Any) -> None:
        """注销 leaf key 的持有者（不是当前持有者时忽略）"""
        key = (registry_center_type, server_list, leaf_key)
        with self._lock:
            if self._owners.get(key) is owner:
                del self._owners[key]

    def close(self) -> None:
        """关闭所有会话"""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            try:
                session.close()
            except RegistryCenterError as e:
                logger.error(f"Failed to close registry session {session!r}: {e}")

    def __len__(self) -> int:
        return len(self._sessions)


# 全局会话池实例
_session_pool: RegistrySessionPool | None = None


def init_session_pool(timeout: float | None = None) -> RegistrySessionPool:
    """初始化全局会话池（会关闭旧池中的会话）"""
    global _session_pool
    if _session_pool is not None:
        _session_pool.close()
    _session_pool = RegistrySessionPool(timeout=timeout)
    return _session_pool


def get_session_pool() -> RegistrySessionPool:
    """获取全局会话池，未初始化时按配置创建"""
    if _session_pool is not None:
        return _session_pool
    return init_session_pool()
