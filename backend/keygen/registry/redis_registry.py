"""
Redis 注册中心

把 Redis 当作号段的协调存储：
- 节点路径 /leaf_segment/order 映射为键 leaf_segment:order
- 版本号就是节点当前值（号段上限只增不减，不存在 ABA 问题）
- CAS 使用 Lua 脚本保证"比较并写入"的原子性
- digest 映射为 Redis ACL 的用户名和密码

地址列表只使用第一个 host:port。
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import redis  # Redis 客户端库
from redis.exceptions import (
    AuthenticationError,
    ConnectionError,
    NoPermissionError,
    TimeoutError,
)

from keygen.registry.base import RegistryCenter
from keygen.registry.errors import (
    NodeNotFoundError,
    RegistryAuthError,
    RegistryCenterError,
    RegistryUnavailableError,
)

logger = logging.getLogger(__name__)

# 仅当当前值等于期望值时写入新值
_CAS_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    redis.call("set", KEYS[1], ARGV[2])
    return 1
else
    return 0
end
"""


def path_to_key(path: str) -> str:
    """/leaf_segment/order -> leaf_segment:order"""
    return path.strip("/").replace("/", ":")


def parse_endpoint(server_list: str) -> tuple[str, int]:
    """取地址列表中的第一个 host:port，端口缺省为 6379"""
    endpoint = server_list.split(",")[0].strip()
    host, _, port = endpoint.partition(":")
    if not host:
        raise RegistryCenterError(f"Invalid Redis endpoint: {server_list!r}")
    try:
        return host, int(port) if port else 6379
    except ValueError as e:
        raise RegistryCenterError(f"Invalid Redis port in {server_list!r}") from e


class RedisRegistryCenter(RegistryCenter):
    """Redis 会话"""

    type_name = "redis"

    def __init__(self, server_list: str, digest: str = "", *, timeout: float = 10.0) -> None:
        super().__init__(server_list, digest, timeout=timeout)
        self.client: redis.Redis | None = None

    def connect(self) -> None:
        host, port = parse_endpoint(self.server_list)
        username, password = self.credentials or (None, None)
        client = redis.Redis(
            host=host,
            port=port,
            username=username,
            password=password,
            socket_timeout=self.timeout,
            socket_connect_timeout=self.timeout,
            decode_responses=True,  # 自动解码响应为字符串
        )
        self.client = client
        try:
            with self._translate_errors(self.server_list):
                client.ping()
        except RegistryCenterError:
            logger.error(f"Redis connect to {host}:{port} failed")
            self.client = None
            client.close()
            raise
        logger.info(f"Redis registry session established: {host}:{port}")

    @contextmanager
    def _translate_errors(self, path: str) -> Iterator[redis.Redis]:
        if self.client is None:
            raise RegistryUnavailableError(f"Session to {self.server_list} is not connected")
        try:
            yield self.client
        # AuthenticationError 是 ConnectionError 的子类，必须先捕获
        except (AuthenticationError, NoPermissionError) as e:
            raise RegistryAuthError(f"Not authorized to access {path}") from e
        except (ConnectionError, TimeoutError) as e:
            raise RegistryUnavailableError(
                f"Redis at {self.server_list} is unavailable: {e!r}"
            ) from e

    def read(self, path: str) -> tuple[str, Any]:
        with self._translate_errors(path) as client:
            value = client.get(path_to_key(path))
        if value is None:
            raise NodeNotFoundError(path)
        return value, value

    def create_if_absent(self, path: str, value: str) -> bool:
        with self._translate_errors(path) as client:
            return bool(client.set(path_to_key(path), value, nx=True))

    def compare_and_swap(self, path: str, expected_version: Any, value: str) -> bool:
        with self._translate_errors(path) as client:
            result = client.eval(_CAS_SCRIPT, 1, path_to_key(path), expected_version, value)
        return result == 1

    def close(self) -> None:
        if self.client is None:
            return
        try:
            self.client.close()
            logger.info(f"Redis registry session closed: {self.server_list}")
        finally:
            self.client = None
