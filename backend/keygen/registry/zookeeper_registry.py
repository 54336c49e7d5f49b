"""
ZooKeeper 注册中心

基于 kazoo 客户端：
- digest 作为连接的认证信息（auth_data），连接建立后身份不可更换
- 带 digest 时节点以 CREATOR_ALL_ACL 语义创建，只有同一身份可读写
- 版本号使用 znode 的 stat.version，CAS 通过 set(version=...) 实现
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from kazoo.client import KazooClient  # ZooKeeper 客户端
from kazoo.exceptions import (
    AuthFailedError,
    BadVersionError,
    ConnectionClosedError,
    ConnectionLoss,
    KazooException,
    NoAuthError,
    NodeExistsError,
    NoNodeError,
    SessionExpiredError,
)
from kazoo.handlers.threading import KazooTimeoutError
from kazoo.security import make_digest_acl

from keygen.registry.base import RegistryCenter
from keygen.registry.errors import (
    NodeNotFoundError,
    RegistryAuthError,
    RegistryCenterError,
    RegistryUnavailableError,
)

logger = logging.getLogger(__name__)


class ZookeeperRegistryCenter(RegistryCenter):
    """ZooKeeper 会话"""

    type_name = "zookeeper"

    def __init__(self, server_list: str, digest: str = "", *, timeout: float = 10.0) -> None:
        super().__init__(server_list, digest, timeout=timeout)
        self.client: KazooClient | None = None
        credentials = self.credentials
        # 节点 ACL：匿名时使用 kazoo 默认的 OPEN_ACL_UNSAFE
        self._acl = [make_digest_acl(*credentials, all=True)] if credentials else None

    def connect(self) -> None:
        auth_data = [("digest", self.digest)] if self.digest else None
        client = KazooClient(
            hosts=self.server_list,
            timeout=self.timeout,
            auth_data=auth_data,
        )
        try:
            client.start(timeout=self.timeout)
        except KazooTimeoutError as e:
            logger.error(f"ZooKeeper connect to {self.server_list} timed out: {e}")
            client.close()
            raise RegistryUnavailableError(
                f"Could not connect to ZooKeeper at {self.server_list}"
            ) from e
        except AuthFailedError as e:
            logger.error(f"ZooKeeper authentication failed on {self.server_list}: {e}")
            client.close()
            raise RegistryAuthError(
                f"Authentication to ZooKeeper at {self.server_list} failed"
            ) from e
        self.client = client
        logger.info(f"ZooKeeper session established: {self.server_list}")

    @contextmanager
    def _translate_errors(self, path: str) -> Iterator[KazooClient]:
        """把 kazoo 异常转换为注册中心异常"""
        if self.client is None:
            raise RegistryUnavailableError(f"Session to {self.server_list} is not connected")
        try:
            yield self.client
        except NoNodeError as e:
            raise NodeNotFoundError(path) from e
        except (NoAuthError, AuthFailedError) as e:
            raise RegistryAuthError(f"Not authorized to access {path}") from e
        except (
            ConnectionLoss,
            ConnectionClosedError,
            SessionExpiredError,
            KazooTimeoutError,
        ) as e:
            raise RegistryUnavailableError(
                f"ZooKeeper at {self.server_list} is unavailable: {e!r}"
            ) from e
        except KazooException as e:
            raise RegistryCenterError(f"ZooKeeper error on {path}: {e!r}") from e

    def read(self, path: str) -> tuple[str, Any]:
        with self._translate_errors(path) as client:
            data, stat = client.get(path)
        return data.decode("utf-8"), stat.version

    def create_if_absent(self, path: str, value: str) -> bool:
        with self._translate_errors(path) as client:
            try:
                client.create(path, value.encode("utf-8"), acl=self._acl, makepath=True)
            except NodeExistsError:
                return False
        return True

    def compare_and_swap(self, path: str, expected_version: Any, value: str) -> bool:
        with self._translate_errors(path) as client:
            try:
                client.set(path, value.encode("utf-8"), version=expected_version)
            except BadVersionError:
                return False
        return True

    def close(self) -> None:
        if self.client is None:
            return
        try:
            self.client.stop()
            self.client.close()
            logger.info(f"ZooKeeper session closed: {self.server_list}")
        finally:
            self.client = None
