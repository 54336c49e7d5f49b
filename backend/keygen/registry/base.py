"""
注册中心抽象

号段协议只依赖注册中心的四个能力：
1. connect: 建立会话（带 digest 认证）
2. read: 读取节点值和版本号
3. create_if_absent: 节点不存在时创建（幂等）
4. compare_and_swap: 仅当版本号未变化时写入新值

每个 RegistryCenter 实例对应一个后端会话，绑定一个地址列表和一个 digest。
会话的复用由 RegistrySessionPool 负责。
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar


class RegistryCenter(ABC):
    """注册中心会话基类"""

    # 注册中心类型标识，对应生成器属性 registryCenterType
    type_name: ClassVar[str]

    def __init__(self, server_list: str, digest: str = "", *, timeout: float = 10.0) -> None:
        """
        Args:
            server_list: 注册中心地址列表，如 "127.0.0.1:2181,127.0.0.2:2181"
            digest: username:password 形式的凭证，空字符串表示匿名
            timeout: 会话超时时间（秒）
        """
        self.server_list = server_list
        self.digest = digest
        self.timeout = timeout

    @property
    def credentials(self) -> tuple[str, str] | None:
        """把 digest 拆成 (username, password)，匿名时返回 None"""
        if not self.digest:
            return None
        username, _, password = self.digest.partition(":")
        return username, password

    @abstractmethod
    def connect(self) -> None:
        """建立会话，失败抛出 RegistryUnavailableError / RegistryAuthError"""

    @abstractmethod
    def read(self, path: str) -> tuple[str, Any]:
        """
        读取节点

        Returns:
            (节点值, 版本号)，版本号对调用方是不透明的

        Raises:
            NodeNotFoundError: 节点不存在
        """

    @abstractmethod
    def create_if_absent(self, path: str, value: str) -> bool:
        """创建节点，已存在时什么都不做。返回是否由本次调用创建"""

    @abstractmethod
    def compare_and_swap(self, path: str, expected_version: Any, value: str) -> bool:
        """
        条件写入

        Returns:
            True 表示写入成功；False 表示节点在读取后已被其他写入方修改
        """

    @abstractmethod
    def close(self) -> None:
        """关闭会话"""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.server_list}>"
