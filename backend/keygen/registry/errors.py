"""
注册中心异常模块

区分三类失败：
- RegistryUnavailableError: 网络或会话故障，调用方可以整体重试
- RegistryAuthError: digest 与会话身份不符，或 ACL 拒绝访问
- NodeNotFoundError: 读取的节点不存在
"""
from __future__ import annotations

from keygen.generator.errors import KeyGeneratorError


class RegistryCenterError(KeyGeneratorError):
    """注册中心异常基类"""


class RegistryUnavailableError(RegistryCenterError):
    """注册中心不可达（连接失败、会话过期、超时）"""

    retryable = True


class RegistryAuthError(RegistryCenterError):
    """认证失败或身份冲突"""


class NodeNotFoundError(RegistryCenterError):
    """节点不存在"""

    def __init__(self, path: str) -> None:
        super().__init__(f"Registry node {path} does not exist")
        self.path = path
