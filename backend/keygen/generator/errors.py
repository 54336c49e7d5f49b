"""
号段生成器异常模块

所有生成器异常都继承自 KeyGeneratorError，调用方可以只捕获一个基类。
注册中心相关的异常定义在 keygen.registry.errors 中，同样继承自这个基类。

重试语义：
- InvalidConfigurationError: 配置错误，不可重试（修改配置后才会恢复）
- ContentionExceededError: CAS 冲突超过上限，可稍后重试
- RangeExhaustedError: 号段空间耗尽，不可重试
- LeafKeyConflictError: 同一进程内重复持有 leaf key，不可重试
"""
from __future__ import annotations


class KeyGeneratorError(Exception):
    """号段生成器异常基类"""

    retryable: bool = False


class InvalidConfigurationError(KeyGeneratorError, ValueError):
    """生成器属性校验失败"""


class ContentionExceededError(KeyGeneratorError):
    """CAS 冲突次数超过上限"""

    retryable = True

    def __init__(self, leaf_key: str, attempts: int) -> None:
        super().__init__(
            f"Segment refill for leaf key '{leaf_key}' lost {attempts} CAS races in a row"
        )
        self.leaf_key = leaf_key
        self.attempts = attempts


class RangeExhaustedError(KeyGeneratorError):
    """号段继续增长将超出 64 位有符号整数范围"""

    def __init__(self, leaf_key: str, max_value: int, step: int) -> None:
        super().__init__(
            f"Leaf key '{leaf_key}' is exhausted: {max_value} + {step} overflows the key range"
        )
        self.leaf_key = leaf_key
        self.max_value = max_value
        self.step = step


class LeafKeyConflictError(KeyGeneratorError):
    """同一个会话池中已有另一个存活的生成器持有该 leaf key"""

    def __init__(self, leaf_key: str, server_list: str) -> None:
        super().__init__(
            f"Leaf key '{leaf_key}' on {server_list} is already owned by another generator"
        )
        self.leaf_key = leaf_key
        self.server_list = server_list
