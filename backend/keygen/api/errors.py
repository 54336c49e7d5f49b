"""
自定义异常模块

定义服务的 HTTP 层异常，并把生成器异常映射为统一的错误码。
所有业务异常都继承自 AppError，在 main.py 中有统一的异常处理器。
"""
from __future__ import annotations

from keygen.generator.errors import (
    ContentionExceededError,
    InvalidConfigurationError,
    KeyGeneratorError,
    LeafKeyConflictError,
    RangeExhaustedError,
)
from keygen.registry.errors import RegistryAuthError, RegistryUnavailableError


class AppError(Exception):
    """
    应用自定义异常类

    - code: 业务错误码（用于调用方区分不同错误）
    - message: 错误消息
    - status_code: HTTP 状态码（400, 404, 500 等）

    使用示例：
        raise AppError(code=409002, message="Leaf key exhausted", status_code=409)
    """

    def __init__(self, *, code: int, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


# 生成器异常 -> (HTTP 状态码, 业务错误码)，子类必须排在父类之前
_ERROR_CODES: list[tuple[type[KeyGeneratorError], int, int]] = [
    (InvalidConfigurationError, 400, 400001),
    (RegistryAuthError, 403, 403001),
    (LeafKeyConflictError, 409, 409001),
    (RangeExhaustedError, 409, 409002),
    (ContentionExceededError, 503, 503001),
    (RegistryUnavailableError, 503, 503002),
]


def from_key_generator_error(exc: KeyGeneratorError) -> AppError:
    """把生成器异常转换为 AppError，未知的生成器异常按 500 处理"""
    for error_type, status_code, code in _ERROR_CODES:
        if isinstance(exc, error_type):
            return AppError(code=code, message=str(exc), status_code=status_code)
    return AppError(code=500001, message=str(exc), status_code=500)
