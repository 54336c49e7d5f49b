"""
生成器属性校验

把 Properties 风格的字符串键值对转换为不可变的 GeneratorConfig。
每条规则独立校验，任一规则失败都抛出 InvalidConfigurationError，
并且发生在任何注册中心 I/O 之前。

| 属性               | 必填 | 默认值     | 约束                     |
|--------------------|------|------------|--------------------------|
| serverList         | 是   | -          | 非空                     |
| leafKey            | 是   | -          | 非空，不能以 / 开头      |
| initialValue       | 否   | 0          | 0 <= v < MAX             |
| step               | 否   | 1          | 0 < v < MAX              |
| digest             | 否   | ""         | username:password 或空   |
| registryCenterType | 否   | zookeeper  | 已注册的注册中心类型     |
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from keygen.generator.errors import InvalidConfigurationError
from keygen.registry.pool import DEFAULT_REGISTRY_CENTER_TYPE, REGISTRY_CENTER_TYPES

# 64 位有符号整数的最大值，本身不能作为初始值或步长
MAX_VALUE = 2**63 - 1

PATH_SEPARATOR = "/"

# 所有 leaf key 节点的父路径
NAMESPACE = "leaf_segment"


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


def _parse_int(v: Any, field: str) -> int:
    if isinstance(v, bool):
        raise ValueError(f"{field} must be an integer")
    if isinstance(v, int):
        return v
    try:
        return int(str(v).strip())
    except ValueError:
        raise ValueError(f"{field} must be an integer, got {v!r}") from None


class GeneratorConfig(BaseModel):
    """校验后的生成器配置"""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    server_list: str = Field(alias="serverList")
    leaf_key: str = Field(alias="leafKey")
    initial_value: int = Field(default=0, alias="initialValue")
    step: int = Field(default=1, alias="step")
    digest: str = Field(default="", alias="digest")
    registry_center_type: str = Field(
        default=DEFAULT_REGISTRY_CENTER_TYPE, alias="registryCenterType"
    )

    @field_validator("server_list", mode="before")
    @classmethod
    def _check_server_list(cls, v: Any) -> Any:
        if v is None or not str(v).strip():
            raise ValueError("serverList must not be empty")
        return str(v).strip()

    @field_validator("leaf_key", mode="before")
    @classmethod
    def _check_leaf_key(cls, v: Any) -> Any:
        if v is None or not str(v):
            raise ValueError("leafKey must not be empty")
        if str(v).startswith(PATH_SEPARATOR):
            raise ValueError(f"leafKey must not start with '{PATH_SEPARATOR}'")
        return str(v)

    @field_validator("initial_value", mode="before")
    @classmethod
    def _check_initial_value(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        if v is None:
            return 0
        value = _parse_int(v, "initialValue")
        if not 0 <= value < MAX_VALUE:
            raise ValueError(f"initialValue must be in [0, {MAX_VALUE}), got {value}")
        return value

    @field_validator("step", mode="before")
    @classmethod
    def _check_step(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        if v is None:
            return 1
        value = _parse_int(v, "step")
        if not 0 < value < MAX_VALUE:
            raise ValueError(f"step must be in (0, {MAX_VALUE}), got {value}")
        return value

    @field_validator("digest", mode="before")
    @classmethod
    def _check_digest(cls, v: Any) -> Any:
        if v is None or v == "":
            return ""
        username, sep, _ = str(v).partition(":")
        if not sep or not username:
            raise ValueError("digest must be in 'username:password' form")
        return str(v)

    @field_validator("registry_center_type", mode="before")
    @classmethod
    def _check_registry_center_type(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        if v is None:
            return DEFAULT_REGISTRY_CENTER_TYPE
        name = str(v).strip().lower()
        if name not in REGISTRY_CENTER_TYPES:
            raise ValueError(
                f"registryCenterType must be one of {sorted(REGISTRY_CENTER_TYPES)}, got {v!r}"
            )
        return name

    @property
    def node_path(self) -> str:
        """leaf key 在注册中心中的节点路径"""
        return f"{PATH_SEPARATOR}{NAMESPACE}{PATH_SEPARATOR}{self.leaf_key}"


def validate_properties(properties: Mapping[str, Any]) -> GeneratorConfig:
    """
    校验生成器属性

    Args:
        properties: Properties 风格的键值对，未知的键会被忽略

    Returns:
        GeneratorConfig: 不可变的配置

    Raises:
        InvalidConfigurationError: 任一规则校验失败
    """
    try:
        return GeneratorConfig.model_validate(dict(properties))
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise InvalidConfigurationError(f"Invalid key generator properties: {details}") from e
