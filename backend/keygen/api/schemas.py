"""
API 请求/响应数据模型（Schema）

所有响应都包在 ApiEnvelope 中：
    {"code": 0, "message": "success", "data": {...}}
    {"code": 409002, "message": "Leaf key ... is exhausted", "data": None}
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class ApiEnvelope(BaseModel):
    """API 统一响应格式"""
    code: int = 0  # 默认成功
    message: str = "success"  # 默认成功消息
    data: Any | None = None  # 业务数据（可选）


class KeyData(BaseModel):
    leaf_key: str
    key: int


class KeyBatchData(BaseModel):
    leaf_key: str
    keys: list[int]
