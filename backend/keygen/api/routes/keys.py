"""
主键路由模块

- GET /api/v1/keys/{leaf_key}: 生成一个主键
- GET /api/v1/keys/{leaf_key}/batch?count=N: 生成 N 个主键（1-1000）
"""
from __future__ import annotations

from fastapi import APIRouter, Query

from keygen.api.deps import KeyServiceDep
from keygen.api.errors import from_key_generator_error
from keygen.api.schemas import ApiEnvelope, KeyBatchData, KeyData
from keygen.generator.errors import KeyGeneratorError

router = APIRouter(prefix="/keys", tags=["keys"])


@router.get("/{leaf_key}", response_model=ApiEnvelope)
def next_key(leaf_key: str, keys: KeyServiceDep) -> ApiEnvelope:
    """
    生成一个主键

    号段用完时本次请求会阻塞在注册中心的 CAS 上，其余请求不访问注册中心。
    """
    try:
        key = keys.next_key(leaf_key)
    except KeyGeneratorError as e:
        raise from_key_generator_error(e) from e
    return ApiEnvelope(data=KeyData(leaf_key=leaf_key, key=key))


@router.get("/{leaf_key}/batch", response_model=ApiEnvelope)
def next_keys(
    leaf_key: str,
    keys: KeyServiceDep,
    count: int = Query(default=10, ge=1, le=1000),  # 生成数量，1-1000
) -> ApiEnvelope:
    """批量生成主键，结果严格递增"""
    try:
        values = keys.next_keys(leaf_key, count)
    except KeyGeneratorError as e:
        raise from_key_generator_error(e) from e
    return ApiEnvelope(data=KeyBatchData(leaf_key=leaf_key, keys=values))
