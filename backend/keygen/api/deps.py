"""
FastAPI 依赖注入模块

测试中可以通过 app.dependency_overrides[get_keys] 替换为使用独立会话池的 KeyService。
"""
from typing import Annotated

from fastapi import Depends

from keygen.services.key_service import KeyService, get_key_service


def get_keys() -> KeyService:
    return get_key_service()


KeyServiceDep = Annotated[KeyService, Depends(get_keys)]
