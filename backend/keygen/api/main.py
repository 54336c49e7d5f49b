"""
API 路由聚合模块

- keys: 主键生成
- utils: 工具相关（健康检查等）
"""
from fastapi import APIRouter

from keygen.api.routes import (
    keys,  # 主键路由
    utils,  # 工具路由
)

api_router = APIRouter()

api_router.include_router(keys.router)  # /keys/*
api_router.include_router(utils.router)  # /utils/*
