"""
服务配置模块

使用 Pydantic Settings 管理所有环境变量和配置。
配置从项目根目录的 .env 文件读取，支持类型验证和默认值。

配置分为三部分：
- 服务配置：API 前缀、CORS、Sentry 等
- 号段生成器默认属性：注册中心地址、digest、步长、初始值
- Nacos 配置中心：按 leaf key 覆盖生成器属性
"""
import warnings  # 用于发出警告
from typing import Annotated, Any, Literal  # 类型注解工具

from pydantic import (
    AnyUrl,  # URL 类型验证
    BeforeValidator,  # 字段验证前的转换器
    HttpUrl,  # HTTP URL 类型验证
    computed_field,  # 计算字段装饰器
    model_validator,  # 模型验证器装饰器
)
from pydantic_settings import BaseSettings, SettingsConfigDict  # 配置管理
from typing_extensions import Self  # 用于类型注解中引用自身类型


def parse_cors(v: Any) -> list[str] | str:
    """
    解析 CORS 配置值

    支持两种格式：
    1. 逗号分隔的字符串："http://localhost:3000,http://localhost:3001"
    2. 列表格式：["http://localhost:3000", "http://localhost:3001"]

    Raises:
        ValueError: 当输入格式不正确时
    """
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",") if i.strip()]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


class Settings(BaseSettings):
    """
    服务配置类

    继承自 BaseSettings，自动从环境变量和 .env 文件读取配置。

    配置来源优先级：
    1. 环境变量（最高优先级）
    2. .env 文件
    3. 代码中的默认值（最低优先级）
    """
    model_config = SettingsConfigDict(
        # 使用项目根目录的 .env 文件（backend/ 目录的上一级）
        env_file="../.env",
        env_ignore_empty=True,  # 忽略空的环境变量
        extra="ignore",  # 忽略未定义的额外字段
    )
    PROJECT_NAME: str = "leaf-segment-keygen"
    API_V1_STR: str = "/api/v1"  # API 版本前缀
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    SENTRY_DSN: HttpUrl | None = None

    BACKEND_CORS_ORIGINS: Annotated[
        list[AnyUrl] | str, BeforeValidator(parse_cors)
    ] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> list[str]:
        """计算字段：获取所有 CORS 允许的源（去除尾部斜杠）"""
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS]

    # 号段生成器默认属性（可被 Nacos / 本地文件按 leaf key 覆盖）
    LEAF_SERVER_LIST: str = "127.0.0.1:2181"  # 注册中心地址列表
    LEAF_DIGEST: str = ""  # username:password，空字符串表示匿名
    LEAF_REGISTRY_CENTER_TYPE: str = "zookeeper"  # 注册中心类型
    LEAF_INITIAL_VALUE: int = 0  # 新 leaf key 的第一个值
    LEAF_STEP: int = 1000  # 每次从注册中心获取的号段长度

    # 号段协议调优
    LEAF_MAX_CAS_RETRIES: int = 16  # CAS 冲突的最大重试次数
    LEAF_CAS_RETRY_WAIT_MS: int = 20  # CAS 冲突后随机等待的上限（毫秒）
    LEAF_SESSION_TIMEOUT_SECONDS: float = 10.0  # 注册中心会话超时（秒）
    LEAF_MAX_GENERATORS: int = 1024  # 主键服务最多缓存的生成器数量，超出时淘汰最久未用的

    # Nacos 配置中心
    NACOS_ENABLED: bool = False
    NACOS_SERVER_ADDR: str | None = None  # 如 "127.0.0.1:8848"
    NACOS_NAMESPACE: str | None = None
    NACOS_USERNAME: str | None = None
    NACOS_PASSWORD: str | None = None
    NACOS_GROUP: str = "DEFAULT_GROUP"
    NACOS_DATA_ID: str = "leaf-segment-keys.json"

    def _check_default_secret(self, var_name: str, value: str | None) -> None:
        """
        检查敏感配置是否使用了默认值

        如果配置项使用了默认值 "changethis"，在本地环境会发出警告，
        在其他环境会抛出错误，强制修改。
        """
        if value and value.endswith("changethis"):
            message = (
                f'The value of {var_name} is "changethis", '
                "for security, please change it, at least for deployments."
            )
            if self.ENVIRONMENT == "local":
                warnings.warn(message, stacklevel=1)
            else:
                raise ValueError(message)

    @model_validator(mode="after")
    def _enforce_non_default_secrets(self) -> Self:
        self._check_default_secret("LEAF_DIGEST", self.LEAF_DIGEST)
        self._check_default_secret("NACOS_PASSWORD", self.NACOS_PASSWORD)

        return self


# 创建全局配置实例，整个服务共享
settings = Settings()  # type: ignore
