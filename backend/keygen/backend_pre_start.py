"""
服务启动前检查脚本

在服务启动前检查默认注册中心是否可用。
主要用于 Docker Compose 环境，注册中心容器可能还在初始化。

执行流程：
1. 按 LEAF_* 配置连接注册中心，读取一次号段根节点
2. 失败则按固定间隔重试，直到成功或达到最大次数
"""
import logging

from tenacity import (  # 重试库，用于实现重试机制
    after_log,  # 重试后的日志记录
    before_log,  # 重试前的日志记录
    retry,  # 重试装饰器
    stop_after_attempt,  # 停止条件：达到最大尝试次数
    wait_fixed,  # 等待策略：固定间隔
)

from keygen.core.config import settings
from keygen.registry.errors import NodeNotFoundError
from keygen.registry.pool import RegistrySessionPool

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

max_tries = 60 * 5  # 最大尝试次数：300 次（5 分钟，每秒一次）
wait_seconds = 1


@retry(
    stop=stop_after_attempt(max_tries),
    wait=wait_fixed(wait_seconds),
    before=before_log(logger, logging.INFO),
    after=after_log(logger, logging.WARN),
)
def init(pool: RegistrySessionPool) -> None:
    """
    检查注册中心连接

    Raises:
        RegistryCenterError: 连接失败时抛出，触发重试
    """
    try:
        session = pool.connect(
            settings.LEAF_REGISTRY_CENTER_TYPE.lower(),
            settings.LEAF_SERVER_LIST,
            settings.LEAF_DIGEST,
        )
        try:
            session.read("/leaf_segment")
        except NodeNotFoundError:
            # 还没有任何 leaf key，连接本身是正常的
            pass
    except Exception as e:
        logger.error(e)
        raise e


def main() -> None:
    logger.info("Initializing service")
    pool = RegistrySessionPool()
    try:
        init(pool)
    finally:
        pool.close()
    logger.info("Service finished initializing")


if __name__ == "__main__":  # pragma: no cover
    main()
