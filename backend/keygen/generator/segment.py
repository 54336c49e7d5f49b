"""
号段分配协议

注册中心节点保存 leaf key 已分配出去的最大值。补充号段时：
1. 节点不存在则创建，初始值为 initial_value - 1（第一个号段从 initial_value 开始）
2. 读取当前最大值和版本号
3. 计算 proposed = max_value + step，超出 64 位范围则号段耗尽
4. 以读取到的版本号做 CAS 写入 proposed
5. CAS 冲突说明有其他写入方抢先，随机等待后回到第 2 步，超过重试上限报错
6. CAS 成功，新号段为 [max_value + 1, proposed]

同一版本号只有一次 CAS 能成功，所以多个进程永远不会拿到重叠的号段。
不使用任何分布式锁。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from tenacity import (  # 重试库，用于 CAS 冲突重试
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from keygen.core.config import settings
from keygen.generator.errors import ContentionExceededError, RangeExhaustedError
from keygen.generator.properties import MAX_VALUE, GeneratorConfig
from keygen.registry.base import RegistryCenter
from keygen.registry.errors import RegistryCenterError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Segment:
    """闭区间号段 [low, high]"""

    low: int
    high: int

    def __len__(self) -> int:
        return self.high - self.low + 1


class _CasConflict(Exception):
    """CAS 失败，触发重试"""


class SegmentStore:
    """号段分配协议"""

    def __init__(self, max_retries: int | None = None, retry_wait_ms: int | None = None) -> None:
        """
        Args:
            max_retries: CAS 冲突后的最大重试次数，默认读取 LEAF_MAX_CAS_RETRIES
            retry_wait_ms: 每次重试前随机等待的上限（毫秒），默认读取 LEAF_CAS_RETRY_WAIT_MS
        """
        self.max_retries = settings.LEAF_MAX_CAS_RETRIES if max_retries is None else max_retries
        self.retry_wait_ms = (
            settings.LEAF_CAS_RETRY_WAIT_MS if retry_wait_ms is None else retry_wait_ms
        )
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")

    def allocate(self, registry: RegistryCenter, config: GeneratorConfig) -> Segment:
        """
        从注册中心获取一个新号段

        Raises:
            RangeExhaustedError: 号段继续增长会溢出
            ContentionExceededError: CAS 冲突超过重试上限
            RegistryCenterError: 注册中心故障或节点数据异常
        """
        path = config.node_path
        if registry.create_if_absent(path, str(config.initial_value - 1)):
            logger.info(f"Registry node created: {path} (initial value {config.initial_value})")

        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_random(0, self.retry_wait_ms / 1000),
            retry=retry_if_exception_type(_CasConflict),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
        )
        try:
            return retrying(self._try_allocate, registry, config)
        except RetryError as e:
            logger.warning(
                f"Segment refill for {config.leaf_key} gave up after {self.max_retries + 1} CAS attempts"
            )
            raise ContentionExceededError(config.leaf_key, self.max_retries + 1) from e

    def _try_allocate(self, registry: RegistryCenter, config: GeneratorConfig) -> Segment:
        path = config.node_path
        value, version = registry.read(path)
        try:
            max_value = int(value)
        except ValueError:
            raise RegistryCenterError(
                f"Registry node {path} holds a non-integer value {value!r}"
            ) from None

        if max_value > MAX_VALUE - config.step:
            raise RangeExhaustedError(config.leaf_key, max_value, config.step)
        proposed = max_value + config.step

        if not registry.compare_and_swap(path, version, str(proposed)):
            logger.debug(f"CAS conflict on {path} at version {version!r}")
            raise _CasConflict(path)
        return Segment(low=max_value + 1, high=proposed)
