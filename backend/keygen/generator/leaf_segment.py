"""
号段模式的主键生成器

每个生成器实例负责一个 leaf key：
- 本地缓存一个号段 [next_value, max_value]，逐个发放，不访问注册中心
- 号段用完时由一个线程补充号段（single-flight），其他线程等待后回到快速路径
- 返回值在实例生命周期内严格递增、不重复

状态机：
    UNCONFIGURED -> VALIDATED -> (DISPENSING <-> REFILLING) -> EXHAUSTED | FAILED

EXHAUSTED 和 FAILED 是终态，重新设置属性后才会回到 UNCONFIGURED。
注册中心不可达、CAS 冲突超限不会进入终态，调用方可以直接重试。

使用示例：
    generator = LeafSegmentKeyGenerator({
        "serverList": "127.0.0.1:2181",
        "leafKey": "t_order",
        "step": "1000",
    })
    order_id = generator.generate_key()
"""
from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Mapping
from typing import Any

from keygen.generator.errors import (
    InvalidConfigurationError,
    KeyGeneratorError,
    LeafKeyConflictError,
    RangeExhaustedError,
)
from keygen.generator.properties import GeneratorConfig, validate_properties
from keygen.generator.segment import Segment, SegmentStore
from keygen.registry.base import RegistryCenter
from keygen.registry.errors import RegistryAuthError, RegistryCenterError
from keygen.registry.pool import RegistrySessionPool, get_session_pool

logger = logging.getLogger(__name__)


class GeneratorState(str, enum.Enum):
    UNCONFIGURED = "unconfigured"
    VALIDATED = "validated"
    DISPENSING = "dispensing"
    REFILLING = "refilling"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


class LeafSegmentKeyGenerator:
    """号段模式的主键生成器"""

    TYPE = "LEAF_SEGMENT"

    def __init__(
        self,
        properties: Mapping[str, Any] | None = None,
        *,
        session_pool: RegistrySessionPool | None = None,
        segment_store: SegmentStore | None = None,
    ) -> None:
        """
        Args:
            properties: 生成器属性，也可以之后通过 properties 属性设置
            session_pool: 注册中心会话池，默认使用全局池
            segment_store: 号段分配协议，默认按配置创建
        """
        self._properties: dict[str, Any] = dict(properties or {})
        self._session_pool = session_pool
        self._segment_store = segment_store or SegmentStore()
        self._lock = threading.Lock()  # 保护号段和状态，只在快速路径上短暂持有
        self._refill_lock = threading.Lock()  # 同一时刻只允许一个线程补充号段
        self._reset()

    def _reset(self) -> None:
        self._config: GeneratorConfig | None = None
        self._registry: RegistryCenter | None = None
        self._claimed = False
        self._next_value = 0
        self._max_value = -1
        self._state = GeneratorState.UNCONFIGURED
        self._failure: KeyGeneratorError | None = None

    @property
    def properties(self) -> dict[str, Any]:
        return dict(self._properties)

    @properties.setter
    def properties(self, value: Mapping[str, Any]) -> None:
        """重新设置属性：丢弃本地号段，下次生成时重新校验"""
        with self._refill_lock, self._lock:
            self._release_claim()
            self._properties = dict(value)
            self._reset()

    @property
    def state(self) -> GeneratorState:
        return self._state

    @property
    def config(self) -> GeneratorConfig | None:
        return self._config

    @property
    def session_pool(self) -> RegistrySessionPool:
        if self._session_pool is None:
            self._session_pool = get_session_pool()
        return self._session_pool

    def generate_key(self) -> int:
        """
        生成下一个主键

        Returns:
            64 位整数主键

        Raises:
            InvalidConfigurationError: 属性校验失败
            RangeExhaustedError: leaf key 的号段空间耗尽
            ContentionExceededError: CAS 冲突超过重试上限
            RegistryUnavailableError: 注册中心不可达
            RegistryAuthError: digest 与已有会话身份不符
            LeafKeyConflictError: 同一会话池中已有生成器持有该 leaf key
        """
        while True:
            with self._lock:
                if self._failure is not None:
                    raise self._failure
                if self._next_value <= self._max_value:
                    value = self._next_value
                    self._next_value += 1
                    return value
            self._refill()

    def _refill(self) -> None:
        with self._refill_lock:
            with self._lock:
                # 等锁期间其他线程可能已经补充了号段或进入终态
                if self._failure is not None or self._next_value <= self._max_value:
                    return
                previous_state = self._state

            config, registry = self._prepare()
            with self._lock:
                self._state = GeneratorState.REFILLING
            try:
                segment = self._segment_store.allocate(registry, config)
            except RangeExhaustedError as e:
                self._fail(e, GeneratorState.EXHAUSTED)
                raise
            except RegistryAuthError as e:
                self._fail(e, GeneratorState.FAILED)
                raise
            except KeyGeneratorError:
                with self._lock:
                    self._state = (
                        GeneratorState.VALIDATED
                        if previous_state == GeneratorState.UNCONFIGURED
                        else previous_state
                    )
                raise
            self._adopt(segment)

    def _prepare(self) -> tuple[GeneratorConfig, RegistryCenter]:
        """首次补充号段前：校验属性、获取注册中心会话、登记 leaf key"""
        if self._config is None:
            try:
                config = validate_properties(self._properties)
            except InvalidConfigurationError as e:
                self._fail(e, GeneratorState.FAILED)
                raise
            with self._lock:
                self._config = config
                self._state = GeneratorState.VALIDATED
        config = self._config

        if self._registry is None:
            pool = self.session_pool
            try:
                # 先确认会话身份，digest 冲突优先于 leaf key 冲突
                registry = pool.connect(config.registry_center_type, config.server_list, config.digest)
                pool.claim(config.registry_center_type, config.server_list, config.leaf_key, self)
            except (RegistryAuthError, LeafKeyConflictError) as e:
                self._fail(e, GeneratorState.FAILED)
                raise
            self._claimed = True
            self._registry = registry
        return config, self._registry

    def _adopt(self, segment: Segment) -> None:
        if segment.low <= self._max_value:
            error = RegistryCenterError(
                f"Registry returned segment [{segment.low}, {segment.high}] "
                f"overlapping local maximum {self._max_value}"
            )
            self._fail(error, GeneratorState.FAILED)
            raise error
        with self._lock:
            self._next_value = segment.low
            self._max_value = segment.high
            self._state = GeneratorState.DISPENSING
        logger.debug(f"Segment adopted for {self._config.leaf_key}: [{segment.low}, {segment.high}]")

    def _fail(self, error: KeyGeneratorError, state: GeneratorState) -> None:
        with self._lock:
            self._failure = error
            self._state = state
        self._release_claim()
        logger.warning(f"Key generator for {self._properties.get('leafKey')!r} is {state.value}: {error}")

    def _release_claim(self) -> None:
        if self._claimed and self._config is not None:
            self.session_pool.release(
                self._config.registry_center_type,
                self._config.server_list,
                self._config.leaf_key,
                self,
            )
        self._claimed = False

    def close(self) -> None:
        """释放 leaf key 的持有登记；会话属于会话池，不在这里关闭"""
        with self._refill_lock:
            self._release_claim()
            self._registry = None

    def __repr__(self) -> str:
        return f"<LeafSegmentKeyGenerator {self._properties.get('leafKey')!r} {self._state.value}>"
