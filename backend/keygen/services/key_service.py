"""
主键服务

为每个 leaf key 维护一个生成器实例（同一进程内每个 leaf key 只能有一个生成器），
属性来自 properties_service，会话来自全局会话池。

缓存的生成器数量有上限（LEAF_MAX_GENERATORS），超出时关闭最久未使用的生成器；
因配置或身份问题进入 FAILED 的生成器不保留在缓存中。
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from threading import Lock

from keygen.core.config import settings
from keygen.generator.errors import KeyGeneratorError
from keygen.generator.leaf_segment import GeneratorState, LeafSegmentKeyGenerator
from keygen.registry.pool import RegistrySessionPool, get_session_pool
from keygen.services import properties_service

logger = logging.getLogger(__name__)


class KeyService:
    """按 leaf key 缓存生成器"""

    def __init__(
        self,
        session_pool: RegistrySessionPool | None = None,
        max_generators: int | None = None,
    ) -> None:
        self._session_pool = session_pool
        self.max_generators = settings.LEAF_MAX_GENERATORS if max_generators is None else max_generators
        if self.max_generators < 1:
            raise ValueError("max_generators must be positive")
        self._generators: OrderedDict[str, LeafSegmentKeyGenerator] = OrderedDict()
        self._lock = Lock()

    def get_generator(self, leaf_key: str) -> LeafSegmentKeyGenerator:
        evicted: list[LeafSegmentKeyGenerator] = []
        with self._lock:
            generator = self._generators.get(leaf_key)
            if generator is not None:
                self._generators.move_to_end(leaf_key)
                return generator
            generator = LeafSegmentKeyGenerator(
                properties_service.get_properties(leaf_key),
                session_pool=self._session_pool or get_session_pool(),
            )
            self._generators[leaf_key] = generator
            while len(self._generators) > self.max_generators:
                _, oldest = self._generators.popitem(last=False)
                evicted.append(oldest)
        logger.info(f"Key generator created for leaf key {leaf_key}")
        for oldest in evicted:
            logger.info(f"Key generator evicted: {oldest!r}")
            oldest.close()
        return generator

    def next_key(self, leaf_key: str) -> int:
        generator = self.get_generator(leaf_key)
        try:
            return generator.generate_key()
        except KeyGeneratorError:
            self._discard_failed(leaf_key, generator)
            raise

    def next_keys(self, leaf_key: str, count: int) -> list[int]:
        generator = self.get_generator(leaf_key)
        try:
            return [generator.generate_key() for _ in range(count)]
        except KeyGeneratorError:
            self._discard_failed(leaf_key, generator)
            raise

    def _discard_failed(self, leaf_key: str, generator: LeafSegmentKeyGenerator) -> None:
        """FAILED 的生成器不再缓存，下次请求按最新属性重建"""
        if generator.state != GeneratorState.FAILED:
            return
        with self._lock:
            if self._generators.get(leaf_key) is generator:
                del self._generators[leaf_key]
        generator.close()

    def refresh(self) -> None:
        """重新加载属性覆盖配置，并重置所有已缓存的生成器"""
        properties_service.refresh_overrides()
        with self._lock:
            for leaf_key, generator in self._generators.items():
                generator.properties = properties_service.get_properties(leaf_key)

    def close(self) -> None:
        """释放所有生成器持有的 leaf key"""
        with self._lock:
            generators = list(self._generators.values())
            self._generators.clear()
        for generator in generators:
            generator.close()

    def __len__(self) -> int:
        return len(self._generators)


# 全局主键服务实例
_key_service: KeyService | None = None


def get_key_service() -> KeyService:
    global _key_service
    if _key_service is None:
        _key_service = KeyService()
    return _key_service


def shutdown_key_service() -> None:
    global _key_service
    if _key_service is not None:
        _key_service.close()
        _key_service = None
