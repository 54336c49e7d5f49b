from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor

import pytest

from keygen.generator.errors import (
    ContentionExceededError,
    InvalidConfigurationError,
    LeafKeyConflictError,
    RangeExhaustedError,
)
from keygen.generator.leaf_segment import GeneratorState, LeafSegmentKeyGenerator
from keygen.generator.properties import MAX_VALUE
from keygen.generator.segment import SegmentStore
from keygen.registry.errors import RegistryAuthError, RegistryUnavailableError
from keygen.registry.memory_registry import MemoryRegistryCenter, get_store
from keygen.registry.pool import RegistrySessionPool

SERVER_LIST = "127.0.0.1:2181"

THREAD_NUMBER = (os.cpu_count() or 2) << 1


def _props(leaf_key: str, **overrides: str) -> dict[str, str]:
    props = {
        "serverList": SERVER_LIST,
        "initialValue": "100001",
        "step": "3",
        "digest": "",
        "leafKey": leaf_key,
        "registryCenterType": "zookeeper",
    }
    props.update(overrides)
    return {k: v for k, v in props.items() if v is not None}


def _generate_concurrently(generator: LeafSegmentKeyGenerator, task_number: int) -> list[int]:
    with ThreadPoolExecutor(max_workers=THREAD_NUMBER) as executor:
        futures = [executor.submit(generator.generate_key) for _ in range(task_number)]
        return [f.result() for f in futures]


def test_properties_empty_by_default(session_pool):
    generator = LeafSegmentKeyGenerator(session_pool=session_pool)
    assert generator.properties == {}
    assert generator.state == GeneratorState.UNCONFIGURED
    assert LeafSegmentKeyGenerator.TYPE == "LEAF_SEGMENT"


def test_set_properties_keeps_unknown_keys(session_pool):
    generator = LeafSegmentKeyGenerator(session_pool=session_pool)
    generator.properties = {"key1": "value1"}
    assert generator.properties["key1"] == "value1"


def test_generate_key_with_single_thread(session_pool, segment_store):
    generator = LeafSegmentKeyGenerator(
        _props("test_table_1"), session_pool=session_pool, segment_store=segment_store
    )
    actual = [generator.generate_key() for _ in range(10)]
    assert actual == list(range(100001, 100011))
    assert generator.state == GeneratorState.DISPENSING


def test_generate_key_with_multiple_threads(session_pool, segment_store):
    generator = LeafSegmentKeyGenerator(
        _props("test_table_2"), session_pool=session_pool, segment_store=segment_store
    )
    task_number = THREAD_NUMBER << 4
    actual = _generate_concurrently(generator, task_number)
    assert len(set(actual)) == task_number
    assert sorted(actual) == list(range(100001, 100001 + task_number))


def test_generate_key_with_digest(session_pool, segment_store):
    generator = LeafSegmentKeyGenerator(
        _props("test_table_3", digest="user1:1231"),
        session_pool=session_pool,
        segment_store=segment_store,
    )
    task_number = THREAD_NUMBER << 2
    assert len(set(_generate_concurrently(generator, task_number))) == task_number


def test_generate_key_with_wrong_digest(session_pool, segment_store):
    before = LeafSegmentKeyGenerator(
        _props("test_table_4", digest="user1:1231"),
        session_pool=session_pool,
        segment_store=segment_store,
    )
    before.generate_key()

    after = LeafSegmentKeyGenerator(
        _props("test_table_5", digest="user1:12"),
        session_pool=session_pool,
        segment_store=segment_store,
    )
    with pytest.raises(RegistryAuthError):
        after.generate_key()
    assert after.state == GeneratorState.FAILED
    # Failure is sticky and never falls back to a value.
    with pytest.raises(RegistryAuthError):
        after.generate_key()
    # The first generator keeps working.
    assert before.generate_key() == 100002


def test_anonymous_generator_rejected_on_authenticated_session(session_pool, segment_store):
    LeafSegmentKeyGenerator(
        _props("test_table_4", digest="user1:1231"),
        session_pool=session_pool,
        segment_store=segment_store,
    ).generate_key()
    anonymous = LeafSegmentKeyGenerator(
        _props("test_table_5"), session_pool=session_pool, segment_store=segment_store
    )
    with pytest.raises(RegistryAuthError):
        anonymous.generate_key()


def test_same_leaf_key_with_other_digest_is_auth_error(session_pool, segment_store):
    owner = LeafSegmentKeyGenerator(
        _props("test_table_21", digest="user1:1231"),
        session_pool=session_pool,
        segment_store=segment_store,
    )
    assert owner.generate_key() == 100001

    intruder = LeafSegmentKeyGenerator(
        _props("test_table_21", digest="user1:12"),
        session_pool=session_pool,
        segment_store=segment_store,
    )
    with pytest.raises(RegistryAuthError):
        intruder.generate_key()
    assert intruder.state == GeneratorState.FAILED
    # The rejected generator never took over the leaf key.
    assert owner.generate_key() == 100002


def test_generate_key_with_default_step(session_pool, segment_store):
    generator = LeafSegmentKeyGenerator(
        _props("test_table_6", step=None), session_pool=session_pool, segment_store=segment_store
    )
    task_number = THREAD_NUMBER << 2
    assert len(set(_generate_concurrently(generator, task_number))) == task_number
    assert generator.config.step == 1


def test_generate_key_with_default_initial_value(session_pool, segment_store):
    generator = LeafSegmentKeyGenerator(
        _props("test_table_7", initialValue=None),
        session_pool=session_pool,
        segment_store=segment_store,
    )
    assert [generator.generate_key() for _ in range(4)] == [0, 1, 2, 3]


def test_generate_key_with_default_registry_center_type(session_pool, segment_store):
    generator = LeafSegmentKeyGenerator(
        _props("test_table_8", registryCenterType=None),
        session_pool=session_pool,
        segment_store=segment_store,
    )
    task_number = THREAD_NUMBER << 2
    assert len(set(_generate_concurrently(generator, task_number))) == task_number
    assert generator.config.registry_center_type == "zookeeper"


@pytest.mark.parametrize(
    "overrides",
    [
        {"step": str(-1)},
        {"step": str(0)},
        {"step": str(MAX_VALUE)},
        {"step": "three"},
        {"initialValue": str(-1)},
        {"initialValue": str(MAX_VALUE)},
        {"serverList": None},
        {"serverList": ""},
        {"leafKey": "/test_table_16"},
        {"leafKey": ""},
        {"leafKey": None},
        {"registryCenterType": "alaca"},
        {"digest": "no-separator"},
    ],
)
def test_invalid_properties_rejected(session_pool, segment_store, overrides):
    generator = LeafSegmentKeyGenerator(
        _props("test_table_9", **overrides), session_pool=session_pool, segment_store=segment_store
    )
    with pytest.raises(InvalidConfigurationError):
        generator.generate_key()
    assert generator.state == GeneratorState.FAILED
    # Configuration errors surface before any registry I/O.
    assert len(session_pool) == 0
    with pytest.raises(InvalidConfigurationError):
        generator.generate_key()


def test_invalid_configuration_is_a_value_error(session_pool):
    generator = LeafSegmentKeyGenerator(_props("test_table_10", step="0"), session_pool=session_pool)
    with pytest.raises(ValueError):
        generator.generate_key()


def test_reconfigure_recovers_from_failure(session_pool, segment_store):
    generator = LeafSegmentKeyGenerator(
        _props("test_table_11", step="0"), session_pool=session_pool, segment_store=segment_store
    )
    with pytest.raises(InvalidConfigurationError):
        generator.generate_key()

    generator.properties = _props("test_table_11")
    assert generator.state == GeneratorState.UNCONFIGURED
    assert generator.generate_key() == 100001


def test_fast_path_does_not_touch_registry(session_pool, monkeypatch):
    calls = []
    original = MemoryRegistryCenter.compare_and_swap

    def counting_cas(self, path, expected_version, value):
        calls.append(value)
        return original(self, path, expected_version, value)

    monkeypatch.setattr(MemoryRegistryCenter, "compare_and_swap", counting_cas)
    generator = LeafSegmentKeyGenerator(_props("test_table_12", step="100"), session_pool=session_pool)
    keys = [generator.generate_key() for _ in range(100)]
    assert keys == list(range(100001, 100101))
    assert calls == ["100100"]


def test_generators_in_separate_processes_never_overlap(segment_store):
    # Two pools share the in-process registry the way two processes share a cluster.
    pools = [
        RegistrySessionPool(center_types={"zookeeper": MemoryRegistryCenter}) for _ in range(2)
    ]
    generators = [
        LeafSegmentKeyGenerator(_props("test_table_13"), session_pool=pool, segment_store=segment_store)
        for pool in pools
    ]
    seen: list[int] = []
    for _ in range(20):
        for generator in generators:
            seen.append(generator.generate_key())
    assert len(seen) == 40
    assert len(set(seen)) == 40
    assert min(seen) == 100001
    # Each refill leases 3 keys and each instance needed 7 segments.
    node = get_store(SERVER_LIST).nodes["/leaf_segment/test_table_13"]
    assert int(node.value) == 100000 + 2 * 7 * 3
    for pool in pools:
        pool.close()


def test_each_instance_is_monotonic(segment_store):
    pools = [
        RegistrySessionPool(center_types={"zookeeper": MemoryRegistryCenter}) for _ in range(3)
    ]
    generators = [
        LeafSegmentKeyGenerator(_props("test_table_14"), session_pool=pool, segment_store=segment_store)
        for pool in pools
    ]
    per_instance: list[list[int]] = [[] for _ in generators]
    for _ in range(10):
        for i, generator in enumerate(generators):
            per_instance[i].append(generator.generate_key())
    for keys in per_instance:
        assert keys == sorted(keys)
        assert len(set(keys)) == len(keys)


def test_concurrent_instances_never_overlap():
    # Three pools refill the same leaf key from many threads at once, so CAS conflicts really happen.
    store = SegmentStore(max_retries=64, retry_wait_ms=1)
    pools = [
        RegistrySessionPool(center_types={"zookeeper": MemoryRegistryCenter}) for _ in range(3)
    ]
    generators = [
        LeafSegmentKeyGenerator(_props("test_table_20", step="2"), session_pool=pool, segment_store=store)
        for pool in pools
    ]
    task_number = 600
    with ThreadPoolExecutor(max_workers=THREAD_NUMBER) as executor:
        futures = [
            executor.submit(generators[i % len(generators)].generate_key) for i in range(task_number)
        ]
        actual = [f.result() for f in futures]

    assert len(set(actual)) == task_number
    assert min(actual) >= 100001
    node = get_store(SERVER_LIST).nodes["/leaf_segment/test_table_20"]
    assert max(actual) <= int(node.value)
    for generator in generators:
        assert generator.state == GeneratorState.DISPENSING
    for pool in pools:
        pool.close()


def test_duplicate_generator_for_leaf_key_rejected(session_pool, segment_store):
    first = LeafSegmentKeyGenerator(
        _props("test_table_15"), session_pool=session_pool, segment_store=segment_store
    )
    first.generate_key()
    second = LeafSegmentKeyGenerator(
        _props("test_table_15"), session_pool=session_pool, segment_store=segment_store
    )
    with pytest.raises(LeafKeyConflictError):
        second.generate_key()

    first.close()
    third = LeafSegmentKeyGenerator(
        _props("test_table_15"), session_pool=session_pool, segment_store=segment_store
    )
    # Picks up after the segment the first generator leased.
    assert third.generate_key() == 100004


def test_range_exhausted_is_terminal(session_pool, segment_store):
    generator = LeafSegmentKeyGenerator(
        _props("test_table_16", initialValue=str(MAX_VALUE - 1), step="1"),
        session_pool=session_pool,
        segment_store=segment_store,
    )
    assert generator.generate_key() == MAX_VALUE - 1
    assert generator.generate_key() == MAX_VALUE
    with pytest.raises(RangeExhaustedError):
        generator.generate_key()
    assert generator.state == GeneratorState.EXHAUSTED
    with pytest.raises(RangeExhaustedError):
        generator.generate_key()


def test_contention_exceeded_is_retryable(session_pool, monkeypatch):
    store = SegmentStore(max_retries=2, retry_wait_ms=0)
    attempts = []
    original = MemoryRegistryCenter.compare_and_swap

    def losing_cas(self, path, expected_version, value):
        attempts.append(value)
        return False

    monkeypatch.setattr(MemoryRegistryCenter, "compare_and_swap", losing_cas)
    generator = LeafSegmentKeyGenerator(_props("test_table_17"), session_pool=session_pool, segment_store=store)
    with pytest.raises(ContentionExceededError) as exc_info:
        generator.generate_key()
    assert exc_info.value.retryable
    assert len(attempts) == 3
    assert generator.state == GeneratorState.VALIDATED

    monkeypatch.setattr(MemoryRegistryCenter, "compare_and_swap", original)
    assert generator.generate_key() == 100001


def test_registry_unavailable_is_retryable(session_pool, segment_store):
    generator = LeafSegmentKeyGenerator(
        _props("test_table_18"), session_pool=session_pool, segment_store=segment_store
    )
    assert [generator.generate_key() for _ in range(3)] == [100001, 100002, 100003]

    store = get_store(SERVER_LIST)
    store.online = False
    with pytest.raises(RegistryUnavailableError):
        generator.generate_key()
    assert generator.state == GeneratorState.DISPENSING

    store.online = True
    assert generator.generate_key() == 100004


def test_refill_is_single_flight(session_pool, monkeypatch):
    calls = []
    original = MemoryRegistryCenter.compare_and_swap

    def counting_cas(self, path, expected_version, value):
        calls.append(value)
        return original(self, path, expected_version, value)

    monkeypatch.setattr(MemoryRegistryCenter, "compare_and_swap", counting_cas)
    generator = LeafSegmentKeyGenerator(
        _props("test_table_19", step="1000"),
        session_pool=session_pool,
        segment_store=SegmentStore(max_retries=0, retry_wait_ms=0),
    )
    task_number = THREAD_NUMBER << 4
    actual = _generate_concurrently(generator, task_number)
    assert len(set(actual)) == task_number
    # One segment of 1000 covers every call, so exactly one refill happened.
    assert calls == ["101000"]
