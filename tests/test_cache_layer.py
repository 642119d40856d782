import asyncio
import json

from app.cache.layer import CacheLayer
from app.core.config import Settings
from app.models import UserRead


def user_payload(**overrides):
    data = {
        "id": "u1",
        "email": "owner@example.com",
        "name": "Olive Owner",
        "role": "USER",
        "created_at": "2026-01-01T00:00:00Z",
        "updated_at": "2026-01-01T00:00:00Z",
    }
    data.update(overrides)
    return data


async def test_set_then_get_validates_against_schema(cache, fake_redis):
    await cache.set("user:u1", user_payload())

    value = await cache.get("user:u1", schema=UserRead)

    assert isinstance(value, UserRead)
    assert value.email == "owner@example.com"
    assert fake_redis.ttls["pm:user:u1"] == 3600
    assert json.loads(fake_redis.store["pm:user:u1"])["name"] == "Olive Owner"


async def test_explicit_ttl_is_passed_to_redis(cache, fake_redis):
    await cache.set("k", {"a": 1}, ttl=60)

    assert fake_redis.ttls["pm:k"] == 60


async def test_loader_runs_once_then_hits(cache):
    calls = 0

    async def loader():
        nonlocal calls
        calls += 1
        return {"value": 42}

    first = await cache.get("answer", loader=loader)
    second = await cache.get("answer", loader=loader)

    assert first == second == {"value": 42}
    assert calls == 1
    assert cache.get_stats()["l2_hits"] == 1


async def test_loader_returning_none_is_not_cached(cache, fake_redis):
    async def loader():
        return None

    assert await cache.get("absent", loader=loader) is None
    assert "pm:absent" not in fake_redis.store


async def test_concurrent_misses_load_once(cache):
    calls = 0

    async def slow_loader():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.05)
        return {"value": "loaded"}

    results = await asyncio.gather(
        *(cache.get("hot", loader=slow_loader) for _ in range(5))
    )

    assert calls == 1
    assert all(r == {"value": "loaded"} for r in results)


async def test_backend_failure_reads_as_miss_and_writes_noop(cache, fake_redis):
    fake_redis.fail = True

    await cache.set("k", {"a": 1})
    assert await cache.get("k") is None
    await cache.delete("k")

    assert fake_redis.store == {}
    assert cache.stats["errors"] == 3


async def test_backend_failure_falls_through_to_loader(cache, fake_redis):
    fake_redis.fail = True

    async def loader():
        return {"from": "store"}

    assert await cache.get("k", loader=loader) == {"from": "store"}


async def test_slow_backend_is_bounded_by_timeout(cache, fake_redis):
    fake_redis.store["pm:k"] = json.dumps({"a": 1})
    fake_redis.delay = 0.5

    async def loader():
        return {"a": 2}

    value = await asyncio.wait_for(cache.get("k", loader=loader), timeout=2)

    assert value == {"a": 2}
    assert cache.stats["errors"] >= 1


async def test_invalid_payload_is_dropped_and_reported_as_miss(cache, fake_redis):
    fake_redis.store["pm:user:u1"] = json.dumps({"id": "u1"})

    assert await cache.get("user:u1", schema=UserRead) is None
    assert "pm:user:u1" not in fake_redis.store
    assert cache.stats["invalid"] == 1


async def test_non_json_payload_is_dropped(cache, fake_redis):
    fake_redis.store["pm:k"] = "{not json"

    assert await cache.get("k") is None
    assert "pm:k" not in fake_redis.store


async def test_undecodable_payload_is_dropped_and_reported_as_miss(cache, fake_redis):
    fake_redis.store["pm:k"] = b"\xff\xfe{}"

    assert await cache.get("k") is None
    assert "pm:k" not in fake_redis.store
    assert cache.stats["invalid"] == 1


async def test_undecodable_payload_falls_through_to_loader(cache, fake_redis):
    fake_redis.store["pm:k"] = b"\x80"

    async def loader():
        return {"a": 2}

    assert await cache.get("k", loader=loader) == {"a": 2}
    assert json.loads(fake_redis.store["pm:k"]) == {"a": 2}


async def test_delete_clears_process_local_tier(fake_redis):
    cache = CacheLayer(redis=fake_redis, settings=Settings(l1_maxsize=16))
    await cache.set("k", {"a": 1})
    assert await cache.get("k") == {"a": 1}
    assert cache.stats["l1_hits"] == 1

    await cache.delete("k")

    assert await cache.get("k") is None
    assert len(cache.l1) == 0


async def test_keys_are_namespaced(fake_redis):
    cache = CacheLayer(redis=fake_redis, settings=Settings(cache_namespace="other:", l1_maxsize=0))

    await cache.set("project:1", {"id": "1"})

    assert list(fake_redis.store) == ["other:project:1"]
