import asyncio

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from school_tenancy.database.registry import TenantConnection, TenantConnectionRegistry
from school_tenancy.exceptions import (
    InvalidArgumentError,
    OperationTimeoutError,
    RegistryClosedError,
    TenantConnectionError,
)


@pytest.mark.asyncio
async def test_resolve_is_idempotent(registry, fake_client):
    """Resolving the same school twice returns the cached handle without reopening it."""
    first = await registry.resolve("P")
    second = await registry.resolve("P")

    assert first is second
    assert fake_client.ping_count == 1
    assert registry.stats()["connections_opened"] == 1


@pytest.mark.asyncio
async def test_resolve_normalises_case(registry, fake_client):
    lower = await registry.resolve("nps")
    upper = await registry.resolve(" NPS ")

    assert lower is upper
    assert lower.tenant_key == "NPS"
    assert lower.namespace == "school_nps"
    assert fake_client.ping_count == 1


@pytest.mark.asyncio
async def test_concurrent_first_resolution_opens_once(registry, fake_client):
    handles = await asyncio.gather(*(registry.resolve("z") for _ in range(25)))

    assert all(handle is handles[0] for handle in handles)
    assert fake_client.ping_count == 1


@pytest.mark.asyncio
async def test_different_schools_get_different_databases(registry):
    a, b = await asyncio.gather(registry.resolve("A"), registry.resolve("B"))

    assert a is not b
    assert a.namespace == "school_a"
    assert b.namespace == "school_b"
    assert registry.tenant_keys == ["A", "B"]


@pytest.mark.asyncio
@pytest.mark.parametrize("bad_key", ["", "   ", None, 42, "school-1", "x" * 33, "ünï"])
async def test_invalid_tenant_key_rejected(registry, fake_client, bad_key):
    with pytest.raises(InvalidArgumentError):
        await registry.resolve(bad_key)
    assert fake_client.ping_count == 0


@pytest.mark.asyncio
async def test_failed_resolution_is_not_cached(registry, fake_client):
    fake_client.fail_with = ServerSelectionTimeoutError("no servers available")

    with pytest.raises(TenantConnectionError) as exc_info:
        await registry.resolve("P")
    assert exc_info.value.context["namespace"] == "school_p"
    assert registry.get_cached("P") is None

    fake_client.fail_with = None
    connection = await registry.resolve("P")

    assert isinstance(connection, TenantConnection)
    stats = registry.stats()
    assert stats["failed_attempts"] == 1
    assert stats["connections_opened"] == 1


@pytest.mark.asyncio
async def test_resolve_times_out(registry, fake_client):
    fake_client.ping_delay = 0.5

    with pytest.raises(OperationTimeoutError):
        await registry.resolve("slow", timeout=0.05)
    assert registry.get_cached("slow") is None

    fake_client.ping_delay = 0
    assert (await registry.resolve("slow")).tenant_key == "SLOW"


@pytest.mark.asyncio
async def test_cancelled_resolution_propagates(registry, fake_client):
    fake_client.ping_delay = 0.5
    task = asyncio.create_task(registry.resolve("P"))
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert registry.get_cached("P") is None


@pytest.mark.asyncio
async def test_close_releases_single_tenant(registry, fake_client):
    first = await registry.resolve("P")

    assert await registry.close("p") is True
    assert first.closed
    with pytest.raises(RegistryClosedError):
        first.get_collection("teachers")

    second = await registry.resolve("P")
    assert second is not first
    assert fake_client.ping_count == 2
    assert await registry.close("unknown") is False


@pytest.mark.asyncio
async def test_close_all_rejects_further_calls(registry, fake_client):
    connection = await registry.resolve("P")

    await registry.close_all()
    await registry.close_all()

    assert registry.closed
    assert connection.closed
    assert fake_client.closed
    with pytest.raises(RegistryClosedError):
        await registry.resolve("P")
    with pytest.raises(RegistryClosedError):
        registry.get_cached("P")
    assert await registry.health_check() is False


@pytest.mark.asyncio
async def test_client_created_lazily(test_settings, fake_client):
    calls = []

    def factory():
        calls.append(1)
        return fake_client

    registry = TenantConnectionRegistry(test_settings, client_factory=factory)
    assert calls == []

    await registry.resolve("A")
    await registry.resolve("B")
    assert calls == [1]


@pytest.mark.asyncio
async def test_health_check(registry, fake_client):
    assert await registry.health_check() is True

    fake_client.fail_with = ServerSelectionTimeoutError("down")
    assert await registry.health_check() is False


@pytest.mark.asyncio
async def test_database_stats_and_collections(registry):
    connection = await registry.resolve("P")
    await connection.get_collection("teachers").insert_one({"userId": "P-T-0001"})

    stats = await connection.database_stats()
    assert stats["school_code"] == "P"
    assert stats["database_name"] == "school_p"
    assert stats["collections"] == 1
    assert stats["documents"] == 1
    assert stats["total_size"] == stats["data_size"] + stats["index_size"]
    assert await connection.list_collection_names() == ["teachers"]


def test_namespace_for_is_pure(registry, fake_client):
    assert registry.namespace_for("Nps") == "school_nps"
    assert fake_client.ping_count == 0
