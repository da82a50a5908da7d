"""
# Tenant Connection Registry

Maps a school code to a cached, isolated MongoDB database handle.

## Architecture Overview

```
 resolve("nps") ──▶ canonical_tenant_key() ──▶ "NPS"
                                                │
                         cache hit? ────────────┤── yes ──▶ TenantConnection (no I/O)
                                                │
                                   per-key asyncio.Lock (single flight)
                                                │
                         shared AsyncIOMotorClient["school_nps"] ── ping ──▶ cache
```

- One `AsyncIOMotorClient` (one connection pool) serves the whole cluster; every tenant gets
  its own database, named `TENANT_DATABASE_PREFIX + code.lower()`.
- Cache hits never await, so concurrent lookups of open tenants never block each other.
- First-time resolutions of the same school are serialised on a per-key lock; different
  schools open in parallel.
- A failed ping is never cached: the caller gets `TenantConnectionError` and may retry.
- `close_all()` releases every handle and the client; the registry then rejects all calls
  with `RegistryClosedError` and does not re-initialise.

## Usage

```python
registry = TenantConnectionRegistry()
connection = await registry.resolve("nps")
teachers = connection.get_collection("teachers")
...
await registry.close_all()
```

## Thread Safety

Designed for **asyncio**: all calls must come from the event loop that owns the registry.
"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from school_tenancy.config import Settings, settings
from school_tenancy.exceptions import (
    RegistryClosedError,
    translate_connection_error,
    translate_storage_error,
)
from school_tenancy.managers.logging_manager import get_logger
from school_tenancy.models.tenant_models import canonical_tenant_key
from school_tenancy.utils.timeouts import run_with_timeout

db_logger = get_logger(prefix="[TenantRegistry]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")
health_logger = get_logger(prefix="[DB_HEALTH]")

ClientFactory = Callable[[], AsyncIOMotorClient]


class TenantConnection:
    """
    Handle to one school's isolated database.

    Created only by `TenantConnectionRegistry`; reused for the life of the process and
    released by `TenantConnectionRegistry.close()` / `close_all()`.

    Attributes:
        tenant_key (str): Canonical (uppercase) school code.
        namespace (str): Database name, e.g. `school_nps`.
        database (AsyncIOMotorDatabase): The underlying Motor database.
        opened_at (float): Epoch seconds at which the handle was verified.
    """

    def __init__(self, tenant_key: str, namespace: str, database: AsyncIOMotorDatabase):
        self.tenant_key = tenant_key
        self.namespace = namespace
        self.database = database
        self.opened_at = time.time()
        self._released = False

    @property
    def closed(self) -> bool:
        return self._released

    def _ensure_usable(self) -> None:
        if self._released:
            raise RegistryClosedError(
                f"Connection for tenant '{self.tenant_key}' has been released",
                {"tenant": self.tenant_key, "namespace": self.namespace},
            )

    def get_collection(self, collection_name: str) -> AsyncIOMotorCollection:
        """Return a collection of this tenant's database (collections are created lazily on write)."""
        self._ensure_usable()
        return self.database[collection_name]

    async def ping(self) -> None:
        """Round-trip to the server through this tenant's database."""
        self._ensure_usable()
        await self.database.command("ping")

    async def list_collection_names(self) -> List[str]:
        self._ensure_usable()
        try:
            return await self.database.list_collection_names()
        except PyMongoError as exc:
            raise translate_storage_error(exc, "list_collection_names", tenant=self.tenant_key) from exc

    async def database_stats(self) -> Dict[str, Any]:
        """Size and object counts of the tenant database (`dbStats`)."""
        self._ensure_usable()
        try:
            stats = await self.database.command("dbStats")
            collections = await self.database.list_collection_names()
        except PyMongoError as exc:
            raise translate_storage_error(exc, "database_stats", tenant=self.tenant_key) from exc
        data_size = stats.get("dataSize", 0)
        index_size = stats.get("indexSize", 0)
        return {
            "school_code": self.tenant_key,
            "database_name": self.namespace,
            "collections": len(collections),
            "data_size": data_size,
            "index_size": index_size,
            "total_size": data_size + index_size,
            "documents": stats.get("objects", 0),
        }

    def _release(self) -> None:
        self._released = True

    def __repr__(self) -> str:
        state = "released" if self._released else "open"
        return f"TenantConnection(tenant={self.tenant_key!r}, namespace={self.namespace!r}, {state})"


class TenantConnectionRegistry:
    """
    Lazily creates and caches one `TenantConnection` per school code.

    **Lifecycle:**
    1. **Instantiation**: no I/O; the Motor client is created on first `resolve()`.
    2. **Resolution**: `resolve()` returns the cached handle or opens and verifies a new one.
    3. **Teardown**: `close_all()` releases every handle and closes the client.

    Attributes:
        settings (`Settings`): Connection and naming configuration.

    Example:
        ```python
        registry = TenantConnectionRegistry()
        a = await registry.resolve("p")
        b = await registry.resolve("P")
        assert a is b
        ```
    """

    def __init__(self, config: Optional[Settings] = None, client_factory: Optional[ClientFactory] = None):
        """
        Args:
            config: Settings to use; defaults to the global `settings`.
            client_factory: Zero-argument callable returning a Motor-compatible client.
                Defaults to building an `AsyncIOMotorClient` from `config`.
        """
        self.settings = config or settings
        self._client_factory = client_factory or self._build_motor_client
        self._client: Optional[AsyncIOMotorClient] = None
        self._connections: Dict[str, TenantConnection] = {}
        self._creation_locks: Dict[str, asyncio.Lock] = {}
        self._closed = False
        self._connections_opened = 0
        self._failed_attempts = 0

    def _build_motor_client(self) -> AsyncIOMotorClient:
        db_logger.info(
            "MongoDB client config - URL: %s, MaxPool: %d, MinPool: %d, ServerTimeout: %dms, ConnTimeout: %dms",
            self.settings.redacted_mongodb_url,
            self.settings.MONGODB_MAX_POOL_SIZE,
            self.settings.MONGODB_MIN_POOL_SIZE,
            self.settings.MONGODB_SERVER_SELECTION_TIMEOUT,
            self.settings.MONGODB_CONNECTION_TIMEOUT,
        )
        return AsyncIOMotorClient(
            self.settings.mongodb_connection_string,
            serverSelectionTimeoutMS=self.settings.MONGODB_SERVER_SELECTION_TIMEOUT,
            connectTimeoutMS=self.settings.MONGODB_CONNECTION_TIMEOUT,
            maxPoolSize=self.settings.MONGODB_MAX_POOL_SIZE,
            minPoolSize=self.settings.MONGODB_MIN_POOL_SIZE,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def tenant_keys(self) -> List[str]:
        return sorted(self._connections)

    def namespace_for(self, tenant_key: str) -> str:
        """Database name for a school code; pure, performs no I/O."""
        return f"{self.settings.TENANT_DATABASE_PREFIX}{canonical_tenant_key(tenant_key).lower()}"

    def _ensure_open(self) -> None:
        if self._closed:
            raise RegistryClosedError("Tenant connection registry has been closed")

    def _get_client(self) -> AsyncIOMotorClient:
        if self._client is None:
            self._client = self._client_factory()
            db_logger.debug("Created cluster client")
        return self._client

    def get_cached(self, tenant_key: str) -> Optional[TenantConnection]:
        """Cached handle for a school, or `None` if it was never resolved."""
        self._ensure_open()
        return self._connections.get(canonical_tenant_key(tenant_key))

    async def resolve(self, tenant_key: str, timeout: Optional[float] = None) -> TenantConnection:
        """
        Return the connection for a school, opening it on first use.

        Args:
            tenant_key: School code in any case, e.g. `"nps"`.
            timeout: Deadline in seconds for opening a new connection; defaults to
                `TENANT_RESOLVE_TIMEOUT`. Cache hits return immediately.

        Raises:
            InvalidArgumentError: Empty or malformed school code.
            TenantConnectionError: The cluster could not be reached; nothing is cached.
            OperationTimeoutError: Opening did not finish within `timeout`.
            RegistryClosedError: `close_all()` has been called.
        """
        self._ensure_open()
        key = canonical_tenant_key(tenant_key)
        connection = self._connections.get(key)
        if connection is not None:
            return connection

        deadline = self.settings.TENANT_RESOLVE_TIMEOUT if timeout is None else timeout
        return await run_with_timeout(self._open_once(key), deadline, "resolve", {"tenant": key})

    async def _open_once(self, key: str) -> TenantConnection:
        lock = self._creation_locks.setdefault(key, asyncio.Lock())
        async with lock:
            self._ensure_open()
            connection = self._connections.get(key)
            if connection is not None:
                return connection

            connection = await self._open(key)
            if self._closed:
                connection._release()
                raise RegistryClosedError("Tenant connection registry was closed while opening a connection")
            self._connections[key] = connection
            return connection

    async def _open(self, key: str) -> TenantConnection:
        namespace = self.namespace_for(key)
        start_time = time.time()
        db_logger.info("Opening tenant database %s for school %s", namespace, key)

        database = self._get_client()[namespace]
        try:
            await database.command("ping")
        except PyMongoError as exc:
            self._failed_attempts += 1
            duration = time.time() - start_time
            perf_logger.warning("Tenant database %s failed to open after %.3fs", namespace, duration)
            db_logger.error("Failed to open tenant database %s: %s", namespace, exc)
            raise translate_connection_error(exc, namespace) from exc

        self._connections_opened += 1
        duration = time.time() - start_time
        perf_logger.info("Tenant database %s opened in %.3fs", namespace, duration)
        return TenantConnection(key, namespace, database)

    async def close(self, tenant_key: str) -> bool:
        """
        Release one school's handle. The next `resolve()` for it opens a fresh handle.

        Prefer `SchoolDataCore.release_tenant`, which also drops the school's schema bindings.
        Bindings left behind by a direct call are pruned by the binder
        the next time it binds a new entity.

        Returns:
            bool: `True` if a cached handle was released.
        """
        self._ensure_open()
        key = canonical_tenant_key(tenant_key)
        connection = self._connections.pop(key, None)
        if connection is None:
            return False
        connection._release()
        db_logger.info("Released connection for school %s", key)
        return True

    async def close_all(self) -> None:
        """Release every handle and close the cluster client. Safe to call twice."""
        if self._closed:
            db_logger.debug("close_all called on an already closed registry")
            return
        start_time = time.time()
        self._closed = True
        db_logger.info("Closing %d tenant connections", len(self._connections))

        for key, connection in list(self._connections.items()):
            connection._release()
            db_logger.debug("Released connection for school %s", key)
        self._connections.clear()
        self._creation_locks.clear()

        if self._client is not None:
            self._client.close()
            self._client = None
        perf_logger.info("Tenant registry closed in %.3fs", time.time() - start_time)

    async def health_check(self) -> bool:
        """
        Ping the cluster. Returns `False` instead of raising so it can back a health endpoint.
        """
        if self._closed:
            health_logger.warning("Health check on a closed registry")
            return False
        start_time = time.time()
        try:
            await self._get_client().admin.command("ping")
        except PyMongoError as e:
            health_logger.error("Cluster health check failed after %.3fs: %s", time.time() - start_time, e)
            return False
        perf_logger.debug("Cluster health check passed in %.3fs", time.time() - start_time)
        return True

    def stats(self) -> Dict[str, Any]:
        return {
            "closed": self._closed,
            "connections_opened": self._connections_opened,
            "failed_attempts": self._failed_attempts,
            "cached_connections": len(self._connections),
            "tenants": self.tenant_keys,
        }
