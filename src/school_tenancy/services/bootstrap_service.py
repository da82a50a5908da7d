"""
# Tenant Bootstrapper

Prepares a new school's database the first time the school is used:

1. Creates the indexes of every role collection (`userId_unique`, `created_at`).
2. Optionally seeds a placeholder document into each role collection and into `id_sequences`
   so the collections physically exist. Accessors never return or count placeholders.
3. Creates the (school, role) identifier counters, reconciled with any existing records.
4. Writes a `{"_id": "bootstrap"}` marker into `tenant_meta`.

Every step is an upsert or an idempotent index build, so running the bootstrap twice, or from
two processes at once, leaves the database in the same state. Within one process concurrent
callers for the same school share a single run.
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, Optional, Set

from pymongo.errors import DuplicateKeyError, PyMongoError

from school_tenancy.config import Settings, settings
from school_tenancy.database.entity_accessor import PLACEHOLDER_FIELD, PLACEHOLDER_ID
from school_tenancy.database.model_factory import SchemaBinder
from school_tenancy.database.registry import TenantConnection, TenantConnectionRegistry
from school_tenancy.exceptions import translate_storage_error
from school_tenancy.managers.logging_manager import get_logger
from school_tenancy.models.tenant_models import Role, canonical_tenant_key, role_entity
from school_tenancy.services.identifier_service import SequentialIdentifierAllocator
from school_tenancy.utils.timeouts import run_with_timeout

logger = get_logger(prefix="[TenantBootstrap]")

BOOTSTRAP_MARKER_ID = "bootstrap"


class TenantBootstrapper:
    """Idempotent initialisation of tenant databases."""

    def __init__(
        self,
        registry: TenantConnectionRegistry,
        binder: SchemaBinder,
        allocator: SequentialIdentifierAllocator,
        config: Optional[Settings] = None,
    ):
        self.registry = registry
        self.binder = binder
        self.allocator = allocator
        self.settings = config or settings
        self._initialized: Set[str] = set()
        self._locks: Dict[str, asyncio.Lock] = {}

    async def ensure_tenant_initialized(self, tenant_key: str, timeout: Optional[float] = None) -> bool:
        """
        Make sure the school's collections, indexes and counters exist.

        Returns:
            bool: `True` if this call ran the bootstrap, `False` if the school was already initialised.

        Raises:
            InvalidArgumentError, TenantConnectionError, StorageError, OperationTimeoutError
        """
        key = canonical_tenant_key(tenant_key)
        if key in self._initialized:
            return False
        deadline = self.settings.STORAGE_OPERATION_TIMEOUT if timeout is None else timeout
        return await run_with_timeout(self._initialize_once(key), deadline, "ensure_tenant_initialized", {"tenant": key})

    async def _initialize_once(self, key: str) -> bool:
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            if key in self._initialized:
                return False
            connection = await self.registry.resolve(key)
            await self._bootstrap(connection)
            self._initialized.add(key)
            return True

    async def _bootstrap(self, connection: TenantConnection) -> None:
        key = connection.tenant_key
        logger.info("Initializing database for school: %s", key)
        seed = self.settings.BOOTSTRAP_SEED_PLACEHOLDERS

        for role in Role:
            accessor = self.binder.bind(connection, role_entity(role))
            await accessor.ensure_indexes()
            if seed:
                await self._seed_placeholder(connection, accessor.collection_name)
            await self.allocator.ensure_counter(key, role)

        if seed:
            await self._seed_placeholder(connection, self.settings.ID_SEQUENCES_COLLECTION)

        meta = connection.get_collection(self.settings.TENANT_META_COLLECTION)
        try:
            await meta.update_one(
                {"_id": BOOTSTRAP_MARKER_ID},
                {
                    "$setOnInsert": {"school_code": key, "created_at": datetime.now(timezone.utc)},
                    "$set": {"roles": [role.value for role in Role], "updated_at": datetime.now(timezone.utc)},
                },
                upsert=True,
            )
        except PyMongoError as exc:
            raise translate_storage_error(exc, "ensure_tenant_initialized", tenant=key) from exc
        logger.info("Database initialized for school: %s", key)

    async def _seed_placeholder(self, connection: TenantConnection, collection_name: str) -> None:
        # Match on the flag: schools created earlier hold placeholders with generated _ids
        try:
            await connection.get_collection(collection_name).update_one(
                {PLACEHOLDER_FIELD: True},
                {"$setOnInsert": {"_id": PLACEHOLDER_ID}},
                upsert=True,
            )
        except DuplicateKeyError:
            logger.debug("Placeholder already present in %s", collection_name)
            return
        except PyMongoError as exc:
            raise translate_storage_error(
                exc, "seed_placeholder", tenant=connection.tenant_key, collection=collection_name
            ) from exc
        logger.debug("Created collection: %s", collection_name)

    async def is_tenant_initialized(self, tenant_key: str) -> bool:
        """Whether the school carries the bootstrap marker (checked in the database, not just in memory)."""
        key = canonical_tenant_key(tenant_key)
        if key in self._initialized:
            return True
        connection = await self.registry.resolve(key)
        try:
            marker = await connection.get_collection(self.settings.TENANT_META_COLLECTION).find_one(
                {"_id": BOOTSTRAP_MARKER_ID}
            )
        except PyMongoError as exc:
            raise translate_storage_error(exc, "is_tenant_initialized", tenant=key) from exc
        return marker is not None

    def forget(self, tenant_key: str) -> None:
        """Drop the in-memory initialised flag so the next call re-runs the (idempotent) bootstrap."""
        self._initialized.discard(canonical_tenant_key(tenant_key))
