"""
# Sequential Identifier Allocator

Hands out `{TENANT}-{ROLECODE}-{NNNN}` identifiers (`P-A-0001`, `NPS-T-0023`, ...).

## Allocation

Each (school, role) pair owns a counter document in the tenant's `id_sequences` collection:

```
{ "_id": "teacher_sequence", "sequence_value": 23, "school_code": "NPS", "role": "teacher" }
```

`next_identifier()` bumps it with a single `find_one_and_update({"$inc": ...}, upsert=True)`.
The increment is atomic on the server, so concurrent callers (tasks, processes or nodes) always
receive distinct values, and values released by deleted records are never handed out again.

## Reconciliation with existing records

Records created before the counter existed still carry identifiers. The first allocation for a
(school, role) in this process scans the role collection for identifiers matching
`^{prefix}\\d{4}$` (case-insensitive), takes the highest suffix and raises the counter to at least
that value with `$max`. `$max` only ever moves the counter up, so concurrent reconciliations,
including from other processes, are harmless.

## Overflow

Sequences are zero-padded to `IDENTIFIER_SEQUENCE_WIDTH` digits (4). Once a counter passes
`9999`, allocation fails with `SequenceExhaustedError`; the width is never widened implicitly.
"""

import asyncio
import re
import time
from datetime import datetime, timezone
from typing import Dict, Optional, Set, Tuple, Union

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from school_tenancy.config import Settings, settings
from school_tenancy.database.entity_accessor import EntityAccessor
from school_tenancy.database.model_factory import SchemaBinder
from school_tenancy.database.registry import TenantConnection, TenantConnectionRegistry
from school_tenancy.exceptions import translate_storage_error
from school_tenancy.managers.logging_manager import get_logger
from school_tenancy.models.tenant_models import (
    IDENTIFIER_FIELD,
    Role,
    SequenceCounter,
    canonical_tenant_key,
    role_entity,
)
from school_tenancy.utils.identifiers import (
    extract_sequence,
    format_identifier,
    identifier_pattern,
    identifier_prefix,
)
from school_tenancy.utils.timeouts import run_with_timeout

logger = get_logger(prefix="[IdAllocator]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")


class SequentialIdentifierAllocator:
    """
    Allocates unique sequential identifiers per (school, role).

    Attributes:
        registry (`TenantConnectionRegistry`): Source of tenant connections.
        binder (`SchemaBinder`): Binds role collections for the reconciliation scan.
        settings (`Settings`): Width, counter collection and default deadline.
    """

    def __init__(
        self,
        registry: TenantConnectionRegistry,
        binder: SchemaBinder,
        config: Optional[Settings] = None,
    ):
        self.registry = registry
        self.binder = binder
        self.settings = config or settings
        self._reconciled: Set[Tuple[str, Role]] = set()
        self._reconcile_locks: Dict[Tuple[str, Role], asyncio.Lock] = {}

    @property
    def width(self) -> int:
        return self.settings.IDENTIFIER_SEQUENCE_WIDTH

    def _counters(self, connection: TenantConnection):
        return connection.get_collection(self.settings.ID_SEQUENCES_COLLECTION)

    def _deadline(self, timeout: Optional[float]) -> float:
        return self.settings.STORAGE_OPERATION_TIMEOUT if timeout is None else timeout

    async def next_identifier(self, tenant_key: str, role: Union[Role, str], timeout: Optional[float] = None) -> str:
        """
        Reserve and return the next identifier for a school and role.

        Args:
            tenant_key: School code in any case.
            role: `Role` member or role name (`"admin"`, `"teacher"`, ...).
            timeout: Deadline in seconds; defaults to `STORAGE_OPERATION_TIMEOUT`.

        Returns:
            str: e.g. `"P-A-0001"`.

        Raises:
            InvalidArgumentError / InvalidRoleError: Bad school code or role.
            TenantConnectionError: The school's database could not be opened.
            StorageError: Scanning or updating the counter failed.
            SequenceExhaustedError: The 4-digit space for this (school, role) is used up.
            OperationTimeoutError: The deadline expired.
        """
        role = Role.parse(role)
        key = canonical_tenant_key(tenant_key)
        return await run_with_timeout(
            self._allocate(key, role),
            self._deadline(timeout),
            "next_identifier",
            {"tenant": key, "role": role.value},
        )

    async def _allocate(self, key: str, role: Role) -> str:
        start_time = time.time()
        connection = await self.registry.resolve(key)
        accessor = self.binder.bind(connection, role_entity(role))
        await self._reconcile(connection, accessor, role)

        try:
            counter = await self._counters(connection).find_one_and_update(
                {"_id": SequenceCounter.key_for(role)},
                {
                    "$inc": {"sequence_value": 1},
                    "$set": {"updated_at": datetime.now(timezone.utc)},
                    "$setOnInsert": {"school_code": key, "role": role.value},
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as exc:
            logger.error("Counter update failed for %s/%s: %s", key, role.value, exc)
            raise translate_storage_error(exc, "next_identifier", tenant=key, role=role.value) from exc

        sequence = SequenceCounter.model_validate(counter).sequence_value
        identifier = format_identifier(key, role, sequence, self.width)
        perf_logger.debug("Allocated %s in %.3fs", identifier, time.time() - start_time)
        logger.info("Generated new user ID: %s", identifier)
        return identifier

    async def peek_next_identifier(
        self, tenant_key: str, role: Union[Role, str], timeout: Optional[float] = None
    ) -> str:
        """
        Preview the identifier the next allocation would return, without reserving it.

        A concurrent allocation may take the previewed value; only `next_identifier()` reserves.
        """
        role = Role.parse(role)
        key = canonical_tenant_key(tenant_key)
        return await run_with_timeout(
            self._peek(key, role),
            self._deadline(timeout),
            "peek_next_identifier",
            {"tenant": key, "role": role.value},
        )

    async def _peek(self, key: str, role: Role) -> str:
        connection = await self.registry.resolve(key)
        accessor = self.binder.bind(connection, role_entity(role))
        try:
            counter = await self._counters(connection).find_one({"_id": SequenceCounter.key_for(role)})
        except PyMongoError as exc:
            raise translate_storage_error(exc, "peek_next_identifier", tenant=key, role=role.value) from exc
        current = SequenceCounter.model_validate(counter).sequence_value if counter else 0
        if (connection.namespace, role) not in self._reconciled:
            current = max(current, await self.scan_highest_sequence(accessor, key, role))
        return format_identifier(key, role, current + 1, self.width)

    async def ensure_counter(self, tenant_key: str, role: Union[Role, str]) -> None:
        """Create the (school, role) counter if missing and reconcile it with existing records."""
        role = Role.parse(role)
        connection = await self.registry.resolve(tenant_key)
        accessor = self.binder.bind(connection, role_entity(role))
        await self._reconcile(connection, accessor, role)

    async def _reconcile(self, connection: TenantConnection, accessor: EntityAccessor, role: Role) -> None:
        marker = (connection.namespace, role)
        if marker in self._reconciled:
            return
        lock = self._reconcile_locks.setdefault(marker, asyncio.Lock())
        async with lock:
            if marker in self._reconciled:
                return
            key = connection.tenant_key
            highest = await self.scan_highest_sequence(accessor, key, role)
            update = {
                "$max": {"sequence_value": highest},
                "$setOnInsert": {"school_code": key, "role": role.value},
            }
            counters = self._counters(connection)
            try:
                try:
                    await counters.update_one({"_id": SequenceCounter.key_for(role)}, update, upsert=True)
                except DuplicateKeyError:
                    # Lost an upsert race against another process; the document exists now.
                    await counters.update_one({"_id": SequenceCounter.key_for(role)}, update)
            except PyMongoError as exc:
                raise translate_storage_error(exc, "reconcile_counter", tenant=key, role=role.value) from exc
            self._reconciled.add(marker)
            logger.debug("Counter %s/%s reconciled to at least %d", key, role.value, highest)

    async def scan_highest_sequence(self, accessor: EntityAccessor, tenant_key: str, role: Role) -> int:
        """
        Highest sequence among existing identifiers of a school and role (0 when none).

        Only identifiers with this school's prefix and this role's code count, so `P-A-0007`
        stored in `teachers` never raises the teacher counter.
        """
        prefix = identifier_prefix(tenant_key, role)
        pattern = identifier_pattern(tenant_key, role, self.width)
        query = {IDENTIFIER_FIELD: {"$regex": rf"^{re.escape(prefix)}\d{{{self.width}}}$", "$options": "i"}}
        logger.debug("Searching for existing IDs with pattern: %s", prefix)

        highest = 0
        found = 0
        try:
            async for document in accessor.find(query, {IDENTIFIER_FIELD: 1}):
                sequence = extract_sequence(document.get(IDENTIFIER_FIELD), pattern)
                if sequence is None:
                    continue
                found += 1
                highest = max(highest, sequence)
        except PyMongoError as exc:
            logger.error("Identifier scan failed on %s: %s", accessor.collection_name, exc)
            raise translate_storage_error(
                exc, "scan_identifiers", tenant=tenant_key, role=role.value, collection=accessor.collection_name
            ) from exc
        logger.debug("Found %d existing users with pattern %s (max: %d)", found, prefix, highest)
        return highest
