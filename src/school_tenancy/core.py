"""
# School Data Core

Composition root of the tenancy core. Builds and owns one instance of every component and
exposes the operations business-logic layers call:

| Operation                      | Delegates to                                   |
|--------------------------------|------------------------------------------------|
| `resolve_connection(code)`     | `TenantConnectionRegistry.resolve`             |
| `bind_entity(conn, entity)`    | `SchemaBinder.bind`                            |
| `next_identifier(code, role)`  | `SequentialIdentifierAllocator.next_identifier`|
| `ensure_tenant_initialized()`  | `TenantBootstrapper.ensure_tenant_initialized` |

## Usage

```python
async with SchoolDataCore() as core:
    await core.ensure_tenant_initialized("nps")
    user_id = await core.next_identifier("nps", "teacher")      # "NPS-T-0001"
    record = await core.people.create_person("nps", "student", {"name": "Asha"})
```

There is no module-level instance: the application creates one core at startup (see
`school_tenancy.middleware.school_context.school_core_lifespan`) and shuts it down on exit.
"""

from typing import Optional, Union

from school_tenancy.config import Settings, settings
from school_tenancy.database.entity_accessor import EntityAccessor
from school_tenancy.database.model_factory import SchemaBinder
from school_tenancy.database.registry import ClientFactory, TenantConnection, TenantConnectionRegistry
from school_tenancy.managers.logging_manager import get_logger
from school_tenancy.models.tenant_models import EntityDescriptor, Role
from school_tenancy.services.bootstrap_service import TenantBootstrapper
from school_tenancy.services.identifier_service import SequentialIdentifierAllocator
from school_tenancy.services.person_service import PersonRecordService

logger = get_logger(prefix="[SchoolDataCore]")


class SchoolDataCore:
    """
    Owns the registry, binder, allocator, bootstrapper and person service.

    Attributes:
        settings (`Settings`): Shared configuration.
        registry (`TenantConnectionRegistry`): Tenant connection cache.
        binder (`SchemaBinder`): Entity binding memo.
        allocator (`SequentialIdentifierAllocator`): Identifier counters.
        bootstrapper (`TenantBootstrapper`): First-use tenant initialisation.
        people (`PersonRecordService`): Allocate-and-insert for person records.
    """

    def __init__(self, config: Optional[Settings] = None, client_factory: Optional[ClientFactory] = None):
        self.settings = config or settings
        self.registry = TenantConnectionRegistry(self.settings, client_factory)
        self.binder = SchemaBinder()
        self.allocator = SequentialIdentifierAllocator(self.registry, self.binder, self.settings)
        self.bootstrapper = TenantBootstrapper(self.registry, self.binder, self.allocator, self.settings)
        self.people = PersonRecordService(self.registry, self.binder, self.allocator)

    @property
    def closed(self) -> bool:
        return self.registry.closed

    async def resolve_connection(self, tenant_key: str, timeout: Optional[float] = None) -> TenantConnection:
        return await self.registry.resolve(tenant_key, timeout=timeout)

    def bind_entity(
        self, connection: TenantConnection, entity: EntityDescriptor, collection_name: Optional[str] = None
    ) -> EntityAccessor:
        return self.binder.bind(connection, entity, collection_name)

    async def next_identifier(
        self, tenant_key: str, role: Union[Role, str], timeout: Optional[float] = None
    ) -> str:
        return await self.allocator.next_identifier(tenant_key, role, timeout=timeout)

    async def peek_next_identifier(
        self, tenant_key: str, role: Union[Role, str], timeout: Optional[float] = None
    ) -> str:
        return await self.allocator.peek_next_identifier(tenant_key, role, timeout=timeout)

    async def ensure_tenant_initialized(self, tenant_key: str, timeout: Optional[float] = None) -> bool:
        return await self.bootstrapper.ensure_tenant_initialized(tenant_key, timeout=timeout)

    async def release_tenant(self, tenant_key: str) -> bool:
        """Close one school's connection and drop its bindings."""
        connection = self.registry.get_cached(tenant_key)
        if connection is not None:
            self.binder.forget(connection)
        return await self.registry.close(tenant_key)

    async def shutdown(self) -> None:
        """Release every tenant connection. Later calls into the core raise `RegistryClosedError`."""
        self.binder.clear()
        await self.registry.close_all()
        logger.info("School data core shut down")

    async def __aenter__(self) -> "SchoolDataCore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()
