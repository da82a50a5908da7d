"""
# Database Package

Persistence layer of the tenancy core, built on **Motor**.

- **`registry`**: `TenantConnectionRegistry` and the `TenantConnection` handle (one database per school).
- **`model_factory`**: `SchemaBinder`, which binds entity schemas to a tenant connection.
- **`entity_accessor`**: `EntityAccessor`, the bound, tenant-scoped CRUD interface.
"""

from school_tenancy.database.entity_accessor import PLACEHOLDER_FIELD, PLACEHOLDER_ID, EntityAccessor
from school_tenancy.database.model_factory import SchemaBinder
from school_tenancy.database.registry import TenantConnection, TenantConnectionRegistry

__all__ = [
    "EntityAccessor",
    "PLACEHOLDER_FIELD",
    "PLACEHOLDER_ID",
    "SchemaBinder",
    "TenantConnection",
    "TenantConnectionRegistry",
]
