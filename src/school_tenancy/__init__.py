"""
# School Tenancy

Tenant data-routing and identifier-allocation core for a multi-school backend.

Every school owns an isolated MongoDB database (`school_<code>`); every person record carries a
sequential identifier such as `P-A-0004` (school `P`, role admin, sequence 4).

- **`core.SchoolDataCore`**: composition root and entry point.
- **`database`**: tenant connection registry, schema binder and entity accessors.
- **`services`**: identifier allocator, tenant bootstrapper and person records.
- **`middleware.school_context`**: FastAPI lifespan and `X-School-Code` dependency.
"""

from school_tenancy.core import SchoolDataCore
from school_tenancy.exceptions import (
    DuplicateRecordError,
    InvalidArgumentError,
    InvalidRoleError,
    OperationTimeoutError,
    RegistryClosedError,
    SequenceExhaustedError,
    StorageError,
    TenantConnectionError,
    TenantCoreError,
)
from school_tenancy.models.tenant_models import EntityDescriptor, IndexSpec, PersonRecord, Role

__version__ = "0.1.0"

__all__ = [
    "DuplicateRecordError",
    "EntityDescriptor",
    "IndexSpec",
    "InvalidArgumentError",
    "InvalidRoleError",
    "OperationTimeoutError",
    "PersonRecord",
    "RegistryClosedError",
    "Role",
    "SchoolDataCore",
    "SequenceExhaustedError",
    "StorageError",
    "TenantConnectionError",
    "TenantCoreError",
]
