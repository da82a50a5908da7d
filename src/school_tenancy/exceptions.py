"""
# Tenancy Core Exceptions

Typed errors raised by the registry, binder, allocator and bootstrapper. The core never
logs-and-continues: every failure reaches the caller as one of these.

```
TenantCoreError
├── InvalidArgumentError (ValueError)   caller error, never retried
│   └── InvalidRoleError
├── TenantConnectionError (ConnectionError)   cluster unreachable, retry with backoff
├── StorageError                        scan/insert/update failed on an open connection
│   └── DuplicateRecordError
├── SequenceExhaustedError              identifier sequence space is full
├── RegistryClosedError                 registry was torn down
└── OperationTimeoutError (TimeoutError)
```

Cancellation is not wrapped: `asyncio.CancelledError` propagates unchanged.
"""

from typing import Any, Dict, Optional

from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    ExecutionTimeout,
    NetworkTimeout,
    PyMongoError,
    ServerSelectionTimeoutError,
)


class TenantCoreError(Exception):
    """
    Base exception for all tenancy core errors.

    Attributes:
        message: Human-readable description.
        context: Tenant, role, namespace or operation details for logs.
    """

    def __init__(self, message: str = "Tenancy core error", context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class InvalidArgumentError(TenantCoreError, ValueError):
    """Empty or malformed tenant key, null connection, or other bad input."""


class InvalidRoleError(InvalidArgumentError):
    """Role is not part of the fixed role enumeration."""


class TenantConnectionError(TenantCoreError, ConnectionError):
    """The storage cluster could not be reached while resolving a tenant."""


class StorageError(TenantCoreError):
    """A storage operation failed against an otherwise open connection."""


class DuplicateRecordError(StorageError):
    """A write violated a unique index (e.g. a duplicate identifier)."""


class SequenceExhaustedError(TenantCoreError):
    """No identifiers are left in the fixed-width sequence space of a (tenant, role)."""


class RegistryClosedError(TenantCoreError):
    """An operation was attempted after the registry was closed."""


class OperationTimeoutError(TenantCoreError, TimeoutError):
    """A caller-supplied deadline expired during a blocking storage call."""


def translate_storage_error(exc: PyMongoError, operation: str, **context: Any) -> TenantCoreError:
    """
    Map a PyMongo error raised on an open connection onto the core taxonomy.

    Args:
        exc: The driver error.
        operation: Short name of the failing operation, e.g. `"insert_one"`.
        **context: Extra context (tenant, collection, role).
    """
    context = {"operation": operation, **context}
    if isinstance(exc, (ExecutionTimeout, NetworkTimeout)):
        return OperationTimeoutError(f"{operation} timed out: {exc}", context)
    if isinstance(exc, DuplicateKeyError):
        return DuplicateRecordError(f"{operation} violated a unique index: {exc}", context)
    return StorageError(f"{operation} failed: {exc}", context)


def translate_connection_error(exc: PyMongoError, namespace: str) -> TenantConnectionError:
    """Map a driver error raised while opening a tenant namespace."""
    if isinstance(exc, ServerSelectionTimeoutError):
        reason = "no reachable server"
    elif isinstance(exc, ConnectionFailure):
        reason = "connection failure"
    else:
        reason = "driver error"
    return TenantConnectionError(
        f"Could not open tenant database '{namespace}' ({reason}): {exc}",
        {"namespace": namespace, "operation": "resolve"},
    )
