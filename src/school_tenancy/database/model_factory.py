"""
# Schema Binder (Model Factory)

Turns a logical `EntityDescriptor` plus a `TenantConnection` into an `EntityAccessor`.

Binding is a pure function of `(connection, entity)` with a memo table keyed by
`(connection, entity.name)`: binding the same entity twice on the same connection returns the
same accessor, and nothing is ever registered on the connection itself, so no binding state is
shared between tenants.

```python
binder = SchemaBinder()
subjects = binder.bind(connection, SUBJECT_ENTITY, "subjects_v2")
assert binder.bind(connection, SUBJECT_ENTITY, "subjects_v2") is subjects
```
"""

from typing import Dict, Iterable, Optional, Tuple, Union

from school_tenancy.database.entity_accessor import EntityAccessor
from school_tenancy.database.registry import TenantConnection
from school_tenancy.exceptions import InvalidArgumentError, RegistryClosedError
from school_tenancy.managers.logging_manager import get_logger
from school_tenancy.models.tenant_models import ROLE_ENTITIES, ROLE_ENTITY_PREFIX, EntityDescriptor

logger = get_logger(prefix="[SchemaBinder]")


def _validate_collection_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidArgumentError("Collection name must be a non-empty string", {"collection": repr(name)})
    name = name.strip()
    if "$" in name or "\x00" in name or name.startswith("system."):
        raise InvalidArgumentError(f"Invalid collection name: {name!r}", {"collection": name})
    return name


class SchemaBinder:
    """Memoising factory of tenant-scoped entity accessors."""

    def __init__(self):
        self._bound: Dict[Tuple[TenantConnection, str], EntityAccessor] = {}

    def bind(
        self,
        connection: Optional[TenantConnection],
        entity: EntityDescriptor,
        collection_name: Optional[str] = None,
    ) -> EntityAccessor:
        """
        Return the accessor for `entity` on `connection`, creating it on first use.

        Args:
            connection: The tenant connection from the registry.
            entity: Logical schema to bind.
            collection_name: Physical collection; defaults to `entity.collection`. May differ
                from the default to avoid clashing with legacy data.

        Raises:
            InvalidArgumentError: `connection` is missing, `entity` is not a descriptor, the
                collection name is invalid, the entity is already bound on this connection
                under a different collection name, or its name uses the reserved `person:` prefix
                without being a built-in role descriptor.
            RegistryClosedError: The connection has been released.
        """
        if connection is None or not isinstance(connection, TenantConnection):
            raise InvalidArgumentError("A tenant connection is required to bind an entity", {"connection": repr(connection)})
        if connection.closed:
            raise RegistryClosedError(
                f"Cannot bind on released connection for tenant '{connection.tenant_key}'",
                {"tenant": connection.tenant_key},
            )
        if not isinstance(entity, EntityDescriptor) or not entity.name:
            raise InvalidArgumentError("entity must be an EntityDescriptor with a name", {"entity": repr(entity)})
        if entity.name.startswith(ROLE_ENTITY_PREFIX) and not any(entity is e for e in ROLE_ENTITIES.values()):
            raise InvalidArgumentError(
                f"Entity name '{entity.name}' is reserved for role collections", {"entity": entity.name}
            )

        collection = _validate_collection_name(collection_name or entity.collection)
        key = (connection, entity.name)
        accessor = self._bound.get(key)
        if accessor is not None:
            if accessor.collection_name != collection:
                raise InvalidArgumentError(
                    f"Entity '{entity.name}' is already bound to collection '{accessor.collection_name}' "
                    f"for tenant '{connection.tenant_key}'",
                    {"tenant": connection.tenant_key, "entity": entity.name, "collection": collection},
                )
            return accessor

        self._prune_released()
        accessor = EntityAccessor(connection, entity, collection)
        self._bound[key] = accessor
        logger.debug("Bound %s to %s.%s", entity.name, connection.namespace, collection)
        return accessor

    def bind_all(
        self, connection: TenantConnection, entities: Iterable[EntityDescriptor]
    ) -> Dict[str, EntityAccessor]:
        """Bind several entities at their default collections, keyed by entity name."""
        return {entity.name: self.bind(connection, entity) for entity in entities}

    def is_bound(self, connection: TenantConnection, entity: Union[EntityDescriptor, str]) -> bool:
        name = entity.name if isinstance(entity, EntityDescriptor) else entity
        return (connection, name) in self._bound

    def forget(self, connection: TenantConnection) -> int:
        """Drop every accessor bound on `connection`. Returns how many were dropped."""
        keys = [key for key in self._bound if key[0] is connection]
        for key in keys:
            del self._bound[key]
        if keys:
            logger.debug("Forgot %d bindings for tenant %s", len(keys), connection.tenant_key)
        return len(keys)

    def _prune_released(self) -> None:
        # Connections closed through the registry directly never reach forget()
        stale = [key for key in self._bound if key[0].closed]
        for key in stale:
            del self._bound[key]
        if stale:
            logger.debug("Pruned %d accessors of released connections", len(stale))

    def clear(self) -> None:
        self._bound.clear()

    def __len__(self) -> int:
        return len(self._bound)
