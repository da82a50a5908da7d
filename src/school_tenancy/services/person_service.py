"""
Person records: allocate an identifier and store the record in the role's collection.

The unique `userId_unique` index on every role collection backs the allocator; a
`DuplicateRecordError` on insert means the counter lags behind records written outside the
allocator, so the insert is retried with a fresh identifier a bounded number of times.
"""

from typing import Any, Dict, List, Mapping, Optional, Union

from school_tenancy.database.entity_accessor import EntityAccessor
from school_tenancy.database.model_factory import SchemaBinder
from school_tenancy.database.registry import TenantConnectionRegistry
from school_tenancy.exceptions import DuplicateRecordError, InvalidArgumentError
from school_tenancy.managers.logging_manager import get_logger
from school_tenancy.models.tenant_models import IDENTIFIER_FIELD, PersonRecord, Role, canonical_tenant_key, role_entity
from school_tenancy.services.identifier_service import SequentialIdentifierAllocator

logger = get_logger(prefix="[PersonService]")

MAX_INSERT_ATTEMPTS = 3

# Always set by create_person, whatever the caller passes
IGNORED_FIELDS = (IDENTIFIER_FIELD, "user_id", "role", "school_code", "schoolCode", "_id")


class PersonRecordService:
    def __init__(
        self,
        registry: TenantConnectionRegistry,
        binder: SchemaBinder,
        allocator: SequentialIdentifierAllocator,
        max_attempts: int = MAX_INSERT_ATTEMPTS,
    ):
        self.registry = registry
        self.binder = binder
        self.allocator = allocator
        self.max_attempts = max_attempts

    async def _accessor(self, tenant_key: str, role: Role) -> EntityAccessor:
        connection = await self.registry.resolve(tenant_key)
        return self.binder.bind(connection, role_entity(role))

    async def create_person(
        self, tenant_key: str, role: Union[Role, str], data: Optional[Mapping[str, Any]] = None
    ) -> PersonRecord:
        """
        Allocate the next identifier for (school, role) and insert the record.

        The identifier (`userId` or `user_id`), `role` and `school_code` in `data` are ignored; they are
        always set here.

        Raises:
            InvalidArgumentError: Bad school code, role or record data.
            DuplicateRecordError: Every attempt collided with an existing identifier.
            TenantConnectionError, StorageError, SequenceExhaustedError, OperationTimeoutError
        """
        role = Role.parse(role)
        key = canonical_tenant_key(tenant_key)
        accessor = await self._accessor(key, role)

        fields: Dict[str, Any] = {
            k: v for k, v in (data or {}).items() if k not in IGNORED_FIELDS
        }
        last_error: Optional[DuplicateRecordError] = None
        for attempt in range(1, self.max_attempts + 1):
            user_id = await self.allocator.next_identifier(key, role)
            document = {**fields, IDENTIFIER_FIELD: user_id, "role": role.value, "school_code": key}
            try:
                record = await accessor.create(document)
            except DuplicateRecordError as e:
                last_error = e
                logger.warning("Identifier %s already taken (attempt %d/%d)", user_id, attempt, self.max_attempts)
                continue
            logger.info("Created %s %s for school %s", role.value, user_id, key)
            return record

        raise DuplicateRecordError(
            f"Could not allocate a free {role.value} identifier for school {key}",
            {"tenant": key, "role": role.value, "attempts": self.max_attempts},
        ) from last_error

    async def get_person(self, tenant_key: str, role: Union[Role, str], user_id: str) -> Optional[PersonRecord]:
        role = Role.parse(role)
        accessor = await self._accessor(tenant_key, role)
        return await accessor.get({IDENTIFIER_FIELD: self._normalize_id(user_id)})

    async def delete_person(self, tenant_key: str, role: Union[Role, str], user_id: str) -> bool:
        """Delete a record. Its identifier is never handed out again."""
        role = Role.parse(role)
        accessor = await self._accessor(tenant_key, role)
        result = await accessor.delete_one({IDENTIFIER_FIELD: self._normalize_id(user_id)})
        return result.deleted_count > 0

    async def list_people(self, tenant_key: str, role: Union[Role, str], limit: int = 0) -> List[PersonRecord]:
        """Records of a role ordered by identifier."""
        role = Role.parse(role)
        accessor = await self._accessor(tenant_key, role)
        documents = await accessor.find_all(sort=[(IDENTIFIER_FIELD, 1)], limit=limit)
        return [accessor.to_model(doc) for doc in documents]

    @staticmethod
    def _normalize_id(user_id: str) -> str:
        if not isinstance(user_id, str) or not user_id.strip():
            raise InvalidArgumentError("user_id must be a non-empty string", {"user_id": repr(user_id)})
        return user_id.strip().upper()
