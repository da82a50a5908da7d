"""
# Entity Accessor

`EntityAccessor` is the bound model handed out by the schema binder: a Motor-like CRUD surface
scoped to **one tenant database** and **one physical collection**, with writes validated by the
entity's pydantic model.

## Scoping

```
 business logic ──▶ EntityAccessor(tenant="NPS", entity="teacher", collection="teachers")
                          │  + {"_placeholder": {"$ne": True}} on every read/update/delete
                          ▼
                 AsyncIOMotorCollection  school_nps.teachers
```

- **Isolation** comes from the connection: two tenants' accessors for the same entity point at
  different databases, so nothing written through one is visible through the other.
- **Placeholders**: the bootstrapper may seed one marker document per collection so that the
  collection physically exists. Accessors exclude it from reads, counts, updates, deletes and
  aggregations, so it never counts as a record.
- **Errors**: driver failures surface as `StorageError` / `DuplicateRecordError` /
  `OperationTimeoutError`; invalid documents as `InvalidArgumentError`.
"""

from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Union

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorCursor
from pydantic import BaseModel, ValidationError
from pymongo.errors import OperationFailure, PyMongoError

from school_tenancy.exceptions import InvalidArgumentError, translate_storage_error
from school_tenancy.managers.logging_manager import get_logger
from school_tenancy.models.tenant_models import EntityDescriptor

if TYPE_CHECKING:
    from school_tenancy.database.registry import TenantConnection

logger = get_logger(prefix="[EntityAccessor]")

PLACEHOLDER_ID = "__placeholder__"
PLACEHOLDER_FIELD = "_placeholder"

# IndexOptionsConflict / IndexKeySpecsConflict: an equivalent index already exists.
_INDEX_CONFLICT_CODES = {85, 86}

Document = Dict[str, Any]


class EntityAccessor:
    """
    Tenant-scoped read/write interface for one entity type.

    Attributes:
        connection (`TenantConnection`): The tenant connection this accessor is bound to.
        entity (`EntityDescriptor`): The logical schema.
        collection_name (`str`): Physical collection name inside the tenant database.
    """

    def __init__(self, connection: "TenantConnection", entity: EntityDescriptor, collection_name: str):
        self.connection = connection
        self.entity = entity
        self.collection_name = collection_name
        self._collection: AsyncIOMotorCollection = connection.get_collection(collection_name)

    @property
    def tenant_key(self) -> str:
        return self.connection.tenant_key

    @property
    def name(self) -> str:
        return self.collection_name

    @property
    def collection(self) -> AsyncIOMotorCollection:
        """The raw Motor collection. Bypasses placeholder scoping and validation."""
        return self._collection

    def _scope_filter(self, filter_dict: Optional[Mapping[str, Any]] = None) -> Document:
        scoped = dict(filter_dict or {})
        scoped[PLACEHOLDER_FIELD] = {"$ne": True}
        return scoped

    def _error(self, exc: PyMongoError, operation: str):
        logger.error(
            "%s failed on %s.%s: %s", operation, self.connection.namespace, self.collection_name, exc
        )
        return translate_storage_error(
            exc, operation, tenant=self.tenant_key, collection=self.collection_name
        )

    def validate(self, document: Union[Mapping[str, Any], BaseModel]) -> Document:
        """
        Validate a document against the entity model and return the dict to store.

        An explicit `_id` in a mapping is preserved.

        Raises:
            InvalidArgumentError: If the document does not satisfy the model.
        """
        if isinstance(document, BaseModel):
            if not isinstance(document, self.entity.model):
                raise InvalidArgumentError(
                    f"Expected {self.entity.model.__name__}, got {type(document).__name__}",
                    {"entity": self.entity.name},
                )
            return document.model_dump(by_alias=True)

        data = dict(document)
        object_id = data.pop("_id", None)
        data.pop(PLACEHOLDER_FIELD, None)
        try:
            validated = self.entity.model.model_validate(data)
        except ValidationError as exc:
            raise InvalidArgumentError(
                f"Invalid {self.entity.name} document: {exc.error_count()} validation error(s)",
                {"entity": self.entity.name, "errors": exc.errors(include_url=False)},
            ) from exc
        result = validated.model_dump(by_alias=True)
        if object_id is not None:
            result["_id"] = object_id
        return result

    def to_model(self, document: Mapping[str, Any]) -> BaseModel:
        data = {k: v for k, v in document.items() if k not in ("_id", PLACEHOLDER_FIELD)}
        return self.entity.model.model_validate(data)

    async def find_one(self, filter: Optional[Mapping[str, Any]] = None, *args, **kwargs) -> Optional[Document]:
        try:
            result = await self._collection.find_one(self._scope_filter(filter), *args, **kwargs)
        except PyMongoError as exc:
            raise self._error(exc, "find_one") from exc
        logger.debug("find_one for tenant %s: %s", self.tenant_key, "found" if result else "not found")
        return result

    def find(self, filter: Optional[Mapping[str, Any]] = None, *args, **kwargs) -> AsyncIOMotorCursor:
        """Scoped Motor cursor. Iteration errors are raw driver errors; prefer `find_all()`."""
        return self._collection.find(self._scope_filter(filter), *args, **kwargs)

    async def find_all(
        self,
        filter: Optional[Mapping[str, Any]] = None,
        projection: Optional[Mapping[str, Any]] = None,
        sort: Optional[List] = None,
        limit: int = 0,
    ) -> List[Document]:
        """Materialise every matching document."""
        try:
            cursor = self._collection.find(self._scope_filter(filter), projection)
            if sort:
                cursor = cursor.sort(sort)
            if limit:
                cursor = cursor.limit(limit)
            documents = [doc async for doc in cursor]
        except PyMongoError as exc:
            raise self._error(exc, "find") from exc
        logger.debug("find for tenant %s on %s: %d documents", self.tenant_key, self.collection_name, len(documents))
        return documents

    async def get(self, filter: Mapping[str, Any]) -> Optional[BaseModel]:
        """Typed `find_one`: the matching document as an entity model instance."""
        document = await self.find_one(filter)
        return self.to_model(document) if document is not None else None

    async def insert_one(self, document: Union[Mapping[str, Any], BaseModel], *args, **kwargs):
        prepared = self.validate(document)
        try:
            result = await self._collection.insert_one(prepared, *args, **kwargs)
        except PyMongoError as exc:
            raise self._error(exc, "insert_one") from exc
        logger.debug("insert_one for tenant %s: inserted_id=%s", self.tenant_key, result.inserted_id)
        return result

    async def insert_many(self, documents: List[Union[Mapping[str, Any], BaseModel]], *args, **kwargs):
        prepared = [self.validate(doc) for doc in documents]
        try:
            result = await self._collection.insert_many(prepared, *args, **kwargs)
        except PyMongoError as exc:
            raise self._error(exc, "insert_many") from exc
        logger.debug("insert_many for tenant %s: inserted %d documents", self.tenant_key, len(result.inserted_ids))
        return result

    async def create(self, data: Union[Mapping[str, Any], BaseModel]) -> BaseModel:
        """Validate, insert and return the stored entity as a model instance."""
        prepared = self.validate(data)
        await self.insert_one(prepared)
        return self.to_model(prepared)

    async def update_one(self, filter: Mapping[str, Any], update: Mapping[str, Any], *args, **kwargs):
        try:
            result = await self._collection.update_one(self._scope_filter(filter), update, *args, **kwargs)
        except PyMongoError as exc:
            raise self._error(exc, "update_one") from exc
        logger.debug(
            "update_one for tenant %s: matched=%d, modified=%d",
            self.tenant_key,
            result.matched_count,
            result.modified_count,
        )
        return result

    async def update_many(self, filter: Mapping[str, Any], update: Mapping[str, Any], *args, **kwargs):
        try:
            result = await self._collection.update_many(self._scope_filter(filter), update, *args, **kwargs)
        except PyMongoError as exc:
            raise self._error(exc, "update_many") from exc
        logger.debug(
            "update_many for tenant %s: matched=%d, modified=%d",
            self.tenant_key,
            result.matched_count,
            result.modified_count,
        )
        return result

    async def delete_one(self, filter: Mapping[str, Any], *args, **kwargs):
        try:
            result = await self._collection.delete_one(self._scope_filter(filter), *args, **kwargs)
        except PyMongoError as exc:
            raise self._error(exc, "delete_one") from exc
        logger.debug("delete_one for tenant %s: deleted=%d", self.tenant_key, result.deleted_count)
        return result

    async def delete_many(self, filter: Mapping[str, Any], *args, **kwargs):
        try:
            result = await self._collection.delete_many(self._scope_filter(filter), *args, **kwargs)
        except PyMongoError as exc:
            raise self._error(exc, "delete_many") from exc
        logger.debug("delete_many for tenant %s: deleted=%d", self.tenant_key, result.deleted_count)
        return result

    async def find_one_and_update(
        self, filter: Mapping[str, Any], update: Mapping[str, Any], *args, **kwargs
    ) -> Optional[Document]:
        try:
            result = await self._collection.find_one_and_update(self._scope_filter(filter), update, *args, **kwargs)
        except PyMongoError as exc:
            raise self._error(exc, "find_one_and_update") from exc
        logger.debug("find_one_and_update for tenant %s: %s", self.tenant_key, "found" if result else "not found")
        return result

    async def count_documents(self, filter: Optional[Mapping[str, Any]] = None, *args, **kwargs) -> int:
        try:
            count = await self._collection.count_documents(self._scope_filter(filter), *args, **kwargs)
        except PyMongoError as exc:
            raise self._error(exc, "count_documents") from exc
        logger.debug("count_documents for tenant %s: %d", self.tenant_key, count)
        return count

    def aggregate(self, pipeline: List[Mapping[str, Any]], *args, **kwargs):
        """Aggregation cursor with a leading `$match` that drops placeholder documents."""
        scoped = [{"$match": self._scope_filter()}] + list(pipeline)
        logger.debug("aggregate for tenant %s with %d stages", self.tenant_key, len(scoped))
        return self._collection.aggregate(scoped, *args, **kwargs)

    async def ensure_indexes(self) -> List[str]:
        """
        Create the entity's declared indexes. Equivalent existing indexes are left alone.

        Returns:
            List[str]: Names of indexes created or confirmed.
        """
        names = []
        for index in self.entity.indexes:
            try:
                names.append(await self._collection.create_index(index.keys, **index.options))
            except OperationFailure as exc:
                if exc.code in _INDEX_CONFLICT_CODES:
                    logger.warning(
                        "Index %s on %s.%s conflicts with an existing index: %s",
                        index.keys,
                        self.connection.namespace,
                        self.collection_name,
                        exc,
                    )
                    continue
                raise self._error(exc, "create_index") from exc
            except PyMongoError as exc:
                raise self._error(exc, "create_index") from exc
        return names

    def __repr__(self) -> str:
        return (
            f"EntityAccessor(tenant={self.tenant_key!r}, entity={self.entity.name!r}, "
            f"collection={self.collection_name!r})"
        )
