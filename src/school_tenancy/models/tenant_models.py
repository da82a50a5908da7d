"""
# School Tenancy Models

Core data structures shared by the registry, binder, allocator and bootstrapper.

## Domain Model Overview

- **Tenant key**: a short school code such as `"p"` or `"NPS"`. `canonical_tenant_key()` is the
  one normalisation function: identifiers use the uppercase form (`P-A-0004`), database names use
  `TENANT_DATABASE_PREFIX` + the lowercase form (`school_p`).
- **Role**: a category of person record. Each role has a one-letter code used in identifiers and
  a collection inside the tenant database.
- **PersonRecord**: the document stored in a role collection.
- **SequenceCounter**: the per-(tenant, role) counter document in `id_sequences`.
- **EntityDescriptor**: a logical schema (pydantic model + default collection + indexes) that the
  schema binder attaches to a tenant connection.

## Module Attributes

Attributes:
    ROLE_SPECS (Dict[Role, RoleSpec]): Identifier code and collection of every role.
    MAX_TENANT_KEY_LENGTH (int): Longest accepted school code.
    IDENTIFIER_FIELD (str): Stored field holding the sequential identifier (`userId`, as in existing
        school databases); exposed as `PersonRecord.user_id`.
    ROLE_ENTITY_PREFIX (str): Reserved entity-name prefix of the built-in role descriptors.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from school_tenancy.exceptions import InvalidArgumentError, InvalidRoleError

MAX_TENANT_KEY_LENGTH = 32
IDENTIFIER_FIELD = "userId"
ROLE_ENTITY_PREFIX = "person:"


def canonical_tenant_key(raw: Any) -> str:
    """
    Normalise a school code to its canonical (uppercase) form.

    Args:
        raw: The tenant key supplied by the caller.

    Returns:
        str: The uppercase school code, e.g. `"NPS"` for `" nps "`.

    Raises:
        InvalidArgumentError: If the key is not a string, is empty, is too long,
            or contains characters other than ASCII letters and digits.
    """
    if not isinstance(raw, str):
        raise InvalidArgumentError("Tenant key must be a string", {"tenant_key": repr(raw)})
    key = raw.strip()
    if not key:
        raise InvalidArgumentError("Tenant key must not be empty", {"tenant_key": raw})
    if len(key) > MAX_TENANT_KEY_LENGTH:
        raise InvalidArgumentError(
            f"Tenant key must be at most {MAX_TENANT_KEY_LENGTH} characters", {"tenant_key": raw}
        )
    if not (key.isascii() and key.isalnum()):
        raise InvalidArgumentError("Tenant key may only contain letters and digits", {"tenant_key": raw})
    return key.upper()


def tenant_namespace(raw: Any, prefix: str = "school_") -> str:
    """Database name for a tenant: `prefix` + lowercase canonical key."""
    return f"{prefix}{canonical_tenant_key(raw).lower()}"


class Role(str, Enum):
    """Person-record roles with their own collection and identifier letter."""

    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"
    PARENT = "parent"

    @classmethod
    def parse(cls, value: Union["Role", str]) -> "Role":
        """Accept a `Role` or a case-insensitive role name."""
        if isinstance(value, Role):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise InvalidRoleError(
            f"Invalid role: {value!r}. Expected one of {[r.value for r in cls]}", {"role": repr(value)}
        )

    @property
    def spec(self) -> "RoleSpec":
        return ROLE_SPECS[self]

    @property
    def code(self) -> str:
        return ROLE_SPECS[self].code

    @property
    def collection(self) -> str:
        return ROLE_SPECS[self].collection


@dataclass(frozen=True)
class RoleSpec:
    code: str
    collection: str


ROLE_SPECS: Dict[Role, RoleSpec] = {
    Role.ADMIN: RoleSpec(code="A", collection="admins"),
    Role.TEACHER: RoleSpec(code="T", collection="teachers"),
    Role.STUDENT: RoleSpec(code="S", collection="students"),
    Role.PARENT: RoleSpec(code="P", collection="parents"),
}

ROLE_BY_CODE: Dict[str, Role] = {spec.code: role for role, spec in ROLE_SPECS.items()}


class PersonRecord(BaseModel):
    """Document stored in a role collection (`admins`, `teachers`, ...).

    Attributes:
        user_id (str): Sequential identifier, e.g. `P-T-0012`, stored as `userId`. Immutable once assigned.
        role (Role): Role of the person; matches the collection the record lives in.
        school_code (str): Canonical school code; records written as `schoolCode` are read too.
        name (Optional[str]): Display name.
        created_at (datetime): Creation time (UTC).
    """

    model_config = ConfigDict(extra="allow", use_enum_values=True, populate_by_name=True)

    user_id: str = Field(..., alias=IDENTIFIER_FIELD, min_length=1, description="Sequential identifier")
    role: Role = Field(..., description="Person role")
    school_code: str = Field(
        ..., validation_alias=AliasChoices("school_code", "schoolCode"), description="Canonical school code"
    )
    name: Optional[str] = Field(None, max_length=200, description="Display name")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("school_code")
    @classmethod
    def validate_school_code(cls, v):
        return canonical_tenant_key(v)


class SequenceCounter(BaseModel):
    """Counter document kept in the tenant's `id_sequences` collection.

    The `_id` is `"<role>_sequence"`; `sequence_value` is the last sequence handed out.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id")
    sequence_value: int = Field(0, ge=0)
    school_code: Optional[str] = None
    role: Optional[Role] = None
    updated_at: Optional[datetime] = None

    @staticmethod
    def key_for(role: Role) -> str:
        return f"{role.value}_sequence"


IndexKeys = Union[str, List[Tuple[str, int]]]


@dataclass(frozen=True)
class IndexSpec:
    keys: IndexKeys
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, eq=False)
class EntityDescriptor:
    """
    Logical entity schema that can be bound to any tenant connection.

    Attributes:
        name: Logical entity name (`"Assignment"`, `"Subject"`, `"person:teacher"`); the binder's memo key.
        model: Pydantic model used to validate documents on write.
        collection: Default physical collection name.
        indexes: Indexes created by `EntityAccessor.ensure_indexes()`.
    """

    name: str
    model: Type[BaseModel]
    collection: str
    indexes: Tuple[IndexSpec, ...] = ()


ROLE_ENTITIES: Dict[Role, EntityDescriptor] = {
    role: EntityDescriptor(
        name=f"{ROLE_ENTITY_PREFIX}{role.value}",
        model=PersonRecord,
        collection=role.collection,
        indexes=(
            IndexSpec(IDENTIFIER_FIELD, {"unique": True, "sparse": True, "name": f"{IDENTIFIER_FIELD}_unique"}),
            IndexSpec("created_at", {}),
        ),
    )
    for role in Role
}


def role_entity(role: Union[Role, str]) -> EntityDescriptor:
    """Entity descriptor for a role collection, with a unique index on the identifier field.

    Role descriptors live under the reserved `person:` name prefix so application entities
    named after a role (e.g. "teacher") never share their binding.
    """
    return ROLE_ENTITIES[Role.parse(role)]
