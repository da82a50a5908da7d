from school_tenancy.models.tenant_models import (
    IDENTIFIER_FIELD,
    ROLE_SPECS,
    EntityDescriptor,
    IndexSpec,
    PersonRecord,
    Role,
    RoleSpec,
    SequenceCounter,
    canonical_tenant_key,
    role_entity,
    tenant_namespace,
)

__all__ = [
    "IDENTIFIER_FIELD",
    "ROLE_SPECS",
    "EntityDescriptor",
    "IndexSpec",
    "PersonRecord",
    "Role",
    "RoleSpec",
    "SequenceCounter",
    "canonical_tenant_key",
    "role_entity",
    "tenant_namespace",
]
