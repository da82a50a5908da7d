from school_tenancy.services.bootstrap_service import TenantBootstrapper
from school_tenancy.services.identifier_service import SequentialIdentifierAllocator
from school_tenancy.services.person_service import PersonRecordService

__all__ = ["PersonRecordService", "SequentialIdentifierAllocator", "TenantBootstrapper"]
