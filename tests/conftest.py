import pytest

from school_tenancy.config import Settings
from school_tenancy.core import SchoolDataCore
from school_tenancy.database.model_factory import SchemaBinder
from school_tenancy.database.registry import TenantConnectionRegistry
from school_tenancy.services.identifier_service import SequentialIdentifierAllocator

from tests.fakes import FakeMotorClient


@pytest.fixture
def test_settings():
    return Settings(
        MONGODB_URL="mongodb://localhost:27017",
        TENANT_DATABASE_PREFIX="school_",
        TENANT_RESOLVE_TIMEOUT=2.0,
        STORAGE_OPERATION_TIMEOUT=5.0,
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def fake_client():
    return FakeMotorClient()


@pytest.fixture
def registry(test_settings, fake_client):
    return TenantConnectionRegistry(test_settings, client_factory=lambda: fake_client)


@pytest.fixture
def binder():
    return SchemaBinder()


@pytest.fixture
def allocator(registry, binder, test_settings):
    return SequentialIdentifierAllocator(registry, binder, test_settings)


@pytest.fixture
def core(test_settings, fake_client):
    return SchoolDataCore(test_settings, client_factory=lambda: fake_client)
