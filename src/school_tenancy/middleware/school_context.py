"""
# School Context Dependencies

FastAPI glue for the tenancy core: one `SchoolDataCore` per application, and a per-request
`SchoolContext` resolved from the `X-School-Code` header.

## Wiring

```python
from fastapi import Depends, FastAPI
from school_tenancy.middleware.school_context import SchoolContext, get_school_context, school_core_lifespan

app = FastAPI(lifespan=school_core_lifespan())

@app.get("/teachers")
async def list_teachers(ctx: SchoolContext = Depends(get_school_context)):
    return await ctx.core.people.list_people(ctx.school_code, "teacher")
```

## Error Mapping

| Core error                                     | HTTP |
|------------------------------------------------|------|
| missing header, `InvalidArgumentError`         | 400  |
| `TenantConnectionError`, `RegistryClosedError` | 503  |
| `OperationTimeoutError`                        | 504  |
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Iterable, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status

from school_tenancy.core import SchoolDataCore
from school_tenancy.database.entity_accessor import EntityAccessor
from school_tenancy.database.registry import TenantConnection
from school_tenancy.exceptions import (
    InvalidArgumentError,
    OperationTimeoutError,
    RegistryClosedError,
    TenantConnectionError,
)
from school_tenancy.managers.logging_manager import get_logger
from school_tenancy.models.tenant_models import EntityDescriptor

logger = get_logger(prefix="[SchoolContext]")

SCHOOL_CODE_HEADER = "X-School-Code"
APP_STATE_ATTR = "school_core"


@dataclass
class SchoolContext:
    """The school a request operates on."""

    school_code: str
    namespace: str
    connection: TenantConnection
    core: SchoolDataCore

    def bind(self, entity: EntityDescriptor, collection_name: Optional[str] = None) -> EntityAccessor:
        return self.core.bind_entity(self.connection, entity, collection_name)


def school_core_lifespan(
    core_factory: Optional[Callable[[], SchoolDataCore]] = None,
    initialize_tenants: Iterable[str] = (),
):
    """
    Build a FastAPI `lifespan` that owns a `SchoolDataCore`.

    Args:
        core_factory: Zero-argument callable returning the core; defaults to `SchoolDataCore()`.
        initialize_tenants: School codes to bootstrap before serving requests.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        core = core_factory() if core_factory else SchoolDataCore()
        setattr(app.state, APP_STATE_ATTR, core)
        logger.info("School data core started")
        try:
            for code in initialize_tenants:
                await core.ensure_tenant_initialized(code)
            yield
        finally:
            await core.shutdown()
            logger.info("School data core stopped")

    return lifespan


def get_school_core(request: Request) -> SchoolDataCore:
    core = getattr(request.app.state, APP_STATE_ATTR, None)
    if core is None or core.closed:
        logger.error("School data core is not available")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="School data core is not available")
    return core


async def get_school_context(
    x_school_code: Optional[str] = Header(None, alias=SCHOOL_CODE_HEADER),
    core: SchoolDataCore = Depends(get_school_core),
) -> SchoolContext:
    """
    Resolve the request's school and its database connection.

    Raises:
        HTTPException: 400 when the code is missing or malformed, 503 when the school's database
            cannot be reached, 504 when resolution times out.
    """
    if not x_school_code or not x_school_code.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"School identifier is required. Provide the {SCHOOL_CODE_HEADER} header.",
        )

    try:
        connection = await core.resolve_connection(x_school_code)
    except InvalidArgumentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    except OperationTimeoutError as e:
        logger.error("Timed out resolving school %s: %s", x_school_code, e.message)
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail="Timed out accessing school database") from e
    except (TenantConnectionError, RegistryClosedError) as e:
        logger.error("Error getting school database connection for %s: %s", x_school_code, e.message)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Error accessing school database") from e

    logger.debug("School context set: %s (%s)", connection.tenant_key, connection.namespace)
    return SchoolContext(
        school_code=connection.tenant_key,
        namespace=connection.namespace,
        connection=connection,
        core=core,
    )
