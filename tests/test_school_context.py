import httpx
import pytest
from fastapi import Depends, FastAPI
from pymongo.errors import ServerSelectionTimeoutError

from school_tenancy.core import SchoolDataCore
from school_tenancy.middleware.school_context import SchoolContext, get_school_context, school_core_lifespan


@pytest.fixture
def app_and_lifespan(test_settings, fake_client):
    lifespan = school_core_lifespan(
        lambda: SchoolDataCore(test_settings, client_factory=lambda: fake_client),
        initialize_tenants=["nps"],
    )
    app = FastAPI(lifespan=lifespan)

    @app.get("/context")
    async def read_context(ctx: SchoolContext = Depends(get_school_context)):
        return {"school_code": ctx.school_code, "namespace": ctx.namespace}

    @app.post("/teachers")
    async def create_teacher(ctx: SchoolContext = Depends(get_school_context)):
        record = await ctx.core.people.create_person(ctx.school_code, "teacher", {"name": "New"})
        return {"user_id": record.user_id}

    return app, lifespan


def _client(app):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


@pytest.mark.asyncio
async def test_school_context_from_header(app_and_lifespan, fake_client):
    app, lifespan = app_and_lifespan
    async with lifespan(app):
        async with _client(app) as client:
            response = await client.get("/context", headers={"X-School-Code": "nps"})
            created = await client.post("/teachers", headers={"X-School-Code": "NPS"})

    assert response.status_code == 200
    assert response.json() == {"school_code": "NPS", "namespace": "school_nps"}
    assert created.json() == {"user_id": "NPS-T-0001"}
    assert await fake_client["school_nps"]["tenant_meta"].find_one({"_id": "bootstrap"}) is not None
    assert fake_client.closed


@pytest.mark.asyncio
@pytest.mark.parametrize("headers", [{}, {"X-School-Code": "  "}, {"X-School-Code": "bad code!"}])
async def test_missing_or_invalid_school_code(app_and_lifespan, headers):
    app, lifespan = app_and_lifespan
    async with lifespan(app):
        async with _client(app) as client:
            response = await client.get("/context", headers=headers)

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_unreachable_school_database(app_and_lifespan, fake_client):
    app, lifespan = app_and_lifespan
    async with lifespan(app):
        fake_client.fail_with = ServerSelectionTimeoutError("down")
        async with _client(app) as client:
            response = await client.get("/context", headers={"X-School-Code": "other"})
        fake_client.fail_with = None

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_school_resolution_timeout(test_settings, fake_client):
    settings = test_settings.model_copy(update={"TENANT_RESOLVE_TIMEOUT": 0.05})
    lifespan = school_core_lifespan(lambda: SchoolDataCore(settings, client_factory=lambda: fake_client))
    app = FastAPI(lifespan=lifespan)

    @app.get("/context")
    async def read_context(ctx: SchoolContext = Depends(get_school_context)):
        return {"school_code": ctx.school_code}

    async with lifespan(app):
        fake_client.ping_delay = 0.5
        async with _client(app) as client:
            response = await client.get("/context", headers={"X-School-Code": "slow"})

    assert response.status_code == 504


@pytest.mark.asyncio
async def test_core_unavailable_without_lifespan():
    app = FastAPI()

    @app.get("/context")
    async def read_context(ctx: SchoolContext = Depends(get_school_context)):
        return {}

    async with _client(app) as client:
        response = await client.get("/context", headers={"X-School-Code": "nps"})

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_shutdown_closes_core(app_and_lifespan):
    app, lifespan = app_and_lifespan
    async with lifespan(app):
        core = app.state.school_core
        assert not core.closed
    assert core.closed
