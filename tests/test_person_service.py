import asyncio

import pytest

from school_tenancy.exceptions import DuplicateRecordError, InvalidArgumentError
from school_tenancy.models.tenant_models import PersonRecord


@pytest.mark.asyncio
async def test_create_person_assigns_identifier(core):
    record = await core.people.create_person("nps", "teacher", {"name": "Meera", "subject": "Physics"})

    assert isinstance(record, PersonRecord)
    assert record.user_id == "NPS-T-0001"
    assert record.role == "teacher"
    assert record.school_code == "NPS"
    assert record.subject == "Physics"

    fetched = await core.people.get_person("nps", "teacher", "nps-t-0001")
    assert fetched.name == "Meera"


@pytest.mark.asyncio
async def test_create_person_ignores_caller_identifier(core):
    data = {"user_id": "P-A-9999", "userId": "P-A-9998", "school_code": "Q", "schoolCode": "Q", "role": "teacher"}
    record = await core.people.create_person("p", "admin", data)

    assert record.user_id == "P-A-0001"
    assert record.school_code == "P"
    assert record.role == "admin"


@pytest.mark.asyncio
async def test_concurrent_create_person(core):
    await core.ensure_tenant_initialized("p")

    records = await asyncio.gather(*(core.people.create_person("p", "student", {"name": f"s{i}"}) for i in range(30)))

    assert len({r.user_id for r in records}) == 30
    people = await core.people.list_people("p", "student")
    assert [p.user_id for p in people] == [f"P-S-{i:04d}" for i in range(1, 31)]


@pytest.mark.asyncio
async def test_create_person_skips_taken_identifiers(core, fake_client):
    """A record written outside the allocator after reconciliation is skipped, not duplicated."""
    await core.ensure_tenant_initialized("p")
    await fake_client["school_p"]["parents"].insert_one({"userId": "P-P-0001", "role": "parent", "school_code": "P"})

    record = await core.people.create_person("p", "parent", {"name": "Ravi"})

    assert record.user_id == "P-P-0002"


@pytest.mark.asyncio
async def test_create_person_gives_up_after_repeated_collisions(core, fake_client):
    await core.ensure_tenant_initialized("p")
    parents = fake_client["school_p"]["parents"]
    await parents.insert_many([{"userId": f"P-P-{i:04d}"} for i in range(1, 4)])

    with pytest.raises(DuplicateRecordError) as exc_info:
        await core.people.create_person("p", "parent", {"name": "Ravi"})
    assert exc_info.value.context["attempts"] == 3


@pytest.mark.asyncio
async def test_delete_and_list(core):
    first = await core.people.create_person("p", "admin", {"name": "One"})
    await core.people.create_person("p", "admin", {"name": "Two"})

    assert await core.people.delete_person("p", "admin", first.user_id) is True
    assert await core.people.delete_person("p", "admin", first.user_id) is False
    assert await core.people.get_person("p", "admin", first.user_id) is None
    assert [p.name for p in await core.people.list_people("p", "admin")] == ["Two"]


@pytest.mark.asyncio
async def test_invalid_person_data(core):
    with pytest.raises(InvalidArgumentError):
        await core.people.create_person("p", "admin", {"name": "x" * 500})
    with pytest.raises(InvalidArgumentError):
        await core.people.get_person("p", "admin", "  ")


@pytest.mark.asyncio
async def test_records_store_identifier_in_userid_field(core, fake_client):
    record = await core.people.create_person("p", "teacher", {"name": "Meera"})

    stored = await fake_client["school_p"]["teachers"].find_one({"userId": record.user_id})
    assert stored is not None
    assert "user_id" not in stored


@pytest.mark.asyncio
async def test_existing_school_records_are_readable_and_continue_sequence(core, fake_client):
    """Records written before this service used `userId` and `schoolCode`."""
    await fake_client["school_nps"]["teachers"].insert_one(
        {"userId": "NPS-T-0023", "schoolCode": "NPS", "role": "teacher", "email": "old@nps.edu"}
    )

    existing = await core.people.get_person("nps", "teacher", "NPS-T-0023")
    assert existing.school_code == "NPS"
    assert existing.email == "old@nps.edu"

    record = await core.people.create_person("nps", "teacher", {"name": "New"})
    assert record.user_id == "NPS-T-0024"
