import asyncio
from unittest.mock import patch

import pytest
from pymongo.errors import OperationFailure

from school_tenancy.config import Settings
from school_tenancy.core import SchoolDataCore
from school_tenancy.exceptions import (
    InvalidRoleError,
    OperationTimeoutError,
    SequenceExhaustedError,
    StorageError,
)
from school_tenancy.models.tenant_models import Role

from tests.fakes import FakeMotorClient


async def _commit(core, tenant, role, user_id):
    """Store a record carrying `user_id`, as a caller does after allocating it."""
    connection = await core.resolve_connection(tenant)
    collection = connection.get_collection(Role.parse(role).collection)
    await collection.insert_one({"userId": user_id, "role": Role.parse(role).value, "school_code": tenant.upper()})


@pytest.mark.asyncio
async def test_sequential_allocation_has_no_gaps(core):
    expected = [f"P-A-{n:04d}" for n in range(1, 101)]
    allocated = []
    for _ in range(100):
        user_id = await core.next_identifier("p", "admin")
        await _commit(core, "p", "admin", user_id)
        allocated.append(user_id)

    assert allocated == expected


@pytest.mark.asyncio
async def test_first_identifier_format(core):
    assert await core.next_identifier("p", Role.ADMIN) == "P-A-0001"
    assert await core.next_identifier("P", Role.ADMIN) == "P-A-0002"


@pytest.mark.asyncio
async def test_roles_do_not_share_sequences(core):
    """Admin identifiers are never counted for teachers, even when stored in the teacher collection."""
    for _ in range(3):
        await _commit(core, "p", "admin", await core.next_identifier("p", "admin"))
    connection = await core.resolve_connection("p")
    await connection.get_collection("teachers").insert_one({"userId": "P-A-0050"})

    assert await core.next_identifier("p", "teacher") == "P-T-0001"
    assert await core.next_identifier("p", "admin") == "P-A-0004"


@pytest.mark.asyncio
async def test_schools_do_not_share_sequences(core):
    assert await core.next_identifier("a", "student") == "A-S-0001"
    assert await core.next_identifier("a", "student") == "A-S-0002"
    assert await core.next_identifier("b", "student") == "B-S-0001"


@pytest.mark.asyncio
async def test_end_to_end_deleted_identifiers_are_not_reused(core):
    first = await core.next_identifier("z", "teacher")
    assert first == "Z-T-0001"
    await _commit(core, "z", "teacher", first)

    second = await core.next_identifier("z", "teacher")
    assert second == "Z-T-0002"
    await _commit(core, "z", "teacher", second)

    assert await core.people.delete_person("z", "teacher", first) is True
    assert await core.next_identifier("z", "teacher") == "Z-T-0003"


@pytest.mark.asyncio
@pytest.mark.parametrize("trial", range(5))
async def test_concurrent_allocate_and_insert_yields_distinct_identifiers(test_settings, trial):
    core = SchoolDataCore(test_settings, client_factory=FakeMotorClient)
    n = 25

    async def allocate_and_insert():
        user_id = await core.next_identifier("c", "student")
        await _commit(core, "c", "student", user_id)
        return user_id

    allocated = await asyncio.gather(*(allocate_and_insert() for _ in range(n)))

    assert len(set(allocated)) == n
    assert sorted(allocated) == [f"C-S-{i:04d}" for i in range(1, n + 1)]


@pytest.mark.asyncio
async def test_existing_records_are_reconciled(core):
    """Schools populated before counters existed continue from their highest identifier."""
    connection = await core.resolve_connection("nps")
    teachers = connection.get_collection("teachers")
    await teachers.insert_many(
        [
            {"userId": "NPS-T-0001"},
            {"userId": "nps-t-0023"},
            {"userId": "NPS-T-0007"},
            {"userId": "NPS-T-99999"},
            {"userId": "NPS-A-0500"},
            {"name": "no identifier"},
        ]
    )

    assert await core.peek_next_identifier("NPS", "teacher") == "NPS-T-0024"
    assert await core.next_identifier("NPS", "teacher") == "NPS-T-0024"
    assert await core.next_identifier("NPS", "teacher") == "NPS-T-0025"

    counter = await connection.get_collection("id_sequences").find_one({"_id": "teacher_sequence"})
    assert counter["sequence_value"] == 25
    assert counter["school_code"] == "NPS"
    assert counter["role"] == "teacher"


@pytest.mark.asyncio
async def test_reconciliation_never_lowers_counter(core):
    connection = await core.resolve_connection("p")
    await connection.get_collection("id_sequences").insert_one({"_id": "parent_sequence", "sequence_value": 40})
    await connection.get_collection("parents").insert_one({"userId": "P-P-0012"})

    assert await core.next_identifier("p", "parent") == "P-P-0041"


@pytest.mark.asyncio
async def test_peek_does_not_reserve(core):
    assert await core.peek_next_identifier("p", "student") == "P-S-0001"
    assert await core.peek_next_identifier("p", "student") == "P-S-0001"
    assert await core.next_identifier("p", "student") == "P-S-0001"
    assert await core.peek_next_identifier("p", "student") == "P-S-0002"


@pytest.mark.asyncio
async def test_invalid_role(core):
    with pytest.raises(InvalidRoleError):
        await core.next_identifier("p", "janitor")


@pytest.mark.asyncio
async def test_sequence_exhaustion_is_a_hard_failure(fake_client):
    core = SchoolDataCore(Settings(IDENTIFIER_SEQUENCE_WIDTH=1), client_factory=lambda: fake_client)
    allocated = [await core.next_identifier("p", "admin") for _ in range(9)]

    assert allocated[-1] == "P-A-9"
    with pytest.raises(SequenceExhaustedError):
        await core.next_identifier("p", "admin")
    with pytest.raises(SequenceExhaustedError):
        await core.next_identifier("p", "admin")


@pytest.mark.asyncio
async def test_counter_failure_surfaces_storage_error(core):
    connection = await core.resolve_connection("p")
    connection.get_collection("id_sequences").fail_with = OperationFailure("not primary")

    with pytest.raises(StorageError) as exc_info:
        await core.next_identifier("p", "admin")
    assert exc_info.value.context["role"] == "admin"


@pytest.mark.asyncio
async def test_scan_failure_surfaces_storage_error(core):
    connection = await core.resolve_connection("p")
    connection.get_collection("admins").fail_with = OperationFailure("interrupted")

    with pytest.raises(StorageError):
        await core.next_identifier("p", "admin")


@pytest.mark.asyncio
async def test_allocation_respects_deadline(core):
    async def stalled(*args, **kwargs):
        await asyncio.sleep(1)

    counters = (await core.resolve_connection("p")).get_collection("id_sequences")
    with patch.object(counters, "find_one_and_update", side_effect=stalled):
        with pytest.raises(OperationTimeoutError):
            await core.next_identifier("p", "admin", timeout=0.05)


@pytest.mark.asyncio
async def test_reconciles_records_stored_in_userid_field(core, fake_client):
    await fake_client["school_nps"]["teachers"].insert_one({"userId": "NPS-T-0023"})

    assert await core.next_identifier("nps", "teacher") == "NPS-T-0024"
