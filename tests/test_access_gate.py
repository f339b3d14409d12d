import pytest

from db.models import INDEXING_READY
from room_doc_chat.auth.access_gate import AccessGate
from room_doc_chat.auth.identity import ConfigRoleResolver, RoleResolver, UserIdentity

ADMIN = UserIdentity(id="1", name="alice")
EDITOR = UserIdentity(id="7")
STRANGER = UserIdentity(id="99")


async def _add(repo, file, rooms, roles, users, ready=True):
    record = await repo.create(
        file=file,
        filename=file,
        index_id="documents",
        room_ids=rooms,
        roles_allowed=roles,
        users_allowed=users,
    )
    if ready:
        await repo.set_indexing_status(record.id, INDEXING_READY)
    return record


@pytest.fixture
def gate(ctx):
    return AccessGate(ctx.repository, ConfigRoleResolver({"1": ["admin"], "7": ["editor"]}))


class OutageRepository:
    async def roles_allowed_for_file(self, file):
        raise ConnectionError("metadata store unreachable")

    async def users_allowed_for_file(self, file):
        raise ConnectionError("metadata store unreachable")

    async def list_by_room(self, room_id, status=None):
        raise ConnectionError("metadata store unreachable")


class BrokenResolver(RoleResolver):
    async def roles_for(self, user):
        raise TimeoutError("identity provider timed out")


class TestAuthorizeFile:
    async def test_matching_role_allows(self, ctx, gate):
        await _add(ctx.repository, "a.txt", ["A"], ["admin"], [])
        assert await gate.authorize("a.txt", ADMIN) is True

    async def test_allow_list_allows_without_role(self, ctx, gate):
        await _add(ctx.repository, "a.txt", ["A"], ["editor"], ["99"])
        assert await gate.authorize("a.txt", STRANGER) is True

    async def test_no_role_and_not_listed_denies(self, ctx, gate):
        await _add(ctx.repository, "a.txt", ["A"], ["editor"], [])
        assert await gate.authorize("a.txt", ADMIN) is False

    async def test_unknown_file_denies(self, gate):
        assert await gate.authorize("missing.txt", ADMIN) is False

    async def test_metadata_store_outage_denies(self):
        gate = AccessGate(OutageRepository(), ConfigRoleResolver({"1": ["admin"]}))
        assert await gate.authorize("a.txt", ADMIN) is False

    async def test_role_resolver_failure_denies(self, ctx):
        await _add(ctx.repository, "a.txt", ["A"], ["admin"], [])
        gate = AccessGate(ctx.repository, BrokenResolver())
        assert await gate.authorize("a.txt", ADMIN) is False


class TestAuthorizeRoom:
    async def test_user_cleared_for_every_ready_document(self, ctx, gate):
        await _add(ctx.repository, "a.txt", ["A"], ["admin"], [])
        await _add(ctx.repository, "b.txt", ["A", "B"], ["editor"], ["1"])
        assert await gate.authorize_room("A", ADMIN) is True

    async def test_one_forbidden_document_denies_the_room(self, ctx, gate):
        await _add(ctx.repository, "a.txt", ["A"], ["admin"], [])
        await _add(ctx.repository, "b.txt", ["A"], ["editor"], [])
        assert await gate.authorize_room("A", ADMIN) is False
        assert await gate.authorize_room("A", EDITOR) is False

    async def test_documents_not_ready_are_ignored(self, ctx, gate):
        await _add(ctx.repository, "a.txt", ["A"], ["admin"], [])
        await _add(ctx.repository, "b.txt", ["A"], ["editor"], [], ready=False)
        assert await gate.authorize_room("A", ADMIN) is True

    async def test_room_without_ready_documents_denies(self, ctx, gate):
        await _add(ctx.repository, "a.txt", ["A"], ["admin"], [], ready=False)
        assert await gate.authorize_room("A", ADMIN) is False
        assert await gate.authorize_room("nowhere", ADMIN) is False

    async def test_metadata_store_outage_denies(self):
        gate = AccessGate(OutageRepository(), ConfigRoleResolver({"1": ["admin"]}))
        assert await gate.authorize_room("A", ADMIN) is False

    async def test_cleared_documents_are_exactly_the_ready_ones(self, ctx, gate):
        ready = await _add(ctx.repository, "a.txt", ["A"], ["admin"], [])
        await _add(ctx.repository, "b.txt", ["A"], ["editor"], [], ready=False)

        assert await gate.cleared_documents("A", ADMIN) == {ready.id}
        assert await gate.cleared_documents("A", EDITOR) == frozenset()


class TestReadable:
    async def test_keeps_only_records_the_user_may_read(self, ctx, gate):
        await _add(ctx.repository, "a.txt", ["A"], ["admin"], [])
        await _add(ctx.repository, "b.txt", ["B"], ["editor"], ["99"])
        records = await ctx.repository.list_documents()

        assert [r.file for r in await gate.readable(records, ADMIN)] == ["a.txt"]
        assert [r.file for r in await gate.readable(records, STRANGER)] == ["b.txt"]

    async def test_role_resolver_failure_hides_everything(self, ctx):
        await _add(ctx.repository, "a.txt", ["A"], ["admin"], [])
        gate = AccessGate(ctx.repository, BrokenResolver())
        assert await gate.readable(await ctx.repository.list_documents(), ADMIN) == []
