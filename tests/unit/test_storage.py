"""
Unit Tests - Storage

Both backends run the same cases.
"""

from datetime import timedelta

import pytest

from toolhost.config.settings import StorageSettings
from toolhost.core.exceptions import DuplicateServerError, ServerNotFoundError
from toolhost.core.types import (
    ExecutionLogEntry,
    PermissionRecord,
    ServerDefinition,
    ToolDescriptor,
    utcnow,
)
from toolhost.storage import InMemoryStore, SQLiteStore, create_store


@pytest.fixture(params=["memory", "sqlite"])
async def any_store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryStore()
        return
    store = SQLiteStore(tmp_path / "store.db")
    await store.initialize()
    yield store
    await store.close()


def server(server_id: str, **fields) -> ServerDefinition:
    fields.setdefault("name", server_id)
    fields.setdefault("command", "npx")
    return ServerDefinition(id=server_id, **fields)


class TestServers:
    """Server definition CRUD."""

    async def test_add_and_get(self, any_store):
        await any_store.add_server(server("fs", args=["-y", "pkg"], env={"A": "1"}, tools=["read_file"]))

        loaded = await any_store.get_server("fs")

        assert loaded is not None
        assert loaded.args == ["-y", "pkg"]
        assert loaded.env == {"A": "1"}
        assert loaded.tools == ["read_file"]

    async def test_get_unknown(self, any_store):
        assert await any_store.get_server("missing") is None

    async def test_duplicate_rejected(self, any_store):
        await any_store.add_server(server("fs"))

        with pytest.raises(DuplicateServerError):
            await any_store.add_server(server("fs"))

    async def test_list_ordered_by_name(self, any_store):
        await any_store.add_server(server("b", name="zeta"))
        await any_store.add_server(server("a", name="alpha"))

        names = [s.name for s in await any_store.list_servers()]

        assert names == ["alpha", "zeta"]

    async def test_update(self, any_store):
        await any_store.add_server(server("fs"))
        current = await any_store.get_server("fs")

        updated = await any_store.update_server(current.model_copy(update={"description": "files"}))

        assert updated.description == "files"
        assert (await any_store.get_server("fs")).description == "files"

    async def test_update_unknown(self, any_store):
        with pytest.raises(ServerNotFoundError):
            await any_store.update_server(server("missing"))

    async def test_delete_cascades(self, any_store):
        await any_store.add_server(server("fs"))
        await any_store.replace_tools("fs", [ToolDescriptor(server_id="fs", name="read_file")])
        await any_store.upsert_permission(PermissionRecord(server_id="fs", tool_name="read_file", allowed=True))

        assert await any_store.delete_server("fs") is True
        assert await any_store.list_tools("fs") == []
        assert await any_store.find_permissions("fs", "read_file") == []
        assert await any_store.delete_server("fs") is False

    async def test_set_auto_start_replaces_flags(self, any_store):
        await any_store.add_server(server("a", auto_start=True))
        await any_store.add_server(server("b"))
        await any_store.add_server(server("c"))

        await any_store.set_auto_start(["b", "c"])

        ids = [s.id for s in await any_store.list_auto_start_servers()]
        assert ids == ["b", "c"]


class TestTools:
    """Descriptor replacement."""

    async def test_replace_is_not_merge(self, any_store):
        await any_store.add_server(server("fs"))
        await any_store.replace_tools(
            "fs",
            [ToolDescriptor(server_id="fs", name="a"), ToolDescriptor(server_id="fs", name="b")],
        )
        await any_store.replace_tools("fs", [ToolDescriptor(server_id="fs", name="c")])

        names = [t.name for t in await any_store.list_tools("fs")]

        assert names == ["c"]

    async def test_clear(self, any_store):
        await any_store.add_server(server("fs"))
        await any_store.replace_tools("fs", [ToolDescriptor(server_id="fs", name="a")])

        await any_store.clear_tools("fs")

        assert await any_store.list_tools() == []

    async def test_schema_round_trip(self, any_store):
        schema = {"type": "object", "properties": {"sql": {"type": "string"}}}
        await any_store.add_server(server("db"))
        await any_store.replace_tools("db", [ToolDescriptor(server_id="db", name="query", input_schema=schema)])

        (tool,) = await any_store.list_tools("db")

        assert tool.input_schema == schema


class TestPermissions:
    """Permission upserts and lookups."""

    async def test_upsert_supersedes_same_key(self, any_store):
        await any_store.add_server(server("db"))
        first = await any_store.upsert_permission(
            PermissionRecord(server_id="db", tool_name="query", allowed=True)
        )
        second = await any_store.upsert_permission(
            PermissionRecord(server_id="db", tool_name="query", allowed=False)
        )

        records = await any_store.find_permissions("db", "query")

        assert len(records) == 1
        assert records[0].allowed is False
        assert second.id == first.id

    async def test_scopes_coexist(self, any_store):
        await any_store.add_server(server("db"))
        await any_store.upsert_permission(PermissionRecord(server_id="db", tool_name="query", allowed=True))
        await any_store.upsert_permission(
            PermissionRecord(server_id="db", tool_name="query", project_id="p1", allowed=False)
        )

        assert len(await any_store.find_permissions("db", "query", "p1")) == 2
        assert len(await any_store.find_permissions("db", "query", "p2")) == 1
        assert len(await any_store.list_permissions()) == 2

    async def test_find_newest_first(self, any_store):
        await any_store.add_server(server("db"))
        now = utcnow()
        await any_store.upsert_permission(
            PermissionRecord(server_id="db", tool_name="query", project_id="p1", allowed=True, updated_at=now)
        )
        await any_store.upsert_permission(
            PermissionRecord(
                server_id="db",
                tool_name="query",
                allowed=False,
                updated_at=now + timedelta(seconds=1),
            )
        )

        records = await any_store.find_permissions("db", "query", "p1")

        assert [r.project_id for r in records] == [None, "p1"]

    async def test_unknown_server_rejected(self, any_store):
        with pytest.raises(ServerNotFoundError):
            await any_store.upsert_permission(PermissionRecord(server_id="nope", tool_name="x"))


class TestExecutionLog:
    """Execution log persistence."""

    async def test_newest_first_with_filters(self, any_store):
        base = utcnow()
        for i, session in enumerate(["s-a", "s-b", "s-a"]):
            await any_store.append_execution_log(
                ExecutionLogEntry(
                    server_id="db",
                    tool_name=f"t{i}",
                    session_id=session,
                    timestamp=base + timedelta(seconds=i),
                )
            )

        entries = await any_store.list_execution_log(session_id="s-a")

        assert [e.tool_name for e in entries] == ["t2", "t0"]

    async def test_limit(self, any_store):
        for i in range(5):
            await any_store.append_execution_log(ExecutionLogEntry(server_id="db", tool_name=f"t{i}"))

        assert len(await any_store.list_execution_log(limit=3)) == 3

    async def test_entries_outlive_server(self, any_store):
        await any_store.add_server(server("db"))
        await any_store.append_execution_log(
            ExecutionLogEntry(server_id="db", tool_name="query", params={"sql": "select 1"}, result={"rows": 1})
        )
        await any_store.delete_server("db")

        (entry,) = await any_store.list_execution_log(server_id="db")

        assert entry.params == {"sql": "select 1"}
        assert entry.result == {"rows": 1}


class TestCreateStore:
    """Backend selection."""

    async def test_memory_backend(self):
        store = await create_store(StorageSettings(backend="memory"))

        assert isinstance(store, InMemoryStore)

    async def test_sqlite_backend_creates_file(self, tmp_path):
        path = tmp_path / "nested" / "toolhost.db"

        store = await create_store(StorageSettings(backend="sqlite", database_path=str(path)))
        try:
            assert isinstance(store, SQLiteStore)
            assert path.exists()
        finally:
            await store.close()
