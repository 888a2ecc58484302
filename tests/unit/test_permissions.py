"""
Unit Tests - Permission Gate
"""

from datetime import timedelta

import pytest

from toolhost.core.exceptions import NotPermittedError, ServerNotFoundError
from toolhost.core.types import PermissionRecord, ServerDefinition, utcnow
from toolhost.tools.permissions import PermissionGate


@pytest.fixture
async def gate(store):
    await store.add_server(ServerDefinition(id="db", name="postgres", command="postgres-mcp"))
    return PermissionGate(store)


class TestPermissionGate:
    """Tests for PermissionGate."""

    async def test_deny_by_default(self, gate):
        assert await gate.is_allowed("db", "query") is False

        with pytest.raises(NotPermittedError) as exc_info:
            await gate.check("db", "query")
        assert exc_info.value.tool_name == "query"

    async def test_global_allow(self, gate):
        await gate.set_permission("db", "query", allowed=True)

        assert await gate.is_allowed("db", "query")
        assert await gate.is_allowed("db", "query", project_id="any-project")
        await gate.check("db", "query")

    async def test_explicit_deny(self, gate):
        await gate.set_permission("db", "query", allowed=False)

        assert await gate.is_allowed("db", "query") is False

    async def test_later_write_supersedes(self, gate):
        await gate.set_permission("db", "query", allowed=True)
        await gate.set_permission("db", "query", allowed=False)

        assert await gate.is_allowed("db", "query") is False

    async def test_project_scope_does_not_leak(self, gate):
        await gate.set_permission("db", "query", allowed=True, project_id="p1")

        assert await gate.is_allowed("db", "query", project_id="p1")
        assert await gate.is_allowed("db", "query", project_id="p2") is False
        assert await gate.is_allowed("db", "query") is False

    async def test_most_recent_of_scoped_and_global_wins(self, gate, store):
        earlier = utcnow() - timedelta(seconds=10)
        await store.upsert_permission(
            PermissionRecord(server_id="db", tool_name="query", project_id="p1", allowed=False, updated_at=earlier)
        )
        await store.upsert_permission(
            PermissionRecord(
                server_id="db",
                tool_name="query",
                allowed=True,
                updated_at=earlier + timedelta(seconds=1),
            )
        )

        assert await gate.is_allowed("db", "query", project_id="p1")

        await gate.set_permission("db", "query", allowed=False, project_id="p1")

        assert await gate.is_allowed("db", "query", project_id="p1") is False

    async def test_tools_are_independent(self, gate):
        await gate.set_permission("db", "query", allowed=True)

        assert await gate.is_allowed("db", "schema") is False

    async def test_permission_map(self, gate):
        await gate.set_permission("db", "query", allowed=True)
        await gate.set_permission("db", "schema", allowed=False, project_id="p1")

        assert await gate.get_permissions() == {"db:query": True, "db:schema": False}
        assert await gate.get_permissions("p2") == {"db:query": True}

    async def test_unknown_server(self, gate):
        with pytest.raises(ServerNotFoundError):
            await gate.set_permission("missing", "query", allowed=True)
