"""
Unit Tests - Core Types and Exceptions
"""

import pytest
from pydantic import ValidationError

from toolhost.core.exceptions import (
    ExecutionTimeoutError,
    NotPermittedError,
    ServerNotFoundError,
    StartTimeoutError,
    ToolExecutionError,
    ToolHostError,
)
from toolhost.core.types import (
    ExecutionLogEntry,
    PermissionRecord,
    ServerDefinition,
    ServerState,
    ToolDescriptor,
)


class TestServerDefinition:
    """Tests for ServerDefinition."""

    def test_defaults(self):
        definition = ServerDefinition(name="fs", command="npx")

        assert definition.id
        assert definition.category == "utilities"
        assert definition.args == []
        assert definition.auto_start is False

    def test_argv_splits_command_and_appends_args(self):
        definition = ServerDefinition(name="s1", command="npx -y pkg", args=["/tmp dir"])

        assert definition.argv == ["npx", "-y", "pkg", "/tmp dir"]

    def test_command_line_joins_args(self):
        definition = ServerDefinition(
            name="files",
            command="npx",
            args=["@modelcontextprotocol/server-filesystem", "/tmp"],
        )

        assert "server-filesystem" in definition.command_line

    def test_env_values_are_stringified(self):
        definition = ServerDefinition(name="db", command="pg", env={"PORT": 5432, "DEBUG": True})

        assert definition.env == {"PORT": "5432", "DEBUG": "True"}

    def test_mcp_config_entry(self):
        definition = ServerDefinition(name="s1", command="sleep 999", env={"A": "1"})

        assert definition.to_mcp_config() == {
            "command": "sleep",
            "args": ["999"],
            "env": {"A": "1"},
        }

    def test_empty_command_rejected(self):
        with pytest.raises(ValidationError):
            ServerDefinition(name="bad", command="")

    @pytest.mark.parametrize("command", ["   ", "\t\n", "npx 'unterminated"])
    def test_unusable_command_rejected(self, command):
        with pytest.raises(ValidationError) as exc_info:
            ServerDefinition(name="bad", command=command)

        assert exc_info.value.errors()[0]["loc"] == ("command",)


class TestRecords:
    """Tests for descriptors, permissions and log entries."""

    def test_tool_descriptor_default_schema(self):
        tool = ToolDescriptor(server_id="s1", name="query")

        assert tool.input_schema == {"type": "object", "properties": {}}

    def test_permission_key(self):
        record = PermissionRecord(server_id="s1", tool_name="query", project_id="p1")

        assert record.key == ("s1", "query", "p1")
        assert record.allowed is False

    def test_log_entry_rejects_negative_duration(self):
        with pytest.raises(ValidationError):
            ExecutionLogEntry(server_id="s1", tool_name="query", duration=-1)

    def test_log_entry_is_frozen(self):
        entry = ExecutionLogEntry(server_id="s1", tool_name="query", error="denied")

        assert entry.is_error
        with pytest.raises(ValidationError):
            entry.error = None

    def test_server_state_values(self):
        assert [s.value for s in ServerState] == ["stopped", "starting", "running", "error"]


class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_all_errors_share_base(self):
        for error in (
            ServerNotFoundError("s1"),
            NotPermittedError("s1", "query"),
            ExecutionTimeoutError("slow", tool_name="query"),
            StartTimeoutError("slow", timeout=1.0),
        ):
            assert isinstance(error, ToolHostError)

    def test_execution_timeout_is_execution_error(self):
        assert issubclass(ExecutionTimeoutError, ToolExecutionError)

    def test_start_timeout_is_timeout_error(self):
        error = StartTimeoutError("not ready after 1.0s", timeout=1.0)

        assert isinstance(error, TimeoutError)
        assert str(error) == "not ready after 1.0s"

    def test_to_dict(self):
        error = ServerNotFoundError("s1", context={"server_id": "s1"})

        assert error.to_dict() == {
            "error": "SERVER_NOT_FOUND",
            "message": "MCP server not found: s1",
            "context": {"server_id": "s1"},
        }

    def test_code_override(self):
        error = ToolHostError("custom", code="CUSTOM")

        assert error.code == "CUSTOM"

    def test_cause_is_chained(self):
        cause = OSError("missing")
        error = ToolHostError("wrapped", cause=cause)

        assert error.__cause__ is cause
