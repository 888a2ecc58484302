"""
SQLite Store

Relational persistence for server definitions, tool descriptors,
permissions and the execution log.

Design:
- One connection, used from worker threads via asyncio.to_thread
- A lock serializes access; each write is one explicit transaction
- Lists and maps are stored as JSON text columns
- Execution log rows outlive their server (audit trail)
"""

import asyncio
import json
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from toolhost.core.exceptions import DuplicateServerError, ServerNotFoundError, StorageError
from toolhost.core.types import (
    ExecutionLogEntry,
    PermissionRecord,
    ServerDefinition,
    ToolDescriptor,
    utcnow,
)
from toolhost.observability.logging import get_logger
from toolhost.storage.base import ToolHostStore

SCHEMA = """
CREATE TABLE IF NOT EXISTS mcp_servers (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    command TEXT NOT NULL,
    args TEXT DEFAULT '[]',
    env TEXT DEFAULT '{}',
    category TEXT DEFAULT 'utilities',
    tools TEXT DEFAULT '[]',
    auto_start BOOLEAN DEFAULT 0,
    ready_pattern TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS mcp_tools (
    id TEXT PRIMARY KEY,
    server_id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    schema TEXT DEFAULT '{}',
    created_at TEXT NOT NULL,
    FOREIGN KEY (server_id) REFERENCES mcp_servers (id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS mcp_permissions (
    id TEXT PRIMARY KEY,
    server_id TEXT NOT NULL,
    tool_name TEXT NOT NULL,
    project_id TEXT,
    allowed BOOLEAN DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (server_id) REFERENCES mcp_servers (id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS mcp_execution_log (
    id TEXT PRIMARY KEY,
    server_id TEXT NOT NULL,
    tool_name TEXT NOT NULL,
    session_id TEXT,
    params TEXT DEFAULT '{}',
    result TEXT,
    error TEXT,
    duration INTEGER DEFAULT 0,
    timestamp TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_mcp_servers_category ON mcp_servers(category);
CREATE INDEX IF NOT EXISTS idx_mcp_tools_server ON mcp_tools(server_id);
CREATE INDEX IF NOT EXISTS idx_mcp_permissions_server_tool ON mcp_permissions(server_id, tool_name);
CREATE INDEX IF NOT EXISTS idx_mcp_execution_server ON mcp_execution_log(server_id);
CREATE INDEX IF NOT EXISTS idx_mcp_execution_session ON mcp_execution_log(session_id);
"""


def _ts(value: datetime) -> str:
    return value.isoformat()


class SQLiteStore(ToolHostStore):
    """
    SQLite-backed store.

    Usage:
        store = SQLiteStore("~/.toolhost/toolhost.db")
        await store.initialize()
    """

    def __init__(self, db_path: str | Path = ":memory:"):
        self._db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._logger = get_logger("toolhost.storage")

    async def initialize(self) -> None:
        """Open the database and create the schema if needed."""
        await asyncio.to_thread(self._initialize)

    def _initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            path = str(Path(self._db_path).expanduser())
        else:
            path = self._db_path

        self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        if path != ":memory:":
            self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.executescript(SCHEMA)
        self._logger.info("MCP tables initialized", database=path)

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("Store not initialized; call initialize() first")
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self.conn
            conn.execute("BEGIN")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    async def _run(self, func, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as e:
            raise StorageError(f"Database error: {e}", cause=e) from e

    async def close(self) -> None:
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await asyncio.to_thread(conn.close)

    # ------------------------------------------------------------ rows

    @staticmethod
    def _server_row(row: sqlite3.Row) -> ServerDefinition:
        return ServerDefinition(
            id=row["id"],
            name=row["name"],
            description=row["description"] or "",
            command=row["command"],
            args=json.loads(row["args"] or "[]"),
            env=json.loads(row["env"] or "{}"),
            category=row["category"] or "utilities",
            tools=json.loads(row["tools"] or "[]"),
            auto_start=bool(row["auto_start"]),
            ready_pattern=row["ready_pattern"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _server_params(d: ServerDefinition) -> tuple:
        return (
            d.name,
            d.description,
            d.command,
            json.dumps(d.args),
            json.dumps(d.env),
            d.category,
            json.dumps(d.tools),
            int(d.auto_start),
            d.ready_pattern,
        )

    @staticmethod
    def _tool_row(row: sqlite3.Row) -> ToolDescriptor:
        return ToolDescriptor(
            id=row["id"],
            server_id=row["server_id"],
            name=row["name"],
            description=row["description"] or "",
            input_schema=json.loads(row["schema"] or "{}"),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _permission_row(row: sqlite3.Row) -> PermissionRecord:
        return PermissionRecord(
            id=row["id"],
            server_id=row["server_id"],
            tool_name=row["tool_name"],
            project_id=row["project_id"],
            allowed=bool(row["allowed"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _log_row(row: sqlite3.Row) -> ExecutionLogEntry:
        return ExecutionLogEntry(
            id=row["id"],
            server_id=row["server_id"],
            tool_name=row["tool_name"],
            session_id=row["session_id"],
            params=json.loads(row["params"] or "{}"),
            result=json.loads(row["result"]) if row["result"] is not None else None,
            error=row["error"],
            duration=row["duration"] or 0,
            timestamp=datetime.fromisoformat(row["timestamp"]),
        )

    # ---------------------------------------------------------- servers

    async def add_server(self, definition: ServerDefinition) -> ServerDefinition:
        def insert() -> None:
            try:
                with self._transaction() as conn:
                    conn.execute(
                        """
                        INSERT INTO mcp_servers
                        (name, description, command, args, env, category, tools,
                         auto_start, ready_pattern, id, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            *self._server_params(definition),
                            definition.id,
                            _ts(definition.created_at),
                            _ts(definition.updated_at),
                        ),
                    )
            except sqlite3.IntegrityError as e:
                raise DuplicateServerError(
                    f"MCP server already exists: {definition.id}",
                    context={"server_id": definition.id},
                    cause=e,
                ) from e

        await self._run(insert)
        return definition

    async def get_server(self, server_id: str) -> ServerDefinition | None:
        rows = await self._run(self._query, "SELECT * FROM mcp_servers WHERE id = ?", (server_id,))
        return self._server_row(rows[0]) if rows else None

    async def list_servers(self) -> list[ServerDefinition]:
        rows = await self._run(self._query, "SELECT * FROM mcp_servers ORDER BY name")
        return [self._server_row(r) for r in rows]

    async def update_server(self, definition: ServerDefinition) -> ServerDefinition:
        updated = definition.model_copy(update={"updated_at": utcnow()})

        def update() -> int:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    UPDATE mcp_servers
                    SET name = ?, description = ?, command = ?, args = ?, env = ?,
                        category = ?, tools = ?, auto_start = ?, ready_pattern = ?,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (*self._server_params(updated), _ts(updated.updated_at), updated.id),
                )
                return cursor.rowcount

        if await self._run(update) == 0:
            raise ServerNotFoundError(definition.id)
        return updated

    async def delete_server(self, server_id: str) -> bool:
        def delete() -> int:
            with self._transaction() as conn:
                return conn.execute("DELETE FROM mcp_servers WHERE id = ?", (server_id,)).rowcount

        return await self._run(delete) > 0

    async def list_auto_start_servers(self) -> list[ServerDefinition]:
        rows = await self._run(
            self._query, "SELECT * FROM mcp_servers WHERE auto_start = 1 ORDER BY name"
        )
        return [self._server_row(r) for r in rows]

    async def set_auto_start(self, server_ids: Iterable[str]) -> None:
        ids = list(server_ids)
        now = _ts(utcnow())

        def update() -> None:
            with self._transaction() as conn:
                conn.execute(
                    "UPDATE mcp_servers SET auto_start = 0, updated_at = ? WHERE auto_start = 1",
                    (now,),
                )
                if ids:
                    placeholders = ",".join("?" for _ in ids)
                    conn.execute(
                        f"UPDATE mcp_servers SET auto_start = 1, updated_at = ? "
                        f"WHERE id IN ({placeholders})",
                        (now, *ids),
                    )

        await self._run(update)

    # ------------------------------------------------------------ tools

    async def list_tools(self, server_id: str | None = None) -> list[ToolDescriptor]:
        if server_id is not None:
            rows = await self._run(
                self._query,
                "SELECT * FROM mcp_tools WHERE server_id = ? ORDER BY name",
                (server_id,),
            )
        else:
            rows = await self._run(
                self._query,
                """
                SELECT t.* FROM mcp_tools t
                JOIN mcp_servers s ON t.server_id = s.id
                ORDER BY s.name, t.name
                """,
            )
        return [self._tool_row(r) for r in rows]

    async def replace_tools(self, server_id: str, tools: list[ToolDescriptor]) -> None:
        def replace() -> None:
            with self._transaction() as conn:
                conn.execute("DELETE FROM mcp_tools WHERE server_id = ?", (server_id,))
                conn.executemany(
                    """
                    INSERT INTO mcp_tools (id, server_id, name, description, schema, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            t.id,
                            server_id,
                            t.name,
                            t.description,
                            json.dumps(t.input_schema),
                            _ts(t.created_at),
                        )
                        for t in tools
                    ],
                )

        await self._run(replace)

    # ------------------------------------------------------ permissions

    async def upsert_permission(self, record: PermissionRecord) -> PermissionRecord:
        def upsert() -> PermissionRecord:
            with self._transaction() as conn:
                if conn.execute(
                    "SELECT 1 FROM mcp_servers WHERE id = ?", (record.server_id,)
                ).fetchone() is None:
                    raise ServerNotFoundError(record.server_id)

                # NULL project ids never collide in a UNIQUE index, so the
                # key is enforced here with IS instead.
                existing = conn.execute(
                    """
                    SELECT id, created_at FROM mcp_permissions
                    WHERE server_id = ? AND tool_name = ? AND project_id IS ?
                    """,
                    (record.server_id, record.tool_name, record.project_id),
                ).fetchone()

                stored = record
                if existing is not None:
                    stored = record.model_copy(
                        update={
                            "id": existing["id"],
                            "created_at": datetime.fromisoformat(existing["created_at"]),
                        }
                    )
                    conn.execute("DELETE FROM mcp_permissions WHERE id = ?", (existing["id"],))

                conn.execute(
                    """
                    INSERT INTO mcp_permissions
                    (id, server_id, tool_name, project_id, allowed, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        stored.id,
                        stored.server_id,
                        stored.tool_name,
                        stored.project_id,
                        int(stored.allowed),
                        _ts(stored.created_at),
                        _ts(stored.updated_at),
                    ),
                )
                return stored

        return await self._run(upsert)

    async def find_permissions(
        self,
        server_id: str,
        tool_name: str,
        project_id: str | None = None,
    ) -> list[PermissionRecord]:
        rows = await self._run(
            self._query,
            """
            SELECT * FROM mcp_permissions
            WHERE server_id = ? AND tool_name = ?
              AND (project_id IS NULL OR project_id IS ?)
            ORDER BY updated_at DESC, rowid DESC
            """,
            (server_id, tool_name, project_id),
        )
        return [self._permission_row(r) for r in rows]

    async def list_permissions(self, project_id: str | None = None) -> list[PermissionRecord]:
        if project_id is not None:
            rows = await self._run(
                self._query,
                """
                SELECT * FROM mcp_permissions
                WHERE project_id = ? OR project_id IS NULL
                ORDER BY updated_at, rowid
                """,
                (project_id,),
            )
        else:
            rows = await self._run(
                self._query, "SELECT * FROM mcp_permissions ORDER BY updated_at, rowid"
            )
        return [self._permission_row(r) for r in rows]

    # ---------------------------------------------------- execution log

    async def append_execution_log(self, entry: ExecutionLogEntry) -> None:
        def insert() -> None:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO mcp_execution_log
                    (id, server_id, tool_name, session_id, params, result, error, duration, timestamp)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.id,
                        entry.server_id,
                        entry.tool_name,
                        entry.session_id,
                        json.dumps(entry.params, default=str),
                        json.dumps(entry.result, default=str) if entry.result is not None else None,
                        entry.error,
                        entry.duration,
                        _ts(entry.timestamp),
                    ),
                )

        await self._run(insert)

    async def list_execution_log(
        self,
        server_id: str | None = None,
        session_id: str | None = None,
        limit: int = 100,
    ) -> list[ExecutionLogEntry]:
        query = "SELECT * FROM mcp_execution_log"
        conditions = []
        params: list[Any] = []

        if server_id:
            conditions.append("server_id = ?")
            params.append(server_id)

        if session_id:
            conditions.append("session_id = ?")
            params.append(session_id)

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY timestamp DESC, rowid DESC LIMIT ?"
        params.append(int(limit))

        rows = await self._run(self._query, query, tuple(params))
        return [self._log_row(r) for r in rows]
