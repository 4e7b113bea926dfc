"""Database step: insert, update or select rows in an external database."""

from __future__ import annotations

import logging
import re
import ssl
from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import Field, ValidationError, model_validator
from pydantic_core import to_jsonable_python
from sqlalchemy import and_, column, insert, literal_column, select, table, update
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from ..contracts import AflowModel
from ..errors import StepConfigurationError
from .base import StepExecutor
from .template import template_value

logger = logging.getLogger(__name__)

IDENTIFIER = re.compile(r"^[A-Za-z0-9_.]+$")

DRIVERS = {
    "postgres": "postgresql+asyncpg",
    "mysql": "mysql+aiomysql",
    "sqlite": "sqlite+aiosqlite",
}


class ConnectionSettings(AflowModel):
    host: Optional[str] = Field(default=None, min_length=1)
    port: Optional[int] = Field(default=None, gt=0)
    database: str = Field(min_length=1)
    user: Optional[str] = Field(default=None, min_length=1)
    password: Optional[str] = Field(default=None, min_length=1)
    ssl: Optional[bool] = None


class DatabaseActionConfig(AflowModel):
    database_type: Literal["postgres", "mysql", "sqlite"]
    connection: ConnectionSettings
    table: str = Field(pattern=IDENTIFIER.pattern)
    operation: Literal["insert", "update", "select"]
    data: Optional[Dict[str, Any]] = None
    where: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def _check_complete(self) -> "DatabaseActionConfig":
        if self.database_type != "sqlite":
            conn = self.connection
            missing = [
                name
                for name in ("host", "port", "user", "password")
                if getattr(conn, name) is None
            ]
            if missing:
                raise ValueError(
                    f"{self.database_type} connection requires: {', '.join(missing)}"
                )
        if self.operation in ("insert", "update") and not self.data:
            raise ValueError(f"{self.operation} operation requires 'data'")
        if self.operation == "update" and not self.where:
            raise ValueError("update operation requires 'where'")
        return self


def _check_identifiers(names: Any) -> None:
    for name in names:
        if not isinstance(name, str) or not IDENTIFIER.match(name):
            raise StepConfigurationError(f"Invalid identifier: {name}")


def _ssl_argument(config: DatabaseActionConfig) -> Any:
    """SSL is required but unverified unless the connection opts out."""
    if config.database_type == "sqlite" or config.connection.ssl is False:
        return None
    if config.database_type == "postgres":
        return "require"
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


class DatabaseActionExecutor(StepExecutor):
    """Run one insert/update/select against Postgres, MySQL or SQLite.

    Each invocation opens a single connection and always disposes of it.
    Inserts and updates are not rolled back if a later step fails, so a
    retried or replayed step may write twice.
    """

    idempotent = False

    def parse_config(self, config: Mapping[str, Any]) -> DatabaseActionConfig:
        try:
            parsed = DatabaseActionConfig.model_validate(config)
        except ValidationError as exc:
            raise StepConfigurationError(f"Invalid database action config: {exc}") from exc
        _check_identifiers((parsed.data or {}).keys())
        _check_identifiers((parsed.where or {}).keys())
        return parsed

    def create_engine(self, config: DatabaseActionConfig) -> AsyncEngine:
        conn = config.connection
        url = URL.create(
            DRIVERS[config.database_type],
            username=conn.user,
            password=conn.password,
            host=conn.host,
            port=conn.port,
            database=conn.database,
        )
        connect_args: Dict[str, Any] = {}
        ssl_arg = _ssl_argument(config)
        if ssl_arg is not None:
            connect_args["ssl"] = ssl_arg
        return create_async_engine(url, poolclass=NullPool, connect_args=connect_args)

    async def execute(
        self, config: Dict[str, Any], context: Mapping[str, Any]
    ) -> Dict[str, Any]:
        parsed = self.parse_config(config)
        data = template_value(parsed.data, context) if parsed.data else None
        where = template_value(parsed.where, context) if parsed.where else None

        engine = self.create_engine(parsed)
        try:
            async with engine.connect() as conn:
                result = await self._run(conn, parsed, data, where)
                await conn.commit()
        finally:
            await engine.dispose()

        logger.info(
            f"Database {parsed.operation} on {parsed.table} ({parsed.database_type}) succeeded"
        )
        return {"result": to_jsonable_python(result, fallback=str)}

    async def _run(
        self,
        conn: AsyncConnection,
        config: DatabaseActionConfig,
        data: Optional[Dict[str, Any]],
        where: Optional[Dict[str, Any]],
    ) -> Any:
        schema, _, name = config.table.rpartition(".")
        columns = {*(data or {}), *(where or {})}
        target = table(name, *(column(c) for c in columns), schema=schema or None)
        condition = and_(*(target.c[k] == v for k, v in where.items())) if where else None

        if config.operation == "insert":
            stmt = insert(target).values(**data)
            if conn.dialect.insert_returning:
                row = (await conn.execute(stmt.returning(literal_column("*")))).mappings().first()
                return dict(row) if row is not None else None
            res = await conn.execute(stmt)
            if res.lastrowid:
                lookup = (
                    select(literal_column("*"))
                    .select_from(target)
                    .where(literal_column("id") == res.lastrowid)
                )
                row = (await conn.execute(lookup)).mappings().first()
                if row is not None:
                    return dict(row)
            return dict(data)

        if config.operation == "update":
            res = await conn.execute(update(target).where(condition).values(**data))
            return {"affectedRows": res.rowcount}

        query = select(literal_column("*")).select_from(target)
        if where:
            query = query.where(condition)
        rows = (await conn.execute(query)).mappings().all()
        return [dict(r) for r in rows]
