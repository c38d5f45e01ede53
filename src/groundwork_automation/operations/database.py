"""PostgreSQL and MySQL provisioning.

Statements carrying a password are written to the client's stdin so the
credential never shows up in argv, the process table, or the command log.
Identifiers are interpolated directly and must be validated upstream.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from .base import Action
from .file import LineInFileAction
from ..errors import ResourceConflictError
from ..executors import Executor
from ..probes import SqlProbe
from ..types import ResourceState

logger = logging.getLogger(__name__)

PSQL = ["runuser", "-u", "postgres", "--", "psql", "-v", "ON_ERROR_STOP=1"]
PSQL_QUERY = [*PSQL, "-tAc"]
MYSQL = ["mysql", "--batch"]
MYSQL_QUERY = ["mysql", "-N", "-B", "-e"]


def sql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def pg_identifier(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def mysql_identifier(value: str) -> str:
    return "`" + value.replace("`", "``") + "`"


class PostgresRoleAction(Action):
    """Create a login role whose password comes from the run configuration."""

    kind = "postgres_role"

    def __init__(self, name: str, role: str, *, password_param: str, **kwargs: Any):
        if not role:
            raise ValueError("postgres_role action requires a role")
        kwargs.setdefault("resource", role)
        super().__init__(name, **kwargs)
        self.role = role
        self.password_param = password_param

    def probe(self, config, executor: Executor) -> ResourceState:
        query = f"SELECT 1 FROM pg_roles WHERE rolname = {sql_literal(self.role)}"
        return SqlProbe(PSQL_QUERY, query).check(executor)

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        password = config.secret(self.password_param).reveal()
        statement = (
            f"CREATE ROLE {pg_identifier(self.role)} WITH LOGIN PASSWORD {sql_literal(password)};\n"
        )
        executor.run([*PSQL, "-q"], input=statement)
        return "created"


class PostgresDatabaseAction(Action):
    kind = "postgres_database"

    def __init__(self, name: str, database: str, *, owner: str, **kwargs: Any):
        if not database or not owner:
            raise ValueError("postgres_database action requires a database and an owner")
        kwargs.setdefault("resource", database)
        super().__init__(name, **kwargs)
        self.database = database
        self.owner = owner

    def probe(self, config, executor: Executor) -> ResourceState:
        query = f"SELECT 1 FROM pg_database WHERE datname = {sql_literal(self.database)}"
        return SqlProbe(PSQL_QUERY, query).check(executor)

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        statement = (
            f"CREATE DATABASE {pg_identifier(self.database)} OWNER {pg_identifier(self.owner)};\n"
            f"GRANT ALL PRIVILEGES ON DATABASE {pg_identifier(self.database)} "
            f"TO {pg_identifier(self.owner)};\n"
        )
        executor.run([*PSQL, "-q"], input=statement)
        return f"created owner={self.owner}"


def find_pg_hba(root: Path = Path("/etc/postgresql")) -> Path:
    """Locate ``pg_hba.conf`` of the newest installed cluster."""

    candidates = [path for path in root.glob("*/main/pg_hba.conf") if path.is_file()]
    if not candidates:
        raise ResourceConflictError(f"no pg_hba.conf found under {root}")

    def version_key(path: Path) -> tuple[int, ...]:
        return tuple(int(part) for part in re.findall(r"\d+", path.parent.parent.name))

    return sorted(candidates, key=version_key)[-1]


class PgHbaAction(LineInFileAction):
    """Allow password login for ``user`` on ``database`` over the local socket."""

    kind = "pg_hba"

    def __init__(self, name: str, database: str, user: str, *, method: str = "md5", root: Path = Path("/etc/postgresql"), **kwargs: Any):
        self.root = Path(root)
        line = f"local   {database}       {user}         {method}"
        anchor = rf"^local\s+{re.escape(database)}\s+{re.escape(user)}\s+.*$"
        kwargs.setdefault("resource", f"{user}@{database}")
        super().__init__(
            name,
            self.root / "pg_hba.conf",
            line,
            anchor,
            # pg_hba is first-match; the entry must precede the catch-all local rules.
            insert_before=r"^local\s",
            on_change=["systemctl", "restart", "postgresql"],
            **kwargs,
        )

    def target_path(self, config, executor: Executor) -> Path:
        return find_pg_hba(self.root)

    def probe(self, config, executor: Executor) -> ResourceState:
        try:
            return super().probe(config, executor)
        except ResourceConflictError as exc:
            return ResourceState.unknown(str(exc))


class MysqlDatabaseAction(Action):
    """Create a database, a local user and the grant between them as one step."""

    kind = "mysql_database"

    def __init__(self, name: str, database: str, user: str, *, password_param: str, **kwargs: Any):
        if not database or not user:
            raise ValueError("mysql_database action requires a database and a user")
        kwargs.setdefault("resource", f"{user}@{database}")
        super().__init__(name, **kwargs)
        self.database = database
        self.user = user
        self.password_param = password_param

    def probe(self, config, executor: Executor) -> ResourceState:
        query = (
            "SELECT 1 FROM information_schema.SCHEMATA s "
            "JOIN mysql.db d ON d.Db = s.SCHEMA_NAME "
            f"WHERE s.SCHEMA_NAME = {sql_literal(self.database)} "
            f"AND d.User = {sql_literal(self.user)} AND d.Host = 'localhost' LIMIT 1"
        )
        return SqlProbe(MYSQL_QUERY, query).check(executor)

    def mutate(self, config, executor: Executor, state: ResourceState) -> str:
        password = config.secret(self.password_param).reveal()
        account = f"{sql_literal(self.user)}@'localhost'"
        statement = "\n".join(
            [
                f"CREATE DATABASE IF NOT EXISTS {mysql_identifier(self.database)};",
                f"CREATE USER IF NOT EXISTS {account} IDENTIFIED BY {sql_literal(password)};",
                f"GRANT ALL PRIVILEGES ON {mysql_identifier(self.database)}.* TO {account};",
                "FLUSH PRIVILEGES;",
                "",
            ]
        )
        executor.run(MYSQL, input=statement)
        return "database, user and grant created"
