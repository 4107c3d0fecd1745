"""PostgreSQL database and role reconcilers driven through ``psql``.

Tasks using these operations normally run with ``become_user = "postgres"``
so that ``psql`` authenticates over the local socket with peer auth.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from typing import Any, Optional

from .base import Operation
from ..errors import ReconcileError
from ..executors import Executor
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)

DATABASE_PRIVILEGES = ("CREATE", "CONNECT", "TEMPORARY")
PRIVILEGE_ALIASES = {"TEMP": "TEMPORARY", "ALL PRIVILEGES": "ALL"}


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def parse_privileges(value: Any) -> list[str]:
    if value is None or value == "":
        return []
    items = value if isinstance(value, list) else str(value).split(",")
    privileges: list[str] = []
    for item in items:
        name = str(item).strip().upper()
        name = PRIVILEGE_ALIASES.get(name, name)
        if name == "ALL":
            candidates = list(DATABASE_PRIVILEGES)
        elif name in DATABASE_PRIVILEGES:
            candidates = [name]
        else:
            raise ValueError(f"unsupported database privilege '{item}'")
        for candidate in candidates:
            if candidate not in privileges:
                privileges.append(candidate)
    return privileges


@dataclass
class Psql:
    login_db: str = "postgres"
    executable: str = "psql"

    def available(self) -> bool:
        return shutil.which(self.executable) is not None

    def _command(self) -> list[str]:
        # statements go on stdin so that passwords stay out of argv and logs
        return [self.executable, "-X", "-q", "-t", "-A", "-v", "ON_ERROR_STOP=1", "-d", self.login_db, "-f", "-"]

    def query(self, executor: Executor, sql: str) -> list[str]:
        result = executor.run(self._command(), mutable=False, input_text=sql)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def execute(self, executor: Executor, sql: str) -> None:
        executor.run(self._command(), input_text=sql)

    def database_exists(self, executor: Executor, name: str) -> bool:
        return bool(self.query(executor, f"SELECT 1 FROM pg_database WHERE datname = {quote_literal(name)}"))

    def create_database(self, executor: Executor, name: str, *, owner: Optional[str]) -> None:
        sql = f"CREATE DATABASE {quote_ident(name)}"
        if owner:
            sql += f" OWNER {quote_ident(owner)}"
        self.execute(executor, sql)

    def drop_database(self, executor: Executor, name: str) -> None:
        self.execute(executor, f"DROP DATABASE {quote_ident(name)}")

    def role_exists(self, executor: Executor, name: str) -> bool:
        return bool(self.query(executor, f"SELECT 1 FROM pg_roles WHERE rolname = {quote_literal(name)}"))

    def create_role(self, executor: Executor, name: str, *, password: Optional[str]) -> None:
        sql = f"CREATE ROLE {quote_ident(name)} WITH LOGIN"
        if password is not None:
            sql += f" PASSWORD {quote_literal(password)}"
        self.execute(executor, sql)

    def drop_role(self, executor: Executor, name: str, *, database: Optional[str]) -> None:
        if database:
            self.execute(executor, f"REVOKE ALL ON DATABASE {quote_ident(database)} FROM {quote_ident(name)}")
        self.execute(executor, f"DROP ROLE {quote_ident(name)}")

    def granted_privileges(self, executor: Executor, role: str, database: str) -> set[str]:
        # explicit grants only; privileges inherited through PUBLIC are not listed
        sql = (
            "SELECT a.privilege_type FROM pg_database d "
            "CROSS JOIN LATERAL aclexplode(d.datacl) a "
            "JOIN pg_roles r ON r.oid = a.grantee "
            f"WHERE d.datname = {quote_literal(database)} AND r.rolname = {quote_literal(role)}"
        )
        return {row.upper() for row in self.query(executor, sql)}

    def grant(self, executor: Executor, role: str, database: str, privileges: list[str]) -> None:
        self.execute(
            executor,
            f"GRANT {', '.join(privileges)} ON DATABASE {quote_ident(database)} TO {quote_ident(role)}",
        )


class _PostgresOperation(Operation):
    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name")
        if not raw_name:
            raise ValueError(f"{self.action} operation requires a name")
        self.name = str(raw_name)
        self.state = self.parse_state(spec.get("state"), {"present", "absent"}, "present", self.action)
        self.psql = Psql(login_db=str(spec.get("login_db", "postgres")))

    def _require_psql(self) -> None:
        if not self.psql.available():
            raise ReconcileError("psql is not available on this host", kind="postgresql-missing")


class DatabaseOperation(_PostgresOperation):
    """Ensure a PostgreSQL database exists or is dropped."""

    action = "postgresql_db"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        self.owner: Optional[str] = str(spec["owner"]) if spec.get("owner") else None

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        self._require_psql()
        exists = self.psql.database_exists(executor, self.name)
        changes: list[str] = []
        if self.state == "present" and not exists:
            logger.debug("Creating database %s", self.name)
            if not executor.dry_run:
                self.psql.create_database(executor, self.name, owner=self.owner)
            changes.append("created")
        elif self.state == "absent" and exists:
            logger.debug("Dropping database %s", self.name)
            if not executor.dry_run:
                self.psql.drop_database(executor, self.name)
            changes.append("dropped")
        return self.result(host, changes)


class DatabaseUserOperation(_PostgresOperation):
    """Ensure a PostgreSQL login role exists and holds database privileges."""

    action = "postgresql_user"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        password = spec.get("password")
        self.password: Optional[str] = None if password is None else str(password)
        self.database: Optional[str] = str(spec["db"]) if spec.get("db") else None
        self.privileges = parse_privileges(spec.get("priv"))
        if self.privileges and not self.database:
            raise ValueError("postgresql_user priv requires db")

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        self._require_psql()
        exists = self.psql.role_exists(executor, self.name)
        changes: list[str] = []

        if self.state == "absent":
            if exists:
                logger.debug("Dropping role %s", self.name)
                if not executor.dry_run:
                    self.psql.drop_role(executor, self.name, database=self.database)
                changes.append("dropped")
            return self.result(host, changes)

        if not exists:
            logger.debug("Creating role %s", self.name)
            if not executor.dry_run:
                self.psql.create_role(executor, self.name, password=self.password)
            changes.append("created")

        if self.privileges and self.database:
            granted = self.psql.granted_privileges(executor, self.name, self.database) if exists else set()
            missing = [priv for priv in self.privileges if priv not in granted]
            if missing:
                logger.debug("Granting %s on %s to %s", missing, self.database, self.name)
                if not executor.dry_run:
                    self.psql.grant(executor, self.name, self.database, missing)
                changes.append(f"granted={','.join(missing)}")

        return self.result(host, changes)
