"""
PostgreSQL admin adapter — psql as the ``postgres`` OS user.

SQL is fed on stdin and every identifier or literal is passed as a psql
variable (``-v name=value``) and interpolated by psql itself with
``:"name"`` (identifier) or ``:'name'`` (literal). Nothing is spliced
into SQL strings here.
"""

from __future__ import annotations

import logging

from deployctl.adapters.base import DatabaseAdmin
from deployctl.adapters.shell.command import privileged, run_command
from deployctl.core.models.receipt import Receipt

logger = logging.getLogger(__name__)


class PostgresAdmin(DatabaseAdmin):
    """Local PostgreSQL server reached over the admin user's peer auth."""

    def __init__(self, admin_user: str = "postgres", timeout: int = 60):
        self._admin_user = admin_user
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "postgres"

    # ── Plumbing ────────────────────────────────────────────────

    def _psql(self, operation: str, sql: str, **variables: str) -> Receipt:
        cmd = ["psql", "-X", "-q", "-t", "-A", "-v", "ON_ERROR_STOP=1"]
        for key, value in variables.items():
            cmd += ["-v", f"{key}={value}"]
        receipt = run_command(
            self.name,
            operation,
            privileged(cmd, as_user=self._admin_user),
            cwd="/",
            timeout=self._timeout,
            input_text=sql,
        )
        # Never keep the password in receipt metadata
        if "password" in variables:
            receipt.metadata.pop("command", None)
        return receipt

    def _scalar(self, operation: str, sql: str, **variables: str) -> str | None:
        receipt = self._psql(operation, sql, **variables)
        if not receipt.ok:
            logger.debug("%s failed: %s", operation, receipt.error)
            return None
        return receipt.output.strip()

    # ── Queries ─────────────────────────────────────────────────

    def ping(self) -> Receipt:
        return self._psql("ping", "SELECT 1;")

    def role_exists(self, role: str) -> bool:
        return self._scalar(
            "role-exists", "SELECT 1 FROM pg_roles WHERE rolname = :'role';", role=role,
        ) == "1"

    def role_can_login(self, role: str) -> bool:
        return self._scalar(
            "role-can-login", "SELECT rolcanlogin FROM pg_roles WHERE rolname = :'role';", role=role,
        ) == "t"

    def database_exists(self, name: str) -> bool:
        return self._scalar(
            "database-exists", "SELECT 1 FROM pg_database WHERE datname = :'name';", name=name,
        ) == "1"

    def database_owner(self, name: str) -> str | None:
        owner = self._scalar(
            "database-owner",
            "SELECT pg_get_userbyid(datdba) FROM pg_database WHERE datname = :'name';",
            name=name,
        )
        return owner or None

    # ── Mutations ───────────────────────────────────────────────

    def create_role(self, role: str, password: str) -> Receipt:
        return self._psql(
            "create-role",
            "CREATE ROLE :\"role\" WITH LOGIN PASSWORD :'password';",
            role=role,
            password=password,
        )

    def create_database(self, name: str, owner: str) -> Receipt:
        return self._psql(
            "create-database", 'CREATE DATABASE :"name" OWNER :"owner";', name=name, owner=owner,
        )

    def set_owner(self, database: str, owner: str) -> Receipt:
        return self._psql(
            "set-owner", 'ALTER DATABASE :"name" OWNER TO :"owner";', name=database, owner=owner,
        )

    def grant_all(self, database: str, role: str) -> Receipt:
        return self._psql(
            "grant",
            'GRANT ALL PRIVILEGES ON DATABASE :"name" TO :"role";',
            name=database,
            role=role,
        )

    def drop_database(self, name: str) -> Receipt:
        return self._psql("drop-database", 'DROP DATABASE IF EXISTS :"name";', name=name)

    def drop_role(self, role: str) -> Receipt:
        return self._psql("drop-role", 'DROP ROLE IF EXISTS :"role";', role=role)
