"""
Database role and database provisioners.

An existing role is never altered: its password is not rotated, even if
the configured one differs. Changing a live credential under a running
application is an operator decision.
"""

from __future__ import annotations

import logging

from deployctl.core.models.receipt import Receipt
from deployctl.core.provisioners.base import ProvisionContext, Provisioner, Verification, accept_existing
from deployctl.core.services.credentials import ResolvedPassword, resolve_database_password

logger = logging.getLogger(__name__)


class _DatabaseProvisioner(Provisioner):
    """Shared reachability check (retried as database_unreachable)."""

    def ensure_reachable(self) -> None:
        self.run_step(self.registry.database.ping, step="ping")


class DatabaseRoleProvisioner(_DatabaseProvisioner):
    resource = "database-role"

    def __init__(self, ctx: ProvisionContext, password: ResolvedPassword | None = None):
        super().__init__(ctx)
        self._password = password
        self._kept_existing = False

    @property
    def role(self) -> str:
        return self.settings.database.role

    def check_existing(self) -> bool:
        self.ensure_reachable()
        exists = self.registry.database.role_exists(self.role)
        if exists:
            self._kept_existing = True
            logger.info("Role %s exists — keeping its current credential", self.role)
        return exists

    def create(self) -> None:
        db = self.registry.database
        if self._password is None:
            self._password = resolve_database_password(self.settings)
        password = self._password
        self.run_step(lambda: accept_existing(db.create_role(self.role, password.value)), step="create")
        logger.info("Role %s created (password from %s)", self.role, password.source)

    def verify(self) -> Verification:
        db = self.registry.database
        problems = []
        warnings = []
        if not db.role_exists(self.role):
            problems.append(f"role {self.role} does not exist")
        elif not db.role_can_login(self.role):
            problems.append(f"role {self.role} cannot log in")
        if self._kept_existing and self._password and self._password.source == "generated":
            warnings.append(
                f"role {self.role} existed before this run but no password was configured; "
                f"the environment file may not match its credential (set database.password)"
            )
        return Verification.from_problems(problems, warnings)

    def teardown(self) -> Receipt:
        return self.registry.database.drop_role(self.role)


class DatabaseProvisioner(_DatabaseProvisioner):
    resource = "database"

    @property
    def name(self) -> str:
        return self.settings.database.name

    @property
    def owner(self) -> str:
        return self.settings.database.role

    def check_existing(self) -> bool:
        self.ensure_reachable()
        return self.registry.database.database_exists(self.name)

    def create(self) -> None:
        db = self.registry.database
        created = self.run_step(
            lambda: accept_existing(db.create_database(self.name, self.owner)), step="create",
        )
        if created.metadata.get("already_exists"):
            self.reconcile()
            return
        self.run_step(lambda: db.grant_all(self.name, self.owner), step="grant")
        logger.info("Database %s created (owner %s)", self.name, self.owner)

    def reconcile(self) -> None:
        """Hand an existing database to the role and re-apply the grants."""
        db = self.registry.database
        owner = db.database_owner(self.name)
        if owner != self.owner:
            logger.warning(
                "Database %s is owned by %s — transferring ownership to %s",
                self.name, owner or "unknown", self.owner,
            )
            self.run_step(lambda: db.set_owner(self.name, self.owner), step="owner")
        self.run_step(lambda: db.grant_all(self.name, self.owner), step="grant")

    def verify(self) -> Verification:
        db = self.registry.database
        if not db.database_exists(self.name):
            return Verification.from_problems([f"database {self.name} does not exist"])
        owner = db.database_owner(self.name)
        if owner != self.owner:
            return Verification.from_problems(
                [f"database {self.name} is owned by {owner or 'unknown'}, expected {self.owner}"]
            )
        return Verification(ok=True)

    def teardown(self) -> Receipt:
        return self.registry.database.drop_database(self.name)
