"""
Provisioner base — check, create, verify for one managed resource.

``ensure()`` is the only entry point the phase controller uses:
check whether the resource exists, create it if not, then verify it.
Nothing about a resource is remembered between runs; every call
re-queries the live system, which is what makes re-running safe.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from deployctl.core.models.receipt import Receipt
from deployctl.core.models.settings import DeploySettings
from deployctl.core.reliability.executor import RetryingExecutor

if TYPE_CHECKING:
    from deployctl.adapters.registry import AdapterRegistry

logger = logging.getLogger(__name__)

_ALREADY_EXISTS = "already exists"


@dataclass
class ProvisionContext:
    """Shared by every task of one run."""

    settings: DeploySettings
    registry: AdapterRegistry
    executor: RetryingExecutor
    sleep: Callable[[float], None] = field(default=time.sleep)

    # Set by the source sync task when new commits were checked out
    source_changed: bool = False


@dataclass
class Verification:
    ok: bool
    problems: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def from_problems(cls, problems: list[str], warnings: list[str] | None = None) -> Verification:
        return cls(ok=not problems, problems=problems, warnings=list(warnings or []))


@dataclass
class ProvisionResult:
    resource: str
    already_present: bool
    verified: bool
    problems: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource": self.resource,
            "already_present": self.already_present,
            "verified": self.verified,
            "skipped": self.skipped,
            "problems": self.problems,
            "warnings": self.warnings,
        }


class PhaseTask(ABC):
    """Anything a phase runs. ``ensure()`` must be safe to repeat."""

    resource: str = "task"

    def __init__(self, ctx: ProvisionContext):
        self.ctx = ctx

    @property
    def settings(self) -> DeploySettings:
        return self.ctx.settings

    @property
    def registry(self) -> AdapterRegistry:
        return self.ctx.registry

    @abstractmethod
    def ensure(self) -> ProvisionResult: ...

    def run_step(self, operation: Callable[[], Receipt], *, step: str = "") -> Receipt:
        """Run one adapter call through the retrying executor.

        Raises:
            ProvisionError: When the executor gives up.
        """
        label = f"{self.resource}/{step}" if step else self.resource
        result = self.ctx.executor.execute(operation, resource=label)
        return result.raise_for_failure(self.resource)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} resource={self.resource!r}>"


class Provisioner(PhaseTask):
    """A managed resource with existence check, creation and verification."""

    @abstractmethod
    def check_existing(self) -> bool:
        """Whether the resource already exists (queried live)."""

    @abstractmethod
    def create(self) -> None:
        """Create the resource. Raises ProvisionError on terminal failure."""

    @abstractmethod
    def verify(self) -> Verification:
        """Whether the resource currently has its required shape."""

    def reconcile(self) -> None:
        """Bring an existing resource back to its required shape."""

    def teardown(self) -> Receipt:
        """Remove the resource (used only by ``reset --clean``)."""
        return Receipt.skip("provisioner", f"teardown:{self.resource}", reason="nothing to remove")

    def ensure(self) -> ProvisionResult:
        present = self.check_existing()
        if present:
            logger.info("%s: already present", self.resource)
            self.reconcile()
        else:
            logger.info("%s: creating", self.resource)
            self.create()

        verification = self.verify()
        if not verification.ok:
            logger.error("%s: verification failed: %s", self.resource, "; ".join(verification.problems))
        for warning in verification.warnings:
            logger.warning("%s: %s", self.resource, warning)

        return ProvisionResult(
            resource=self.resource,
            already_present=present,
            verified=verification.ok,
            problems=verification.problems,
            warnings=verification.warnings,
        )


def accept_existing(receipt: Receipt) -> Receipt:
    """Treat an "already exists" answer from a create call as success."""
    if receipt.failed and _ALREADY_EXISTS in receipt.combined_output.lower():
        logger.debug("%s/%s: resource already exists", receipt.adapter, receipt.operation)
        return receipt.model_copy(update={"status": "ok", "metadata": {**receipt.metadata, "already_exists": True}})
    return receipt


def lookup_binary(registry: AdapterRegistry, binary: str, search_path: list[str]) -> Receipt:
    """Resolve ``binary`` as a receipt; failure looks like a shell's exit 127."""
    path = registry.host.which(binary, search_path)
    if path:
        return Receipt.success("host", "which", output=path, metadata={"binary": binary})
    return Receipt.failure(
        "host",
        "which",
        error=f"{binary}: command not found",
        exit_code=127,
        metadata={"binary": binary, "search_path": search_path},
    )
