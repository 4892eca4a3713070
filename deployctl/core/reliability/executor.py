"""
Retrying executor — run an operation, remediate, retry.

For a failed attempt the executor classifies the receipt. Unrecognised
output, or a category without a remediation, ends the run immediately.
Otherwise the remediation is applied once, the executor sleeps a fixed
backoff and tries again, up to ``max_attempts`` operation calls in total.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from deployctl.core.errors import ErrorKind, ProvisionError
from deployctl.core.models.receipt import Receipt
from deployctl.core.reliability.classify import Failure, FailureCategory, classify_failure
from deployctl.core.reliability.remediation import (
    RemediationAction,
    RemediationContext,
    default_remediations,
)

logger = logging.getLogger(__name__)

Classifier = Callable[[Receipt], Failure | None]


@dataclass
class ExecutionResult:
    """Outcome of one executor call."""

    receipt: Receipt
    attempts: int
    failure: Failure | None = None
    kind: ErrorKind | None = None
    remediations: list[Receipt] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.receipt.failed

    def raise_for_failure(self, resource: str) -> Receipt:
        """Return the receipt, or raise ProvisionError if the run failed."""
        if self.ok:
            return self.receipt
        if self.failure is not None:
            reason = f"{self.failure.label or self.failure.category} ({self.failure.category})"
        else:
            reason = "unrecognised failure"
        detail = self.receipt.error or "no error output"
        raise ProvisionError(
            f"{resource}: {self.receipt.operation} failed after "
            f"{self.attempts} attempt(s): {reason}: {detail}",
            kind=self.kind or ErrorKind.UNCLASSIFIED,
            resource=resource,
            output=self.receipt.combined_output,
        )

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "attempts": self.attempts,
            "category": str(self.failure.category) if self.failure else None,
            "kind": str(self.kind) if self.kind else None,
            "error": self.receipt.error,
            "remediations": [r.operation for r in self.remediations],
        }


class RetryingExecutor:
    """Bounded retry with remediation between attempts.

    The backoff is fixed, not exponential: a remediation either cleared
    the condition or the next attempt fails the same way.
    """

    def __init__(
        self,
        context: RemediationContext,
        remediations: Mapping[FailureCategory, RemediationAction] | None = None,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._ctx = context
        self._remediations = remediations if remediations is not None else default_remediations()
        self._max_attempts = max_attempts
        self._backoff = backoff_seconds

    @classmethod
    def from_settings(cls, context: RemediationContext) -> RetryingExecutor:
        retry = context.settings.retry
        return cls(context, max_attempts=retry.max_attempts, backoff_seconds=retry.backoff_seconds)

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def execute(
        self,
        operation: Callable[[], Receipt],
        *,
        max_attempts: int | None = None,
        classify: Classifier = classify_failure,
        resource: str = "",
    ) -> ExecutionResult:
        """Run ``operation`` until it succeeds or the policy gives up."""
        limit = max_attempts if max_attempts is not None else self._max_attempts
        applied: list[Receipt] = []
        attempts = 0

        while True:
            attempts += 1
            receipt = operation()
            if not receipt.failed:
                if attempts > 1:
                    logger.info("%s succeeded on attempt %d", resource or receipt.operation, attempts)
                return ExecutionResult(receipt=receipt, attempts=attempts, remediations=applied)

            failure = classify(receipt)
            if failure is None:
                logger.error(
                    "%s: unrecognised failure from %s/%s", resource, receipt.adapter, receipt.operation,
                )
                return ExecutionResult(
                    receipt=receipt,
                    attempts=attempts,
                    kind=ErrorKind.UNCLASSIFIED,
                    remediations=applied,
                )

            action = self._remediations.get(failure.category)
            if action is None:
                logger.error("%s: no remediation for %s", resource, failure.category)
                return ExecutionResult(
                    receipt=receipt,
                    attempts=attempts,
                    failure=failure,
                    kind=failure.kind,
                    remediations=applied,
                )

            if attempts >= limit:
                logger.error(
                    "%s: giving up after %d attempt(s) (%s)", resource, attempts, failure.category,
                )
                return ExecutionResult(
                    receipt=receipt,
                    attempts=attempts,
                    failure=failure,
                    kind=failure.kind,
                    remediations=applied,
                )

            logger.warning(
                "%s: attempt %d/%d failed (%s%s) — applying %s",
                resource or receipt.operation,
                attempts,
                limit,
                failure.category,
                f": {failure.subject}" if failure.subject else "",
                action.name,
            )
            remediation = action.apply(failure, self._ctx)
            applied.append(remediation)
            if remediation.failed:
                logger.warning("Remediation %s failed: %s", action.name, remediation.error)

            if self._backoff > 0:
                self._ctx.sleep(self._backoff)
