"""
Reliability — failure classification, remediations and the retrying
executor that ties them together.
"""

from deployctl.core.reliability.classify import Failure, FailureCategory, classify_failure  # noqa: F401
from deployctl.core.reliability.executor import ExecutionResult, RetryingExecutor  # noqa: F401
from deployctl.core.reliability.remediation import (  # noqa: F401
    RemediationAction,
    RemediationContext,
    default_remediations,
)
