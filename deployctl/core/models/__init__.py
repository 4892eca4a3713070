"""
Domain models — Pydantic types for the orchestrator.

All models are re-exported here for convenient access:

    from deployctl.core.models import DeploySettings, InstallState, Receipt
"""

from deployctl.core.models.receipt import Receipt
from deployctl.core.models.service import ServiceDescriptor
from deployctl.core.models.settings import (
    BuildSettings,
    DatabaseSettings,
    DeploySettings,
    EnvFileSettings,
    EnvKeySpec,
    RetrySettings,
    RuntimeSpec,
    ServiceSettings,
    SourceSettings,
)
from deployctl.core.models.state import InstallPhase, InstallState, RunRecord

__all__ = [
    # settings.py
    "BuildSettings",
    "DatabaseSettings",
    "DeploySettings",
    "EnvFileSettings",
    "EnvKeySpec",
    # state.py
    "InstallPhase",
    "InstallState",
    # receipt.py
    "Receipt",
    "RetrySettings",
    "RunRecord",
    "RuntimeSpec",
    # service.py
    "ServiceDescriptor",
    "ServiceSettings",
    "SourceSettings",
]
