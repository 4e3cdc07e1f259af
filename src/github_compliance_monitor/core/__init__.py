"""Core module containing the sync orchestrator, configuration and data models."""

from .config import ConfigurationError, Settings, get_settings
from .models import (
    BatchReport,
    ComplianceCheck,
    CustomProperties,
    FetchResult,
    FindingTool,
    ItemResult,
    ItemStatus,
    MetricsSummary,
    OwnershipRule,
    Repository,
    SecurityFinding,
    SyncReport,
    Team,
)

# SyncOrchestrator is imported lazily to avoid circular imports
# Use: from github_compliance_monitor.core.sync import SyncOrchestrator


def __getattr__(name: str):
    """Lazy import for the sync orchestrator to avoid circular imports."""
    if name in ("SyncOrchestrator", "SyncError"):
        from . import sync
        return getattr(sync, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "BatchReport",
    "ComplianceCheck",
    "ConfigurationError",
    "CustomProperties",
    "FetchResult",
    "FindingTool",
    "ItemResult",
    "ItemStatus",
    "MetricsSummary",
    "OwnershipRule",
    "Repository",
    "SecurityFinding",
    "Settings",
    "SyncError",
    "SyncOrchestrator",
    "SyncReport",
    "Team",
    "get_settings",
]
