"""Schema package exports."""

from .cleanup import CleanupLog
from .content import ContentCacheEntry, ContentFetchLog, ContentRefreshLease, ProviderRateCounter
from .jobs import AudioArtifact, Job

__all__ = ["AudioArtifact", "CleanupLog", "ContentCacheEntry", "ContentFetchLog", "ContentRefreshLease", "Job", "ProviderRateCounter"]
