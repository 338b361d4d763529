"""Application services: analysis orchestration and auto-refresh."""

from specvital_collector.services.analyze import (
    DEFAULT_ANALYSIS_TIMEOUT,
    DEFAULT_MAX_CONCURRENT_CLONES,
    DEFAULT_OAUTH_PROVIDER,
    AnalyzeUseCase,
)
from specvital_collector.services.autorefresh import AutoRefreshUseCase, RefreshResult

__all__ = [
    "DEFAULT_ANALYSIS_TIMEOUT",
    "DEFAULT_MAX_CONCURRENT_CLONES",
    "DEFAULT_OAUTH_PROVIDER",
    "AnalyzeUseCase",
    "AutoRefreshUseCase",
    "RefreshResult",
]
