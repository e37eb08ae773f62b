"""Integration with the external dependency analysis service."""

from .client import (
    DependencyServiceClient,
    GrammarResult,
    ServiceError,
    StdioTransport,
    Transport,
    UnsupportedLanguageError,
    analyze_with_fallback,
)
from .settings import ServerLaunch, ServiceNotConfiguredError, load_server_launch

__all__ = [
    "DependencyServiceClient",
    "GrammarResult",
    "ServerLaunch",
    "ServiceError",
    "ServiceNotConfiguredError",
    "StdioTransport",
    "Transport",
    "UnsupportedLanguageError",
    "analyze_with_fallback",
    "load_server_launch",
]
