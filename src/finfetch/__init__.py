"""
finfetch: resilient market-data fetching.

Verbose operations return Envelope results and never raise; see
finfetch.simple for payload-only wrappers and finfetch.dataset for pandas
conversion.
"""

from finfetch.data import (
    BatchCoordinator,
    ChartClient,
    ExperimentalClient,
    SessionManager,
    Transport,
)
from finfetch.types import (
    ChartRequest,
    Envelope,
    Failure,
    FailureKind,
    FetchWarning,
    SessionStatus,
    WarningKind,
)

__version__ = "0.1.0"

__all__ = [
    "BatchCoordinator",
    "ChartClient",
    "ChartRequest",
    "Envelope",
    "ExperimentalClient",
    "Failure",
    "FailureKind",
    "FetchWarning",
    "SessionManager",
    "SessionStatus",
    "Transport",
    "WarningKind",
]
