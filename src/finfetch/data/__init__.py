"""
Data fetching package.

This package handles fetching data from the provider:
- Transport: HTTP with retries and mirror fallback
- Classifier: status/body -> payload or typed failure
- ChartClient: stable chart endpoint (prices, history, events, info)
- SessionManager / ExperimentalClient: authenticated endpoints
  (fundamentals, options)
- BatchCoordinator: bounded concurrent fan-out
"""

from finfetch.data.batch import BatchCoordinator
from finfetch.data.chart_client import ChartClient
from finfetch.data.experimental import ExperimentalClient
from finfetch.data.session import SessionManager
from finfetch.data.transport import Transport

__all__ = [
    "BatchCoordinator",
    "ChartClient",
    "ExperimentalClient",
    "SessionManager",
    "Transport",
]
