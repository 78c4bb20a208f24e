"""Asset-optimization pipeline report service.

World scan and optimization reconciliation, plus monitoring of the
consumer fleet that runs the optimization jobs.
"""

import importlib.metadata

try:
    __version__ = importlib.metadata.version("pipeline-report")
except importlib.metadata.PackageNotFoundError:  # pragma: no cover - source checkout
    __version__ = "0.0.0"

__all__ = ["__version__"]
