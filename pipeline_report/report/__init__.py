"""Last-good report storage and the single-flight generation scheduler."""

from .scheduler import ReportScheduler
from .storage import ReportSnapshot, ReportStorage

__all__ = ["ReportScheduler", "ReportSnapshot", "ReportStorage"]
