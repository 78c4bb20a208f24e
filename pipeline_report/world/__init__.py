"""World scan and optimization reconciliation.

Pipeline stages:
  scan (content server) → reconcile (inventory + reports) → process (land grid)
  worlds index → reconcile (same inventory) → worlds section of the report

One complete run is driven by :func:`run_report_generation`.
"""

from .inventory import BucketListingInventory, HttpProbeInventory, OptimizationInventory
from .models import Entity, EntityKind, Land, OptimizationReport, ScanResult, SubGrid
from .processor import (
    WorldData,
    WorldsStatistics,
    WorldStatistics,
    build_report_data,
    compute_statistics,
    compute_worlds_statistics,
    process_entities,
)
from .reconciler import OptimizationReconciler
from .runner import ReportGenerationResult, run_report_generation
from .scanner import WorldScanner
from .worlds import WorldsFetcher, WorldSummary

__all__ = [
    "BucketListingInventory",
    "Entity",
    "EntityKind",
    "HttpProbeInventory",
    "Land",
    "OptimizationInventory",
    "OptimizationReconciler",
    "OptimizationReport",
    "ReportGenerationResult",
    "ScanResult",
    "SubGrid",
    "WorldData",
    "WorldScanner",
    "WorldStatistics",
    "WorldSummary",
    "WorldsFetcher",
    "WorldsStatistics",
    "build_report_data",
    "compute_statistics",
    "compute_worlds_statistics",
    "process_entities",
    "run_report_generation",
]
