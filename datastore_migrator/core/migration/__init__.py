"""Migration pipeline orchestration and reporting."""

from .orchestrator import MigrationOrchestrator
from .report import format_report, report_json

__all__ = ["MigrationOrchestrator", "format_report", "report_json"]
