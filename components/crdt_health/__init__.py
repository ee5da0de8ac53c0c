from .history import HISTORY_SIGNATURE, HistoryEngine, SeedHistoryEngine, has_valid_signature
from .markers import PartialSyncSnapshot, scan_interruption_markers
from .validator import (
    CRDTHealthValidator,
    HealthIssue,
    IssueKind,
    RepairError,
    RepairFailedError,
    RepairResult,
    Severity,
    SourceNotReadableError,
    ValidationResult,
)

__all__ = [
    "CRDTHealthValidator",
    "HISTORY_SIGNATURE",
    "HealthIssue",
    "HistoryEngine",
    "IssueKind",
    "PartialSyncSnapshot",
    "RepairError",
    "RepairFailedError",
    "RepairResult",
    "SeedHistoryEngine",
    "Severity",
    "SourceNotReadableError",
    "ValidationResult",
    "has_valid_signature",
    "scan_interruption_markers",
]
