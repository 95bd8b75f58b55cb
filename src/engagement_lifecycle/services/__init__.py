"""Application services: the lifecycle use cases."""

from engagement_lifecycle.services.deadline_scanner import (
    BatchItemError,
    BatchReport,
    DeadlineScanner,
    ScanDependencies,
    run_scan_cycle,
)
from engagement_lifecycle.services.refund_orchestrator import (
    RefundOrchestrator,
    RefundOutcome,
    RefundResult,
)
from engagement_lifecycle.services.transition_executor import (
    TransitionExecutor,
    TransitionOutcome,
)

__all__ = [
    "BatchItemError",
    "BatchReport",
    "DeadlineScanner",
    "RefundOrchestrator",
    "RefundOutcome",
    "RefundResult",
    "ScanDependencies",
    "TransitionExecutor",
    "TransitionOutcome",
    "run_scan_cycle",
]
