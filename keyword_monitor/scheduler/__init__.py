"""
Scheduler module: producer cadence, worker loop and live events.
"""
from .producer import setup_producer, shutdown_producer, queue_due_terms
from .worker import MonitoringWorker, BatchResult

__all__ = [
    "setup_producer",
    "shutdown_producer",
    "queue_due_terms",
    "MonitoringWorker",
    "BatchResult",
]
