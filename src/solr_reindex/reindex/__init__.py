"""Reindex module for copying one Solr collection into another."""

from solr_reindex.reindex.backends import (
    ExecutionBackend,
    ProcessExecutionBackend,
    TaskExecutionBackend,
)
from solr_reindex.reindex.copier import BatchCopier
from solr_reindex.reindex.cursor import CursorTracker
from solr_reindex.reindex.dispatcher import ExecutionDispatcher
from solr_reindex.reindex.models import (
    BackoffPolicy,
    ClusterConfig,
    ExecutionStatus,
    FieldSelection,
    JobState,
    JobStatus,
    ReindexJobSpec,
)
from solr_reindex.reindex.registry import (
    FileJobRegistry,
    InMemoryJobRegistry,
    JobRegistry,
    request_pause,
)
from solr_reindex.reindex.state_machine import ReindexJobStateMachine
from solr_reindex.reindex.worker import ReindexWorker, run_worker

__all__ = [
    # Models
    "BackoffPolicy",
    "ClusterConfig",
    "ExecutionStatus",
    "FieldSelection",
    "JobState",
    "JobStatus",
    "ReindexJobSpec",
    # Core components
    "BatchCopier",
    "CursorTracker",
    "ReindexJobStateMachine",
    # Registry
    "FileJobRegistry",
    "InMemoryJobRegistry",
    "JobRegistry",
    "request_pause",
    # Execution
    "ExecutionBackend",
    "ExecutionDispatcher",
    "ProcessExecutionBackend",
    "TaskExecutionBackend",
    "ReindexWorker",
    "run_worker",
]
