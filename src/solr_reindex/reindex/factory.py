"""Factories for the configured registry and execution backend."""

import asyncio
from pathlib import Path
from uuid import UUID

from solr_reindex.config import Settings
from solr_reindex.reindex.backends import (
    ExecutionBackend,
    ProcessExecutionBackend,
    TaskExecutionBackend,
)
from solr_reindex.reindex.registry import FileJobRegistry, InMemoryJobRegistry, JobRegistry


async def open_registry(settings: Settings) -> JobRegistry:
    """Open the configured job registry."""
    if settings.registry_backend == "supabase":
        from solr_reindex.reindex.supabase_registry import SupabaseJobRegistry

        return await SupabaseJobRegistry.connect(settings)
    if settings.registry_backend == "file":
        return FileJobRegistry(Path(settings.registry_path))
    return InMemoryJobRegistry()


def build_backend(settings: Settings, registry: JobRegistry) -> ExecutionBackend:
    """Build the configured execution backend.

    The process backend runs workers in separate interpreters, so it needs a
    registry those processes can reach.
    """
    if settings.execution_backend == "process":
        if isinstance(registry, InMemoryJobRegistry):
            raise ValueError("The process execution backend requires a file or supabase registry")
        return ProcessExecutionBackend(shutdown_timeout=settings.worker_shutdown_timeout)

    from solr_reindex.reindex.worker import ReindexWorker

    async def run_in_task(job_id: UUID, execution_id: str, stop_event: asyncio.Event) -> int:
        worker = ReindexWorker(
            job_id, execution_id, settings=settings, registry=registry, stop_event=stop_event
        )
        return await worker.run()

    return TaskExecutionBackend(run_in_task)
