"""Execution substrates that run the reindex worker for one job."""

import asyncio
import multiprocessing as mp
from collections.abc import Awaitable, Callable
from multiprocessing.process import BaseProcess
from typing import Protocol
from uuid import UUID

from solr_reindex.core.logging import get_logger
from solr_reindex.reindex.models import ExecutionStatus

logger = get_logger(__name__)

# (job_id, execution_id, stop_event) -> exit code
TaskRunner = Callable[[UUID, str, asyncio.Event], Awaitable[int]]


class ExecutionBackend(Protocol):
    """Interface for launching and observing execution units."""

    name: str

    async def launch(self, job_id: UUID, execution_id: str) -> None:
        """Start an execution unit bound to ``job_id``."""
        ...

    async def status(self, execution_id: str) -> ExecutionStatus:
        """Observed state of the unit; unknown units are reported as failed."""
        ...

    async def terminate(self, execution_id: str) -> None:
        """Ask the unit to stop. Advisory: it stops between batches."""
        ...

    async def shutdown(self) -> None:
        """Stop every unit this backend launched."""
        ...

    def release(self, execution_id: str) -> None:
        """Forget a unit that has exited."""
        ...


def _exit_status(exit_code: int | None) -> ExecutionStatus:
    if exit_code is None:
        return ExecutionStatus.RUNNING
    return ExecutionStatus.SUCCEEDED if exit_code == 0 else ExecutionStatus.FAILED


class ProcessExecutionBackend:
    """Runs each execution unit in a dedicated ``spawn``-ed process."""

    name = "process"

    def __init__(self, shutdown_timeout: float = 30.0):
        self.context = mp.get_context("spawn")
        self.shutdown_timeout = shutdown_timeout
        self.processes: dict[str, BaseProcess] = {}

    async def launch(self, job_id: UUID, execution_id: str) -> None:
        from solr_reindex.reindex.worker import run_worker

        process = self.context.Process(
            target=run_worker,
            args=(str(job_id), execution_id),
            name=f"Worker-{execution_id}",
            daemon=False,
        )
        process.start()
        self.processes[execution_id] = process
        logger.info(f"Started execution {execution_id} for job {job_id} (PID: {process.pid})")

    async def status(self, execution_id: str) -> ExecutionStatus:
        process = self.processes.get(execution_id)
        if process is None:
            return ExecutionStatus.FAILED
        if process.is_alive():
            return ExecutionStatus.RUNNING
        return _exit_status(process.exitcode)

    async def terminate(self, execution_id: str) -> None:
        process = self.processes.get(execution_id)
        if process is not None and process.is_alive():
            # SIGTERM: the worker pauses the job at the next batch boundary.
            logger.info(f"Terminating execution {execution_id} (PID: {process.pid})")
            process.terminate()

    def release(self, execution_id: str) -> None:
        process = self.processes.get(execution_id)
        if process is None or process.is_alive():
            return
        del self.processes[execution_id]
        process.close()

    async def shutdown(self) -> None:
        """Stop every unit, force-killing the ones that ignore the grace period."""
        for execution_id, process in self.processes.items():
            if not process.is_alive():
                continue
            process.terminate()
            await asyncio.to_thread(process.join, self.shutdown_timeout)
            if process.is_alive():
                logger.warning(f"Force killing execution {execution_id}")
                process.kill()
                await asyncio.to_thread(process.join)
        logger.info("All executions stopped")


class TaskExecutionBackend:
    """Runs each execution unit as an asyncio task in the current event loop."""

    name = "task"

    def __init__(self, runner: TaskRunner):
        self.runner = runner
        self.tasks: dict[str, asyncio.Task[int]] = {}
        self.stop_events: dict[str, asyncio.Event] = {}

    async def launch(self, job_id: UUID, execution_id: str) -> None:
        stop_event = asyncio.Event()
        self.stop_events[execution_id] = stop_event
        self.tasks[execution_id] = asyncio.create_task(
            self.runner(job_id, execution_id, stop_event), name=f"reindex-{execution_id}"
        )
        logger.info(f"Started execution {execution_id} for job {job_id} as task")

    async def status(self, execution_id: str) -> ExecutionStatus:
        task = self.tasks.get(execution_id)
        if task is None:
            return ExecutionStatus.FAILED
        if not task.done():
            return ExecutionStatus.RUNNING
        if task.cancelled() or task.exception() is not None:
            return ExecutionStatus.FAILED
        return _exit_status(task.result())

    async def terminate(self, execution_id: str) -> None:
        stop_event = self.stop_events.get(execution_id)
        if stop_event is not None:
            stop_event.set()

    def release(self, execution_id: str) -> None:
        task = self.tasks.get(execution_id)
        if task is None or not task.done():
            return
        del self.tasks[execution_id]
        self.stop_events.pop(execution_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Execution {execution_id} crashed", exc_info=task.exception())

    async def shutdown(self) -> None:
        for execution_id in self.tasks:
            await self.terminate(execution_id)
        await asyncio.gather(*self.tasks.values(), return_exceptions=True)
