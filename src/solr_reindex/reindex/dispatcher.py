"""Maps reindex jobs onto execution units and reconciles their outcome."""

import asyncio
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

from solr_reindex.core.exceptions import (
    DuplicateJobError,
    InvalidTransitionError,
    LostWorkerError,
)
from solr_reindex.core.logging import get_logger
from solr_reindex.core.models import ExecutionHandle
from solr_reindex.reindex.backends import ExecutionBackend
from solr_reindex.reindex.models import (
    ACTIVE_STATUSES,
    ExecutionStatus,
    JobState,
    JobStatus,
    utcnow,
)
from solr_reindex.reindex.registry import JobRegistry, request_pause

logger = get_logger(__name__)

MAX_RECONCILE_ATTEMPTS = 5


class ExecutionDispatcher:
    """Submits jobs to an execution backend and keeps the registry honest.

    At most one live execution unit exists per job: the dispatcher refuses to
    submit a job whose unit is still running, and binds each new unit to the
    job with a compare-and-set on ``execution_id`` so a concurrent dispatcher
    loses the race instead of creating a second writer.
    """

    def __init__(
        self,
        registry: JobRegistry,
        backend: ExecutionBackend,
        *,
        liveness_timeout: float = 300.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.registry = registry
        self.backend = backend
        self.liveness_timeout = timedelta(seconds=liveness_timeout)
        self.clock = clock
        self.handles: dict[UUID, ExecutionHandle] = {}
        self._lock = asyncio.Lock()

    def handle_for(self, job_id: UUID) -> ExecutionHandle | None:
        return self.handles.get(job_id)

    # ---------------- Submission ----------------

    async def submit(self, job_id: UUID) -> ExecutionHandle:
        """Launch an execution unit for the job.

        Raises:
            DuplicateJobError: If a live unit already holds the job.
            InvalidTransitionError: If the job is terminal.
            JobNotFoundError: If the job does not exist.
        """
        async with self._lock:
            previous = self.handles.get(job_id)
            if previous is not None:
                if await self.backend.status(previous.execution_id) is ExecutionStatus.RUNNING:
                    raise DuplicateJobError(
                        f"Job {job_id} already has a live execution {previous.execution_id}"
                    )
                await self.reconcile(previous)

            state = await self.registry.get(job_id)
            if state.is_terminal:
                raise InvalidTransitionError(
                    f"Job {job_id} is {state.status.value}; create a new job to re-run it"
                )
            if previous is None and self._holds_fresh_claim(state):
                raise DuplicateJobError(
                    f"Job {job_id} is held by execution {state.execution_id} "
                    f"(last heartbeat {state.heartbeat_at})"
                )

            execution_id = f"{state.name}-{secrets.token_hex(4)}"
            # A new dispatch overrides any earlier pause request.
            claimed = state.evolve(
                execution_id=execution_id, heartbeat_at=self.clock(), pause_requested=False
            )
            if not await self.registry.compare_and_set(job_id, state, claimed):
                raise DuplicateJobError(f"Job {job_id} was dispatched concurrently")

            try:
                await self.backend.launch(job_id, execution_id)
            except Exception:
                logger.error(f"Failed to launch execution for job {job_id}", exc_info=True)
                await self.registry.compare_and_set(
                    job_id,
                    claimed,
                    claimed.evolve(
                        execution_id=state.execution_id, pause_requested=state.pause_requested
                    ),
                )
                raise

            handle = ExecutionHandle(
                execution_id=execution_id,
                job_id=job_id,
                backend=self.backend.name,
                started_at=self.clock(),
            )
            self.handles[job_id] = handle
            logger.info(f"Dispatched job {job_id} as execution {execution_id}")
            return handle

    def _holds_fresh_claim(self, state: JobState) -> bool:
        # Another dispatcher's unit that is still heartbeating.
        if state.execution_id is None or state.status not in ACTIVE_STATUSES:
            return False
        return not self._heartbeat_expired(state)

    def _heartbeat_expired(self, state: JobState) -> bool:
        last_seen = state.heartbeat_at or state.updated_at
        return self.clock() - last_seen > self.liveness_timeout

    # ---------------- Observation ----------------

    async def status(self, handle: ExecutionHandle) -> ExecutionStatus:
        return await self.backend.status(handle.execution_id)

    async def cancel(self, handle: ExecutionHandle) -> None:
        """Request termination; the unit pauses the job at the next batch boundary."""
        state = await self.registry.get(handle.job_id)
        if not state.is_terminal:
            await request_pause(self.registry, handle.job_id)
        await self.backend.terminate(handle.execution_id)
        logger.info(f"Cancellation requested for execution {handle.execution_id}")

    async def reconcile(self, handle: ExecutionHandle) -> JobState:
        """Align the registry with what the execution unit actually did.

        A unit that exited (or stopped heartbeating) while its job is still
        pending or running died without reporting; the job is marked failed
        with a ``LostWorkerError`` cause so an operator can resume it.
        """
        unit = await self.backend.status(handle.execution_id)
        state = await self.registry.get(handle.job_id)

        if state.execution_id != handle.execution_id:
            # Superseded; keep tracking the old unit until it exits.
            if unit is not ExecutionStatus.RUNNING:
                self._release(handle)
            return state

        if unit is ExecutionStatus.RUNNING:
            if state.status in ACTIVE_STATUSES and self._heartbeat_expired(state):
                await self.backend.terminate(handle.execution_id)
                return await self._mark_lost(
                    handle,
                    f"Execution {handle.execution_id} stopped heartbeating "
                    f"(last seen {state.heartbeat_at})",
                )
            return state

        self._release(handle)
        if state.status in ACTIVE_STATUSES:
            return await self._mark_lost(
                handle,
                f"Execution {handle.execution_id} exited ({unit.value}) "
                f"while the job was {state.status.value}",
            )
        logger.info(
            f"Execution {handle.execution_id} {unit.value}; job {handle.job_id} is "
            f"{state.status.value}"
        )
        return state

    async def watch(self, handle: ExecutionHandle, poll_interval: float = 5.0) -> JobState:
        """Poll until the unit finishes, reconciling on every tick."""
        while True:
            state = await self.reconcile(handle)
            if self.handles.get(handle.job_id) != handle:
                return state
            logger.info(
                f"Job {handle.job_id}: {state.status.value}, {state.docs_copied:,} documents, "
                f"{state.batches} batches, retry {state.retry_count}"
            )
            await asyncio.sleep(poll_interval)

    async def reconcile_all(self) -> list[JobState]:
        """Reconcile every execution this dispatcher still tracks."""
        states = []
        async with self._lock:
            for handle in list(self.handles.values()):
                try:
                    states.append(await self.reconcile(handle))
                except Exception:
                    logger.error(
                        f"Failed to reconcile execution {handle.execution_id}", exc_info=True
                    )
        return states

    async def monitor(self, poll_interval: float = 5.0) -> None:
        """Reconcile tracked executions every ``poll_interval`` seconds until cancelled.

        Units that crash or stop heartbeating fail their jobs here, and units
        that exit are released from both the dispatcher and the backend.
        """
        logger.info(f"Monitoring executions every {poll_interval}s")
        try:
            while True:
                await self.reconcile_all()
                await asyncio.sleep(poll_interval)
        except asyncio.CancelledError:
            logger.info(f"Stopped monitoring ({len(self.handles)} executions tracked)")
            raise

    async def shutdown(self) -> None:
        await self.backend.shutdown()

    # ---------------- Helpers ----------------

    async def _mark_lost(self, handle: ExecutionHandle, message: str) -> JobState:
        error = LostWorkerError(message)
        for _ in range(MAX_RECONCILE_ATTEMPTS):
            state = await self.registry.get(handle.job_id)
            if state.execution_id != handle.execution_id or state.status not in ACTIVE_STATUSES:
                return state
            failed = state.evolve(
                status=JobStatus.FAILED,
                last_error=str(error),
                failure_kind=error.__class__.__name__,
            )
            if await self.registry.compare_and_set(handle.job_id, state, failed):
                logger.error(f"Job {handle.job_id} marked failed: {error}")
                return failed
        return await self.registry.get(handle.job_id)

    def _release(self, handle: ExecutionHandle) -> None:
        if self.handles.get(handle.job_id) == handle:
            del self.handles[handle.job_id]
        self.backend.release(handle.execution_id)
