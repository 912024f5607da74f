"""Lifecycle of a single reindex job: pending -> running -> (paused|failed) -> completed."""

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any
from uuid import UUID

from solr_reindex.core.exceptions import (
    FatalCopyError,
    InvalidCursorError,
    InvalidTransitionError,
    OwnershipLostError,
    TransientCopyError,
)
from solr_reindex.core.logging import get_logger
from solr_reindex.core.models import BatchResult, Cursor
from solr_reindex.reindex.copier import BatchCopier
from solr_reindex.reindex.cursor import CursorTracker
from solr_reindex.reindex.models import JobState, JobStatus, utcnow
from solr_reindex.reindex.registry import JobRegistry

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

MAX_COMMIT_ATTEMPTS = 5


class ReindexJobStateMachine:
    """Drives one job through its batches, persisting every transition.

    The batch loop is strictly sequential: the cursor is persisted only after
    the target acknowledged a batch, and pause/stop signals are honoured
    between batches only. Every write is a compare-and-set; losing one to a
    writer other than an operator's pause request raises ``OwnershipLostError``.
    """

    def __init__(
        self,
        registry: JobRegistry,
        copier: BatchCopier,
        *,
        execution_id: str,
        stop_event: asyncio.Event | None = None,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.registry = registry
        self.copier = copier
        self.execution_id = execution_id
        self.stop_event = stop_event or asyncio.Event()
        self.sleep = sleep
        self.rng = rng

    # ---------------- Entry point ----------------

    async def run(self, job_id: UUID) -> JobState:
        """Run the job until it completes, fails or is paused.

        Resumes from the last persisted cursor whether the job is pending,
        paused, or was left running by a crashed execution.

        Returns:
            The last persisted state.
        """
        state = await self.registry.get(job_id)

        if state.is_terminal:
            logger.info(f"Job {job_id} is already {state.status.value}; nothing to do")
            return state
        if state.execution_id not in (None, self.execution_id):
            raise OwnershipLostError(
                f"Job {job_id} is bound to execution {state.execution_id}, not {self.execution_id}"
            )

        if state.status is JobStatus.PENDING:
            state = await self.start(state)
        elif state.status is JobStatus.PAUSED:
            state = await self.resume(state)
        else:
            state = await self._takeover(state)

        logger.info(
            f"Job {job_id} running from cursor {state.cursor} "
            f"({state.docs_copied:,} documents already copied)"
        )

        while True:
            state = await self._refresh(state)
            if self.stop_event.is_set() or state.pause_requested:
                return await self.pause(state)

            try:
                result = await self.copier.copy_batch(
                    state.spec, Cursor(state.cursor), state.spec.batch_size
                )
            except TransientCopyError as e:
                state = await self._on_transient_error(state, e)
                if state.status is JobStatus.FAILED:
                    return state
                continue
            except (FatalCopyError, InvalidCursorError) as e:
                return await self.fail(state, e)

            state = await self._on_batch_success(state, result)
            if state.status is JobStatus.COMPLETED:
                return state

    # ---------------- Transitions ----------------

    async def start(self, state: JobState) -> JobState:
        """Pending -> Running."""
        self._require(state, JobStatus.PENDING)
        return await self._commit(state, status=JobStatus.RUNNING, execution_id=self.execution_id)

    async def pause(self, state: JobState) -> JobState:
        """Running -> Paused, keeping the cursor."""
        self._require(state, JobStatus.RUNNING)
        paused = await self._commit(state, status=JobStatus.PAUSED, pause_requested=False)
        logger.info(f"Job {state.id} paused at cursor {paused.cursor}")
        return paused

    async def resume(self, state: JobState) -> JobState:
        """Paused -> Running."""
        self._require(state, JobStatus.PAUSED)
        logger.info(f"Resuming paused job {state.id}")
        return await self._commit(
            state,
            status=JobStatus.RUNNING,
            execution_id=self.execution_id,
            pause_requested=False,
        )

    async def fail(self, state: JobState, error: Exception) -> JobState:
        """Running -> Failed, keeping the last good cursor and a readable cause."""
        self._require(state, JobStatus.RUNNING)
        failed = await self._commit(
            state,
            status=JobStatus.FAILED,
            last_error=str(error),
            failure_kind=error.__class__.__name__,
        )
        logger.error(
            f"Job {state.id} failed at cursor {failed.cursor} "
            f"({error.__class__.__name__}): {error}"
        )
        return failed

    async def _takeover(self, state: JobState) -> JobState:
        # Left running by a crashed attempt of this execution (or by an unbound run).
        logger.warning(f"Job {state.id} was left running; resuming from persisted cursor")
        return await self._commit(state, execution_id=self.execution_id)

    # ---------------- Batch outcomes ----------------

    async def _on_batch_success(self, state: JobState, result: BatchResult) -> JobState:
        tracker = CursorTracker.for_spec(state.spec)
        if tracker.compare(result.cursor, Cursor(state.cursor)) < 0:
            return await self.fail(
                state, InvalidCursorError(f"Cursor moved backwards to {result.cursor}")
            )

        changes: dict[str, Any] = {
            "cursor": result.cursor.token,
            "docs_read": state.docs_read + result.docs_read,
            "docs_copied": state.docs_copied + result.docs_written,
            "batches": state.batches + (1 if result.docs_read else 0),
            "retry_count": 0,
        }
        if result.exhausted:
            changes["status"] = JobStatus.COMPLETED

        state = await self._commit(state, **changes)
        if state.status is JobStatus.COMPLETED:
            logger.info(
                f"Job {state.id} completed: {state.docs_copied:,} documents in "
                f"{state.batches} batches ({state.total_retries} retries)"
            )
        else:
            logger.info(
                f"Job {state.id} batch {state.batches}: +{result.docs_written} documents, "
                f"{state.docs_copied:,} total"
            )
        return state

    async def _on_transient_error(self, state: JobState, error: TransientCopyError) -> JobState:
        max_retries = state.spec.max_retries
        attempts = state.retry_count + 1

        if attempts >= max_retries:
            exhausted = await self._commit(
                state,
                retry_count=min(attempts, max_retries),
                total_retries=state.total_retries + 1,
            )
            return await self.fail(
                exhausted,
                TransientCopyError(f"Retries exhausted after {attempts} attempt(s): {error}"),
            )

        state = await self._commit(
            state, retry_count=attempts, total_retries=state.total_retries + 1
        )
        delay = state.spec.backoff.delay_for_attempt(attempts, self.rng)
        logger.warning(
            f"Job {state.id} transient failure ({attempts}/{max_retries}): {error} "
            f"- retrying in {delay:.2f}s"
        )
        await self.sleep(delay)
        return state

    # ---------------- Persistence ----------------

    async def _refresh(self, state: JobState) -> JobState:
        """Pick up operator changes (pause requests) between batches."""
        current = await self.registry.get(state.id)
        if current.revision == state.revision:
            return state
        self._check_owner(state, current)
        return current

    async def _commit(self, state: JobState, **changes: Any) -> JobState:
        current = state
        for _ in range(MAX_COMMIT_ATTEMPTS):
            new = current.evolve(heartbeat_at=utcnow(), **changes)
            if await self.registry.compare_and_set(current.id, current, new):
                return new
            latest = await self.registry.get(current.id)
            self._check_owner(state, latest)
            current = latest
        raise OwnershipLostError(
            f"Job {state.id} kept changing under execution {self.execution_id}"
        )

    def _check_owner(self, state: JobState, latest: JobState) -> None:
        # Only the operator's pause flag may change under us.
        owner = latest.execution_id
        if (
            owner not in (None, self.execution_id)
            or latest.status is not state.status
            or latest.cursor != state.cursor
        ):
            raise OwnershipLostError(
                f"Job {state.id} was modified by another writer "
                f"(status={latest.status.value}, execution={owner})"
            )

    @staticmethod
    def _require(state: JobState, expected: JobStatus) -> None:
        if state.status is not expected:
            raise InvalidTransitionError(
                f"Job {state.id} is {state.status.value}, expected {expected.value}"
            )
