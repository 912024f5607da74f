"""Job registry: job-id to JobState with compare-and-set updates."""

import asyncio
import fcntl
import json
import os
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from uuid import UUID, uuid4

from solr_reindex.core.exceptions import InvalidTransitionError, JobNotFoundError
from solr_reindex.core.logging import get_logger
from solr_reindex.core.models import Cursor
from solr_reindex.reindex.models import JobState, JobStatus, ReindexJobSpec, new_job_name, utcnow

logger = get_logger(__name__)


class JobRegistry(ABC):
    """Source of truth for job state, shared by the API side and the workers.

    Every state change goes through :meth:`compare_and_set`, which only
    succeeds when the stored record still matches the caller's snapshot.
    """

    async def create(
        self,
        spec: ReindexJobSpec,
        *,
        start_cursor: Cursor = Cursor.START,
        resumed_from: UUID | None = None,
    ) -> UUID:
        """Register a new job in ``pending``.

        Args:
            spec: Job definition.
            start_cursor: Position to start from (used when resuming a failed job).
            resumed_from: Id of the job this one continues.

        Returns:
            New job ID
        """
        now = utcnow()
        state = JobState(
            id=uuid4(),
            name=new_job_name(now),
            spec=spec,
            cursor=start_cursor.token,
            resumed_from=resumed_from,
            created_at=now,
            updated_at=now,
        )
        await self._insert(state)
        logger.info(
            f"Created job {state.id} ({state.name}): "
            f"{spec.source_collection} -> {spec.target_collection}"
        )
        return state.id

    @abstractmethod
    async def get(self, job_id: UUID) -> JobState:
        """Return the current state of a job.

        Raises:
            JobNotFoundError: If the job does not exist.
        """

    async def compare_and_set(self, job_id: UUID, expected: JobState, new: JobState) -> bool:
        """Replace ``expected`` by ``new`` if the stored record still equals ``expected``.

        ``new`` must be the next revision of ``expected`` (see ``JobState.evolve``).

        Returns:
            True if the swap happened, False if another writer got there first.
        """
        if expected.id != job_id or new.id != job_id:
            raise ValueError("compare_and_set called with states of another job")
        if new.revision != expected.revision + 1:
            raise ValueError("new state must be the next revision of the expected state")
        return await self._swap(job_id, expected, new)

    @abstractmethod
    async def list_jobs(self, statuses: Iterable[JobStatus] | None = None) -> list[JobState]:
        """List jobs, optionally filtered by status, oldest first."""

    @abstractmethod
    async def _insert(self, state: JobState) -> None: ...

    @abstractmethod
    async def _swap(self, job_id: UUID, expected: JobState, new: JobState) -> bool: ...


def _matches(stored: JobState, expected: JobState) -> bool:
    return stored.revision == expected.revision and stored.status == expected.status


def _filter_sorted(
    states: Iterable[JobState], statuses: Iterable[JobStatus] | None
) -> list[JobState]:
    wanted = set(statuses) if statuses is not None else None
    selected = [s for s in states if wanted is None or s.status in wanted]
    return sorted(selected, key=lambda s: s.created_at)


class InMemoryJobRegistry(JobRegistry):
    """Registry for a single process (tests and the in-process task backend)."""

    def __init__(self) -> None:
        self._jobs: dict[UUID, JobState] = {}
        self._lock = asyncio.Lock()

    async def get(self, job_id: UUID) -> JobState:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise JobNotFoundError(f"Job {job_id} not found") from None

    async def list_jobs(self, statuses: Iterable[JobStatus] | None = None) -> list[JobState]:
        return _filter_sorted(self._jobs.values(), statuses)

    async def _insert(self, state: JobState) -> None:
        async with self._lock:
            self._jobs[state.id] = state

    async def _swap(self, job_id: UUID, expected: JobState, new: JobState) -> bool:
        async with self._lock:
            stored = self._jobs.get(job_id)
            if stored is None:
                raise JobNotFoundError(f"Job {job_id} not found")
            if not _matches(stored, expected):
                return False
            self._jobs[job_id] = new
            return True


class FileJobRegistry(JobRegistry):
    """Registry storing one JSON document per job in a shared directory.

    Compare-and-set holds an exclusive ``flock`` on the job's lock file, so
    it is safe across processes on the same host (or a POSIX shared volume).
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, job_id: UUID) -> Path:
        return self.directory / f"{job_id}.json"

    @contextmanager
    def _locked(self, job_id: UUID) -> Iterator[None]:
        with open(self.directory / f"{job_id}.lock", "a+") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _read(self, job_id: UUID) -> JobState:
        path = self._path(job_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise JobNotFoundError(f"Job {job_id} not found") from None
        return JobState.model_validate_json(raw)

    def _write(self, state: JobState) -> None:
        path = self._path(state.id)
        tmp = path.with_suffix(f".{os.getpid()}.tmp")
        tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, path)

    def _insert_sync(self, state: JobState) -> None:
        with self._locked(state.id):
            if self._path(state.id).exists():
                raise InvalidTransitionError(f"Job {state.id} already exists")
            self._write(state)

    def _swap_sync(self, job_id: UUID, expected: JobState, new: JobState) -> bool:
        with self._locked(job_id):
            if not _matches(self._read(job_id), expected):
                return False
            self._write(new)
            return True

    def _list_sync(self) -> list[JobState]:
        states = []
        for path in self.directory.glob("*.json"):
            try:
                states.append(JobState.model_validate(json.loads(path.read_text(encoding="utf-8"))))
            except FileNotFoundError:
                continue
        return states

    async def get(self, job_id: UUID) -> JobState:
        return await asyncio.to_thread(self._read, job_id)

    async def list_jobs(self, statuses: Iterable[JobStatus] | None = None) -> list[JobState]:
        return _filter_sorted(await asyncio.to_thread(self._list_sync), statuses)

    async def _insert(self, state: JobState) -> None:
        await asyncio.to_thread(self._insert_sync, state)

    async def _swap(self, job_id: UUID, expected: JobState, new: JobState) -> bool:
        return await asyncio.to_thread(self._swap_sync, job_id, expected, new)


async def request_pause(registry: JobRegistry, job_id: UUID, attempts: int = 5) -> JobState:
    """Set the cooperative pause flag that a running worker checks between batches.

    Raises:
        InvalidTransitionError: If the job is already terminal.
    """
    for _ in range(attempts):
        state = await registry.get(job_id)
        if state.is_terminal:
            raise InvalidTransitionError(f"Job {job_id} is {state.status.value}; nothing to pause")
        if state.pause_requested or state.status is JobStatus.PAUSED:
            return state
        flagged = state.evolve(pause_requested=True)
        if await registry.compare_and_set(job_id, state, flagged):
            logger.info(f"Pause requested for job {job_id}")
            return flagged
    raise InvalidTransitionError(f"Job {job_id} kept changing; pause request not recorded")
