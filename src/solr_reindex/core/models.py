"""Domain value types shared by the copier, state machine and dispatcher."""

from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar
from uuid import UUID

from solr_reindex.core.constants import CURSOR_START_TOKEN


@dataclass(frozen=True)
class Cursor:
    """Opaque position in a source collection's sort order."""

    token: str

    START: ClassVar["Cursor"]

    @property
    def is_start(self) -> bool:
        return self.token == CURSOR_START_TOKEN

    def __str__(self) -> str:
        return self.token


Cursor.START = Cursor(CURSOR_START_TOKEN)


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one read-then-write cycle."""

    docs_read: int
    docs_written: int
    cursor: Cursor
    exhausted: bool


@dataclass(frozen=True)
class ExecutionHandle:
    """Reference to an execution unit launched for a single job."""

    execution_id: str
    job_id: UUID
    backend: str
    started_at: datetime
