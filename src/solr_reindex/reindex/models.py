"""Pydantic models for reindex job tracking."""

import random
import secrets
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from solr_reindex.core.constants import (
    ALL_FIELDS,
    CURSOR_START_TOKEN,
    DEFAULT_ID_FIELD,
    DEFAULT_QUERY,
    DEFAULT_SORT_FIELD,
    JOB_NAME_PREFIX,
    JOB_NAME_TIME_FORMAT,
)
from solr_reindex.solr.client import normalize_base_url


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_job_name(now: datetime | None = None) -> str:
    """Human readable job name, e.g. ``reindex-20250101120000-3fa9c``."""
    timestamp = (now or utcnow()).astimezone(UTC).strftime(JOB_NAME_TIME_FORMAT)
    return f"{JOB_NAME_PREFIX}-{timestamp}-{secrets.token_hex(3)[:5]}"


def _normalize_strings(values: Any) -> tuple[str, ...]:
    if values is None:
        return ()
    if isinstance(values, str):
        values = [values]
    seen: dict[str, None] = {}
    for value in values:
        if value is None:
            continue
        trimmed = str(value).strip()
        if trimmed:
            seen.setdefault(trimmed, None)
    return tuple(seen)


class JobStatus(str, Enum):
    """Job status enum."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    FAILED = "failed"
    COMPLETED = "completed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})
ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.RUNNING})


class ExecutionStatus(str, Enum):
    """Observed state of an execution unit."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class BackoffPolicy(BaseModel):
    """Exponential backoff with jitter, bounded by a ceiling."""

    model_config = ConfigDict(frozen=True)

    initial_seconds: float = Field(0.25, gt=0)
    max_seconds: float = Field(5.0, gt=0)
    multiplier: float = Field(2.0, ge=1.0)
    jitter: float = Field(0.2, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_range(self) -> "BackoffPolicy":
        if self.max_seconds < self.initial_seconds:
            raise ValueError("max_seconds must be >= initial_seconds")
        return self

    def delay_for_attempt(self, attempt: int, rng: random.Random | None = None) -> float:
        """Delay before retry number ``attempt`` (1-based).

        The exponential candidate is capped at ``max_seconds`` and then spread
        uniformly by ``jitter``; the result never exceeds the ceiling.
        """
        exponent = min(max(1, attempt) - 1, 30)
        candidate = min(self.max_seconds, self.initial_seconds * self.multiplier**exponent)
        if self.jitter == 0.0:
            return candidate

        low = candidate * (1.0 - self.jitter)
        high = min(self.max_seconds, candidate * (1.0 + self.jitter))
        return (rng or random).uniform(low, high)


class FieldSelection(BaseModel):
    """Which source fields are copied."""

    model_config = ConfigDict(frozen=True)

    all_fields: bool = True
    fields: tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _drop_fields_when_all(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("all_fields", True):
            return {**data, "fields": ()}
        return data

    @field_validator("fields", mode="before")
    @classmethod
    def _normalize_fields(cls, value: Any) -> tuple[str, ...]:
        return _normalize_strings(value)

    @model_validator(mode="after")
    def _check_selection(self) -> "FieldSelection":
        if not self.all_fields and not self.fields:
            raise ValueError("fields cannot be empty when all_fields is false")
        return self

    @classmethod
    def of(cls, fields: list[str] | None) -> "FieldSelection":
        if not fields:
            return cls()
        return cls(all_fields=False, fields=tuple(fields))

    def effective_fields(self, *required: str) -> list[str]:
        """Field list for ``fl``; required fields are always included."""
        if self.all_fields:
            return [ALL_FIELDS]
        return list(_normalize_strings([*self.fields, *required]))


class ClusterConfig(BaseModel):
    """Connection details for one Solr cluster."""

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(..., min_length=1)
    request_timeout: float = Field(30.0, gt=0)
    username: str | None = None
    password: str | None = Field(None, repr=False)

    @field_validator("base_url")
    @classmethod
    def _normalize_url(cls, value: str) -> str:
        return normalize_base_url(value)

    @model_validator(mode="after")
    def _check_auth_pair(self) -> "ClusterConfig":
        if (self.username is None) != (self.password is None):
            raise ValueError("username and password must both be set or both be empty")
        return self


class ReindexJobSpec(BaseModel):
    """Immutable description of a requested reindex."""

    model_config = ConfigDict(frozen=True)

    source_collection: str = Field(..., min_length=1)
    target_collection: str = Field(..., min_length=1)
    query: str = DEFAULT_QUERY
    filter_queries: tuple[str, ...] = ()
    source_shards: tuple[str, ...] = ()
    fields: FieldSelection = Field(default_factory=FieldSelection)
    sort_field: str = Field(DEFAULT_SORT_FIELD, min_length=1)
    id_field: str = Field(DEFAULT_ID_FIELD, min_length=1)
    batch_size: int = Field(500, gt=0, le=100_000)
    max_retries: int = Field(3, ge=0)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    field_renames: dict[str, str] = Field(default_factory=dict)
    drop_fields: tuple[str, ...] = ()
    commit_each_batch: bool = True
    source_cluster: ClusterConfig | None = None  # None: the configured source cluster
    target_cluster: ClusterConfig | None = None  # None: same cluster as the source

    @field_validator("source_collection", "target_collection", "sort_field", "id_field")
    @classmethod
    def _strip(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    @field_validator("query", mode="before")
    @classmethod
    def _default_query(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            return DEFAULT_QUERY
        return str(value)

    @field_validator("filter_queries", "source_shards", "drop_fields", mode="before")
    @classmethod
    def _normalize_lists(cls, value: Any) -> tuple[str, ...]:
        return _normalize_strings(value)

    @property
    def effective_target_cluster(self) -> ClusterConfig | None:
        return self.target_cluster or self.source_cluster

    @property
    def in_place(self) -> bool:
        """Whether source and target are the same collection on the same cluster."""
        if self.source_collection != self.target_collection:
            return False
        source, target = self.source_cluster, self.effective_target_cluster
        if source is None or target is None:
            return source is target
        return source.base_url == target.base_url

    @model_validator(mode="after")
    def _check_self_copy(self) -> "ReindexJobSpec":
        if not self.in_place:
            return self
        # Rewriting documents bumps _version_, so an in-place copy ordered by it never ends.
        if self.sort_field == "_version_":
            raise ValueError("in-place reindex cannot be ordered by _version_")
        if self.sort_field in self.field_renames or self.id_field in self.field_renames:
            raise ValueError("in-place reindex cannot rename the sort or id field")
        return self


class JobState(BaseModel):
    """Persisted state of one reindex job."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    name: str
    spec: ReindexJobSpec
    status: JobStatus = JobStatus.PENDING
    cursor: str = CURSOR_START_TOKEN
    docs_read: int = 0
    docs_copied: int = 0
    batches: int = 0
    retry_count: int = 0
    total_retries: int = 0
    last_error: str | None = None
    failure_kind: str | None = None
    execution_id: str | None = None
    heartbeat_at: datetime | None = None
    pause_requested: bool = False
    resumed_from: UUID | None = None
    revision: int = 0
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def evolve(self, **changes: Any) -> "JobState":
        """Next revision of this state, suitable for ``compare_and_set``."""
        changes.setdefault("updated_at", utcnow())
        changes["revision"] = self.revision + 1
        return self.model_copy(update=changes)
