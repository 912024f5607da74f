"""Reindex job request and response schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from solr_reindex.core.constants import DEFAULT_ID_FIELD, DEFAULT_QUERY, DEFAULT_SORT_FIELD
from solr_reindex.reindex.models import (
    BackoffPolicy,
    ClusterConfig,
    FieldSelection,
    JobState,
    JobStatus,
    ReindexJobSpec,
)


class BackoffRequest(BaseModel):
    """Retry backoff configuration."""

    initial_seconds: float = Field(0.25, description="First retry delay", gt=0)
    max_seconds: float = Field(5.0, description="Delay ceiling", gt=0)
    multiplier: float = Field(2.0, description="Growth factor per attempt", ge=1.0)
    jitter: float = Field(0.2, description="Relative jitter (0-1)", ge=0.0, le=1.0)


class ClusterRequest(BaseModel):
    """Solr cluster a job reads from or writes to."""

    base_url: str = Field(
        ..., description="Cluster URL, e.g. http://solr:8983/solr", min_length=1
    )
    request_timeout: float = Field(30.0, description="Per-call timeout in seconds", gt=0)
    username: str | None = Field(None, description="Basic auth user")
    password: str | None = Field(None, description="Basic auth password")

    def to_config(self) -> ClusterConfig:
        return ClusterConfig(**self.model_dump())


class CreateReindexJobRequest(BaseModel):
    """Request model for creating a reindex job."""

    source_collection: str = Field(..., description="Collection to read from", min_length=1)
    target_collection: str = Field(..., description="Collection to write to", min_length=1)
    query: str = Field(DEFAULT_QUERY, description="Main query selecting documents")
    filter_queries: list[str] = Field(default_factory=list, description="Additional fq clauses")
    source_shards: list[str] = Field(
        default_factory=list, description="Restrict reads to these source shards"
    )
    fields: list[str] | None = Field(None, description="Fields to copy (all when omitted)")
    sort_field: str = Field(DEFAULT_SORT_FIELD, description="Monotonic sort key used for paging")
    id_field: str = Field(DEFAULT_ID_FIELD, description="Unique key of the collections")
    batch_size: int = Field(500, description="Documents per batch", ge=1, le=100_000)
    max_retries: int = Field(3, description="Transient failures tolerated per batch", ge=0)
    backoff: BackoffRequest = Field(default_factory=BackoffRequest)
    field_renames: dict[str, str] = Field(
        default_factory=dict, description="Source to target names"
    )
    drop_fields: list[str] = Field(default_factory=list, description="Fields not copied")
    commit_each_batch: bool = Field(True, description="Commit the target after every batch")
    source_cluster: ClusterRequest | None = Field(
        None, description="Source cluster (configured cluster when omitted)"
    )
    target_cluster: ClusterRequest | None = Field(
        None, description="Target cluster (source cluster when omitted)"
    )
    dispatch: bool = Field(True, description="Start an execution unit right away")

    def to_spec(self) -> ReindexJobSpec:
        return ReindexJobSpec(
            source_collection=self.source_collection,
            target_collection=self.target_collection,
            query=self.query,
            filter_queries=self.filter_queries,
            source_shards=self.source_shards,
            fields=FieldSelection.of(self.fields),
            sort_field=self.sort_field,
            id_field=self.id_field,
            batch_size=self.batch_size,
            max_retries=self.max_retries,
            backoff=BackoffPolicy(**self.backoff.model_dump()),
            field_renames=self.field_renames,
            drop_fields=self.drop_fields,
            commit_each_batch=self.commit_each_batch,
            source_cluster=self.source_cluster.to_config() if self.source_cluster else None,
            target_cluster=self.target_cluster.to_config() if self.target_cluster else None,
        )


class JobResponse(BaseModel):
    """Read-only snapshot of a reindex job."""

    id: UUID = Field(..., description="Job ID")
    name: str = Field(..., description="Human readable job name")
    status: JobStatus = Field(..., description="Lifecycle state")
    source_collection: str
    target_collection: str
    cursor: str = Field(..., description="Last acknowledged cursor")
    docs_read: int
    docs_copied: int
    batches: int
    retry_count: int = Field(..., description="Consecutive transient failures of the current batch")
    total_retries: int
    last_error: str | None = None
    failure_kind: str | None = None
    execution_id: str | None = None
    pause_requested: bool
    resumed_from: UUID | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_state(cls, state: JobState) -> "JobResponse":
        return cls(
            source_collection=state.spec.source_collection,
            target_collection=state.spec.target_collection,
            **state.model_dump(
                exclude={"spec", "heartbeat_at", "revision"},
            ),
        )


class JobListResponse(BaseModel):
    """List of reindex jobs."""

    jobs: list[JobResponse]
    total: int
