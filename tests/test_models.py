"""Tests for reindex job models."""

import random
import re
from datetime import UTC, datetime
from uuid import uuid4

import pytest
from pydantic import ValidationError

from solr_reindex.reindex.models import (
    BackoffPolicy,
    ClusterConfig,
    FieldSelection,
    JobState,
    JobStatus,
    ReindexJobSpec,
    new_job_name,
    utcnow,
)


# ==================== BackoffPolicy ====================


def test_backoff_grows_exponentially_without_jitter():
    """Delays double per attempt when jitter is disabled."""
    policy = BackoffPolicy(initial_seconds=0.25, max_seconds=5.0, jitter=0.0)
    assert [policy.delay_for_attempt(n) for n in (1, 2, 3)] == [0.25, 0.5, 1.0]


def test_backoff_is_capped():
    """Late attempts never exceed the ceiling."""
    policy = BackoffPolicy(initial_seconds=0.25, max_seconds=5.0, jitter=0.0)
    assert policy.delay_for_attempt(50) == 5.0


def test_backoff_jitter_stays_in_bounds():
    """Jittered delays stay within the jitter band and under the ceiling."""
    policy = BackoffPolicy()
    rng = random.Random(7)

    first = policy.delay_for_attempt(1, rng)
    assert 0.2 <= first <= 0.3

    for attempt in range(1, 25):
        assert 0 < policy.delay_for_attempt(attempt, rng) <= policy.max_seconds


def test_backoff_rejects_inverted_range():
    with pytest.raises(ValidationError):
        BackoffPolicy(initial_seconds=10.0, max_seconds=1.0)


# ==================== FieldSelection ====================


def test_field_selection_defaults_to_all_fields():
    selection = FieldSelection.of(None)
    assert selection.all_fields is True
    assert selection.effective_fields("id") == ["*"]


def test_field_selection_includes_required_fields():
    """Explicit selections are trimmed, deduplicated and always carry required fields."""
    selection = FieldSelection.of(["title", " title ", "", "price"])
    assert selection.fields == ("title", "price")
    assert selection.effective_fields("id", "id") == ["title", "price", "id"]


def test_field_selection_requires_fields_when_not_all():
    with pytest.raises(ValidationError):
        FieldSelection(all_fields=False)


# ==================== ReindexJobSpec ====================


def test_spec_normalizes_inputs():
    """Blank queries fall back to *:* and filter lists are cleaned up."""
    spec = ReindexJobSpec(
        source_collection=" products ",
        target_collection="products_v2",
        query="  ",
        filter_queries=[" type:book ", "type:book", ""],
        drop_fields=["legacy", None],
    )
    assert spec.source_collection == "products"
    assert spec.query == "*:*"
    assert spec.filter_queries == ("type:book",)
    assert spec.drop_fields == ("legacy",)
    assert spec.sort_field == "id"
    assert spec.batch_size == 500


@pytest.mark.parametrize(
    "overrides",
    [
        {"source_collection": "   "},
        {"batch_size": 0},
        {"max_retries": -1},
        {"target_collection": "products", "sort_field": "_version_"},
        {"target_collection": "products", "field_renames": {"id": "doc_id"}},
    ],
)
def test_spec_rejects_invalid_jobs(overrides):
    values = {"source_collection": "products", "target_collection": "products_v2", **overrides}
    with pytest.raises(ValidationError):
        ReindexJobSpec(**values)


def test_spec_allows_in_place_reindex_by_id():
    """Copying a collection onto itself is fine when ordered by the unique key."""
    spec = ReindexJobSpec(source_collection="products", target_collection="products")
    assert spec.target_collection == "products"


def test_spec_allows_version_order_across_clusters():
    """Same collection name on another cluster is a plain copy, not an in-place one."""
    spec = ReindexJobSpec(
        source_collection="products",
        target_collection="products",
        sort_field="_version_",
        source_cluster=ClusterConfig(base_url="http://solr-a:8983/solr"),
        target_cluster=ClusterConfig(base_url="http://solr-b:8983/solr/"),
    )
    assert spec.in_place is False

    with pytest.raises(ValidationError):
        ReindexJobSpec(
            source_collection="products",
            target_collection="products",
            sort_field="_version_",
            source_cluster=ClusterConfig(base_url="http://solr-a:8983/solr"),
        )


# ==================== ClusterConfig ====================


def test_cluster_config_normalizes_url():
    cluster = ClusterConfig(base_url=" http://solr-a:8983/solr/ ")
    assert cluster.base_url == "http://solr-a:8983/solr"
    assert cluster.request_timeout == 30.0


@pytest.mark.parametrize(
    "overrides",
    [
        {"base_url": "solr-a:8983"},
        {"request_timeout": 0},
        {"username": "reindexer"},
        {"password": "secret"},
    ],
)
def test_cluster_config_rejects_invalid(overrides):
    with pytest.raises(ValidationError):
        ClusterConfig(**{"base_url": "http://solr-a:8983/solr", **overrides})


def test_cluster_password_is_not_in_repr():
    cluster = ClusterConfig(
        base_url="http://solr-a:8983/solr", username="reindexer", password="secret"
    )
    assert "secret" not in repr(cluster)


def test_target_cluster_defaults_to_source():
    source = ClusterConfig(base_url="http://solr-a:8983/solr")
    spec = ReindexJobSpec(
        source_collection="products",
        target_collection="products_v2",
        source_cluster=source,
        source_shards=[" shard1 ", "shard2", "shard1"],
    )
    assert spec.effective_target_cluster == source
    assert spec.source_shards == ("shard1", "shard2")


# ==================== JobState ====================


def test_job_name_format():
    name = new_job_name(datetime(2025, 1, 2, 3, 4, 5, tzinfo=UTC))
    assert re.fullmatch(r"reindex-20250102030405-[0-9a-f]{5}", name)


def test_evolve_bumps_revision(spec: ReindexJobSpec):
    """Each evolution is the next revision and leaves the original untouched."""
    now = utcnow()
    state = JobState(
        id=uuid4(),
        name="reindex-test",
        spec=spec,
        created_at=now,
        updated_at=now,
    )

    running = state.evolve(status=JobStatus.RUNNING)

    assert running.revision == state.revision + 1
    assert running.status is JobStatus.RUNNING
    assert state.status is JobStatus.PENDING
    assert running.updated_at >= state.updated_at
    assert not running.is_terminal
    assert running.evolve(status=JobStatus.COMPLETED).is_terminal
