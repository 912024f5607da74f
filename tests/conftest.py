# conftest.py
import pytest

from solr_reindex.config import Settings
from solr_reindex.reindex.models import BackoffPolicy, ReindexJobSpec
from solr_reindex.reindex.registry import InMemoryJobRegistry
from tests.fakes import SOURCE, TARGET, FakeSolr, make_docs


@pytest.fixture
def test_settings() -> Settings:
    # In-process registry and task backend; no Solr is contacted by the fixtures.
    return Settings(
        registry_backend="memory",
        execution_backend="task",
        solr_source_url="http://solr-source:8983/solr",
        monitor_interval_seconds=0.01,
        liveness_timeout_seconds=300.0,
    )


@pytest.fixture
def registry() -> InMemoryJobRegistry:
    return InMemoryJobRegistry()


@pytest.fixture
def solr() -> FakeSolr:
    """Fake cluster holding 250 documents (doc-000 .. doc-249) in the source collection."""
    fake = FakeSolr()
    fake.seed(SOURCE, make_docs(250))
    return fake


@pytest.fixture
def spec() -> ReindexJobSpec:
    return ReindexJobSpec(
        source_collection=SOURCE,
        target_collection=TARGET,
        batch_size=100,
        max_retries=3,
        backoff=BackoffPolicy(initial_seconds=0.01, max_seconds=0.05, jitter=0.0),
    )


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]):
    """Sleep replacement that records backoff delays instead of waiting."""

    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep
