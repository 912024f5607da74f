"""In-memory test doubles shared by the test suite."""

import copy
from collections.abc import Sequence
from typing import Any
from uuid import UUID

from solr_reindex.core.constants import ALL_FIELDS, DEFAULT_QUERY
from solr_reindex.reindex.models import ExecutionStatus

SOURCE = "products"
TARGET = "products_v2"


class FakeSolr:
    """In-memory stand-in for a Solr cluster implementing SolrCollectionClient.

    Failures are injected per call number (1-based) so tests can script
    exactly which read or write breaks.
    """

    base_url = "http://fake-solr:8983/solr"

    def __init__(self) -> None:
        self.collections: dict[str, dict[Any, dict[str, Any]]] = {}
        self.read_failures: dict[int, Exception] = {}
        self.write_failures: dict[int, Exception] = {}
        self.reads: list[dict[str, Any]] = []
        self.writes: list[dict[str, Any]] = []
        self.closed = False

    def seed(self, collection: str, docs: list[dict[str, Any]], id_field: str = "id") -> None:
        target = self.collections.setdefault(collection, {})
        for doc in docs:
            target[doc[id_field]] = dict(doc)

    def docs(self, collection: str) -> dict[Any, dict[str, Any]]:
        return self.collections.get(collection, {})

    def written_ids(self, collection: str) -> list[Any]:
        writes = [write for write in self.writes if write["collection"] == collection]
        return [doc["id"] for write in writes for doc in write["docs"]]

    async def query_after(
        self,
        collection: str,
        *,
        sort_field: str,
        after: int | str | None,
        rows: int,
        query: str = DEFAULT_QUERY,
        filter_queries: Sequence[str] = (),
        fields: Sequence[str] = (ALL_FIELDS,),
        shards: Sequence[str] = (),
    ) -> list[dict[str, Any]]:
        self.reads.append(
            {
                "collection": collection,
                "after": after,
                "rows": rows,
                "fq": list(filter_queries),
                "shards": list(shards),
            }
        )
        failure = self.read_failures.get(len(self.reads))
        if failure is not None:
            raise failure

        docs = [d for d in self.docs(collection).values() if sort_field in d]
        for fq in filter_queries:
            name, _, value = fq.partition(":")
            docs = [d for d in docs if str(d.get(name)) == value]
        if after is not None:
            docs = [d for d in docs if d[sort_field] > after]
        docs.sort(key=lambda d: d[sort_field])

        page = docs[:rows]
        if list(fields) == [ALL_FIELDS]:
            return [copy.deepcopy(d) for d in page]
        return [{k: copy.deepcopy(v) for k, v in d.items() if k in fields} for d in page]

    async def upsert(
        self, collection: str, documents: list[dict[str, Any]], *, commit: bool = True
    ) -> None:
        self.writes.append({"collection": collection, "docs": documents, "commit": commit})
        failure = self.write_failures.get(len(self.writes))
        if failure is not None:
            raise failure
        self.seed(collection, documents)

    async def aclose(self) -> None:
        self.closed = True


def make_docs(count: int) -> list[dict[str, Any]]:
    return [
        {"id": f"doc-{i:03d}", "title": f"Product {i}", "price": i * 10, "_version_": 1000 + i}
        for i in range(count)
    ]


class FakeBackend:
    """Execution backend whose units only run when a test says so."""

    name = "fake"

    def __init__(self) -> None:
        self.launched: list[tuple[UUID, str]] = []
        self.terminated: list[str] = []
        self.released: list[str] = []
        self.statuses: dict[str, ExecutionStatus] = {}
        self.launch_error: Exception | None = None
        self.shut_down = False

    async def launch(self, job_id: UUID, execution_id: str) -> None:
        if self.launch_error is not None:
            raise self.launch_error
        self.launched.append((job_id, execution_id))
        self.statuses[execution_id] = ExecutionStatus.RUNNING

    async def status(self, execution_id: str) -> ExecutionStatus:
        return self.statuses.get(execution_id, ExecutionStatus.FAILED)

    async def terminate(self, execution_id: str) -> None:
        self.terminated.append(execution_id)

    async def shutdown(self) -> None:
        self.shut_down = True

    def release(self, execution_id: str) -> None:
        self.released.append(execution_id)
        self.statuses.pop(execution_id, None)

    def finish(
        self, execution_id: str, status: ExecutionStatus = ExecutionStatus.SUCCEEDED
    ) -> None:
        self.statuses[execution_id] = status
