"""Copies one page of documents from the source collection to the target collection."""

from collections.abc import Callable
from typing import Any

from solr_reindex.core.constants import INTERNAL_FIELDS
from solr_reindex.core.exceptions import FatalCopyError, InvalidCursorError
from solr_reindex.core.logging import get_logger
from solr_reindex.core.models import BatchResult, Cursor
from solr_reindex.reindex.cursor import CursorTracker
from solr_reindex.reindex.models import ReindexJobSpec
from solr_reindex.solr.client import SolrCollectionClient, SolrDocument

logger = get_logger(__name__)

DocumentTransform = Callable[[SolrDocument], SolrDocument]


class BatchCopier:
    """Read-then-write cycle for one batch.

    The returned cursor is only produced after the target acknowledged the
    write, so a failed or partial write never advances the job. Writes are
    upserts keyed by document id, so re-issuing a batch is idempotent.
    """

    def __init__(
        self,
        source: SolrCollectionClient,
        target: SolrCollectionClient,
        transform: DocumentTransform | None = None,
    ):
        self.source = source
        self.target = target
        self.transform = transform

    async def copy_batch(self, spec: ReindexJobSpec, cursor: Cursor, page_size: int) -> BatchResult:
        """Copy documents with sort key strictly greater than ``cursor``.

        Args:
            spec: Job definition.
            cursor: ``Cursor.START`` or a cursor produced for this job's key space.
            page_size: Maximum number of documents to copy.

        Returns:
            BatchResult: Counts, the cursor of the last copied document and
            whether the source is exhausted.

        Raises:
            InvalidCursorError: If ``cursor`` belongs to another key space.
            TransientCopyError: On retryable read/write failures.
            FatalCopyError: On terminal read/write failures or malformed documents.
        """
        if page_size <= 0:
            raise ValueError("page_size must be positive")

        tracker = CursorTracker.for_spec(spec)
        after = tracker.decode(cursor)

        docs = await self.source.query_after(
            spec.source_collection,
            sort_field=spec.sort_field,
            after=after,
            rows=page_size,
            query=spec.query,
            filter_queries=spec.filter_queries,
            fields=spec.fields.effective_fields(spec.id_field, spec.sort_field),
            shards=spec.source_shards,
        )
        if not docs:
            return BatchResult(docs_read=0, docs_written=0, cursor=cursor, exhausted=True)

        new_cursor = self._cursor_after(tracker, spec, docs[-1])
        if after is not None and tracker.compare(new_cursor, cursor) <= 0:
            raise FatalCopyError(
                f"Source {spec.source_collection} returned keys not greater than the cursor; "
                f"is {spec.sort_field} sortable and unique?"
            )

        prepared = [self._prepare(spec, doc) for doc in docs]
        await self.target.upsert(
            spec.target_collection, prepared, commit=spec.commit_each_batch
        )

        return BatchResult(
            docs_read=len(docs),
            docs_written=len(prepared),
            cursor=new_cursor,
            exhausted=len(docs) < page_size,
        )

    @staticmethod
    def _cursor_after(tracker: CursorTracker, spec: ReindexJobSpec, doc: SolrDocument) -> Cursor:
        value = doc.get(spec.sort_field)
        if value is None:
            raise FatalCopyError(f"Document is missing sort field {spec.sort_field!r}")
        try:
            return tracker.encode(value)
        except InvalidCursorError as e:
            raise FatalCopyError(f"Unusable value for sort field {spec.sort_field!r}: {e}") from e

    def _prepare(self, spec: ReindexJobSpec, doc: SolrDocument) -> SolrDocument:
        if doc.get(spec.id_field) is None:
            raise FatalCopyError(f"Document is missing id field {spec.id_field!r}")

        dropped = INTERNAL_FIELDS.union(spec.drop_fields)
        prepared: dict[str, Any] = {}
        for name, value in doc.items():
            if name in dropped:
                continue
            prepared[spec.field_renames.get(name, name)] = value

        if self.transform is None:
            return prepared
        try:
            return self.transform(prepared)
        except Exception as e:
            raise FatalCopyError(
                f"Transform failed for document {doc.get(spec.id_field)!r}: {e}"
            ) from e
