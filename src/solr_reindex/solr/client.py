"""Async Solr client covering the two calls a reindex needs."""

import json
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import urlparse

import aiohttp

from solr_reindex.config import Settings
from solr_reindex.core.constants import ALL_FIELDS, DEFAULT_QUERY
from solr_reindex.core.exceptions import FatalCopyError, ReindexError, TransientCopyError
from solr_reindex.core.logging import get_logger

if TYPE_CHECKING:
    from solr_reindex.reindex.models import ClusterConfig

logger = get_logger(__name__)

SolrDocument = dict[str, Any]


class SolrCollectionClient(Protocol):
    """Capability the batch copier needs from a Solr cluster."""

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
    ) -> list[SolrDocument]: ...

    async def upsert(
        self, collection: str, documents: list[SolrDocument], *, commit: bool = True
    ) -> None: ...


def normalize_base_url(url: str) -> str:
    """Strip trailing slashes so collection paths can be appended."""
    parsed = urlparse(url.strip())
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"Invalid Solr base URL: {url!r}")
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path.rstrip('/')}"


def format_term(value: int | str) -> str:
    """Render a sort-key value for use inside a range query."""
    if isinstance(value, int):
        return str(value)
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def range_after(sort_field: str, value: int | str) -> str:
    """Filter query matching sort keys strictly greater than ``value``."""
    return f"{sort_field}:{{{format_term(value)} TO *]"


def classify_http_status(status: int, detail: str) -> ReindexError:
    """Map an HTTP error status to a retryable or terminal copy error."""
    message = f"Solr returned HTTP {status}: {detail[:500]}"
    if status == 429 or status >= 500:
        return TransientCopyError(message)
    return FatalCopyError(message)


class SolrClient:
    """Async Solr JSON API client with a per-call timeout."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        username: str | None = None,
        password: str | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Cluster URL, e.g. ``http://solr:8983/solr``.
            timeout: Per-call timeout in seconds.
            username: Optional basic auth user.
            password: Optional basic auth password.
            session: Optional pre-built session (owned by the caller).
        """
        self.base_url = normalize_base_url(base_url)
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.auth = aiohttp.BasicAuth(username, password or "") if username else None
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_settings(cls, settings: Settings, *, target: bool = False) -> "SolrClient":
        return cls(
            settings.effective_target_url if target else settings.solr_source_url,
            timeout=settings.solr_request_timeout,
            username=settings.solr_username,
            password=settings.solr_password,
        )

    @classmethod
    def for_cluster(
        cls, cluster: "ClusterConfig | None", settings: Settings, *, target: bool = False
    ) -> "SolrClient":
        """Client for a job's cluster, falling back to the configured one when unset."""
        if cluster is None:
            return cls.from_settings(settings, target=target)
        return cls(
            cluster.base_url,
            timeout=cluster.request_timeout,
            username=cluster.username,
            password=cluster.password,
        )

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(auth=self.auth, timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def aclose(self) -> None:
        """Close the underlying HTTP session if this client created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

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
    ) -> list[SolrDocument]:
        """Fetch up to ``rows`` documents whose sort key is strictly greater than ``after``.

        A non-empty ``shards`` restricts the read to those shards of the collection.

        Returns:
            list[SolrDocument]: Documents in ascending sort-key order.

        Raises:
            TransientCopyError: On connection errors, timeouts, 429 and 5xx.
            FatalCopyError: On other HTTP errors or a malformed response.
        """
        fqs = list(filter_queries)
        if after is not None:
            fqs.append(range_after(sort_field, after))

        params: list[tuple[str, str]] = [
            ("q", query),
            ("sort", f"{sort_field} asc"),
            ("rows", str(rows)),
            ("fl", ",".join(fields)),
            ("wt", "json"),
        ]
        params.extend(("fq", fq) for fq in fqs)
        if shards:
            params.append(("shards", ",".join(shards)))

        payload = await self._request("GET", f"{collection}/select", params=params)
        response = payload.get("response")
        docs = response.get("docs") if isinstance(response, dict) else None
        if not isinstance(docs, list):
            raise FatalCopyError(f"Malformed select response from {collection}")

        logger.debug(f"Fetched {len(docs)} documents from {collection} after {after!r}")
        return docs

    async def upsert(
        self, collection: str, documents: list[SolrDocument], *, commit: bool = True
    ) -> None:
        """Write documents in a single update request, overwriting by unique key.

        Raises:
            TransientCopyError: On connection errors, timeouts, 429 and 5xx.
            FatalCopyError: On other HTTP errors or a non-zero Solr status.
        """
        if not documents:
            return

        params = [("overwrite", "true"), ("wt", "json")]
        if commit:
            params.append(("commit", "true"))

        payload = await self._request("POST", f"{collection}/update", params=params, body=documents)
        header = payload.get("responseHeader")
        status = header.get("status") if isinstance(header, dict) else None
        if isinstance(status, int) and status != 0:
            raise FatalCopyError(f"Solr update on {collection} failed with status {status}")

        logger.debug(f"Upserted {len(documents)} documents into {collection}")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: list[tuple[str, str]],
        body: Any = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}/{path}"
        try:
            async with self._get_session().request(
                method, url, params=params, json=body, timeout=self.timeout
            ) as resp:
                text = await resp.text()
                if resp.status >= 400:
                    raise classify_http_status(resp.status, text)
        except TimeoutError as e:
            raise TransientCopyError(f"{method} {url} timed out") from e
        except aiohttp.ClientError as e:
            raise TransientCopyError(f"{method} {url} failed: {e}") from e

        try:
            payload = json.loads(text)
        except ValueError as e:
            raise FatalCopyError(f"{method} {url} returned invalid JSON") from e
        if not isinstance(payload, dict):
            raise FatalCopyError(f"{method} {url} returned unexpected payload")
        return payload
