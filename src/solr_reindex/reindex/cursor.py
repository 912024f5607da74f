"""Resumable positions over a Solr result set ordered by a monotonic sort key."""

import base64
import hashlib
import json
from typing import Any

from solr_reindex.core.constants import CURSOR_DIGEST_LENGTH, CURSOR_TOKEN_PREFIX
from solr_reindex.core.exceptions import InvalidCursorError
from solr_reindex.core.models import Cursor
from solr_reindex.reindex.models import ReindexJobSpec

SortKey = int | str

_KIND_INT = "i"
_KIND_STR = "s"


def _digest(body: str) -> str:
    return hashlib.sha256(body.encode("ascii")).hexdigest()[:CURSOR_DIGEST_LENGTH]


class CursorTracker:
    """Encodes sort-key values into cursors bound to one collection and sort field.

    A token carries the key space it was produced for, so a cursor taken from
    another collection (or another sort field) is rejected on decode instead
    of silently skipping or duplicating documents.
    """

    def __init__(self, collection: str, sort_field: str):
        self.collection = collection
        self.sort_field = sort_field

    @classmethod
    def for_spec(cls, spec: ReindexJobSpec) -> "CursorTracker":
        return cls(spec.source_collection, spec.sort_field)

    def encode(self, value: SortKey) -> Cursor:
        """Produce a stable token for a sort-key value.

        Raises:
            InvalidCursorError: If the value is not a non-negative int or a string.
        """
        kind = self._kind_of(value)
        payload = json.dumps(
            {"c": self.collection, "f": self.sort_field, "k": kind, "v": value},
            separators=(",", ":"),
            sort_keys=True,
        )
        body = base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")
        return Cursor(f"{CURSOR_TOKEN_PREFIX}.{body}.{_digest(body)}")

    def decode(self, cursor: Cursor) -> SortKey | None:
        """Exact inverse of :meth:`encode`; the start sentinel decodes to ``None``.

        Raises:
            InvalidCursorError: If the token is malformed, tampered with, or was
                produced for a different collection or sort field.
        """
        if cursor.is_start:
            return None

        parts = cursor.token.split(".")
        if len(parts) != 3 or parts[0] != CURSOR_TOKEN_PREFIX:
            raise InvalidCursorError(f"Malformed cursor token: {cursor.token!r}")

        _, body, digest = parts
        if digest != _digest(body):
            raise InvalidCursorError(f"Cursor checksum mismatch: {cursor.token!r}")

        try:
            payload: Any = json.loads(base64.urlsafe_b64decode(body + "=" * (-len(body) % 4)))
        except ValueError as e:
            raise InvalidCursorError(f"Undecodable cursor token: {cursor.token!r}") from e

        if not isinstance(payload, dict):
            raise InvalidCursorError(f"Malformed cursor payload: {cursor.token!r}")

        if payload.get("c") != self.collection or payload.get("f") != self.sort_field:
            raise InvalidCursorError(
                f"Cursor belongs to {payload.get('c')!r}/{payload.get('f')!r}, "
                f"expected {self.collection!r}/{self.sort_field!r}"
            )

        value = payload.get("v")
        if payload.get("k") != self._kind_of(value):
            raise InvalidCursorError(f"Cursor value kind mismatch: {cursor.token!r}")
        return value

    def compare(self, a: Cursor, b: Cursor) -> int:
        """Return -1, 0 or 1, matching ascending Solr sort on the sort field."""
        left, right = self.decode(a), self.decode(b)
        if left is None or right is None:
            return (right is None) - (left is None)
        if type(left) is not type(right):
            raise InvalidCursorError("Cannot compare cursors over different sort-key types")
        return (left > right) - (left < right)  # type: ignore[operator]

    @staticmethod
    def _kind_of(value: Any) -> str:
        if isinstance(value, bool):
            raise InvalidCursorError("Boolean sort keys are not supported")
        if isinstance(value, int):
            if value < 0:
                raise InvalidCursorError(f"Sort key out of range: {value}")
            return _KIND_INT
        if isinstance(value, str):
            return _KIND_STR
        raise InvalidCursorError(f"Unsupported sort key type: {type(value).__name__}")
