"""Central constants shared across the reindex orchestration."""

from typing import Final

# Solr query defaults.
DEFAULT_QUERY: Final[str] = "*:*"
DEFAULT_SORT_FIELD: Final[str] = "id"
DEFAULT_ID_FIELD: Final[str] = "id"
ALL_FIELDS: Final[str] = "*"

# Fields maintained by Solr itself; never written back to a target collection.
INTERNAL_FIELDS: Final[frozenset[str]] = frozenset({"_version_", "_root_", "_text_"})

# Cursor token layout.
CURSOR_START_TOKEN: Final[str] = "*"
CURSOR_TOKEN_PREFIX: Final[str] = "c1"
CURSOR_DIGEST_LENGTH: Final[int] = 16

# Job naming.
JOB_NAME_PREFIX: Final[str] = "reindex"
JOB_NAME_TIME_FORMAT: Final[str] = "%Y%m%d%H%M%S"
