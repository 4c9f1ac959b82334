"""
Identifier resolution for the shared reference tables.

Every text value that the crawl records (URLs, domains, filter rules,
request types, tags, batch ids) lives once in a reference table and is
referenced by integer id everywhere else. ``IdResolver`` maps a value to its
id, creating the row on first sight with an insert-if-absent. The table's
uniqueness constraint decides races: workers that lose read back the
winner's row, so all of them observe one id. Existing rows are never
rewritten.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from .database import DatabaseConnection
from .errors import IdentifierResolutionError
from .hashing import sha256_hex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReferenceTableInfo:
    table: str
    text_column: str
    hashed: bool

    @property
    def key_column(self) -> str:
        return "sha256" if self.hashed else self.text_column


class ReferenceTable(Enum):
    """Reference tables and how values in them are keyed.

    High-cardinality tables are keyed by the SHA-256 of the text, which keeps
    index keys small for arbitrarily long URLs and rules.
    """
    BATCH = ReferenceTableInfo("batches", "batch", hashed=False)
    DOMAIN = ReferenceTableInfo("domains", "domain", hashed=True)
    RULE = ReferenceTableInfo("rules", "rule", hashed=True)
    URL = ReferenceTableInfo("urls", "url", hashed=True)
    TAG = ReferenceTableInfo("tags", "name", hashed=False)
    REQUEST_TYPE = ReferenceTableInfo("request_types", "name", hashed=True)


class IdCache:
    """Per-invocation cache of resolved reference ids.

    Only ids of committed rows are ever stored here. The cache is never
    invalidated and is not shared between invocations.
    """

    def __init__(self):
        self._ids: Dict[Tuple[ReferenceTable, str], int] = {}
        self.hits = 0
        self.misses = 0

    def get(self, table: ReferenceTable, key: str) -> Optional[int]:
        value = self._ids.get((table, key))
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
        return value

    def put(self, table: ReferenceTable, key: str, row_id: int) -> None:
        self._ids[(table, key)] = row_id

    def __len__(self) -> int:
        return len(self._ids)


def lookup_key(table: ReferenceTable, value: str) -> str:
    """The value stored in the table's unique column for ``value``."""
    return sha256_hex(value) if table.value.hashed else value


def _insert_query(info: ReferenceTableInfo) -> str:
    # Existing rows are left untouched: on conflict nothing is returned and
    # the id is read back with _select_query.
    if info.hashed:
        return f"""
            INSERT INTO {info.table} ({info.text_column}, sha256)
            VALUES ($1, $2)
            ON CONFLICT (sha256) DO NOTHING
            RETURNING id
        """
    return f"""
        INSERT INTO {info.table} ({info.text_column})
        VALUES ($1)
        ON CONFLICT ({info.text_column}) DO NOTHING
        RETURNING id
    """


def _select_query(info: ReferenceTableInfo) -> str:
    return f"SELECT id FROM {info.table} WHERE {info.key_column} = $1"


class IdResolver:
    """Resolve reference values to ids through a connection and an ``IdCache``."""

    def __init__(self, conn: DatabaseConnection, cache: Optional[IdCache] = None):
        self.conn = conn
        self.cache = cache if cache is not None else IdCache()

    async def resolve(self, table: ReferenceTable, value: str) -> int:
        """Return the id for ``value`` in ``table``, inserting it if absent."""
        value = value.strip()
        key = lookup_key(table, value)

        cached = self.cache.get(table, key)
        if cached is not None:
            logger.debug("Found cached id %s for %r in %s", cached, value, table.value.table)
            return cached

        info = table.value
        params = (value, key) if info.hashed else (value,)
        row = await self.conn.fetchone(_insert_query(info), *params)
        if row is None:
            # Already present, possibly created by a concurrent writer
            row = await self.conn.fetchone(_select_query(info), key)
        if row is None or row[0] is None:
            raise IdentifierResolutionError(info.table, value)

        row_id = row[0]
        logger.debug("Resolved %r to %s.id = %s", value, info.table, row_id)
        self.cache.put(table, key, row_id)
        return row_id

    async def lookup(self, table: ReferenceTable, value: str) -> int:
        """Return the id of an existing ``value`` in ``table`` without creating it."""
        value = value.strip()
        key = lookup_key(table, value)

        cached = self.cache.get(table, key)
        if cached is not None:
            return cached

        row = await self.conn.fetchone(_select_query(table.value), key)
        if row is None:
            raise IdentifierResolutionError(table.value.table, value)
        self.cache.put(table, key, row[0])
        return row[0]

    async def resolve_optional(self, table: ReferenceTable, value: Optional[str]) -> Optional[int]:
        if value is None:
            return None
        return await self.resolve(table, value)

    def remember(self, table: ReferenceTable, value: str, row_id: int) -> None:
        """Seed the cache with an id that is known to be committed."""
        self.cache.put(table, lookup_key(table, value.strip()), row_id)
