"""
Recording of crawl batches and fetched filter lists.

Filter lists are large (tens of thousands of rules) and are re-fetched for
every crawl batch, so rule texts are deduplicated and written in chunks, and
a list whose exact content was already recorded is only linked to the new
fetch date.
"""

from __future__ import annotations
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from .config import RULE_CHUNK_SIZE
from .database import DatabaseConnection
from .errors import IdentifierResolutionError
from .hashing import sha256_hex
from .report import coerce_timestamp
from .resolver import IdResolver, ReferenceTable

logger = logging.getLogger(__name__)


async def record_batch_with_tags(conn: DatabaseConnection, resolver: IdResolver, batch: str,
                                 created_on, tags: Iterable[str]) -> int:
    """Record a crawl batch with its creation time and attach its tags.

    Safe to call again for the same batch: the batch row and tag links are
    upserted, never duplicated.
    """
    tags = list(tags)
    row = await conn.fetchone(
        """
        INSERT INTO batches (batch, created_on)
        VALUES ($1, $2)
        ON CONFLICT (batch) DO NOTHING
        RETURNING id
        """,
        batch, coerce_timestamp(created_on),
    )
    if row is None:
        # Recorded before; the first creation time is kept
        row = await conn.fetchone("SELECT id FROM batches WHERE batch = $1", batch)
    if row is None:
        raise IdentifierResolutionError("batches", batch)
    batch_id = row[0]
    resolver.remember(ReferenceTable.BATCH, batch, batch_id)

    for tag in tags:
        tag_id = await resolver.resolve(ReferenceTable.TAG, tag)
        await conn.execute(
            """
            INSERT INTO batches_tags (batch_id, tag_id)
            VALUES ($1, $2)
            ON CONFLICT (batch_id, tag_id) DO NOTHING
            """,
            batch_id, tag_id,
        )

    logger.info("Recorded batch %s (id=%s) with tags %s", batch, batch_id, tags)
    return batch_id


def dedupe_rules(rules: Iterable[str]) -> Dict[str, str]:
    """Map sha256 -> rule text for every distinct, non-blank rule, in first-seen order."""
    unique: Dict[str, str] = {}
    for rule in rules:
        rule = rule.strip()
        if not rule:
            continue
        key = sha256_hex(rule)
        if key not in unique:
            unique[key] = rule
    return unique


def _chunks(items: Sequence, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


async def _select_rule_ids(conn: DatabaseConnection, hashes: List[str]) -> Dict[str, int]:
    if conn.backend == "postgresql":
        rows = await conn.fetchall(
            "SELECT sha256, id FROM rules WHERE sha256 = ANY($1::text[])", hashes
        )
    else:
        placeholders = ",".join(f"${i}" for i in range(1, len(hashes) + 1))
        rows = await conn.fetchall(
            f"SELECT sha256, id FROM rules WHERE sha256 IN ({placeholders})", *hashes
        )
    return {row[0]: row[1] for row in rows}


async def _record_rule_chunk(conn: DatabaseConnection, filter_list_id: int,
                             chunk: List[tuple]) -> int:
    """Upsert one chunk of (sha256, rule) pairs and link them to the filter list.

    Nested inside the list transaction this becomes a savepoint on PostgreSQL
    and joins the outer transaction on SQLite.
    """
    async with conn.transaction():
        await conn.executemany(
            """
            INSERT INTO rules (rule, sha256)
            VALUES ($1, $2)
            ON CONFLICT (sha256) DO NOTHING
            """,
            [(rule, key) for key, rule in chunk],
        )

        hashes = [key for key, _ in chunk]
        hash_to_id = await _select_rule_ids(conn, hashes)
        missing = [key for key in hashes if key not in hash_to_id]
        if missing:
            raise IdentifierResolutionError("rules", dict(chunk)[missing[0]])

        await conn.executemany(
            """
            INSERT INTO filter_lists_rules (filter_list_id, rule_id)
            VALUES ($1, $2)
            ON CONFLICT (filter_list_id, rule_id) DO NOTHING
            """,
            [(filter_list_id, hash_to_id[key]) for key in hashes],
        )
    return len(chunk)


async def _find_filter_list(conn: DatabaseConnection, filter_list_hash: str) -> Optional[int]:
    row = await conn.fetchone(
        "SELECT id FROM filter_lists WHERE sha256 = $1 LIMIT 1", filter_list_hash
    )
    return row[0] if row else None


async def _link_date(conn: DatabaseConnection, date_id: int, filter_list_id: int) -> None:
    await conn.execute(
        "INSERT INTO dates_filter_lists (date_id, filter_list_id) VALUES ($1, $2)",
        date_id, filter_list_id,
    )


async def ingest_rules(conn: DatabaseConnection, resolver: IdResolver, filter_list_url: str,
                       fetched_on, filter_list_hash: str, rules: Iterable[str],
                       chunk_size: int = RULE_CHUNK_SIZE) -> int:
    """Record one fetch of a filter list and, if its content is new, its rules.

    Returns the id of the filter list row. Every call records a fetch date,
    including calls for content that was already recorded; those only link
    the existing list to the new date.

    A new list is written together with all of its rule chunks in one
    transaction, so a failure in any chunk leaves no filter list row behind
    and the whole call can be retried. Only the fetch date survives a failed
    call.
    """
    fetched_on = coerce_timestamp(fetched_on) or datetime.now().astimezone()
    date_row = await conn.fetchone(
        "INSERT INTO dates (fetched_on) VALUES ($1) RETURNING id", fetched_on
    )
    date_id = date_row[0]

    filter_list_id = await _find_filter_list(conn, filter_list_hash)
    if filter_list_id is not None:
        await _link_date(conn, date_id, filter_list_id)
        logger.info("Filter list %s (hash=%s) already recorded, linked to new fetch date",
                    filter_list_url, filter_list_hash)
        return filter_list_id

    # Resolved outside the transaction so the cache only holds committed ids
    url_id = await resolver.resolve(ReferenceTable.URL, filter_list_url)
    unique_rules = list(dedupe_rules(rules).items())

    async with conn.transaction():
        row = await conn.fetchone(
            """
            INSERT INTO filter_lists (url_id, sha256)
            VALUES ($1, $2)
            ON CONFLICT (sha256) DO NOTHING
            RETURNING id
            """,
            url_id, filter_list_hash,
        )
        if row is None:
            # Another worker committed the same content first
            filter_list_id = await _find_filter_list(conn, filter_list_hash)
            if filter_list_id is None:
                raise IdentifierResolutionError("filter_lists", filter_list_hash)
            await _link_date(conn, date_id, filter_list_id)
            return filter_list_id

        filter_list_id = row[0]
        await _link_date(conn, date_id, filter_list_id)

        logger.info("Recording %d distinct rules from %s in chunks of %d",
                    len(unique_rules), filter_list_url, chunk_size)
        recorded = 0
        for chunk in _chunks(unique_rules, chunk_size):
            recorded += await _record_rule_chunk(conn, filter_list_id, chunk)
            logger.debug("Recorded %d/%d rules for filter list %s",
                         recorded, len(unique_rules), filter_list_id)

    return filter_list_id
