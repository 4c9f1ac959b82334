"""
Queries that pick the rules worth keeping in a slim list.
"""

from __future__ import annotations
import logging
from typing import List

from .database import DatabaseConnection
from .report import coerce_timestamp

logger = logging.getLogger(__name__)


# Exception rules: how often each excepting rule overrode a blocking rule.
_POPULAR_EXCEPTION_RULES = """
    SELECT r.rule, COUNT(*) AS num
    FROM requests AS req
    JOIN frames AS f ON f.id = req.frame_id
    JOIN pages AS p ON p.id = f.page_id
    JOIN batches AS b ON b.id = p.batch_id
    JOIN rules AS r ON r.id = req.excepting_rule_id
    WHERE b.created_on >= $1
    GROUP BY r.id, r.rule
    ORDER BY num DESC, r.id ASC
    LIMIT $2
"""

# Blocking rules count every trigger, including those later excepted.
_POPULAR_BLOCKING_RULES = """
    SELECT r.rule, COUNT(*) AS num
    FROM requests AS req
    JOIN frames AS f ON f.id = req.frame_id
    JOIN pages AS p ON p.id = f.page_id
    JOIN batches AS b ON b.id = p.batch_id
    JOIN rules AS r ON r.id = req.rule_id
    WHERE b.created_on >= $1
    GROUP BY r.id, r.rule
    ORDER BY num DESC, r.id ASC
    LIMIT $2
"""


async def _popular_rules(conn: DatabaseConnection, query: str, since, limit: int) -> List[str]:
    if limit <= 0:
        return []
    rows = await conn.fetchall(query, coerce_timestamp(since), limit)
    return [row[0] for row in rows]


async def popular_exception_rules(conn: DatabaseConnection, since, limit: int) -> List[str]:
    """Exception rules that fired in batches created on or after ``since``, most used first."""
    rules = await _popular_rules(conn, _POPULAR_EXCEPTION_RULES, since, limit)
    logger.info("Found %d exception rules used since %s", len(rules), since)
    return rules


async def popular_blocking_rules(conn: DatabaseConnection, since, limit: int) -> List[str]:
    """Blocking rules that matched in batches created on or after ``since``, most used first."""
    rules = await _popular_rules(conn, _POPULAR_BLOCKING_RULES, since, limit)
    logger.info("Found %d blocking rules used since %s", len(rules), since)
    return rules
