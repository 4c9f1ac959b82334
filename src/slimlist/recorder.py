"""
Recording of classified page visits into the measurement database.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .database import DatabaseConnection
from .errors import ReportFormatError
from .report import BlockedRequest, RawRequest, coerce_timestamp
from .resolver import IdResolver, ReferenceTable

logger = logging.getLogger(__name__)


@dataclass
class _ResolvedRequest:
    request: RawRequest
    frame_url_id: int
    request_url_id: int
    request_type_id: int
    is_blocked: bool = False
    rule_id: Optional[int] = None
    excepting_rule_id: Optional[int] = None


async def _resolve_request(resolver: IdResolver, request: RawRequest) -> _ResolvedRequest:
    if request.frame_id is None:
        raise ReportFormatError(f"Request for {request.request_url} has no frame id")
    frame_url_id = await resolver.resolve(ReferenceTable.URL, request.frame_url)
    request_url_id = await resolver.resolve(ReferenceTable.URL, request.request_url)
    request_type_id = await resolver.resolve(ReferenceTable.REQUEST_TYPE, request.request_type)
    return _ResolvedRequest(request, frame_url_id, request_url_id, request_type_id)


async def _resolve_blocked_request(resolver: IdResolver, request: BlockedRequest) -> _ResolvedRequest:
    resolved = await _resolve_request(resolver, request.raw)
    resolved.rule_id = await resolver.resolve(ReferenceTable.RULE, request.rule)
    resolved.excepting_rule_id = await resolver.resolve_optional(ReferenceTable.RULE, request.exception)
    resolved.is_blocked = request.is_blocked
    return resolved


async def _insert_request(conn: DatabaseConnection, page_id: int, resolved: _ResolvedRequest) -> None:
    request = resolved.request
    frame_row = await conn.fetchone(
        """
        INSERT INTO frames (page_id, url_id, chrome_frame_id, chrome_parent_frame_id)
        VALUES ($1, $2, $3, $4)
        RETURNING id
        """,
        page_id, resolved.frame_url_id, str(request.frame_id),
        None if request.parent_frame_id is None else str(request.parent_frame_id),
    )
    await conn.execute(
        """
        INSERT INTO requests (url_id, frame_id, request_type_id, is_blocked, rule_id,
                              excepting_rule_id, response_sha256, requested_at)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        """,
        resolved.request_url_id, frame_row[0], resolved.request_type_id, resolved.is_blocked,
        resolved.rule_id, resolved.excepting_rule_id, request.response_hash,
        coerce_timestamp(request.timestamp),
    )


async def record_page(conn: DatabaseConnection, resolver: IdResolver, batch: str, domain: str,
                      page_url: str, depth: int, breadth: int, page_timestamp,
                      allowed_requests: Sequence[RawRequest],
                      blocked_requests: Sequence[BlockedRequest]) -> int:
    """Record one crawled page with all of its classified requests.

    The batch must already be recorded. Other reference values (domain, URLs,
    request types, rules) are resolved first; each resolution commits on its
    own and is idempotent. A request without a frame id fails the call before
    anything is written. The page,
    frame and request rows are then written in a single transaction, so a
    failure leaves no partial page behind. Allowed requests are written in
    input order, followed by blocked requests in input order.

    Returns the id of the new page row.
    """
    batch_id = await resolver.lookup(ReferenceTable.BATCH, batch)
    domain_id = await resolver.resolve(ReferenceTable.DOMAIN, domain)
    page_url_id = await resolver.resolve(ReferenceTable.URL, page_url)

    resolved: List[_ResolvedRequest] = []
    for request in allowed_requests:
        resolved.append(await _resolve_request(resolver, RawRequest(*request)))
    for request in blocked_requests:
        resolved.append(await _resolve_blocked_request(resolver, BlockedRequest(*request)))

    async with conn.transaction():
        page_row = await conn.fetchone(
            """
            INSERT INTO pages (url_id, domain_id, batch_id, depth, breadth, crawled_on)
            VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING id
            """,
            page_url_id, domain_id, batch_id, depth, breadth, coerce_timestamp(page_timestamp),
        )
        page_id = page_row[0]

        for item in resolved:
            await _insert_request(conn, page_id, item)

    logger.info("Recorded page %s (id=%s) with %d allowed and %d blocked requests",
                page_url, page_id, len(allowed_requests), len(blocked_requests))
    return page_id
