"""
Classify and record the crawl reports of one domain, then hand off to the next.

Domains are recorded one at a time, in the order of the batch's
``domains.json``; each run enqueues the run for the following index until
the last domain is done.
"""

from __future__ import annotations
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from pydantic import AliasChoices, Field

from ..classify import classify_requests
from ..config import DEFAULT_BUCKET, DEFAULT_RECORD_QUEUE
from ..engine import deserialize_engine
from ..errors import ValidationError
from ..recorder import record_page
from ..report import parse_report
from ..resolver import IdResolver
from .arguments import ActionArgs, BatchId, Count, NonEmptyStr
from .context import ActionContext

logger = logging.getLogger(__name__)


class RecordArgs(ActionArgs):
    batch: BatchId
    bucket: NonEmptyStr = DEFAULT_BUCKET
    queue: NonEmptyStr = Field(default=DEFAULT_RECORD_QUEUE, validation_alias=AliasChoices("queue", "sqsRecordQueue"))
    index: Count = 0


async def run(args: RecordArgs, ctx: ActionContext) -> Dict[str, Any]:
    domains = json.loads(await ctx.store.read(args.bucket, f"{args.batch}/domains.json"))
    if args.index >= len(domains):
        raise ValidationError(f"index: {args.index} is past the last of {len(domains)} domains.")

    domain = domains[args.index]
    is_last_domain = args.index == len(domains) - 1

    engine = deserialize_engine(await ctx.store.read(args.bucket, f"{args.batch}/rules.dat"))
    report_keys = await ctx.store.list(args.bucket, f"{args.batch}/data/{domain}/")

    async with ctx.database() as conn:
        resolver = IdResolver(conn)
        for key in report_keys:
            report = parse_report(await ctx.store.read(args.bucket, key))
            result = classify_requests(engine, report.data)
            await record_page(conn, resolver, args.batch, domain, report.url, report.depth,
                              report.breadth, report.timestamp, result.allowed, result.blocked)
        logger.info("Recorded %d pages for %s (cache: %d hits, %d misses)",
                    len(report_keys), domain, resolver.cache.hits, resolver.cache.misses)

    progress = {
        "domain": domain,
        "index": args.index,
        "max_index": len(domains),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "complete": is_last_domain,
    }
    await ctx.store.write_json(args.bucket, f"{args.batch}/progress.json", progress)

    if is_last_domain:
        logger.info("Finished processing final record for batch %s", args.batch)
        return progress

    await ctx.queue.enqueue(args.queue, {
        "action": "record",
        "batch": args.batch,
        "bucket": args.bucket,
        "queue": args.queue,
        "index": args.index + 1,
    })
    return progress
