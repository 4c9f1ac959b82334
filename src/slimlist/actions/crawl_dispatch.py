"""
Prepare a crawl batch and fan it out to crawl workers.

Chooses the domains to visit, records the batch and the fetched filter lists
in the database, writes the batch's shared inputs (manifest, filter list
texts, domain list, serialized rule engine) to the object store, and
enqueues one crawl job per domain.
"""

from __future__ import annotations
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, Field

from ..config import (
    DEFAULT_BUCKET,
    DEFAULT_FILTER_LISTS,
    DEFAULT_QUEUE,
    DEFAULT_READ_ACL,
    DEFAULT_RECORD_QUEUE,
)
from ..engine import serialize_rules
from ..fetch import fetch_filter_list, fetch_tranco_domains
from ..ingest import ingest_rules, record_batch_with_tags
from ..resolver import IdResolver
from .arguments import ActionArgs, Count, NonEmptyStr
from .context import ActionContext

logger = logging.getLogger(__name__)


class CrawlDispatchArgs(ActionArgs):
    bucket: NonEmptyStr = Field(default=DEFAULT_BUCKET, validation_alias=AliasChoices("bucket", "destS3Bucket"))
    queue: NonEmptyStr = Field(default=DEFAULT_QUEUE, validation_alias=AliasChoices("queue", "sqsQueue"))
    record_queue: NonEmptyStr = Field(
        default=DEFAULT_RECORD_QUEUE, validation_alias=AliasChoices("record_queue", "sqsRecordQueue")
    )
    lists: List[NonEmptyStr] = Field(default_factory=lambda: list(DEFAULT_FILTER_LISTS))
    batch: NonEmptyStr = Field(default_factory=lambda: str(uuid.uuid4()))
    count: Count = 1000
    tags: List[NonEmptyStr] = Field(default_factory=list)
    depth: Count = 1
    breadth: Count = Field(default=3, validation_alias=AliasChoices("breadth", "breath"))
    # None selects the Tranco top ``count`` domains
    domains: Optional[List[NonEmptyStr]] = None
    read_acl: NonEmptyStr = Field(default=DEFAULT_READ_ACL, validation_alias=AliasChoices("read_acl", "readAcl"))


def crawl_job(args: CrawlDispatchArgs, domain: str) -> Dict[str, Any]:
    """The queue message that starts crawling ``domain`` at its landing page."""
    return {
        "action": "crawl",
        "batch": args.batch,
        "url": f"http://{domain}",
        "domain": domain,
        "depth": args.depth,
        "current_depth": 0,
        "breadth": args.breadth,
        "current_breadth": 0,
        "bucket": args.bucket,
        "read_acl": args.read_acl,
        "queue": args.queue,
    }


async def run(args: CrawlDispatchArgs, ctx: ActionContext) -> Dict[str, Any]:
    started = datetime.now(timezone.utc)
    manifest: Dict[str, Any] = {
        "date": started.isoformat(),
        "count": args.count,
        "batch": args.batch,
        "depth": args.depth,
        "breadth": args.breadth,
        "record_queue": args.record_queue,
    }

    if args.domains is None:
        tranco_url, domains = await fetch_tranco_domains(args.count, get=ctx.http_get)
        manifest["domains_source"] = tranco_url
    else:
        domains = list(args.domains)
        manifest["domains_source"] = "inline"

    url_to_hash: Dict[str, str] = {}
    hash_to_text: Dict[str, str] = {}
    async with ctx.database() as conn:
        resolver = IdResolver(conn)
        await record_batch_with_tags(conn, resolver, args.batch, started, args.tags)

        for list_url in args.lists:
            text, digest = await fetch_filter_list(list_url, get=ctx.http_get)
            url_to_hash[list_url] = digest
            hash_to_text[digest] = text
            await ingest_rules(conn, resolver, list_url, datetime.now(timezone.utc),
                               digest, text.split("\n"))

    manifest["filter_lists"] = url_to_hash
    manifest["tags"] = list(args.tags)

    prefix = f"{args.batch}/"
    await ctx.store.write_json(args.bucket, f"{prefix}manifest.json", manifest, args.read_acl)
    for digest, text in hash_to_text.items():
        await ctx.store.write(args.bucket, f"{prefix}{digest}", text, args.read_acl, "text/plain")
    await ctx.store.write_json(args.bucket, f"{prefix}domains.json", domains, args.read_acl)

    combined_rules = [line for text in hash_to_text.values() for line in text.split("\n")]
    await ctx.store.write(args.bucket, f"{prefix}rules.dat", serialize_rules(combined_rules),
                          args.read_acl, "application/octet-stream")

    for domain in domains:
        await ctx.queue.enqueue(args.queue, crawl_job(args, domain))

    logger.info("Dispatched batch %s: %d domains, %d filter lists",
                args.batch, len(domains), len(url_to_hash))
    return manifest
