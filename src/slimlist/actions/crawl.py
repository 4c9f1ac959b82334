"""
Crawl one page: record its requests and queue same-site child pages.
"""

from __future__ import annotations
import logging
from typing import Any, Dict, Iterable, List
from urllib.parse import urldefrag, urlparse

from pydantic import AliasChoices, Field, model_validator

from ..config import DEFAULT_BUCKET, DEFAULT_QUEUE, DEFAULT_READ_ACL
from ..hashing import sha256_hex
from ..report import PageReport
from .arguments import ActionArgs, BatchId, Count, NonEmptyStr, WebUrl
from .context import ActionContext

logger = logging.getLogger(__name__)


class CrawlArgs(ActionArgs):
    batch: BatchId
    url: WebUrl
    domain: NonEmptyStr
    depth: Count
    current_depth: Count = Field(validation_alias=AliasChoices("current_depth", "currentDepth"))
    breadth: Count = Field(validation_alias=AliasChoices("breadth", "breath"))
    current_breadth: Count = Field(
        validation_alias=AliasChoices("current_breadth", "currentBreadth", "currentBreath")
    )
    bucket: NonEmptyStr = DEFAULT_BUCKET
    read_acl: NonEmptyStr = Field(default=DEFAULT_READ_ACL, validation_alias=AliasChoices("read_acl", "readAcl"))
    queue: NonEmptyStr = Field(default=DEFAULT_QUEUE, validation_alias=AliasChoices("queue", "sqsQueue"))

    @model_validator(mode="after")
    def check_position_within_limits(self) -> "CrawlArgs":
        for name, limit in (("current_depth", "depth"), ("current_breadth", "breadth")):
            if getattr(self, name) > getattr(self, limit):
                raise ValueError(
                    f"{name}: expected at most {limit} ({getattr(self, limit)}), "
                    f"but found {getattr(self, name)}"
                )
        return self


def report_key(batch: str, domain: str, depth: int, breadth: int, url: str) -> str:
    """Object key for the rule-trace report of one page.

    Pages at the same position under different parents are told apart by
    the URL digest.
    """
    return f"{batch}/data/{domain}/{depth}-{breadth}-{sha256_hex(url)[:16]}.json"


def is_same_site(url: str, domain: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    domain = domain.lower()
    return host == domain or host.endswith("." + domain)


def same_site_links(links: Iterable[str], domain: str, exclude: str, limit: int) -> List[str]:
    """Up to ``limit`` distinct http(s) links on ``domain``, in page order."""
    selected: List[str] = []
    if limit <= 0:
        return selected
    seen = {urldefrag(exclude)[0]}
    for link in links:
        link = urldefrag(link)[0]
        if link in seen or urlparse(link).scheme not in ("http", "https"):
            continue
        seen.add(link)
        if is_same_site(link, domain):
            selected.append(link)
            if len(selected) >= limit:
                break
    return selected


def child_job(args: CrawlArgs, url: str, index: int) -> Dict[str, Any]:
    return {
        "action": "crawl",
        "batch": args.batch,
        "url": url,
        "domain": args.domain,
        "depth": args.depth,
        "current_depth": args.current_depth + 1,
        "breadth": args.breadth,
        "current_breadth": index,
        "bucket": args.bucket,
        "read_acl": args.read_acl,
        "queue": args.queue,
    }


async def run(args: CrawlArgs, ctx: ActionContext) -> str:
    visit = await ctx.trace_producer().visit(args.url)
    report = PageReport(
        url=visit.url,
        depth=args.current_depth,
        breadth=args.current_breadth,
        timestamp=visit.timestamp,
        data=visit.requests,
    )
    key = report_key(args.batch, args.domain, args.current_depth, args.current_breadth, args.url)
    await ctx.store.write(args.bucket, key, report.to_json(), args.read_acl, "application/json")

    # depth counts pages including the landing page at current_depth 0
    if args.current_depth + 1 < args.depth:
        children = same_site_links(visit.links, args.domain, args.url, args.breadth)
        for index, link in enumerate(children):
            await ctx.queue.enqueue(args.queue, child_job(args, link, index))
        logger.info("Queued %d child pages of %s", len(children), args.url)

    logger.info("Recorded %d requests for %s to %s", len(visit.requests), args.url, key)
    return key
