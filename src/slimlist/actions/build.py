"""
Build the slim list from recently recorded crawl data.
"""

from __future__ import annotations
import logging
from datetime import datetime, timedelta, timezone
from typing import List

from pydantic import AliasChoices, Field

from ..aggregate import popular_blocking_rules, popular_exception_rules
from ..config import DEFAULT_BUCKET, DEFAULT_READ_ACL
from ..errors import SlimListBuildError
from .arguments import ActionArgs, Count, NonEmptyStr
from .context import ActionContext

logger = logging.getLogger(__name__)

LATEST_KEY = "slim-list/latest.json"


def _default_key() -> str:
    return f"slim-list/{datetime.now(timezone.utc).isoformat()}.json"


class BuildArgs(ActionArgs):
    max: Count = 5000
    days: float = Field(default=14, ge=0)
    bucket: NonEmptyStr = Field(default=DEFAULT_BUCKET, validation_alias=AliasChoices("bucket", "s3Bucket"))
    key: NonEmptyStr = Field(default_factory=_default_key, validation_alias=AliasChoices("key", "s3Key"))
    read_acl: NonEmptyStr = Field(default=DEFAULT_READ_ACL, validation_alias=AliasChoices("read_acl", "readAcl"))


async def run(args: BuildArgs, ctx: ActionContext) -> List[str]:
    since = datetime.now(timezone.utc) - timedelta(days=args.days)
    logger.info("About to query for up to %d rules used in the last %s days", args.max, args.days)

    async with ctx.database() as conn:
        exception_rules = await popular_exception_rules(conn, since, args.max)
        blocking_rules = await popular_blocking_rules(conn, since, args.max - len(exception_rules))

    if not exception_rules or not blocking_rules:
        raise SlimListBuildError(
            "Looks like something is wrong with the db or crawl: "
            f"got {len(exception_rules)} exception rules and {len(blocking_rules)} "
            "blocking rules. We should never have zero of either."
        )

    combined = exception_rules + blocking_rules
    logger.info("Saving slim-list with %d rules", len(combined))
    await ctx.store.write_json(args.bucket, args.key, combined, args.read_acl)
    await ctx.store.write_json(args.bucket, LATEST_KEY, combined, args.read_acl)
    return combined
