"""
Route action events to their handlers.

An event is a JSON object naming its ``action``, plus that action's
arguments. Queue deliveries wrap events as ``{"Records": [{"body": "..."}]}``
and are unwrapped here.
"""

from __future__ import annotations
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, NamedTuple, Optional

from ..errors import ValidationError
from . import build, crawl, crawl_dispatch, record
from .context import ActionContext

logger = logging.getLogger(__name__)


class Action(Enum):
    CRAWL_DISPATCH = "crawl-dispatch"
    CRAWL = "crawl"
    RECORD = "record"
    BUILD = "build"


class ActionHandler(NamedTuple):
    parse_args: Callable[[Mapping[str, Any]], Any]
    run: Callable[[Any, ActionContext], Awaitable[Any]]


HANDLERS: Dict[Action, ActionHandler] = {
    Action.CRAWL_DISPATCH: ActionHandler(crawl_dispatch.CrawlDispatchArgs.from_event, crawl_dispatch.run),
    Action.CRAWL: ActionHandler(crawl.CrawlArgs.from_event, crawl.run),
    Action.RECORD: ActionHandler(record.RecordArgs.from_event, record.run),
    Action.BUILD: ActionHandler(build.BuildArgs.from_event, build.run),
}


def parse_action(name: Any) -> Action:
    if not isinstance(name, str):
        raise ValidationError(f"action: expected a string, but found {type(name).__name__}.")
    try:
        return Action(name)
    except ValueError:
        known = ", ".join(a.value for a in Action)
        raise ValidationError(f"action: unknown action {name!r}, expected one of {known}.") from None


async def dispatch(event: Mapping[str, Any], ctx: Optional[ActionContext] = None) -> Any:
    """Validate ``event`` and run the action it names.

    Queue-delivered events return a list with one result per record.
    Failures are logged and re-raised so the queue can redeliver.
    """
    if ctx is None:
        ctx = ActionContext()

    if "Records" in event:
        results = []
        for queue_record in event["Records"]:
            body = queue_record["body"]
            results.append(await dispatch(json.loads(body) if isinstance(body, str) else body, ctx))
        return results

    action = parse_action(event.get("action"))
    handler = HANDLERS[action]
    args = handler.parse_args(event)
    logger.info("Running %s with %s", action.value, args)
    try:
        return await handler.run(args, ctx)
    except Exception:
        logger.exception("Action %s failed", action.value)
        raise
