import argparse, asyncio, json, sys

from src.slimlist.actions.context import ActionContext
from src.slimlist.actions.dispatcher import Action, dispatch
from src.slimlist.config import DEBUG, VERBOSE, configure_logging, get_database_config
from src.slimlist.database import create_connection
from src.slimlist.schema import init_db


async def _init_db():
    async with create_connection(get_database_config()) as conn:
        await init_db(conn)


async def _run(event, init_schema: bool):
    if init_schema:
        await _init_db()
    return await dispatch(event, ActionContext())


if __name__ == "__main__":
    p = argparse.ArgumentParser(
        description="Slim-list measurement pipeline: dispatch crawls, crawl pages, record results and build the slim list",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s event.json
  echo '{"action": "crawl-dispatch", "domains": ["example.com"]}' | %(prog)s -
  %(prog)s --action build --init-db
  SLIMLIST_DB_BACKEND=sqlite %(prog)s --action record --batch 2f1c...-... --index 0
        """
    )

    p.add_argument("event", nargs="?", default=None,
                   help="Path to a JSON event file, or '-' for stdin (optional when using --action)")
    p.add_argument("--action", choices=[a.value for a in Action], default=None,
                   help="Action to run; overrides the event's action")
    p.add_argument("--batch", type=str, default=None,
                   help="Batch id; overrides the event's batch")
    p.add_argument("--index", type=int, default=None,
                   help="Domain index for the record action")
    p.add_argument("--init-db", action="store_true",
                   help="Create missing tables and indexes before running")
    p.add_argument("--debug", action="store_true", default=DEBUG,
                   help="Log pipeline progress (same as DEBUG=1)")
    p.add_argument("--verbose", action="store_true", default=VERBOSE,
                   help="Log per-request tracing (same as VERBOSE=1)")

    args = p.parse_args()
    configure_logging(debug=args.debug, verbose=args.verbose)

    event = {}
    if args.event == "-":
        event = json.load(sys.stdin)
    elif args.event:
        with open(args.event, "r", encoding="utf-8") as f:
            event = json.load(f)

    if args.action:
        event["action"] = args.action
    if args.batch:
        event["batch"] = args.batch
    if args.index is not None:
        event["index"] = args.index

    if not event.get("action") and "Records" not in event:
        p.error("an event file or --action is required")

    result = asyncio.run(_run(event, args.init_db))
    if result is not None:
        print(json.dumps(result, indent=2, default=str))
