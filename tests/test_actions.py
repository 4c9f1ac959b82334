import pytest
import json
from datetime import datetime, timezone

from src.slimlist.actions.crawl import report_key, same_site_links
from src.slimlist.actions.dispatcher import Action, dispatch, parse_action
from src.slimlist.engine import deserialize_engine, serialize_rules
from src.slimlist.classify import classify_requests
from src.slimlist.errors import SlimListBuildError, ValidationError
from src.slimlist.hashing import sha256_hex
from src.slimlist.ingest import record_batch_with_tags
from src.slimlist.report import PageReport, parse_report
from src.slimlist.resolver import IdResolver
from conftest import BATCH, FakeTraceProducer, make_request

BUCKET = "test-bucket"
EASYLIST = "https://lists.test/easylist.txt"
EASYLIST_TEXT = "! comment\n||ads.test^\n||tracker.test^\n@@||tracker.test^$domain=a.test\n"


async def _count(conn, table):
    row = await conn.fetchone(f"SELECT COUNT(*) FROM {table}")
    return row[0]


def _fake_get(pages):
    async def get(url):
        return pages[url]
    return get


def _write_report(store, domain, url, requests, depth=0, breadth=0):
    report = PageReport(url=url, depth=depth, breadth=breadth,
                        timestamp="2024-01-01T00:00:00Z", data=requests)
    key = report_key(BATCH, domain, depth, breadth, url)
    store.objects[(BUCKET, key)] = report.to_json().encode("utf-8")
    return key


class TestDispatcher:
    def test_parse_action(self):
        assert parse_action("crawl-dispatch") is Action.CRAWL_DISPATCH
        with pytest.raises(ValidationError):
            parse_action("assemble")
        with pytest.raises(ValidationError):
            parse_action(None)

    @pytest.mark.asyncio
    async def test_invalid_arguments_are_rejected(self, action_context):
        with pytest.raises(ValidationError, match="batch"):
            await dispatch({"action": "record", "batch": "too-short"}, action_context)

    @pytest.mark.asyncio
    async def test_queue_records_are_unwrapped(self, action_context, store):
        store.objects[(BUCKET, f"{BATCH}/domains.json")] = b'["a.test"]'
        store.objects[(BUCKET, f"{BATCH}/rules.dat")] = serialize_rules([])
        body = json.dumps({"action": "record", "batch": BATCH, "bucket": BUCKET})

        results = await dispatch({"Records": [{"body": body}]}, action_context)

        assert len(results) == 1
        assert results[0]["complete"] is True


class TestCrawlDispatch:
    @pytest.mark.asyncio
    async def test_prepares_batch_and_queues_crawls(self, db, action_context, store, queue):
        action_context.http_get = _fake_get({EASYLIST: EASYLIST_TEXT})
        event = {
            "action": "crawl-dispatch",
            "batch": BATCH,
            "domains": ["a.test", "b.test"],
            "lists": [EASYLIST],
            "tags": ["weekly"],
            "destS3Bucket": BUCKET,
            "sqsQueue": "crawl-queue",
            "depth": 2,
            "breath": 3,
        }

        manifest = await dispatch(event, action_context)

        digest = sha256_hex(EASYLIST_TEXT.strip())
        assert manifest["domains_source"] == "inline"
        assert manifest["filter_lists"] == {EASYLIST: digest}
        assert store.read_json(BUCKET, f"{BATCH}/manifest.json")["batch"] == BATCH
        assert store.read_json(BUCKET, f"{BATCH}/domains.json") == ["a.test", "b.test"]
        assert store.objects[(BUCKET, f"{BATCH}/{digest}")] == EASYLIST_TEXT.strip().encode("utf-8")

        engine = deserialize_engine(store.objects[(BUCKET, f"{BATCH}/rules.dat")])
        result = classify_requests(engine, [make_request("https://ads.test/x.js")])
        assert result.blocked[0].rule == "||ads.test^"

        assert [q for q, _ in queue.messages] == ["crawl-queue", "crawl-queue"]
        first = queue.messages[0][1]
        assert first["action"] == "crawl"
        assert first["url"] == "http://a.test"
        assert (first["depth"], first["current_depth"], first["breadth"], first["current_breadth"]) == (2, 0, 3, 0)

        assert await _count(db, "batches") == 1
        assert await _count(db, "batches_tags") == 1
        assert await _count(db, "filter_lists") == 1
        assert await _count(db, "rules") == 4

    @pytest.mark.asyncio
    async def test_tranco_domains_when_none_given(self, action_context, store):
        action_context.http_get = _fake_get({
            "https://tranco-list.eu/top-1m-id": "X1",
            "https://tranco-list.eu/download/X1/2": "1,a.test\r\n2,b.test",
            EASYLIST: EASYLIST_TEXT,
        })

        manifest = await dispatch({"action": "crawl-dispatch", "batch": BATCH, "count": 2,
                                   "lists": [EASYLIST], "destS3Bucket": BUCKET}, action_context)

        assert manifest["domains_source"] == "https://tranco-list.eu/download/X1/2"
        assert store.read_json(BUCKET, f"{BATCH}/domains.json") == ["a.test", "b.test"]


class TestCrawl:
    def _event(self, **overrides):
        event = {
            "action": "crawl",
            "batch": BATCH,
            "url": "https://a.test/",
            "domain": "a.test",
            "depth": 2,
            "current_depth": 0,
            "breadth": 2,
            "current_breadth": 0,
            "bucket": BUCKET,
            "queue": "crawl-queue",
        }
        event.update(overrides)
        return event

    def test_same_site_links(self):
        links = [
            "https://a.test/one#top",
            "https://a.test/",
            "https://www.a.test/two",
            "https://other.test/x",
            "mailto:me@a.test",
            "https://a.test/one",
            "https://a.test/three",
        ]

        assert same_site_links(links, "a.test", "https://a.test/", 2) == [
            "https://a.test/one", "https://www.a.test/two",
        ]
        assert same_site_links(links, "a.test", "https://a.test/", 0) == []

    @pytest.mark.asyncio
    async def test_writes_report_and_queues_children(self, action_context, store, queue):
        requests = [make_request("https://ads.test/x.js")]
        action_context.producer = FakeTraceProducer(
            requests=requests,
            links=["https://a.test/p1", "https://other.test/", "https://a.test/p2", "https://a.test/p3"],
        )

        key = await dispatch(self._event(), action_context)

        assert key.startswith(f"{BATCH}/data/a.test/0-0-")
        report = parse_report(store.objects[(BUCKET, key)])
        assert report.url == "https://a.test/"
        assert report.data == requests

        children = [body for _, body in queue.messages]
        assert [c["url"] for c in children] == ["https://a.test/p1", "https://a.test/p2"]
        assert [(c["current_depth"], c["current_breadth"]) for c in children] == [(1, 0), (1, 1)]

    @pytest.mark.asyncio
    async def test_last_level_queues_nothing(self, action_context, queue):
        action_context.producer = FakeTraceProducer(links=["https://a.test/p1"])

        await dispatch(self._event(current_depth=1), action_context)

        assert queue.messages == []

    @pytest.mark.asyncio
    async def test_position_past_limits_is_rejected(self, action_context):
        with pytest.raises(ValidationError, match="current_breadth"):
            await dispatch(self._event(current_breadth=5), action_context)

    @pytest.mark.asyncio
    async def test_legacy_argument_names(self, action_context):
        event = self._event()
        event.pop("breadth")
        event.pop("current_breadth")
        event.update({"breath": 1, "currentBreath": 0})

        await dispatch(event, action_context)


class TestRecord:
    async def _setup(self, db, store, domains):
        await record_batch_with_tags(db, IdResolver(db), BATCH, datetime.now(timezone.utc), [])
        store.objects[(BUCKET, f"{BATCH}/domains.json")] = json.dumps(domains).encode("utf-8")
        store.objects[(BUCKET, f"{BATCH}/rules.dat")] = serialize_rules(
            ["||ads.test^", "||tracker.test^", "@@||tracker.test^$domain=a.test"]
        )

    @pytest.mark.asyncio
    async def test_records_reports_and_queues_next_domain(self, db, action_context, store, queue):
        await self._setup(db, store, ["a.test", "b.test"])
        _write_report(store, "a.test", "https://a.test/", [
            make_request("https://ads.test/x.js"),
            make_request("https://cdn.test/app.js"),
        ])
        _write_report(store, "a.test", "https://a.test/more", [
            make_request("https://tracker.test/t.js", frame_url="https://a.test/more"),
        ], depth=1)

        progress = await dispatch({"action": "record", "batch": BATCH, "bucket": BUCKET,
                                   "queue": "record-queue"}, action_context)

        assert progress["domain"] == "a.test"
        assert progress["complete"] is False
        assert store.read_json(BUCKET, f"{BATCH}/progress.json")["index"] == 0
        assert queue.messages == [("record-queue", {
            "action": "record", "batch": BATCH, "bucket": BUCKET, "queue": "record-queue", "index": 1,
        })]

        assert await _count(db, "pages") == 2
        assert await _count(db, "requests") == 3
        row = await db.fetchone("SELECT COUNT(*) FROM requests WHERE is_blocked")
        assert row[0] == 1
        row = await db.fetchone("SELECT COUNT(*) FROM requests WHERE excepting_rule_id IS NOT NULL")
        assert row[0] == 1

    @pytest.mark.asyncio
    async def test_last_domain_completes_batch(self, db, action_context, store, queue):
        await self._setup(db, store, ["a.test", "b.test"])

        progress = await dispatch({"action": "record", "batch": BATCH, "bucket": BUCKET, "index": 1},
                                  action_context)

        assert progress["domain"] == "b.test"
        assert progress["complete"] is True
        assert queue.messages == []

    @pytest.mark.asyncio
    async def test_index_past_end(self, db, action_context, store):
        await self._setup(db, store, ["a.test"])

        with pytest.raises(ValidationError):
            await dispatch({"action": "record", "batch": BATCH, "bucket": BUCKET, "index": 3},
                           action_context)


class TestBuild:
    @pytest.mark.asyncio
    async def test_writes_dated_and_latest_lists(self, db, action_context, store):
        await TestRecord()._setup(db, store, ["a.test"])
        _write_report(store, "a.test", "https://a.test/", [
            make_request("https://ads.test/1.js"),
            make_request("https://ads.test/2.js"),
            make_request("https://tracker.test/t.js"),
        ])
        await dispatch({"action": "record", "batch": BATCH, "bucket": BUCKET}, action_context)

        rules = await dispatch({"action": "build", "s3Bucket": BUCKET, "s3Key": "slim-list/test.json"},
                               action_context)

        assert rules == ["@@||tracker.test^$domain=a.test", "||ads.test^", "||tracker.test^"]
        assert store.read_json(BUCKET, "slim-list/test.json") == rules
        assert store.read_json(BUCKET, "slim-list/latest.json") == rules

    @pytest.mark.asyncio
    async def test_max_is_shared_between_rule_kinds(self, db, action_context, store):
        await TestRecord()._setup(db, store, ["a.test"])
        _write_report(store, "a.test", "https://a.test/", [
            make_request("https://ads.test/1.js"),
            make_request("https://tracker.test/t.js"),
            make_request("https://tracker.test/u.js"),
        ])
        await dispatch({"action": "record", "batch": BATCH, "bucket": BUCKET}, action_context)

        rules = await dispatch({"action": "build", "bucket": BUCKET, "max": 2}, action_context)

        assert rules == ["@@||tracker.test^$domain=a.test", "||tracker.test^"]

    @pytest.mark.asyncio
    async def test_empty_database_is_an_error(self, action_context, store):
        with pytest.raises(SlimListBuildError):
            await dispatch({"action": "build", "bucket": BUCKET}, action_context)

        assert (BUCKET, "slim-list/latest.json") not in store.objects
