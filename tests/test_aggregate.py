import pytest
from datetime import datetime, timedelta, timezone

from src.slimlist.aggregate import popular_blocking_rules, popular_exception_rules
from src.slimlist.classify import classify_requests
from src.slimlist.engine import compile_rules
from src.slimlist.ingest import record_batch_with_tags
from src.slimlist.recorder import record_page
from conftest import BATCH, make_request

OLD_BATCH = "6ba7b810-9dad-11d1-80b4-00c04fd430c8"
RULES = ["||ads.test^", "||tracker.test^", "||old.test^", "@@||tracker.test^$domain=a.test"]
NOW = datetime.now(timezone.utc)


async def _record(db, resolver, batch, created_on, request_urls):
    await record_batch_with_tags(db, resolver, batch, created_on, [])
    result = classify_requests(compile_rules(RULES), [make_request(u) for u in request_urls])
    await record_page(db, resolver, batch, "a.test", "https://a.test/", 0, 0,
                      created_on, result.allowed, result.blocked)


@pytest.fixture
def since():
    return NOW - timedelta(days=14)


class TestPopularRules:
    @pytest.mark.asyncio
    async def test_blocking_rules_ordered_by_use(self, db, resolver, since):
        await _record(db, resolver, BATCH, NOW, [
            "https://ads.test/1.js", "https://tracker.test/1.js",
            "https://ads.test/2.js", "https://cdn.test/app.js", "https://ads.test/3.js",
        ])

        rules = await popular_blocking_rules(db, since, 10)

        # excepted tracker requests still count as blocking-rule triggers
        assert rules == ["||ads.test^", "||tracker.test^"]

    @pytest.mark.asyncio
    async def test_exception_rules(self, db, resolver, since):
        await _record(db, resolver, BATCH, NOW, ["https://tracker.test/1.js", "https://ads.test/1.js"])

        assert await popular_exception_rules(db, since, 10) == ["@@||tracker.test^$domain=a.test"]

    @pytest.mark.asyncio
    async def test_old_batches_are_ignored(self, db, resolver, since):
        await _record(db, resolver, OLD_BATCH, NOW - timedelta(days=30), ["https://old.test/1.js"])
        await _record(db, resolver, BATCH, NOW, ["https://ads.test/1.js"])

        assert await popular_blocking_rules(db, since, 10) == ["||ads.test^"]

    @pytest.mark.asyncio
    async def test_limit(self, db, resolver, since):
        await _record(db, resolver, BATCH, NOW, [
            "https://ads.test/1.js", "https://ads.test/2.js", "https://tracker.test/1.js",
        ])

        assert await popular_blocking_rules(db, since, 1) == ["||ads.test^"]
        assert await popular_blocking_rules(db, since, 0) == []

    @pytest.mark.asyncio
    async def test_no_data(self, db, since):
        assert await popular_blocking_rules(db, since, 10) == []
        assert await popular_exception_rules(db, since, 10) == []
