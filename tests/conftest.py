import pytest
import pytest_asyncio
import json
import os
import sys

# Add the repository root to python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from src.slimlist.actions.context import ActionContext
from src.slimlist.browser import PageVisit
from src.slimlist.database import DatabaseConfig, SQLiteConnection
from src.slimlist.report import RawRequest
from src.slimlist.resolver import IdResolver
from src.slimlist.schema import init_db

BATCH = "0f8fad5b-d9cb-469f-a165-70867728950e"


class FakeObjectStore:
    """In-memory stand-in for the S3 object store."""

    def __init__(self):
        self.objects = {}
        self.acls = {}

    async def read(self, bucket, key):
        return self.objects[(bucket, key)]

    async def write(self, bucket, key, body, acl=None, content_type=None):
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.objects[(bucket, key)] = body
        self.acls[(bucket, key)] = acl

    async def write_json(self, bucket, key, value, acl=None):
        await self.write(bucket, key, json.dumps(value), acl, "application/json")

    async def list(self, bucket, prefix):
        return sorted(k for b, k in self.objects if b == bucket and k.startswith(prefix))

    def read_json(self, bucket, key):
        return json.loads(self.objects[(bucket, key)].decode("utf-8"))


class FakeWorkQueue:
    def __init__(self):
        self.messages = []

    async def enqueue(self, queue, body):
        self.messages.append((queue, body if isinstance(body, dict) else json.loads(body)))


class FakeTraceProducer:
    def __init__(self, requests=None, links=None):
        self.requests = requests or []
        self.links = links or []
        self.visited = []

    async def visit(self, url):
        self.visited.append(url)
        return PageVisit(url=url, timestamp="2024-01-01T00:00:00Z",
                         requests=list(self.requests), links=list(self.links))


def make_request(request_url, frame_url="https://a.test/", request_type="script",
                 frame_id="f1", parent_frame_id=None, timestamp="2024-01-01T00:00:01Z"):
    return RawRequest(timestamp, parent_frame_id, frame_id, frame_url, request_type,
                      request_url, "h1", 200)


@pytest.fixture
def sqlite_path(tmp_path):
    return str(tmp_path / "slim-list.db")


@pytest.fixture
def sqlite_config(sqlite_path):
    return DatabaseConfig(backend="sqlite", sqlite_path=sqlite_path)


@pytest_asyncio.fixture
async def db(sqlite_path):
    conn = await SQLiteConnection(sqlite_path).connect()
    await init_db(conn)
    yield conn
    await conn.close()


@pytest.fixture
def resolver(db):
    return IdResolver(db)


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def queue():
    return FakeWorkQueue()


@pytest.fixture
def action_context(db, store, queue):
    return ActionContext(store=store, queue=queue, connection=db,
                         producer=FakeTraceProducer())
