import pytest
import io
import json
from unittest.mock import MagicMock

from botocore.config import Config as BotoConfig

from src.slimlist import storage
from src.slimlist.storage import ObjectStore, WorkQueue


class TestObjectStore:
    @pytest.mark.asyncio
    async def test_read_returns_body_bytes(self):
        client = MagicMock()
        client.get_object.return_value = {"Body": io.BytesIO(b"payload"), "ContentType": "text/plain",
                                          "ContentLength": 7}
        store = ObjectStore(client=client)

        assert await store.read("bucket", "key") == b"payload"
        client.get_object.assert_called_once_with(Bucket="bucket", Key="key")

    @pytest.mark.asyncio
    async def test_write_sets_grant_and_content_type(self):
        client = MagicMock()
        store = ObjectStore(client=client)

        await store.write("bucket", "a/b.json", "{}", acl='uri="x"', content_type="application/json")

        client.put_object.assert_called_once_with(
            Bucket="bucket", Key="a/b.json", Body=b"{}", GrantRead='uri="x"', ContentType="application/json"
        )

    @pytest.mark.asyncio
    async def test_write_without_optional_params(self):
        client = MagicMock()
        store = ObjectStore(client=client)

        await store.write("bucket", "k", b"\x00\x01")

        client.put_object.assert_called_once_with(Bucket="bucket", Key="k", Body=b"\x00\x01")

    @pytest.mark.asyncio
    async def test_write_json(self):
        client = MagicMock()
        store = ObjectStore(client=client)

        await store.write_json("bucket", "k", ["a", "b"])

        kwargs = client.put_object.call_args.kwargs
        assert json.loads(kwargs["Body"]) == ["a", "b"]
        assert kwargs["ContentType"] == "application/json"

    @pytest.mark.asyncio
    async def test_list_follows_pages(self):
        client = MagicMock()
        client.get_paginator.return_value.paginate.return_value = [
            {"Contents": [{"Key": "p/1.json"}, {"Key": "p/2.json"}]},
            {"Contents": [{"Key": "p/3.json"}]},
            {},
        ]
        store = ObjectStore(client=client)

        assert await store.list("bucket", "p/") == ["p/1.json", "p/2.json", "p/3.json"]
        client.get_paginator.assert_called_once_with("list_objects_v2")
        client.get_paginator.return_value.paginate.assert_called_once_with(Bucket="bucket", Prefix="p/")


class TestWorkQueue:
    @pytest.mark.asyncio
    async def test_enqueue_serializes_dicts(self):
        client = MagicMock()
        queue = WorkQueue(client=client)

        await queue.enqueue("https://sqs.test/q", {"action": "crawl"})

        client.send_message.assert_called_once_with(QueueUrl="https://sqs.test/q",
                                                    MessageBody='{"action": "crawl"}')

    @pytest.mark.asyncio
    async def test_enqueue_passes_strings_through(self):
        client = MagicMock()
        queue = WorkQueue(client=client)

        await queue.enqueue("q", "raw")

        client.send_message.assert_called_once_with(QueueUrl="q", MessageBody="raw")


class TestClientConfig:
    @pytest.mark.parametrize("cls, service", [(ObjectStore, "s3"), (WorkQueue, "sqs")])
    def test_default_clients_use_botocore_retry_config(self, monkeypatch, cls, service):
        calls = []
        monkeypatch.setattr(storage.boto3, "client", lambda name, **kwargs: calls.append((name, kwargs)))

        cls(region="us-east-1")

        name, kwargs = calls[0]
        assert name == service
        assert kwargs["region_name"] == "us-east-1"
        assert isinstance(kwargs["config"], BotoConfig)
        assert kwargs["config"].retries == {"max_attempts": 8, "mode": "standard"}
