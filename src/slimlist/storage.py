"""
Object store and work queue clients.

Both wrap blocking boto3 clients; every call runs in a worker thread so the
event loop is never blocked.
"""

from __future__ import annotations
import asyncio
import json
import logging
from typing import Any, List, Optional, Union

import boto3
from botocore.config import Config as BotoConfig

from .config import AWS_REGION

logger = logging.getLogger(__name__)

_RETRY_CONFIG = BotoConfig(retries={"max_attempts": 8, "mode": "standard"})


class ObjectStore:
    """S3-backed storage for crawl manifests, reports and serialized engines."""

    def __init__(self, client=None, region: Optional[str] = AWS_REGION):
        if client is None:
            session_args = {}
            if region:
                session_args["region_name"] = region
            client = boto3.client("s3", config=_RETRY_CONFIG, **session_args)
        self.client = client

    async def read(self, bucket: str, key: str) -> bytes:
        logger.info("Reading from S3: s3://%s/%s", bucket, key)
        result = await asyncio.to_thread(self.client.get_object, Bucket=bucket, Key=key)
        body = await asyncio.to_thread(result["Body"].read)
        logger.info("Received file of type %s of size %s",
                    result.get("ContentType"), result.get("ContentLength"))
        return body

    async def write(self, bucket: str, key: str, body: Union[bytes, str],
                    acl: Optional[str] = None, content_type: Optional[str] = None) -> None:
        """Write ``body`` to ``bucket/key``.

        ``acl`` is an S3 read grant (``GrantRead``), e.g.
        ``uri="http://acs.amazonaws.com/groups/global/AuthenticatedUsers"``.
        """
        if isinstance(body, str):
            body = body.encode("utf-8")
        params = {"Bucket": bucket, "Key": key, "Body": body}
        if acl:
            params["GrantRead"] = acl
        if content_type:
            params["ContentType"] = content_type
        logger.info("Writing to S3: s3://%s/%s", bucket, key)
        await asyncio.to_thread(self.client.put_object, **params)

    async def write_json(self, bucket: str, key: str, value: Any,
                         acl: Optional[str] = None) -> None:
        await self.write(bucket, key, json.dumps(value), acl, "application/json")

    async def list(self, bucket: str, prefix: str) -> List[str]:
        """All object keys under ``prefix``, in the store's listing order."""

        def _list_keys() -> List[str]:
            keys = []
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    keys.append(obj["Key"])
            return keys

        keys = await asyncio.to_thread(_list_keys)
        logger.info("Found %d objects under s3://%s/%s", len(keys), bucket, prefix)
        return keys


class WorkQueue:
    """SQS-backed queue of pending action events."""

    def __init__(self, client=None, region: Optional[str] = AWS_REGION):
        if client is None:
            session_args = {}
            if region:
                session_args["region_name"] = region
            client = boto3.client("sqs", config=_RETRY_CONFIG, **session_args)
        self.client = client

    async def enqueue(self, queue: str, body: Union[str, dict]) -> None:
        message = body if isinstance(body, str) else json.dumps(body)
        logger.debug("Writing message %s to SQS: %s", message, queue)
        await asyncio.to_thread(self.client.send_message, QueueUrl=queue, MessageBody=message)
