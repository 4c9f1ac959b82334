"""
Shared collaborators handed to every action.
"""

from __future__ import annotations
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Optional

from ..browser import PlaywrightTraceProducer, TraceProducer
from ..database import DatabaseConfig, DatabaseConnection, create_connection
from ..fetch import fetch_text
from ..storage import ObjectStore, WorkQueue


@dataclass
class ActionContext:
    """Object store, work queue, database and browser used by the actions.

    When ``connection`` is set it is shared by all actions and left open;
    otherwise each action opens its own connection from ``database_config``
    and closes it when done.
    """
    store: ObjectStore = field(default_factory=ObjectStore)
    queue: WorkQueue = field(default_factory=WorkQueue)
    database_config: Optional[DatabaseConfig] = None
    connection: Optional[DatabaseConnection] = None
    producer: Optional[TraceProducer] = None
    http_get: Callable[[str], Awaitable[str]] = fetch_text

    @asynccontextmanager
    async def database(self) -> AsyncIterator[DatabaseConnection]:
        if self.connection is not None:
            yield self.connection
            return

        async with create_connection(self.database_config) as conn:
            yield conn

    def trace_producer(self) -> TraceProducer:
        if self.producer is None:
            self.producer = PlaywrightTraceProducer()
        return self.producer
