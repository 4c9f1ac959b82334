"""
Schema definitions for the slim-list measurement database.

The PostgreSQL schema is the production one; the SQLite schema mirrors it
with SQLite types and is used for local runs and tests.
"""

from __future__ import annotations
import logging
from typing import List

from .database import DatabaseConnection

logger = logging.getLogger(__name__)


POSTGRES_SCHEMA = """
-- Reference tables. Hashed tables are unique on the digest of their text
CREATE TABLE IF NOT EXISTS batches (
    id SERIAL PRIMARY KEY,
    batch TEXT UNIQUE NOT NULL,
    created_on TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS tags (
    id SERIAL PRIMARY KEY,
    name TEXT UNIQUE NOT NULL
);

CREATE TABLE IF NOT EXISTS batches_tags (
    id SERIAL PRIMARY KEY,
    batch_id INTEGER NOT NULL REFERENCES batches (id),
    tag_id INTEGER NOT NULL REFERENCES tags (id),
    UNIQUE (batch_id, tag_id)
);

CREATE TABLE IF NOT EXISTS domains (
    id SERIAL PRIMARY KEY,
    domain TEXT NOT NULL,
    sha256 TEXT UNIQUE NOT NULL
);

CREATE TABLE IF NOT EXISTS urls (
    id SERIAL PRIMARY KEY,
    url TEXT NOT NULL,
    sha256 TEXT UNIQUE NOT NULL
);

CREATE TABLE IF NOT EXISTS rules (
    id SERIAL PRIMARY KEY,
    rule TEXT NOT NULL,
    sha256 TEXT UNIQUE NOT NULL
);

CREATE TABLE IF NOT EXISTS request_types (
    id SERIAL PRIMARY KEY,
    name TEXT NOT NULL,
    sha256 TEXT UNIQUE NOT NULL
);

-- Filter list snapshots and the dates they were fetched on
CREATE TABLE IF NOT EXISTS filter_lists (
    id SERIAL PRIMARY KEY,
    url_id INTEGER NOT NULL REFERENCES urls (id),
    sha256 TEXT UNIQUE NOT NULL
);

CREATE TABLE IF NOT EXISTS filter_lists_rules (
    id SERIAL PRIMARY KEY,
    filter_list_id INTEGER NOT NULL REFERENCES filter_lists (id),
    rule_id INTEGER NOT NULL REFERENCES rules (id),
    UNIQUE (filter_list_id, rule_id)
);

CREATE TABLE IF NOT EXISTS dates (
    id SERIAL PRIMARY KEY,
    fetched_on TIMESTAMP WITH TIME ZONE NOT NULL
);

CREATE TABLE IF NOT EXISTS dates_filter_lists (
    id SERIAL PRIMARY KEY,
    date_id INTEGER NOT NULL REFERENCES dates (id),
    filter_list_id INTEGER NOT NULL REFERENCES filter_lists (id)
);

-- Crawl results
CREATE TABLE IF NOT EXISTS pages (
    id SERIAL PRIMARY KEY,
    url_id INTEGER NOT NULL REFERENCES urls (id),
    domain_id INTEGER NOT NULL REFERENCES domains (id),
    batch_id INTEGER NOT NULL REFERENCES batches (id),
    depth INTEGER NOT NULL CHECK (depth >= 0),
    breadth INTEGER NOT NULL CHECK (breadth >= 0),
    crawled_on TIMESTAMP WITH TIME ZONE
);

CREATE INDEX IF NOT EXISTS idx_pages_batch_id ON pages(batch_id);

-- chrome_parent_frame_id is the browser's transient id, not a foreign key
CREATE TABLE IF NOT EXISTS frames (
    id SERIAL PRIMARY KEY,
    page_id INTEGER NOT NULL REFERENCES pages (id),
    url_id INTEGER NOT NULL REFERENCES urls (id),
    chrome_frame_id TEXT NOT NULL,
    chrome_parent_frame_id TEXT
);

CREATE INDEX IF NOT EXISTS idx_frames_page_id ON frames(page_id);

CREATE TABLE IF NOT EXISTS requests (
    id SERIAL PRIMARY KEY,
    url_id INTEGER NOT NULL REFERENCES urls (id),
    frame_id INTEGER NOT NULL REFERENCES frames (id),
    request_type_id INTEGER NOT NULL REFERENCES request_types (id),
    is_blocked BOOLEAN NOT NULL,
    rule_id INTEGER REFERENCES rules (id),
    excepting_rule_id INTEGER REFERENCES rules (id),
    response_sha256 TEXT,
    requested_at TIMESTAMP WITH TIME ZONE,
    CHECK (NOT is_blocked OR rule_id IS NOT NULL),
    CHECK (excepting_rule_id IS NULL OR rule_id IS NOT NULL)
);

CREATE INDEX IF NOT EXISTS idx_requests_frame_id ON requests(frame_id);
CREATE INDEX IF NOT EXISTS idx_requests_rule_id ON requests(rule_id);
CREATE INDEX IF NOT EXISTS idx_requests_excepting_rule_id ON requests(excepting_rule_id)
"""


SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS batches (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  batch TEXT UNIQUE NOT NULL,
  created_on TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now'))
);

CREATE TABLE IF NOT EXISTS tags (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT UNIQUE NOT NULL
);

CREATE TABLE IF NOT EXISTS batches_tags (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  batch_id INTEGER NOT NULL,
  tag_id INTEGER NOT NULL,
  FOREIGN KEY (batch_id) REFERENCES batches (id),
  FOREIGN KEY (tag_id) REFERENCES tags (id),
  UNIQUE (batch_id, tag_id)
);

CREATE TABLE IF NOT EXISTS domains (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  domain TEXT NOT NULL,
  sha256 TEXT UNIQUE NOT NULL
);

CREATE TABLE IF NOT EXISTS urls (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  url TEXT NOT NULL,
  sha256 TEXT UNIQUE NOT NULL
);

CREATE TABLE IF NOT EXISTS rules (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  rule TEXT NOT NULL,
  sha256 TEXT UNIQUE NOT NULL
);

CREATE TABLE IF NOT EXISTS request_types (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  sha256 TEXT UNIQUE NOT NULL
);

CREATE TABLE IF NOT EXISTS filter_lists (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  url_id INTEGER NOT NULL,
  sha256 TEXT UNIQUE NOT NULL,
  FOREIGN KEY (url_id) REFERENCES urls (id)
);

CREATE TABLE IF NOT EXISTS filter_lists_rules (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  filter_list_id INTEGER NOT NULL,
  rule_id INTEGER NOT NULL,
  FOREIGN KEY (filter_list_id) REFERENCES filter_lists (id),
  FOREIGN KEY (rule_id) REFERENCES rules (id),
  UNIQUE (filter_list_id, rule_id)
);

CREATE TABLE IF NOT EXISTS dates (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  fetched_on TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS dates_filter_lists (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  date_id INTEGER NOT NULL,
  filter_list_id INTEGER NOT NULL,
  FOREIGN KEY (date_id) REFERENCES dates (id),
  FOREIGN KEY (filter_list_id) REFERENCES filter_lists (id)
);

CREATE TABLE IF NOT EXISTS pages (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  url_id INTEGER NOT NULL,
  domain_id INTEGER NOT NULL,
  batch_id INTEGER NOT NULL,
  depth INTEGER NOT NULL CHECK (depth >= 0),
  breadth INTEGER NOT NULL CHECK (breadth >= 0),
  crawled_on TEXT,
  FOREIGN KEY (url_id) REFERENCES urls (id),
  FOREIGN KEY (domain_id) REFERENCES domains (id),
  FOREIGN KEY (batch_id) REFERENCES batches (id)
);

CREATE INDEX IF NOT EXISTS idx_pages_batch_id ON pages(batch_id);

CREATE TABLE IF NOT EXISTS frames (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  page_id INTEGER NOT NULL,
  url_id INTEGER NOT NULL,
  chrome_frame_id TEXT NOT NULL,
  chrome_parent_frame_id TEXT,
  FOREIGN KEY (page_id) REFERENCES pages (id),
  FOREIGN KEY (url_id) REFERENCES urls (id)
);

CREATE INDEX IF NOT EXISTS idx_frames_page_id ON frames(page_id);

CREATE TABLE IF NOT EXISTS requests (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  url_id INTEGER NOT NULL,
  frame_id INTEGER NOT NULL,
  request_type_id INTEGER NOT NULL,
  is_blocked BOOLEAN NOT NULL,
  rule_id INTEGER,
  excepting_rule_id INTEGER,
  response_sha256 TEXT,
  requested_at TEXT,
  FOREIGN KEY (url_id) REFERENCES urls (id),
  FOREIGN KEY (frame_id) REFERENCES frames (id),
  FOREIGN KEY (request_type_id) REFERENCES request_types (id),
  FOREIGN KEY (rule_id) REFERENCES rules (id),
  FOREIGN KEY (excepting_rule_id) REFERENCES rules (id),
  CHECK (NOT is_blocked OR rule_id IS NOT NULL),
  CHECK (excepting_rule_id IS NULL OR rule_id IS NOT NULL)
);

CREATE INDEX IF NOT EXISTS idx_requests_frame_id ON requests(frame_id);
CREATE INDEX IF NOT EXISTS idx_requests_rule_id ON requests(rule_id);
CREATE INDEX IF NOT EXISTS idx_requests_excepting_rule_id ON requests(excepting_rule_id)
"""


def _split_statements(schema: str) -> List[str]:
    """Split a schema script into individual statements, dropping comment-only chunks."""
    statements = []
    for chunk in schema.split(";\n"):
        lines = [line for line in chunk.splitlines() if line.strip() and not line.strip().startswith("--")]
        if lines:
            statements.append("\n".join(lines))
    return statements


def get_schema_statements(backend: str) -> List[str]:
    """Get the schema statements for the given backend."""
    if backend == "postgresql":
        return _split_statements(POSTGRES_SCHEMA)
    if backend == "sqlite":
        return _split_statements(SQLITE_SCHEMA)
    raise ValueError(f"Unsupported database backend: {backend}")


async def init_db(conn: DatabaseConnection) -> None:
    """Create all tables and indexes if they do not exist yet.

    Uses CREATE ... IF NOT EXISTS, so existing tables and data are preserved.
    """
    statements = get_schema_statements(conn.backend)
    for statement in statements:
        await conn.execute(statement)
    logger.info("Ensured %d schema statements on %s", len(statements), conn.backend)
