"""
Rule-trace report types and the JSON format they are stored in.

A report describes one page visit: ``{url, data, breadth, depth, timestamp}``
where ``data`` is a list of raw request tuples in the order the browser
observed them.
"""

from __future__ import annotations
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, NamedTuple, Optional, Union

from .errors import ReportFormatError


class RawRequest(NamedTuple):
    timestamp: Any
    parent_frame_id: Optional[str]
    frame_id: str
    frame_url: str
    request_type: str
    request_url: str
    response_hash: Optional[str]
    response_code: Optional[int]


class BlockedRequest(NamedTuple):
    """A request matched by a blocking rule, possibly excepted by another rule."""
    timestamp: Any
    parent_frame_id: Optional[str]
    frame_id: str
    frame_url: str
    request_type: str
    request_url: str
    response_hash: Optional[str]
    response_code: Optional[int]
    rule: str
    exception: Optional[str]

    @classmethod
    def from_raw(cls, request: RawRequest, rule: str, exception: Optional[str]) -> "BlockedRequest":
        return cls(*request, rule, exception)

    @property
    def raw(self) -> RawRequest:
        return RawRequest(*self[:8])

    @property
    def is_blocked(self) -> bool:
        """Whether the request would actually be blocked (no exception applied)."""
        return self.exception is None


def coerce_timestamp(value: Union[datetime, str, int, float, None]) -> Optional[datetime]:
    """Normalize a report timestamp to a timezone-aware datetime.

    Accepts datetimes, ISO-8601 strings (including a trailing ``Z``) and
    epoch numbers in seconds or milliseconds.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        raise ReportFormatError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if value > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ReportFormatError(f"Invalid timestamp: {value!r}") from None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ReportFormatError(f"Invalid timestamp: {value!r}")


@dataclass
class PageReport:
    url: str
    depth: int
    breadth: int
    timestamp: str
    data: List[RawRequest] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps({
            "url": self.url,
            "data": [list(request) for request in self.data],
            "breadth": self.breadth,
            "depth": self.depth,
            "timestamp": self.timestamp,
        })


def parse_report(body: Union[bytes, str]) -> PageReport:
    """Parse a stored rule-trace report.

    Older reports spell ``breadth`` as ``breath``; both are accepted.
    """
    if isinstance(body, bytes):
        body = body.decode("utf-8")
    try:
        doc = json.loads(body)
    except json.JSONDecodeError as e:
        raise ReportFormatError(f"Report is not valid JSON: {e}") from e

    if not isinstance(doc, dict):
        raise ReportFormatError("Report must be a JSON object")

    try:
        breadth = doc["breadth"] if "breadth" in doc else doc["breath"]
        requests = []
        for item in doc.get("data") or []:
            if len(item) != len(RawRequest._fields):
                raise ReportFormatError(
                    f"Expected {len(RawRequest._fields)} fields per request, found {len(item)}"
                )
            requests.append(RawRequest(*item))
        return PageReport(
            url=doc["url"],
            depth=int(doc["depth"]),
            breadth=int(breadth),
            timestamp=doc["timestamp"],
            data=requests,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ReportFormatError(f"Malformed report: {e}") from e
