"""
Apply a compiled rule engine to the requests observed on one page.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Iterable, List

import adblock

from .report import BlockedRequest, RawRequest

logger = logging.getLogger(__name__)


@dataclass
class Classification:
    """Requests split by whether a blocking rule matched them.

    ``blocked`` also holds requests whose blocking rule was overridden by an
    exception rule, so that every rule trigger can be counted later. Such
    entries carry a non-null ``exception`` and are not blocked in practice.
    """
    allowed: List[RawRequest] = field(default_factory=list)
    blocked: List[BlockedRequest] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.allowed) + len(self.blocked)


def classify_requests(engine: adblock.Engine, requests: Iterable[RawRequest]) -> Classification:
    """Partition ``requests`` into allowed and blocked, preserving input order."""
    result = Classification()

    for request in requests:
        request = RawRequest(*request)
        match = engine.check_network_urls(
            url=request.request_url,
            source_url=request.frame_url,
            request_type=request.request_type,
        )

        # The engine reports matched=False when an exception overrides the
        # blocking filter, but still names that filter.
        if match.filter is None:
            logger.debug("Would not block %s in frame %s of type %s",
                         request.request_url, request.frame_url, request.request_type)
            result.allowed.append(request)
            continue

        logger.debug("Would block %s in frame %s of type %s with rule %s",
                     request.request_url, request.frame_url, request.request_type, match.filter)
        if match.exception is not None:
            logger.debug("...but excepted by %s", match.exception)

        result.blocked.append(BlockedRequest.from_raw(request, match.filter, match.exception))

    logger.info("Would block %d requests, allow %d requests",
                len(result.blocked), len(result.allowed))
    return result
