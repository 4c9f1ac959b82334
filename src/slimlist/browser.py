"""
Headless-browser page visits that record every network request.

Playwright is an optional dependency:
    pip install .[browser] && playwright install chromium
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from .config import PAGE_TIMEOUT, USER_AGENT
from .hashing import sha256_hex
from .report import RawRequest

logger = logging.getLogger(__name__)

# Browser resource types that the rule engine names differently
_REQUEST_TYPE_NAMES = {
    "xhr": "xmlhttprequest",
    "fetch": "xmlhttprequest",
    "eventsource": "other",
    "texttrack": "media",
    "manifest": "web_manifest",
}

_LINKS_SCRIPT = "() => Array.from(document.querySelectorAll('a[href]'), a => a.href)"


@dataclass
class PageVisit:
    url: str
    timestamp: str
    requests: List[RawRequest] = field(default_factory=list)
    links: List[str] = field(default_factory=list)


class TraceProducer(Protocol):
    async def visit(self, url: str) -> PageVisit:
        ...


def request_type_name(resource_type: str, is_sub_frame: bool = False) -> str:
    resource_type = (resource_type or "other").lower()
    if resource_type == "document" and is_sub_frame:
        return "sub_frame"
    return _REQUEST_TYPE_NAMES.get(resource_type, resource_type)


class PlaywrightTraceProducer:
    """Visit pages in headless Chromium and record the requests they make."""

    def __init__(self, timeout: int = PAGE_TIMEOUT, user_agent: str = USER_AGENT, headless: bool = True):
        self.timeout = timeout
        self.user_agent = user_agent
        self.headless = headless

    async def visit(self, url: str) -> PageVisit:
        try:
            from playwright.async_api import Error as PlaywrightError
            from playwright.async_api import async_playwright
        except ImportError as e:
            raise RuntimeError(
                "Playwright is required for crawling; install with: pip install .[browser] && playwright install chromium"
            ) from e

        frame_ids: Dict[object, str] = {}
        observed = []

        def _frame_id(frame) -> Optional[str]:
            if frame is None:
                return None
            if frame not in frame_ids:
                frame_ids[frame] = str(len(frame_ids))
            return frame_ids[frame]

        def _on_request(request) -> None:
            frame = request.frame
            frame_url = frame.url if frame.url and frame.url != "about:blank" else url
            observed.append((
                datetime.now(timezone.utc).isoformat(),
                _frame_id(frame.parent_frame),
                _frame_id(frame),
                frame_url,
                request_type_name(request.resource_type, frame.parent_frame is not None),
                request.url,
                request,
            ))

        visited_at = datetime.now(timezone.utc).isoformat()
        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=self.headless)
            context = await browser.new_context(user_agent=self.user_agent)
            page = await context.new_page()
            page.on("request", _on_request)
            try:
                await page.goto(url, timeout=self.timeout * 1000, wait_until="networkidle")
                links = await page.evaluate(_LINKS_SCRIPT)

                requests = []
                for timestamp, parent_id, frame_id, frame_url, request_type, request_url, request in observed:
                    response = await request.response()
                    response_hash = None
                    response_code = None
                    if response is not None:
                        response_code = response.status
                        try:
                            response_hash = sha256_hex(await response.body())
                        except PlaywrightError:
                            # Redirects and aborted loads have no body
                            logger.debug("No body for %s", request_url)
                    requests.append(RawRequest(timestamp, parent_id, frame_id, frame_url, request_type,
                                               request_url, response_hash, response_code))
            finally:
                await context.close()
                await browser.close()

        logger.info("Visited %s: %d requests, %d links", url, len(requests), len(links))
        return PageVisit(url=url, timestamp=visited_at, requests=requests, links=list(links))
