from __future__ import annotations
import logging
from typing import Awaitable, Callable, List, Optional, Tuple

import aiohttp

from .config import HTTP_TIMEOUT, USER_AGENT
from .hashing import sha256_hex

logger = logging.getLogger(__name__)

TRANCO_ID_URL = "https://tranco-list.eu/top-1m-id"
TRANCO_DOWNLOAD_URL = "https://tranco-list.eu/download/{list_id}/{count}"

TextGetter = Callable[[str], Awaitable[str]]


async def fetch_text(url: str, session: Optional[aiohttp.ClientSession] = None) -> str:
    """GET ``url`` and return the body as text. Non-2xx responses raise."""
    if session is None:
        timeout = aiohttp.ClientTimeout(total=HTTP_TIMEOUT)
        async with aiohttp.ClientSession(headers={"User-Agent": USER_AGENT}, timeout=timeout) as session:
            return await fetch_text(url, session)

    async with session.get(url, allow_redirects=True) as resp:
        resp.raise_for_status()
        return await resp.text(errors="ignore")


async def fetch_filter_list(url: str, get: TextGetter = fetch_text) -> Tuple[str, str]:
    """Fetch a filter list; returns ``(text, sha256)`` of the trimmed text."""
    logger.info("Fetching filter list: %s", url)
    text = (await get(url)).strip()
    return text, sha256_hex(text)


def parse_tranco_csv(body: str) -> List[str]:
    """Domains from a Tranco ``rank,domain`` CSV, in rank order."""
    domains = []
    for line in body.strip().splitlines():
        parts = line.strip().split(",")
        if len(parts) >= 2 and parts[1]:
            domains.append(parts[1])
    return domains


async def fetch_tranco_domains(count: int, get: TextGetter = fetch_text) -> Tuple[str, List[str]]:
    """Top ``count`` domains of the current Tranco list, with the list's URL."""
    list_id = (await get(TRANCO_ID_URL)).strip()
    list_url = TRANCO_DOWNLOAD_URL.format(list_id=list_id, count=count)
    logger.info("Fetching %d domains from Tranco list %s", count, list_url)
    domains = parse_tranco_csv(await get(list_url))
    return list_url, domains
