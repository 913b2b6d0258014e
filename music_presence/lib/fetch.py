"""
HTTP fetch helpers shared by the station lookup and now-playing refresh.

Redirects are followed by hand so every hop goes through the same status
check: anything other than a 200 at the end of the chain is a FetchError.
"""

import asyncio
import json
import logging
from urllib.parse import urljoin

import aiohttp

from .errors import FetchError

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 10.0  # seconds
MAX_REDIRECTS = 5
REDIRECT_STATUSES = (301, 302, 303, 307, 308)
USER_AGENT = "music-presence/1.0"


def create_session(timeout: float = DEFAULT_FETCH_TIMEOUT) -> aiohttp.ClientSession:
    """Create the shared client session used for all outbound fetches."""
    return aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=timeout),
        headers={"User-Agent": USER_AGENT},
    )


async def fetch_text(session: aiohttp.ClientSession, url: str,
                     timeout: float = DEFAULT_FETCH_TIMEOUT) -> str:
    """GET *url* and return the body text.

    Raises FetchError on network failure, timeout, too many redirects, or a
    final status other than 200.
    """
    current = url
    for _ in range(MAX_REDIRECTS + 1):
        try:
            async with session.get(
                current,
                allow_redirects=False,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                if resp.status in REDIRECT_STATUSES and "Location" in resp.headers:
                    target = urljoin(current, resp.headers["Location"])
                    logger.debug("Redirect %d: %s -> %s", resp.status, current, target)
                    current = target
                    continue
                if resp.status != 200:
                    raise FetchError(f"HTTP {resp.status} for {current}",
                                     url=current, status=resp.status)
                try:
                    return await resp.text()
                except UnicodeDecodeError as e:
                    raise FetchError(f"Undecodable body from {current}: {e}", url=current) from e
        except asyncio.TimeoutError as e:
            raise FetchError(f"Timed out fetching {current}", url=current) from e
        except aiohttp.ClientError as e:
            raise FetchError(f"Request failed for {current}: {e}", url=current) from e

    raise FetchError(f"Too many redirects fetching {url}", url=url)


async def fetch_json(session: aiohttp.ClientSession, url: str,
                     timeout: float = DEFAULT_FETCH_TIMEOUT):
    """GET *url* and decode the body as JSON. Invalid JSON is a FetchError."""
    text = await fetch_text(session, url, timeout=timeout)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise FetchError(f"Invalid JSON from {url}: {e}", url=url) from e
