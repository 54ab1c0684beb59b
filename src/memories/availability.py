"""ImageAvailabilityChecker — does an image URL actually load?"""

from __future__ import annotations

import asyncio
import logging

import httpx

from src.config import settings

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "AnniversaryMemories/1.0 (Image Check)"


class ImageAvailabilityChecker:
    """Resolves a URL to True when it serves an image within the timeout.

    Never raises: network errors, non-2xx statuses, non-image content and
    timeouts all report False.  No retries; callers decide on retry policy.
    """

    def __init__(
        self,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout if timeout is not None else settings.image_check_timeout
        self._transport = transport

    async def check_loads(self, url: str | None) -> bool:
        if not url:
            return False
        try:
            return await asyncio.wait_for(self._fetch(url), timeout=self.timeout)
        except TimeoutError:
            logger.info("Image check timed out after %.1fs: %s", self.timeout, url)
            return False
        except Exception as exc:
            logger.info("Image check failed for %s: %s", url, exc)
            return False

    async def _fetch(self, url: str) -> bool:
        headers = {"User-Agent": DEFAULT_USER_AGENT}
        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=True, transport=self._transport
        ) as client:
            async with client.stream("GET", url, headers=headers) as resp:
                if resp.status_code != 200:
                    logger.debug("Image check %s: HTTP %d", url, resp.status_code)
                    return False
                content_type = resp.headers.get("content-type", "").lower()
                if content_type and not content_type.startswith("image/"):
                    logger.debug("Image check %s: not an image (%s)", url, content_type)
                    return False
                return True
