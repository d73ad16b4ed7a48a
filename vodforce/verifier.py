import asyncio
import logging
from contextlib import asynccontextmanager

import aiohttp

from vodforce.models import Hit, Miss, TransientFailure
from vodforce.playlist import is_media_playlist

logger = logging.getLogger(__name__)

MISS_STATUSES = (403, 404)


def is_retryable_status(status):
    return status == 429 or status >= 500


def open_session(config):
    connector = aiohttp.TCPConnector(limit=config.threads, enable_cleanup_closed=True)
    return aiohttp.ClientSession(connector=connector)


class Verifier:
    """Classifies one candidate URL as a Hit, a Miss or a TransientFailure.

    ``validate`` receives the response body of a 200 and decides between Hit
    and Miss; with ``validate=None`` the body is not read and any 200 is a Hit.
    """

    def __init__(self, session, config, method="GET", validate=is_media_playlist):
        self.session = session
        self.config = config
        self.method = method
        self.validate = validate

    async def verify(self, url, value=None):
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)
        try:
            async with self.session.request(self.method, url, timeout=timeout) as response:
                status = response.status
                if status == 200:
                    if self.validate is None:
                        return Hit(url, value)
                    body = await response.text(errors="replace")
                    if self.validate(body):
                        return Hit(url, value)
                    logger.debug("200 without a playlist - %s", url)
                    return Miss(url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return TransientFailure(url, f"{type(e).__name__}: {e}")

        if status in MISS_STATUSES:
            return Miss(url)
        if is_retryable_status(status):
            logger.debug("You might be getting throttled! Status code: %d - URL: %s", status, url)
            return TransientFailure(url, f"HTTP {status}")
        logger.debug("Unexpected status code %d - %s", status, url)
        return Miss(url)

    async def verify_with_retry(self, url, value=None, halted=None):
        """Retry transient failures with exponential backoff.

        Returns the last TransientFailure once the budget is spent or ``halted()``
        turns true, so the caller can count the candidate as degraded.
        """
        retries = self.config.retries
        for attempt in range(retries + 1):
            outcome = await self.verify(url, value)
            if not isinstance(outcome, TransientFailure):
                return outcome
            if attempt == retries or (halted is not None and halted()):
                break
            delay = self.config.backoff(attempt)
            logger.debug("Retrying %s in %.2fs (%s)", url, delay, outcome.reason)
            await asyncio.sleep(delay)
        logger.debug("Giving up on %s - %s", url, outcome.reason)
        return outcome


@asynccontextmanager
async def verifier_for(config, verifier=None, **options):
    """Use ``verifier`` as is, or open a session and build one for the search."""
    if verifier is not None:
        yield verifier
        return
    async with open_session(config) as session:
        yield Verifier(session, config, **options)
