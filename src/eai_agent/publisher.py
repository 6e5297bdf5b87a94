"""
Report Publisher

Uploads a host report to the central collector.
"""

import asyncio
import logging
from typing import Optional

import aiohttp

from .engine import HostReport
from .report import report_to_dict

logger = logging.getLogger(__name__)

REPORTS_ENDPOINT = "/api/v1/discovery/reports"


class ReportPublisher:
    """POST host reports to the collector, retrying transient failures."""

    def __init__(
        self,
        server_url: str,
        api_key: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 30.0,
    ):
        self.server_url = server_url.rstrip('/')
        self.api_key = api_key
        self.session = session
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self.timeout = timeout

    async def publish(self, report: HostReport) -> bool:
        """
        Upload ``report``.

        Returns:
            True when the collector accepted the report, False after all
            attempts failed (never raises)
        """
        close_session = False
        session = self.session
        if session is None:
            headers = {}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            close_session = True

        url = f"{self.server_url}{REPORTS_ENDPOINT}"
        payload = report_to_dict(report)
        try:
            for attempt in range(1, self.retry_attempts + 1):
                try:
                    async with session.post(url, json=payload) as resp:
                        if 200 <= resp.status < 300:
                            logger.info(f"Report {report.metadata.run_id} published to {url}")
                            return True
                        logger.warning(f"Collector returned {resp.status} (attempt {attempt}/{self.retry_attempts})")
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    logger.warning(f"Publishing failed (attempt {attempt}/{self.retry_attempts}): {e}")

                if attempt < self.retry_attempts:
                    await asyncio.sleep(self.retry_delay * attempt)
        finally:
            if close_session:
                await session.close()

        logger.error(f"Giving up publishing report {report.metadata.run_id} to {url}")
        return False
