from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional
from urllib.parse import urljoin

import aiohttp
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import (
    CONVERTER_BASE_URL,
    CONVERTER_MAX_ATTEMPTS,
    CONVERTER_MAX_FILE_SIZE,
    CONVERTER_TIMEOUT_S,
    CONVERTER_URL,
)
from .errors import CollaboratorError
from .logging_utils import log_event
from .patterns import patterns

logger = logging.getLogger("dutyswap.roster_client")

_TRANSIENT = (aiohttp.ClientConnectionError, aiohttp.ServerTimeoutError, asyncio.TimeoutError)


def find_download_link(html: str) -> Optional[str]:
    m = patterns.DOWNLOAD_LINK.search(html or "")
    return m.group(1).strip() if m else None


class RosterConverterClient:
    """
    Client for the external PDF roster → iCalendar converter.

      - POST the roster file to CONVERTER_URL
      - read the download link from the result page
      - GET the .ics text

    Transient transport errors are retried with exponential backoff; anything
    else surfaces as CollaboratorError.
    """

    def __init__(
        self,
        convert_url: str = CONVERTER_URL,
        base_url: str = CONVERTER_BASE_URL,
        timeout_s: float = CONVERTER_TIMEOUT_S,
    ) -> None:
        self._convert_url = convert_url
        self._base_url = base_url
        self._timeout_s = timeout_s
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "RosterConverterClient":
        timeout = aiohttp.ClientTimeout(total=self._timeout_s, connect=5)
        self._session = aiohttp.ClientSession(
            headers={"User-Agent": "DutySwap/1.0"},
            timeout=timeout,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    @retry(
        stop=stop_after_attempt(CONVERTER_MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(_TRANSIENT),
        reraise=True,
    )
    async def _upload(self, filename: str, content: bytes) -> str:
        form = aiohttp.FormData()
        form.add_field("file", content, filename=filename, content_type="application/pdf")
        form.add_field("MAX_FILE_SIZE", str(CONVERTER_MAX_FILE_SIZE))
        form.add_field("alarmtime", "60")
        form.add_field("email", "")
        async with self._session.post(self._convert_url, data=form) as r:
            if r.status >= 400:
                raise CollaboratorError(f"converter upload failed: HTTP {r.status}", status=r.status)
            return await r.text()

    @retry(
        stop=stop_after_attempt(CONVERTER_MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(_TRANSIENT),
        reraise=True,
    )
    async def _download(self, url: str) -> str:
        async with self._session.get(url) as r:
            if r.status >= 400:
                raise CollaboratorError(f"converter download failed: HTTP {r.status}", status=r.status)
            return await r.text()

    async def convert(self, filename: str, content: bytes) -> str:
        """Return the converter's ICS text for an uploaded roster file."""
        if not self._session:
            raise CollaboratorError("converter session is not open")

        t0 = time.perf_counter()
        log_event(logger, "roster_convert_started", file_name=filename, size=len(content))
        try:
            page = await self._upload(filename, content)
            link = find_download_link(page)
            if not link:
                log_event(logger, "roster_convert_no_link", level=logging.ERROR, file_name=filename)
                raise CollaboratorError("Conversion failed: could not find download link")
            ics_text = await self._download(urljoin(self._base_url, link))
        except _TRANSIENT as e:
            log_event(logger, "roster_convert_failed", level=logging.ERROR, error=str(e))
            raise CollaboratorError(f"converter unreachable: {e}") from e
        except aiohttp.ClientError as e:
            log_event(logger, "roster_convert_failed", level=logging.ERROR, error=str(e))
            raise CollaboratorError(f"converter request failed: {e}") from e

        log_event(
            logger,
            "roster_convert_finished",
            file_name=filename,
            bytes=len(ics_text),
            duration_ms=int((time.perf_counter() - t0) * 1000),
        )
        return ics_text
