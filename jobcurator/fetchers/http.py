"""
HTTP liveness probe for job posting URLs.

Classification is deliberately conservative:
- 404/410, DNS failure, connection refused -> expired
- 200 whose body contains a strong "job closed" phrase -> expired (reversible)
- timeouts, 5xx, 403 and every other ambiguous outcome -> keep active
"""

from __future__ import annotations

import asyncio
import errno
import logging
import socket
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple

import aiohttp

from jobcurator.models import DeactivationReason

logger = logging.getLogger(__name__)

# Narrow on purpose: generic words like "closed" or "expired" appear on live pages.
STRONG_CLOSED_PHRASES: Tuple[str, ...] = (
    "this job is no longer available",
    "this position has been filled",
    "this job has been closed",
    "this role has been filled",
    "job not found",
    "sorry, this job",
    "no longer accepting applications",
)


class ProbeVerdict(str, Enum):
    VALID = "valid"
    EXPIRED = "expired"
    UNCERTAIN = "uncertain"  # kept active; never evidence of closure


@dataclass
class ProbeResult:
    """Result of probing one URL."""
    url: str
    verdict: ProbeVerdict
    status: int = 0
    reason: Optional[str] = None  # DeactivationReason value when expired
    detail: str = ""
    elapsed_ms: float = 0

    @property
    def expired(self) -> bool:
        return self.verdict == ProbeVerdict.EXPIRED


def classify_status(status: int) -> Tuple[ProbeVerdict, Optional[str]]:
    """
    Classify a HEAD status code.

    A 200 is VALID here; the prober still scans its body before trusting it.
    """
    if status in (404, 410):
        return ProbeVerdict.EXPIRED, DeactivationReason.BROKEN_URL.value
    if 200 <= status < 400:
        return ProbeVerdict.VALID, None
    # 403 (bot protection), 5xx (server trouble), 401/405/429/...
    return ProbeVerdict.UNCERTAIN, None


def find_closed_phrase(body: str, phrases: Sequence[str] = STRONG_CLOSED_PHRASES) -> Optional[str]:
    """Return the first strong closed-job phrase found in the body, if any."""
    if not body:
        return None
    lowered = body.lower()
    for phrase in phrases:
        if phrase in lowered:
            return phrase
    return None


def _is_connection_failure(exc: BaseException) -> bool:
    """DNS resolution failure or connection refused."""
    dns_error = getattr(aiohttp, "ClientConnectorDNSError", None)
    if dns_error is not None and isinstance(exc, dns_error):
        return True

    os_error = getattr(exc, "os_error", None)
    if isinstance(os_error, (socket.gaierror, ConnectionRefusedError)):
        return True
    if isinstance(os_error, OSError) and os_error.errno == errno.ECONNREFUSED:
        return True
    return False


class LivenessProber:
    """
    Async HEAD/GET probe deciding whether a posting URL is still live.
    """

    USER_AGENT = "JobCuratorBot/1.0 (+liveness check)"

    def __init__(
        self,
        head_timeout_s: float = 10,
        get_timeout_s: float = 15,
        max_redirects: int = 5,
        user_agent: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.head_timeout_s = head_timeout_s
        self.get_timeout_s = get_timeout_s
        self.max_redirects = max_redirects
        self.user_agent = user_agent or self.USER_AGENT
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "LivenessProber":
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def start(self) -> None:
        """Initialize the HTTP session."""
        if self._session is None or self._session.closed:
            headers = {
                "User-Agent": self.user_agent,
                "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.9",
            }
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=10, ttl_dns_cache=300),
                headers=headers,
            )
            self._owns_session = True

    async def close(self) -> None:
        """Close the HTTP session if this prober created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    async def probe(self, url: str) -> ProbeResult:
        """
        Probe a posting URL.
        """
        if self._session is None:
            await self.start()

        start_time = time.time()

        def result(verdict: ProbeVerdict, status: int = 0, reason: Optional[str] = None,
                   detail: str = "") -> ProbeResult:
            return ProbeResult(
                url=url,
                verdict=verdict,
                status=status,
                reason=reason,
                detail=detail,
                elapsed_ms=(time.time() - start_time) * 1000,
            )

        if not url:
            return result(ProbeVerdict.UNCERTAIN, detail="No URL")

        try:
            timeout = aiohttp.ClientTimeout(total=self.head_timeout_s)
            async with self._session.head(
                url,
                timeout=timeout,
                allow_redirects=True,
                max_redirects=self.max_redirects,
            ) as resp:
                status = resp.status

        except asyncio.TimeoutError:
            return result(ProbeVerdict.UNCERTAIN, detail="Timeout")

        except aiohttp.ClientSSLError as e:
            return result(ProbeVerdict.UNCERTAIN, detail=f"SSL error: {e}")

        except aiohttp.ClientError as e:
            if _is_connection_failure(e):
                return result(
                    ProbeVerdict.EXPIRED,
                    reason=DeactivationReason.CONNECTION_FAILED.value,
                    detail=str(e),
                )
            return result(ProbeVerdict.UNCERTAIN, detail=str(e))

        except ValueError as e:
            # Malformed URL
            return result(ProbeVerdict.UNCERTAIN, detail=str(e))

        verdict, reason = classify_status(status)
        if status != 200:
            return result(verdict, status=status, reason=reason, detail=f"HTTP {status}")

        phrase = await self._scan_body(url)
        if phrase:
            return result(
                ProbeVerdict.EXPIRED,
                status=status,
                reason=DeactivationReason.CLOSED_TEXT.value,
                detail=f'Contains: "{phrase}"',
            )
        return result(ProbeVerdict.VALID, status=status, detail="HTTP 200")

    async def _scan_body(self, url: str) -> Optional[str]:
        """GET the page and look for a closed-job phrase; any failure finds nothing."""
        try:
            timeout = aiohttp.ClientTimeout(total=self.get_timeout_s)
            async with self._session.get(
                url,
                timeout=timeout,
                allow_redirects=True,
                max_redirects=self.max_redirects,
            ) as resp:
                text = await resp.text(errors="replace")
        except (asyncio.TimeoutError, aiohttp.ClientError, ValueError) as e:
            # HEAD was OK, so the record stays active
            logger.debug("Body scan failed for %s: %s", url, e)
            return None
        return find_closed_phrase(text)
