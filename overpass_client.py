"""
overpass_client.py — Resilient Overpass API access.

One query is sent to one of several interchangeable interpreters.  Failures
are retried with endpoint rotation and backoff:

  - transport errors: try the next endpoint right away; once the list is
    exhausted, wait min(cap, attempt * 4s) and start over from the first
    endpoint, up to MAX_ATTEMPTS
  - HTTP 429: wait Retry-After (default 10s) * attempt, capped at 60s, then
    move to the next endpoint; never given up on
  - HTTP 5xx: wait min(cap, attempt * 5s), next endpoint, up to MAX_ATTEMPTS
  - undecodable body: like transport errors, but only fatal once both the
    attempt budget and the endpoint list are spent

Whatever cannot be recovered surfaces as NetworkError.
"""

import logging
import time
from typing import NamedTuple, Sequence

import requests

from config import (
    BACKOFF_CAP, HTTP_TIMEOUT_MARGIN, MAX_ATTEMPTS, MIN_DOWNLOAD_DELAY,
    NETWORK_BACKOFF_STEP, OVERPASS_ENDPOINTS, OVERPASS_TIMEOUT,
    RATE_LIMIT_CAP, RATE_LIMIT_DEFAULT_WAIT, ROAD_PREFIX, SERVER_BACKOFF_STEP,
)

logger = logging.getLogger(__name__)


# ── Errors ───────────────────────────────────────────────────────────

class FetchError(Exception):
    """Base class for everything the fetch client raises."""


class NetworkError(FetchError):
    """Retries exhausted; the run cannot continue."""


class RateLimited(FetchError):
    def __init__(self, retry_after=None):
        super().__init__(f"rate limited (retry-after={retry_after})")
        self.retry_after = retry_after


class ServerError(FetchError):
    def __init__(self, status_code):
        super().__init__(f"server error {status_code}")
        self.status_code = status_code


class MalformedResponse(FetchError):
    """The body did not decode as an Overpass JSON payload."""


class RequestRejected(FetchError):
    """A non-retryable HTTP status (4xx other than 429)."""

    def __init__(self, status_code, reason=""):
        super().__init__(f"Overpass rejected the query: {status_code} {reason}".strip())
        self.status_code = status_code


# ── Retry policy ─────────────────────────────────────────────────────

class RetryPolicy(NamedTuple):
    endpoints: Sequence[str] = tuple(OVERPASS_ENDPOINTS)
    max_attempts: int = MAX_ATTEMPTS
    network_step: float = NETWORK_BACKOFF_STEP
    server_step: float = SERVER_BACKOFF_STEP
    backoff_cap: float = BACKOFF_CAP
    rate_limit_default: float = RATE_LIMIT_DEFAULT_WAIT
    rate_limit_cap: float = RATE_LIMIT_CAP

    def network_wait(self, attempt: int) -> float:
        return min(self.backoff_cap, attempt * self.network_step)

    def server_wait(self, attempt: int) -> float:
        return min(self.backoff_cap, attempt * self.server_step)

    def rate_limit_wait(self, retry_after, attempt: int) -> float:
        seconds = _parse_retry_after(retry_after) or self.rate_limit_default
        return min(self.rate_limit_cap, seconds * attempt)


def _parse_retry_after(value):
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


# ── Client ───────────────────────────────────────────────────────────

class OverpassClient:
    """POSTs Overpass QL queries and returns the decoded JSON payload."""

    def __init__(self, policy=None, timeout=OVERPASS_TIMEOUT + HTTP_TIMEOUT_MARGIN):
        self.policy = policy or RetryPolicy()
        if not self.policy.endpoints:
            raise ValueError("No Overpass endpoints configured")
        self.timeout = timeout

    def _request(self, endpoint: str, query: str) -> dict:
        """One attempt against one endpoint.

        requests exceptions propagate untouched; everything else is mapped to
        the FetchError family.
        """
        response = requests.post(endpoint, data={"data": query}, timeout=self.timeout)
        if response.status_code == 429:
            raise RateLimited(response.headers.get("Retry-After"))
        if response.status_code >= 500:
            raise ServerError(response.status_code)
        if response.status_code != 200:
            raise RequestRejected(response.status_code, response.reason or "")
        try:
            payload = response.json()
        except ValueError as e:
            raise MalformedResponse(str(e)) from e
        if not isinstance(payload, dict) or not isinstance(payload.get("elements"), list):
            raise MalformedResponse("payload has no 'elements' array")
        return payload

    def fetch(self, query: str) -> dict:
        policy = self.policy
        endpoints = policy.endpoints
        attempt, index = 1, 0

        while True:
            endpoint = endpoints[index % len(endpoints)]
            try:
                return self._request(endpoint, query)

            except requests.exceptions.RequestException as e:
                if index < len(endpoints) - 1:
                    logger.warning(f"Network error ({e}) using {endpoint}, trying next endpoint...")
                    index += 1
                    continue
                if attempt >= policy.max_attempts:
                    raise NetworkError(f"Network error querying Overpass: {e}") from e
                wait = policy.network_wait(attempt)
                logger.warning(f"Network error ({e}) on Overpass, retrying in {wait:.0f}s...")
                time.sleep(wait)
                attempt, index = attempt + 1, 0

            except RateLimited as e:
                wait = policy.rate_limit_wait(e.retry_after, attempt)
                logger.warning(f"Overpass rate limit hit on {endpoint}, retrying in {wait:.0f}s...")
                time.sleep(wait)
                attempt, index = attempt + 1, index + 1

            except ServerError as e:
                if attempt >= policy.max_attempts:
                    raise NetworkError(f"Overpass failed after {attempt} attempts: {e}") from e
                wait = policy.server_wait(attempt)
                logger.warning(f"Overpass {e} on {endpoint}, retrying in {wait:.0f}s...")
                time.sleep(wait)
                attempt, index = attempt + 1, index + 1

            except MalformedResponse as e:
                if attempt >= policy.max_attempts and index >= len(endpoints) - 1:
                    raise NetworkError(f"Invalid Overpass response: {e}") from e
                wait = policy.network_wait(attempt)
                logger.warning(f"Invalid Overpass response ({e}), retrying in {wait:.0f}s...")
                time.sleep(wait)
                attempt, index = attempt + 1, index + 1


class DownloadThrottle:
    """Keeps successful downloads at least `min_delay` seconds apart."""

    def __init__(self, min_delay=MIN_DOWNLOAD_DELAY):
        self.min_delay = min_delay
        self.last_download = None

    def wait(self):
        if self.last_download is None:
            return
        elapsed = time.monotonic() - self.last_download
        if elapsed < self.min_delay:
            time.sleep(self.min_delay - elapsed)

    def mark(self):
        self.last_download = time.monotonic()


# ── Queries ──────────────────────────────────────────────────────────

def build_relation_query(road_id: str, timeout: int = OVERPASS_TIMEOUT) -> str:
    """Route relation for the road plus the geometry of its member ways."""
    return (f'[out:json][timeout:{timeout}];'
            f'rel["route"="road"]["ref"="{ROAD_PREFIX}{road_id}"];out body;'
            f'way(r);out geom;')


def build_ways_query(road_id: str, timeout: int = OVERPASS_TIMEOUT) -> str:
    """Every highway way tagged with the road's ref, relation or not."""
    return (f'[out:json][timeout:{timeout}];'
            f'way["highway"]["ref"="{ROAD_PREFIX}{road_id}"];out geom;')
