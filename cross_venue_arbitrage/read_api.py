"""
Balance/Price Read API client with caching, rate limiting and retry logic.

The read API wraps every payload in ``{success, data, message}``. A
non-success envelope is a data error and is not retried; transport failures
are retried with exponential backoff plus jitter and surface as
NetworkError once the retry budget is spent.
"""

import asyncio
import random
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp

from dex.types import PoolReserves

from .exceptions import DataError, NetworkError
from .interfaces import AsyncClock, SystemClock
from .models import AgentAccount
from .utils import get_logger

logger = get_logger(__name__)

POOL_RESERVES_ENDPOINT = "/pool-reserves"
AGENT_INFO_ENDPOINT = "/agent-info"

BACKOFF_BASE_SEC = 1.0
BACKOFF_JITTER_SEC = 1.0
BACKOFF_CAP_SEC = 10.0


def backoff_delay(attempt: int, jitter: float) -> float:
    """Delay before retry ``attempt`` (0-based): min(2^n + jitter, 10) seconds."""
    return min(
        BACKOFF_BASE_SEC * 2**attempt + jitter * BACKOFF_JITTER_SEC, BACKOFF_CAP_SEC
    )


class ReadApiClient:
    """
    Async client for the read API.

    Responses are cached per endpoint for ``cache_ttl`` seconds, and requests
    to the same endpoint are spaced at least ``min_request_interval`` apart.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        cache_ttl: float = 30.0,
        min_request_interval: float = 1.0,
        clock: Optional[AsyncClock] = None,
        jitter: Optional[Callable[[], float]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries
        self.cache_ttl = cache_ttl
        self.min_request_interval = min_request_interval
        self.clock = clock or SystemClock()
        self._jitter = jitter or random.random
        self._session = session
        self._owns_session = session is None

        self._cache: Dict[str, Tuple[float, Any]] = {}
        self._last_request: Dict[str, float] = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    def clear_cache(self):
        self._cache.clear()

    async def _fetch(self, url: str) -> Dict[str, Any]:
        """Single HTTP GET returning the decoded JSON body."""
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with self._get_session().get(url, headers=headers) as response:
            if response.status >= 400:
                raise NetworkError(
                    f"GET {url} returned HTTP {response.status}",
                    endpoint=url,
                    status_code=response.status,
                )
            try:
                return await response.json(content_type=None)
            except ValueError as e:
                raise DataError(f"Invalid JSON from {url}: {e}", source=url) from e

    async def _respect_rate_limit(self, endpoint: str):
        last = self._last_request.get(endpoint)
        if last is not None:
            wait = self.min_request_interval - (self.clock.now() - last)
            if wait > 0:
                await self.clock.sleep(wait)
        self._last_request[endpoint] = self.clock.now()

    async def get(self, endpoint: str, use_cache: bool = True) -> Any:
        """
        GET an endpoint and unwrap its envelope.

        Returns:
            The envelope's ``data`` field

        Raises:
            DataError: If the envelope reports failure or is malformed
            NetworkError: If the request still fails after all retries
        """
        if use_cache and endpoint in self._cache:
            stored_at, data = self._cache[endpoint]
            if self.clock.now() - stored_at < self.cache_ttl:
                logger.debug(f"Cache hit for {endpoint}")
                return data

        url = f"{self.base_url}{endpoint}"
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            await self._respect_rate_limit(endpoint)
            try:
                body = await self._fetch(url)
                break
            except (aiohttp.ClientError, NetworkError, asyncio.TimeoutError) as e:
                last_error = e
                logger.warning(
                    f"Read API call {endpoint} failed "
                    f"(attempt {attempt + 1}/{self.max_retries + 1}): {e}"
                )
                if attempt < self.max_retries:
                    await self.clock.sleep(backoff_delay(attempt, self._jitter()))
        else:
            raise NetworkError(
                f"Read API {endpoint} unavailable after {self.max_retries + 1} attempts: "
                f"{last_error}",
                endpoint=url,
                status_code=getattr(last_error, "status_code", None),
            ) from last_error

        if not isinstance(body, dict) or "success" not in body:
            raise DataError(f"Malformed response envelope from {endpoint}", source=endpoint)
        if not body.get("success"):
            raise DataError(
                f"Read API {endpoint} reported failure: {body.get('message') or 'unknown error'}",
                source=endpoint,
            )

        data = body.get("data")
        self._cache[endpoint] = (self.clock.now(), data)
        return data


class ApiPoolSource:
    """Venue pools served by the read API's ``/pool-reserves`` endpoint."""

    def __init__(self, client: ReadApiClient, venue: str = "primary"):
        self.client = client
        self.venue = venue

    async def fetch_pools(self) -> List[PoolReserves]:
        data = await self.client.get(POOL_RESERVES_ENDPOINT)
        if not isinstance(data, list):
            raise DataError("pool-reserves payload is not a list", source=self.venue)

        pools = []
        for item in data:
            try:
                pools.append(PoolReserves.from_dict(item, venue=self.venue))
            except DataError as e:
                logger.info(f"Dropping malformed pool from {self.venue}: {e}")
        return pools


class ApiAccountReader:
    """Agent configuration and balances from ``/agent-info``, never cached."""

    def __init__(
        self,
        client: ReadApiClient,
        quote_decimals: int = 6,
        token_decimals: Optional[Dict[str, int]] = None,
    ):
        self.client = client
        self.quote_decimals = quote_decimals
        self.token_decimals = token_decimals or {}

    async def read_account(self) -> AgentAccount:
        data = await self.client.get(AGENT_INFO_ENDPOINT, use_cache=False)
        if not isinstance(data, dict):
            raise DataError("agent-info payload is not an object", source="agent-info")
        return AgentAccount.from_dict(
            data, quote_decimals=self.quote_decimals, token_decimals=self.token_decimals
        )
