"""Search API fetcher.

Issues one search request per call and returns the matching statuses as
candidates. Failures are reported as ``UpstreamError`` and never retried
here; the next scheduled pass is the retry.
"""

from typing import List, Optional

import httpx

from postpulse.core.errors import UpstreamError
from postpulse.core.logging import get_logger
from postpulse.core.schemas import CandidatePost
from postpulse.core.settings import Settings, get_settings
from postpulse.core.time import utcnow
from postpulse.ingestor.normalizer import normalize_statuses

logger = get_logger(__name__)

# Hard ceiling of the search endpoint
MAX_RESULTS = 100
RESULT_TYPE = "mixed"


class SearchFetcher:
    """Fetches recent and popular statuses for a search query."""

    def __init__(
        self,
        api_url: str,
        bearer_token: Optional[str] = None,
        consumer_key: Optional[str] = None,
        consumer_secret: Optional[str] = None,
        token_url: Optional[str] = None,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url
        self.token_url = token_url
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self._bearer_token = bearer_token or None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": "PostPulse/0.1"},
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "SearchFetcher":
        settings = settings or get_settings()
        return cls(
            api_url=settings.search_api_url,
            bearer_token=settings.twitter_bearer_token,
            consumer_key=settings.twitter_consumer_key,
            consumer_secret=settings.twitter_consumer_secret,
            token_url=settings.search_token_url,
            timeout=settings.fetch_timeout_seconds,
            **kwargs,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _get_bearer_token(self, query: str) -> str:
        """
        Get the app-only bearer token.

        Uses the configured token, or exchanges the consumer key and secret
        for one with the client-credentials grant and caches it.
        """
        if self._bearer_token:
            return self._bearer_token

        if not (self.consumer_key and self.consumer_secret and self.token_url):
            raise UpstreamError(query, "no search API credentials configured")

        try:
            response = await self.client.post(
                self.token_url,
                data={"grant_type": "client_credentials"},
                auth=(self.consumer_key, self.consumer_secret),
            )
        except httpx.TimeoutException as e:
            raise UpstreamError(query, f"token request timed out: {type(e).__name__}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(query, f"token request error: {e}") from e

        if response.status_code != 200:
            raise UpstreamError(
                query,
                f"token request rejected: HTTP {response.status_code}",
                response.status_code,
            )

        try:
            token = response.json().get("access_token")
        except ValueError as e:
            raise UpstreamError(query, "token response is not JSON") from e

        if not token:
            raise UpstreamError(query, "token response without access_token")

        self._bearer_token = token
        logger.info("Obtained search API bearer token")
        return token

    async def fetch(self, query: str) -> List[CandidatePost]:
        """
        Fetch one page of statuses matching ``query``.

        Args:
            query: Search expression, may include exclusion filters

        Returns:
            Up to 100 candidates, in the order the API returned them

        Raises:
            ValueError: if the query is empty
            UpstreamError: on network, auth or rate-limit failures
        """
        if not query or not query.strip():
            raise ValueError("Search query must not be empty")

        token = await self._get_bearer_token(query)
        params = {"q": query, "result_type": RESULT_TYPE, "count": MAX_RESULTS}

        logger.info(f"Fetching statuses for query {query!r}")
        try:
            response = await self.client.get(
                self.api_url,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as e:
            raise UpstreamError(query, f"request timed out: {type(e).__name__}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(query, f"request error: {e}") from e

        if response.status_code in (401, 403):
            # Drop a cached token so the next pass can re-authenticate
            if self.consumer_key and self.consumer_secret:
                self._bearer_token = None
            raise UpstreamError(query, f"authentication failed: HTTP {response.status_code}", response.status_code)

        if response.status_code == 429:
            reset = response.headers.get("x-rate-limit-reset")
            detail = f", resets at {reset}" if reset else ""
            raise UpstreamError(query, f"rate limited{detail}", 429)

        if response.status_code != 200:
            raise UpstreamError(query, f"HTTP {response.status_code}", response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamError(query, "response is not JSON", response.status_code) from e

        statuses = payload.get("statuses") if isinstance(payload, dict) else None
        if not isinstance(statuses, list):
            raise UpstreamError(query, "response without statuses list", response.status_code)

        candidates = normalize_statuses(statuses[:MAX_RESULTS], fetched_at=utcnow())
        logger.info(
            f"Fetched {len(candidates)} candidates for query {query!r}",
            extra={"query": query, "statuses": len(statuses), "candidates": len(candidates)}
        )
        return candidates
