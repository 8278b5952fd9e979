"""Client for the events calendar REST API."""
import logging
import threading
import time
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import requests

from processor.models import ApiSourceEvent, DateRange, PagedResponse
from processor.season import season_range
from sources.exceptions import RateLimitError, SourceFetchError, SyncCancelledError
from sources.response_cache import ResponseCache

logger = logging.getLogger(__name__)


class EventsCalendarApiClient:
    """Paginated, cached and rate-limit aware client for the events API."""

    BASE_URL = "https://www.chq.org/wp-json/tribe/events/v1"
    USER_AGENT = "Chautauqua-Calendar-Sync/1.0"

    MAX_PER_PAGE = 100
    MAX_PAGES = 100
    PAGE_DELAY = 0.1  # seconds
    CHUNK_DELAY = 0.2  # seconds
    CHUNK_THRESHOLD_DAYS = 14
    MAX_RETRIES = 3
    BASE_BACKOFF = 1  # seconds
    CACHE_TTL = 300  # seconds

    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: int = 30,
        cache: Optional[ResponseCache] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the API client.

        Args:
            base_url: API root, without trailing slash
            timeout: HTTP request timeout in seconds (default: 30)
            cache: Response cache (default: a new 5-minute ResponseCache)
            session: requests session to reuse
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.cache = cache if cache is not None else ResponseCache(default_ttl=self.CACHE_TTL)
        self.session = session or requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'User-Agent': self.USER_AGENT
        })

    def get_events(
        self,
        date_range: DateRange,
        page: int = 1,
        per_page: int = MAX_PER_PAGE,
        cancel_event: Optional[threading.Event] = None
    ) -> PagedResponse:
        """
        Get one page of events for a date range.

        Pages are served from the cache while fresh.

        Raises:
            SourceFetchError: If the request fails
            RateLimitError: If the API keeps rate limiting after retries
        """
        cache_key = (date_range.start.isoformat(), date_range.end.isoformat(), page, per_page)
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Returning cached response for {cache_key}")
            return cached

        params = {
            'start_date': date_range.start.isoformat(),
            'end_date': date_range.end.isoformat(),
            'per_page': per_page,
            'page': page
        }
        payload = self._request('/events', params, cancel_event)
        try:
            response = PagedResponse.from_dict(payload)
        except (KeyError, TypeError, ValueError) as e:
            raise SourceFetchError(f"Malformed events response for page {page}: {e}") from e

        self.cache.set(cache_key, response)
        return response

    def get_all_events_in_range(
        self,
        date_range: DateRange,
        cancel_event: Optional[threading.Event] = None
    ) -> List[ApiSourceEvent]:
        """
        Get every event in a range, following pagination until the API
        stops returning a next page URL.

        Returns:
            Events in the order the API returned them
        """
        logger.info(f"Fetching all events from {date_range}")
        all_events = []
        page = 1

        while True:
            self._check_cancelled(cancel_event)
            response = self.get_events(date_range, page=page, per_page=self.MAX_PER_PAGE,
                                       cancel_event=cancel_event)
            all_events.extend(response.events)
            logger.info(
                f"Fetched page {page}: {len(response.events)} events "
                f"(total: {len(all_events)} of {response.total})"
            )

            if not response.next_rest_url:
                break
            if page >= self.MAX_PAGES:
                # A truncated listing must not look complete to cleanup
                raise SourceFetchError(
                    f"Pagination exceeded {self.MAX_PAGES} pages for {date_range}"
                )

            page += 1
            self._pause(self.PAGE_DELAY, cancel_event)

        logger.info(f"Total events fetched: {len(all_events)}")
        return all_events

    def get_season_events(
        self,
        year: int,
        cancel_event: Optional[threading.Event] = None
    ) -> List[ApiSourceEvent]:
        """Get every event in a season, one week at a time."""
        season = season_range(year)
        logger.info(f"Fetching full season events from {season}")
        return self._fetch_in_chunks(season, cancel_event)

    def get_events_with_chunking(
        self,
        date_range: DateRange,
        cancel_event: Optional[threading.Event] = None
    ) -> List[ApiSourceEvent]:
        """Get events for a range, splitting ranges over 14 days into weeks."""
        if date_range.days > self.CHUNK_THRESHOLD_DAYS:
            logger.info(f"Large date range detected ({date_range.days} days), using weekly chunking")
            return self._fetch_in_chunks(date_range, cancel_event)
        return self.get_all_events_in_range(date_range, cancel_event)

    def health_check(self) -> Dict[str, Any]:
        """Probe the API with a one-event request for today, bypassing the cache."""
        today = date.today()
        params = {
            'start_date': today.isoformat(),
            'end_date': (today + timedelta(days=1)).isoformat(),
            'per_page': 1,
            'page': 1
        }
        try:
            payload = self._request('/events', params, None)
            response = PagedResponse.from_dict(payload)
        except (KeyError, TypeError, ValueError) as e:
            return {
                'healthy': False,
                'message': f"API health check failed: malformed response: {e}"
            }
        except SourceFetchError as e:
            return {
                'healthy': False,
                'message': f"API health check failed: {e}"
            }
        return {
            'healthy': True,
            'message': f"API healthy - returned {len(response.events)} events"
        }

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("API cache cleared")

    def get_cache_stats(self) -> Dict[str, Any]:
        keys = self.cache.keys()
        return {'size': len(keys), 'keys': keys}

    def _fetch_in_chunks(
        self,
        date_range: DateRange,
        cancel_event: Optional[threading.Event]
    ) -> List[ApiSourceEvent]:
        chunks = date_range.weekly_chunks()
        logger.info(f"Splitting {date_range} into {len(chunks)} weekly chunks")
        all_events = []

        for index, chunk in enumerate(chunks):
            logger.info(f"Fetching chunk {index + 1}/{len(chunks)}: {chunk}")
            all_events.extend(self.get_all_events_in_range(chunk, cancel_event))
            if index < len(chunks) - 1:
                self._pause(self.CHUNK_DELAY, cancel_event)

        logger.info(f"Total events fetched for {date_range}: {len(all_events)}")
        return all_events

    def _request(
        self,
        path: str,
        params: Dict[str, Any],
        cancel_event: Optional[threading.Event]
    ) -> Dict[str, Any]:
        """
        GET a JSON document, retrying 429 responses with exponential backoff.

        Raises:
            SourceFetchError: On transport errors, non-2xx responses or bad JSON
            RateLimitError: When every retry was rate limited
        """
        url = f"{self.base_url}{path}"

        for attempt in range(self.MAX_RETRIES + 1):
            try:
                logger.debug(f"Making API request to {url} with {params}")
                response = self.session.get(url, params=params, timeout=self.timeout)
            except requests.RequestException as e:
                raise SourceFetchError(f"Failed to fetch events: {e}") from e

            if response.status_code == 429:
                if attempt < self.MAX_RETRIES:
                    delay = self.BASE_BACKOFF * (2 ** attempt)
                    logger.warning(
                        f"Rate limit exceeded (retry {attempt + 1}/{self.MAX_RETRIES}). "
                        f"Retrying in {delay} seconds..."
                    )
                    self._pause(delay, cancel_event)
                    continue
                logger.error(f"Rate limit still exceeded after {self.MAX_RETRIES} retries")
                raise RateLimitError(
                    f"Failed to fetch events: rate limit exceeded after {self.MAX_RETRIES} retries"
                )

            try:
                response.raise_for_status()
                return response.json()
            except requests.HTTPError as e:
                raise SourceFetchError(f"Failed to fetch events: {e}") from e
            except ValueError as e:
                raise SourceFetchError(f"Failed to decode events response: {e}") from e

    def _pause(self, seconds: float, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is None:
            time.sleep(seconds)
        elif cancel_event.wait(seconds):
            raise SyncCancelledError("Fetch cancelled")

    def _check_cancelled(self, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise SyncCancelledError("Fetch cancelled")
