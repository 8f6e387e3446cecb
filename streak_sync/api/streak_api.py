"""
Streak API wrapper for pipeline synchronization.

Provides a read-only interface to the Streak CRM API for:
- Fetching pipeline metadata (used to validate configuration)
- Fetching the full box list of a pipeline
- Exponential backoff retry logic for rate limits and server errors

Nothing in this module writes to the remote service.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

import requests
from requests.exceptions import RequestException

from streak_sync import __version__
from streak_sync.sync.box import BoxFormatError, RemoteBox

DEFAULT_BASE_URL = "https://www.streak.com/api/v1"

# HTTP timeout for each request, in seconds
DEFAULT_TIMEOUT = 30.0

# Retry configuration defaults
DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_RETRY_DELAY = 1.0  # seconds
DEFAULT_MAX_RETRY_DELAY = 60.0  # seconds

logger = logging.getLogger(__name__)


class StreakAPIError(Exception):
    """Raised when a Streak API operation fails."""

    pass


class AuthenticationError(StreakAPIError):
    """Raised when the API key is rejected (401/403)."""

    pass


class RateLimitError(StreakAPIError):
    """Raised when rate limit is exceeded and retries are exhausted."""

    pass


class MalformedResponseError(StreakAPIError):
    """Raised when a response body does not have the expected shape."""

    pass


class StreakAPI:
    """
    Streak API wrapper for the read operations a sync run needs.

    Attributes:
        api_key: Streak API key (sent as the basic-auth username)
        base_url: API root URL

    Usage:
        api = StreakAPI(api_key)

        # Validate a pipeline key
        pipeline = api.fetch_pipeline(pipeline_key)

        # Fetch every box in the pipeline
        boxes = api.fetch_boxes(pipeline_key)
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
        session: requests.Session | None = None,
    ):
        """
        Initialize the Streak API wrapper.

        Args:
            api_key: Streak API key
            base_url: API root URL (default https://www.streak.com/api/v1)
            timeout: Per-request timeout in seconds (default 30)
            max_retries: Maximum attempts for a request (default 5)
            initial_retry_delay: Initial backoff delay in seconds (default 1.0)
            max_retry_delay: Maximum backoff delay in seconds (default 60.0)
            session: Optional requests session (created if not provided)
        """
        if not api_key:
            raise AuthenticationError("A Streak API key is required")

        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.initial_retry_delay = initial_retry_delay
        self.max_retry_delay = max_retry_delay
        self._session = session

    @property
    def session(self) -> requests.Session:
        """Get or create the HTTP session."""
        if self._session is None:
            session = requests.Session()
            session.auth = (self.api_key, "")
            session.headers.update(
                {
                    "Accept": "application/json",
                    "User-Agent": f"streak-sync/{__version__}",
                }
            )
            self._session = session
            logger.debug("Created Streak API session")
        return self._session

    def _retry_with_backoff(
        self, operation: Callable[[], requests.Response], operation_name: str
    ) -> requests.Response:
        """
        Execute a request with exponential backoff retry.

        Args:
            operation: Callable performing the request
            operation_name: Name for logging purposes

        Returns:
            The successful response

        Raises:
            AuthenticationError: On 401/403
            RateLimitError: If retries are exhausted due to rate limits
            StreakAPIError: For other failures
        """
        delay = self.initial_retry_delay

        for attempt in range(self.max_retries):
            is_last_attempt = attempt == self.max_retries - 1
            try:
                response = operation()
            except RequestException as e:
                # Connection errors and timeouts
                if not is_last_attempt:
                    logger.warning(
                        f"{operation_name} request error ({e}), retrying in "
                        f"{delay:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                    )
                    time.sleep(delay)
                    delay = min(delay * 2, self.max_retry_delay)
                    continue
                raise StreakAPIError(f"{operation_name} failed: {e}") from e

            status_code = response.status_code
            if status_code < 400:
                return response

            if status_code in (401, 403):
                raise AuthenticationError(
                    f"{operation_name} was rejected ({status_code}); "
                    "check the Streak API key"
                )

            if status_code == 429:
                if not is_last_attempt:
                    logger.warning(
                        f"{operation_name} rate limited, retrying in "
                        f"{delay:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                    )
                    time.sleep(delay)
                    delay = min(delay * 2, self.max_retry_delay)
                    continue
                raise RateLimitError(
                    f"Rate limit exceeded for {operation_name} "
                    f"after {self.max_retries} attempts"
                )

            if status_code >= 500 and not is_last_attempt:
                logger.warning(
                    f"{operation_name} server error ({status_code}), "
                    f"retrying in {delay:.1f}s"
                )
                time.sleep(delay)
                delay = min(delay * 2, self.max_retry_delay)
                continue

            logger.error(f"{operation_name} failed with status {status_code}")
            raise StreakAPIError(
                f"{operation_name} failed with status {status_code}: "
                f"{response.text[:200]}"
            )

        # Only reachable if max_retries is 0
        raise StreakAPIError(f"{operation_name} failed after all retries")

    def _get_json(self, path: str, operation_name: str) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"

        def execute_get() -> requests.Response:
            return self.session.get(url, timeout=self.timeout)

        response = self._retry_with_backoff(execute_get, operation_name)
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"{operation_name} returned a non-JSON body"
            ) from e

    def fetch_pipeline(self, pipeline_key: str) -> dict[str, Any]:
        """
        Fetch pipeline metadata.

        Only used to confirm a configured pipeline key exists and is
        readable; the sync does not interpret the field definitions.

        Args:
            pipeline_key: Key of the pipeline

        Returns:
            Pipeline metadata (key, name, field definitions)

        Raises:
            StreakAPIError: If the request fails or the payload is malformed
        """
        logger.debug(f"Fetching pipeline {pipeline_key}")
        data = self._get_json(f"pipelines/{pipeline_key}", "fetch_pipeline")

        if not isinstance(data, dict):
            raise MalformedResponseError(
                f"Pipeline {pipeline_key} response must be an object, "
                f"got {type(data).__name__}"
            )
        if not (data.get("key") or data.get("pipelineKey")):
            raise MalformedResponseError(
                f"Pipeline {pipeline_key} response has no key"
            )

        logger.info(f"Pipeline {pipeline_key}: {data.get('name', '(unnamed)')}")
        return data

    def fetch_boxes(self, pipeline_key: str) -> list[RemoteBox]:
        """
        Fetch every box in a pipeline.

        The list is the complete current set of boxes, which is what makes
        deletion detection possible. A single unparseable entry therefore
        fails the whole fetch instead of being dropped.

        Args:
            pipeline_key: Key of the pipeline

        Returns:
            List of RemoteBox

        Raises:
            StreakAPIError: If the request fails or the payload is malformed
        """
        logger.debug(f"Fetching boxes for pipeline {pipeline_key}")
        data = self._get_json(f"pipelines/{pipeline_key}/boxes", "fetch_boxes")

        if not isinstance(data, list):
            raise MalformedResponseError(
                f"Box list for pipeline {pipeline_key} must be an array, "
                f"got {type(data).__name__}"
            )

        boxes: list[RemoteBox] = []
        for index, entry in enumerate(data):
            try:
                boxes.append(RemoteBox.from_api_response(entry))
            except BoxFormatError as e:
                raise MalformedResponseError(
                    f"Box #{index} in pipeline {pipeline_key} is malformed: {e}"
                ) from e

        logger.info(f"Fetched {len(boxes)} boxes from pipeline {pipeline_key}")
        return boxes

    def __repr__(self) -> str:
        return f"StreakAPI(base_url={self.base_url!r}, timeout={self.timeout})"
