"""
Address geocoding for locally derived coordinates.

The sync engine treats geocoding as a black box: any callable taking an
address and returning (latitude, longitude), raising GeocodeError on
failure. NominatimGeocoder is the default implementation, backed by an
OpenStreetMap Nominatim compatible search endpoint.
"""

import logging
from collections.abc import Callable

import requests
from requests.exceptions import RequestException

from streak_sync import __version__

DEFAULT_GEOCODER_URL = "https://nominatim.openstreetmap.org/search"
DEFAULT_GEOCODER_TIMEOUT = 10.0  # seconds

logger = logging.getLogger(__name__)

# address -> (latitude, longitude)
GeocodeFunc = Callable[[str], tuple[float, float]]


class GeocodeError(Exception):
    """Raised when an address cannot be geocoded."""

    pass


class NominatimGeocoder:
    """
    Geocoder backed by a Nominatim search endpoint.

    Results are cached per address for the lifetime of the instance, so a
    run that sees the same address twice only asks once.

    Usage:
        geocode = NominatimGeocoder()
        latitude, longitude = geocode("1 Infinite Loop, Cupertino, CA")
    """

    def __init__(
        self,
        url: str = DEFAULT_GEOCODER_URL,
        timeout: float = DEFAULT_GEOCODER_TIMEOUT,
        user_agent: str | None = None,
    ):
        """
        Initialize the geocoder.

        Args:
            url: Search endpoint URL
            timeout: Request timeout in seconds (default 10)
            user_agent: User-Agent header (Nominatim requires one)
        """
        self.url = url
        self.timeout = timeout
        self.user_agent = user_agent or f"streak-sync/{__version__}"
        self._cache: dict[str, tuple[float, float]] = {}

    def __call__(self, address: str) -> tuple[float, float]:
        return self.geocode(address)

    def geocode(self, address: str) -> tuple[float, float]:
        """
        Resolve an address to coordinates.

        Args:
            address: Free-form address

        Returns:
            (latitude, longitude)

        Raises:
            GeocodeError: If the lookup fails or finds nothing
        """
        if not address or not address.strip():
            raise GeocodeError("Address cannot be empty")

        query = address.strip()
        if query in self._cache:
            return self._cache[query]

        try:
            response = requests.get(
                self.url,
                params={"q": query, "format": "json", "limit": 1},
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
            )
            response.raise_for_status()
            results = response.json()
        except RequestException as e:
            raise GeocodeError(f"Geocoding request failed for {query!r}: {e}") from e
        except ValueError as e:
            raise GeocodeError(
                f"Geocoder returned a non-JSON body for {query!r}"
            ) from e

        if not isinstance(results, list) or not results:
            raise GeocodeError(f"No geocoding result for {query!r}")

        try:
            coordinates = (float(results[0]["lat"]), float(results[0]["lon"]))
        except (KeyError, TypeError, ValueError) as e:
            raise GeocodeError(f"Unexpected geocoding result for {query!r}") from e

        logger.debug(f"Geocoded {query!r} -> {coordinates}")
        self._cache[query] = coordinates
        return coordinates
