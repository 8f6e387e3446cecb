"""Remote service clients: the Streak API and the address geocoder."""

from streak_sync.api.geocoder import GeocodeError, GeocodeFunc, NominatimGeocoder
from streak_sync.api.streak_api import (
    AuthenticationError,
    MalformedResponseError,
    RateLimitError,
    StreakAPI,
    StreakAPIError,
)

__all__ = [
    "AuthenticationError",
    "GeocodeError",
    "GeocodeFunc",
    "MalformedResponseError",
    "NominatimGeocoder",
    "RateLimitError",
    "StreakAPI",
    "StreakAPIError",
]
