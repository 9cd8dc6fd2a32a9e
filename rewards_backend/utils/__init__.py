"""Utilities module - resolution cache and in-flight tracking."""
from rewards_backend.config import get_settings
from rewards_backend.utils.cache import AvailabilityCache
from rewards_backend.utils.inflight import InFlightResolutions, ResolutionCancelledError

settings = get_settings()

# Process-wide instances shared by every request and background refresh
availability_cache = AvailabilityCache(default_ttl=settings.availability_cache_ttl_seconds)
inflight_resolutions = InFlightResolutions()

__all__ = [
    "AvailabilityCache",
    "availability_cache",
    "inflight_resolutions",
    "ResolutionCancelledError",
]
