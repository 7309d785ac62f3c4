"""
Tripweaver Client SDK
Python client library for the Tripweaver API.
"""

from .client import AsyncTripweaverClient, TripweaverAPIError, TripweaverClient
from .models import ItineraryResult, ProgressEvent, UsageStatus

__version__ = "0.1.0"
__all__ = [
    "TripweaverClient",
    "AsyncTripweaverClient",
    "TripweaverAPIError",
    "ItineraryResult",
    "ProgressEvent",
    "UsageStatus",
]
