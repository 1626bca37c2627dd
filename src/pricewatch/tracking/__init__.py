"""Asset tracking: collectors, registry, resolver and service facade."""

from pricewatch.tracking.collector import Collector
from pricewatch.tracking.registry import TrackedAsset, TrackingRegistry
from pricewatch.tracking.resolver import PriceResolver
from pricewatch.tracking.service import TrackingService

__all__ = [
    "Collector",
    "PriceResolver",
    "TrackedAsset",
    "TrackingRegistry",
    "TrackingService",
]
