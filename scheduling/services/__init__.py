"""
Services layer for the scheduling core.
"""

from .availability import AvailabilityCalculator, DayAvailability
from .conflicts import ConflictDetector
from .directory import DirectoryBase, HttpDirectoryClient, InMemoryDirectory
from .lifecycle import BookingLifecycleManager
from .recommendations import RecommendationEngine
from .store import BookingStore

__all__ = [
    "AvailabilityCalculator",
    "DayAvailability",
    "ConflictDetector",
    "DirectoryBase",
    "HttpDirectoryClient",
    "InMemoryDirectory",
    "BookingLifecycleManager",
    "RecommendationEngine",
    "BookingStore",
]
