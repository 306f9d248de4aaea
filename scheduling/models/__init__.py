"""
Data models for the scheduling service.
"""

from .booking import (
    Booking,
    BookingEvent,
    BookingStatus,
    ConflictCheck,
    ConflictingBooking,
    RescheduledBy,
    RescheduleMetadata,
)
from .interval import TimeInterval, contains, overlaps
from .provider import CustomerInfo, DayHours, ServiceInfo, WorkingHoursTemplate
from .recommendation import (
    BusinessPatterns,
    RecommendationFactors,
    RecommendationResult,
    SlotRecommendation,
)

__all__ = [
    "TimeInterval",
    "overlaps",
    "contains",
    "Booking",
    "BookingEvent",
    "BookingStatus",
    "ConflictCheck",
    "ConflictingBooking",
    "RescheduledBy",
    "RescheduleMetadata",
    "DayHours",
    "WorkingHoursTemplate",
    "ServiceInfo",
    "CustomerInfo",
    "BusinessPatterns",
    "RecommendationFactors",
    "RecommendationResult",
    "SlotRecommendation",
]
