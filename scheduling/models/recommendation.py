"""
Slot recommendation models.
"""

from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from scheduling.models.interval import TimeInterval


class RecommendationFactors(BaseModel):
    """Integer sub-scores for one candidate slot."""

    availability: int = 0
    customer_preference: int = 0
    business_optimal: int = 0
    historical_demand: int = 0
    buffer_time: int = 0

    @property
    def total(self) -> int:
        return (
            self.availability
            + self.customer_preference
            + self.business_optimal
            + self.historical_demand
            + self.buffer_time
        )


class SlotRecommendation(BaseModel):
    """A scored candidate slot."""

    interval: TimeInterval
    time: str = Field(description="Start time as HH:MM")
    end_time: str = Field(description="End time as HH:MM")
    score: int
    factors: RecommendationFactors
    reason: str


class RecommendationResult(BaseModel):
    """Ranked recommendations for one provider day."""

    date: date
    is_closed: bool = False
    recommendations: List[SlotRecommendation] = Field(default_factory=list)
    total_available: int = 0
    confidence: int = Field(default=0, description="How much history backs the ranking, 50-95")
    message: str = ""


class BusinessPatterns(BaseModel):
    """Booking volume of a provider over a recent window."""

    busy_days: Dict[str, int] = Field(default_factory=dict)
    busy_hours: Dict[int, int] = Field(default_factory=dict)
    peak_hours: List[int] = Field(default_factory=list)
    average_bookings_per_day: float = 0.0
    window_days: int = 30
    since: Optional[date] = None
