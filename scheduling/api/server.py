"""
Scheduling API Server.

A FastAPI service exposing slot discovery, conflict checks, booking
lifecycle operations and slot recommendations for each provider.
"""

import sys
from contextlib import asynccontextmanager
from datetime import date, datetime

from fastapi import FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from scheduling.api.schemas import (
    BookingResponse,
    CalendarResponse,
    ConflictCheckRequest,
    CreateBookingRequest,
    RecommendationRequest,
    RescheduleRequest,
    RescheduleResponse,
    StatusUpdateRequest,
)
from scheduling.config import get_settings
from scheduling.errors import (
    BookingValidationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    SchedulingError,
)
from scheduling.models.booking import ConflictCheck
from scheduling.models.recommendation import BusinessPatterns, RecommendationResult
from scheduling.services.availability import AvailabilityCalculator, DayAvailability
from scheduling.services.directory import get_directory
from scheduling.services.lifecycle import BookingLifecycleManager
from scheduling.services.recommendations import RecommendationEngine
from scheduling.services.store import BookingStore

settings = get_settings()

# Configure logger
logger.remove()
logger.add(sys.stderr, level=settings.log_level)


# ============================================================================
# Scheduling Core (Replace the store with a document store in production)
# ============================================================================

store = BookingStore()
directory = get_directory()
lifecycle = BookingLifecycleManager(directory, store)
availability_calculator = AvailabilityCalculator(directory, store)
recommendation_engine = RecommendationEngine(directory, store)


# ============================================================================
# FastAPI Application
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"Starting {settings.service_name} API")
    yield
    logger.info(f"Shutting down {settings.service_name} API")
    await directory.close()


app = FastAPI(
    title="Back Office Scheduling API",
    description="Availability, conflict detection, booking lifecycle and slot recommendations",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS = {
    BookingValidationError: 422,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    InvalidTransitionError: status.HTTP_400_BAD_REQUEST,
}


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    """Render typed scheduling errors as JSON."""
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# ============================================================================
# API Endpoints
# ============================================================================

PROVIDER_PREFIX = "/api/v1/providers/{provider_id}"


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


@app.get(f"{PROVIDER_PREFIX}/availability", response_model=DayAvailability)
async def get_available_slots(
    provider_id: str,
    date: date = Query(..., description="Target date"),
    duration: int = Query(default=60, ge=1, description="Slot length in minutes"),
):
    """
    Get bookable slots for a provider day.

    ``is_closed`` distinguishes a non-working day from a fully booked one.
    """
    return await availability_calculator.get_available_slots(provider_id, date, duration)


@app.post(
    f"{PROVIDER_PREFIX}/bookings",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_booking(provider_id: str, request: CreateBookingRequest):
    """Create a booking; 409 with the colliding bookings on conflict."""
    booking = await lifecycle.create(
        provider_id=provider_id,
        customer_id=request.customer_id,
        service_id=request.service_id,
        day=request.date,
        time_of_day=request.time,
        notes=request.notes,
    )
    return BookingResponse(message="Booking created successfully", booking=booking)


@app.post(f"{PROVIDER_PREFIX}/bookings/check-conflicts", response_model=ConflictCheck)
async def check_conflicts(provider_id: str, request: ConflictCheckRequest):
    """Report overlaps for a proposed slot without writing anything."""
    return await lifecycle.check_conflicts(
        provider_id=provider_id,
        day=request.date,
        time_of_day=request.time,
        duration_minutes=request.duration,
        exclude_booking_id=request.exclude_booking_id,
    )


@app.get(f"{PROVIDER_PREFIX}/bookings/{{booking_id}}", response_model=BookingResponse)
async def get_booking(provider_id: str, booking_id: str):
    """Get a specific booking by ID."""
    booking = await lifecycle.get_booking(provider_id, booking_id)
    return BookingResponse(booking=booking)


@app.put(
    f"{PROVIDER_PREFIX}/bookings/{{booking_id}}/reschedule",
    response_model=RescheduleResponse,
)
async def reschedule_booking(provider_id: str, booking_id: str, request: RescheduleRequest):
    """Move a booking; the response carries both the old and new interval."""
    booking = await lifecycle.reschedule(
        provider_id=provider_id,
        booking_id=booking_id,
        new_start=request.new_start,
        reason=request.reason,
        rescheduled_by=request.rescheduled_by,
    )
    return RescheduleResponse(
        booking=booking,
        original_interval=booking.original_interval,
        new_interval=booking.interval,
    )


@app.patch(f"{PROVIDER_PREFIX}/bookings/{{booking_id}}/status", response_model=BookingResponse)
async def update_booking_status(provider_id: str, booking_id: str, request: StatusUpdateRequest):
    """Apply a state machine transition."""
    booking = await lifecycle.update_status(provider_id, booking_id, request.status)
    return BookingResponse(message="Booking updated successfully", booking=booking)


@app.post(f"{PROVIDER_PREFIX}/bookings/{{booking_id}}/cancel", response_model=BookingResponse)
async def cancel_booking(provider_id: str, booking_id: str):
    """Cancel a booking; the record is retained."""
    booking = await lifecycle.cancel(provider_id, booking_id)
    return BookingResponse(message=f"Booking {booking_id} has been cancelled.", booking=booking)


@app.post(
    f"{PROVIDER_PREFIX}/bookings/{{booking_id}}/refresh-conflicts",
    response_model=BookingResponse,
)
async def refresh_booking_conflicts(provider_id: str, booking_id: str):
    """Recompute the display-only conflict flags of a booking."""
    booking = await lifecycle.refresh_conflict_snapshot(provider_id, booking_id)
    return BookingResponse(booking=booking)


@app.get(f"{PROVIDER_PREFIX}/calendar", response_model=CalendarResponse)
async def calendar_view(
    provider_id: str,
    start: datetime = Query(..., description="Start of the window"),
    end: datetime = Query(..., description="End of the window"),
):
    """Non-cancelled bookings for calendar display."""
    bookings = await lifecycle.calendar_view(provider_id, start, end)
    return CalendarResponse(bookings=bookings, count=len(bookings))


@app.post(f"{PROVIDER_PREFIX}/recommendations", response_model=RecommendationResult)
async def get_recommendations(provider_id: str, request: RecommendationRequest):
    """Up to five ranked slots with their score breakdown and reason."""
    return await recommendation_engine.recommend(
        provider_id=provider_id,
        customer_id=request.customer_id,
        service_id=request.service_id,
        day=request.date,
        preferred_time=request.preferred_time,
    )


@app.get(f"{PROVIDER_PREFIX}/patterns", response_model=BusinessPatterns)
async def get_business_patterns(
    provider_id: str,
    window_days: int = Query(default=30, ge=1, le=365),
):
    """Booking volume by weekday and hour over a recent window."""
    return await recommendation_engine.business_patterns(provider_id, window_days)


# ============================================================================
# Run Server
# ============================================================================


def run_server(host: str = "0.0.0.0", port: int = 8000):
    """Run the scheduling API server."""
    import uvicorn

    # Provider locks live in process memory, so a single worker owns all writes.
    uvicorn.run(
        "scheduling.api.server:app",
        host=host,
        port=port,
        reload=False,
        workers=1,
    )


if __name__ == "__main__":
    run_server()
