"""
Directory Service - provider, service and customer lookups.

The scheduling core reads working hours, services and customers from the
back office and pushes the customer booking-count projection back. Two
implementations are provided: an in-memory directory for tests and local
runs, and an async HTTP client for the back-office API.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional, Tuple

import httpx
from loguru import logger

from scheduling.config import get_settings
from scheduling.errors import NotFoundError
from scheduling.models.provider import CustomerInfo, ServiceInfo, WorkingHoursTemplate


class DirectoryBase(ABC):
    """Read access to provider-owned data plus the customer stats projection."""

    @abstractmethod
    async def get_working_hours(self, provider_id: str) -> WorkingHoursTemplate:
        """Weekly template of a provider; raises NotFoundError for unknown providers."""

    @abstractmethod
    async def get_service(self, provider_id: str, service_id: str) -> Optional[ServiceInfo]:
        """Service owned by the provider, or None."""

    @abstractmethod
    async def get_customer(self, provider_id: str, customer_id: str) -> Optional[CustomerInfo]:
        """Customer owned by the provider, or None."""

    @abstractmethod
    async def increment_customer_stats(self, customer_id: str, booking_date: datetime) -> None:
        """Bump the customer's booking count and last-booking date."""

    async def close(self) -> None:
        """Release any held resources."""


class InMemoryDirectory(DirectoryBase):
    """Directory backed by dictionaries."""

    def __init__(self):
        self._working_hours: Dict[str, WorkingHoursTemplate] = {}
        self._services: Dict[Tuple[str, str], ServiceInfo] = {}
        self._customers: Dict[Tuple[str, str], CustomerInfo] = {}

    def set_working_hours(self, provider_id: str, template: WorkingHoursTemplate) -> None:
        self._working_hours[provider_id] = template

    def add_service(self, service: ServiceInfo) -> None:
        self._services[(service.provider_id, service.id)] = service

    def add_customer(self, customer: CustomerInfo) -> None:
        self._customers[(customer.provider_id, customer.id)] = customer

    def clear(self) -> None:
        self._working_hours.clear()
        self._services.clear()
        self._customers.clear()

    async def get_working_hours(self, provider_id: str) -> WorkingHoursTemplate:
        template = self._working_hours.get(provider_id)
        if template is None:
            raise NotFoundError("provider", provider_id)
        return template

    async def get_service(self, provider_id: str, service_id: str) -> Optional[ServiceInfo]:
        return self._services.get((provider_id, service_id))

    async def get_customer(self, provider_id: str, customer_id: str) -> Optional[CustomerInfo]:
        return self._customers.get((provider_id, customer_id))

    async def increment_customer_stats(self, customer_id: str, booking_date: datetime) -> None:
        for key, customer in self._customers.items():
            if customer.id == customer_id:
                self._customers[key] = customer.model_copy(
                    update={
                        "total_bookings": customer.total_bookings + 1,
                        "last_booking": booking_date,
                    }
                )


class HttpDirectoryClient(DirectoryBase):
    """
    Async client for the back-office API.

    Implements connection pooling for efficient concurrent requests.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self.settings = get_settings()
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client with connection pooling."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.settings.directory_api_url,
                timeout=httpx.Timeout(self.settings.directory_api_timeout),
                limits=httpx.Limits(
                    max_connections=self.settings.connection_pool_size,
                    max_keepalive_connections=self.settings.connection_pool_size // 2,
                ),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _get_json(self, path: str) -> Optional[dict]:
        """GET ``path``; None on 404, raises on any other failure."""
        client = await self._get_client()
        try:
            response = await client.get(path)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error fetching {path}: {e}")
            raise
        except httpx.RequestError as e:
            logger.error(f"Request error fetching {path}: {e}")
            raise

    async def get_working_hours(self, provider_id: str) -> WorkingHoursTemplate:
        data = await self._get_json(f"/api/v1/providers/{provider_id}/working-hours")
        if data is None:
            raise NotFoundError("provider", provider_id)
        return WorkingHoursTemplate.model_validate(data)

    async def get_service(self, provider_id: str, service_id: str) -> Optional[ServiceInfo]:
        data = await self._get_json(f"/api/v1/providers/{provider_id}/services/{service_id}")
        return ServiceInfo.model_validate(data) if data is not None else None

    async def get_customer(self, provider_id: str, customer_id: str) -> Optional[CustomerInfo]:
        data = await self._get_json(f"/api/v1/providers/{provider_id}/customers/{customer_id}")
        return CustomerInfo.model_validate(data) if data is not None else None

    async def increment_customer_stats(self, customer_id: str, booking_date: datetime) -> None:
        client = await self._get_client()
        response = await client.post(
            f"/api/v1/customers/{customer_id}/stats",
            json={"increment_bookings": 1, "last_booking": booking_date.isoformat()},
        )
        response.raise_for_status()


# Singleton instance for reuse
_directory: Optional[DirectoryBase] = None


def get_directory() -> DirectoryBase:
    """Get the singleton directory selected by DIRECTORY_BACKEND."""
    global _directory
    if _directory is None:
        if get_settings().directory_backend == "http":
            _directory = HttpDirectoryClient()
        else:
            _directory = InMemoryDirectory()
    return _directory
