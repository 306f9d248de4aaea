"""Shared fixtures for scheduling tests."""

import pytest

from scheduling.services.lifecycle import BookingLifecycleManager
from scheduling.services.store import BookingStore
from tests.factories import FIXED_NOW, seeded_directory


@pytest.fixture
def directory():
    return seeded_directory()


@pytest.fixture
def store():
    return BookingStore()


@pytest.fixture
def lifecycle(directory, store):
    return BookingLifecycleManager(directory, store, clock=lambda: FIXED_NOW)
