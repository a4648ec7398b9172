"""Shared fixtures.

Every test gets a fresh temp-file SQLite DatabaseManager so that
sessions opened from worker threads see the same database.
"""
import os
import shutil
import tempfile

import pytest

from business.lifecycle import ReservationLifecycle
from database import DatabaseManager

TEST_SECRET = "test-secret"


@pytest.fixture
def temp_db():
    """Yield a fresh DatabaseManager bound to a temp SQLite database."""
    temp_dir = tempfile.mkdtemp(prefix="studio-tests-")
    db_path = os.path.join(temp_dir, "test.db")
    manager = DatabaseManager(
        database_url=f"sqlite:///{db_path}", reward_per_reservation=1000
    )
    manager.create_tables()

    try:
        yield manager
    finally:
        manager.close()
        shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def lifecycle(temp_db):
    """Yield a ReservationLifecycle bound to temp_db."""
    return ReservationLifecycle(temp_db, retry_attempts=2)


@pytest.fixture
def sample_reservation():
    """A minimal valid reservation payload."""
    return {
        "date": "2025-10-27",
        "timeSlot": "10:00",
        "staffInCharge": "佐藤",
        "location": "東京本店",
        "parentName": "山田花子",
        "childName": "山田太郎",
        "age": 1,
        "phoneNumber": "090-1234-5678",
    }
