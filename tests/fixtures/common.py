"""
Common/Shared Fixtures

Base factories and generators used across test layers.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional


def make_product_id() -> str:
    """Generate a unique product ID"""
    return f"prod_test_{uuid.uuid4().hex[:12]}"


def make_farmer_id() -> str:
    """Generate a unique farmer (owner) ID"""
    return f"farmer_test_{uuid.uuid4().hex[:12]}"


def make_holder_id() -> str:
    """Generate a unique shopper ID"""
    return f"usr_test_{uuid.uuid4().hex[:12]}"


def make_timestamp(offset_seconds: float = 0) -> datetime:
    """Aware UTC datetime, optionally shifted"""
    return datetime.now(timezone.utc) + timedelta(seconds=offset_seconds)


class FakeClock:
    """Manually advanced UTC clock for expiry tests"""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current
