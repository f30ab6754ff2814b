"""Test helpers."""

from tests.helpers.fake_clock import FakeClock
from tests.helpers.flaky_pool import FlakyLiquidityPool

__all__ = ["FakeClock", "FlakyLiquidityPool"]
