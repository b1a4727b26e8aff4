"""Tests for capacity threshold and allocation range validation."""

from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest

from allocation_engine.domain.constraints import (
    CapacityThresholds,
    validate_allocated_hours,
    validate_capacity_thresholds,
    validate_date_range,
    validate_within_project_window,
)
from allocation_engine.domain.errors import InvalidRangeError
from allocation_engine.utils.config import get_settings


# --- thresholds ---

def test_default_thresholds_pass() -> None:
    validate_capacity_thresholds(CapacityThresholds())


def test_equal_thresholds_are_allowed() -> None:
    validate_capacity_thresholds(CapacityThresholds(80.0, 80.0, 80.0))


def test_zero_comfortable_threshold_raises() -> None:
    with pytest.raises(ValueError):
        validate_capacity_thresholds(CapacityThresholds(comfortable_percent=0.0))


def test_warning_below_comfortable_raises() -> None:
    with pytest.raises(ValueError):
        validate_capacity_thresholds(CapacityThresholds(70.0, 65.0, 95.0))


def test_critical_below_warning_raises() -> None:
    with pytest.raises(ValueError):
        validate_capacity_thresholds(CapacityThresholds(60.0, 85.0, 84.0))


def test_critical_above_full_capacity_raises() -> None:
    with pytest.raises(ValueError):
        validate_capacity_thresholds(CapacityThresholds(60.0, 80.0, 100.5))


def test_thresholds_read_from_settings(tmp_path) -> None:
    get_settings.cache_clear()
    settings = replace(
        get_settings(),
        database_path=tmp_path / "unused.db",
        capacity_comfortable_threshold=50.0,
        capacity_warning_threshold=70.0,
        capacity_critical_threshold=90.0,
    )
    assert CapacityThresholds.from_settings(settings) == CapacityThresholds(50.0, 70.0, 90.0)


def test_invalid_thresholds_in_settings_raise(tmp_path) -> None:
    get_settings.cache_clear()
    settings = replace(
        get_settings(),
        database_path=tmp_path / "unused.db",
        capacity_warning_threshold=99.0,
        capacity_critical_threshold=90.0,
    )
    with pytest.raises(ValueError):
        CapacityThresholds.from_settings(settings)


# --- date ranges and hours ---

def test_single_day_range_is_valid() -> None:
    validate_date_range(date(2025, 3, 1), date(2025, 3, 1))


def test_end_before_start_raises() -> None:
    with pytest.raises(InvalidRangeError):
        validate_date_range(date(2025, 3, 2), date(2025, 3, 1))


@pytest.mark.parametrize("hours", [0.0, -4.0])
def test_non_positive_hours_raise(hours: float) -> None:
    with pytest.raises(InvalidRangeError):
        validate_allocated_hours(hours)


def test_hours_above_ceiling_raise() -> None:
    with pytest.raises(InvalidRangeError):
        validate_allocated_hours(1000.5, max_allocated_hours=1000.0)


def test_range_outside_project_window_raises() -> None:
    with pytest.raises(InvalidRangeError, match="before project start"):
        validate_within_project_window(
            date(2025, 2, 28), date(2025, 3, 10), date(2025, 3, 1), date(2025, 3, 31)
        )
    with pytest.raises(InvalidRangeError, match="after project end"):
        validate_within_project_window(
            date(2025, 3, 10), date(2025, 4, 1), date(2025, 3, 1), date(2025, 3, 31)
        )


def test_open_project_window_accepts_any_range() -> None:
    validate_within_project_window(date(2020, 1, 1), date(2030, 1, 1), None, None)
