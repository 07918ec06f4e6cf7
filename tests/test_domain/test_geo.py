"""Tests for distance helpers."""

from __future__ import annotations

import pytest

from keywork.domain.geo import bounding_box, haversine_meters


class TestHaversine:
    def test_same_point(self) -> None:
        assert haversine_meters(40.0, -74.0, 40.0, -74.0) == 0.0

    def test_new_york_to_boston(self) -> None:
        distance = haversine_meters(40.7128, -74.0060, 42.3601, -71.0589)
        assert distance == pytest.approx(306_000, rel=0.01)


class TestBoundingBox:
    def test_contains_radius(self) -> None:
        min_lat, max_lat, min_lon, max_lon = bounding_box(40.7128, -74.0060, 1_000)

        assert min_lat < 40.7128 < max_lat
        assert min_lon < -74.0060 < max_lon
        # One degree of latitude is roughly 111 km
        assert max_lat - min_lat == pytest.approx(2 * 1_000 / 111_195, rel=0.01)

    def test_pole_spans_all_longitudes(self) -> None:
        _, max_lat, min_lon, max_lon = bounding_box(90.0, 0.0, 1_000)

        assert max_lat == 90.0
        assert max_lon - min_lon == 360.0
