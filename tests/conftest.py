from __future__ import annotations

import zlib
from datetime import date

import pytest
from shapely.geometry import box

from london_crime.boundaries.repository import BoundaryRepository
from london_crime.common.models import Area, CrimeRecord


@pytest.fixture
def london_areas() -> list[Area]:
    return [
        Area("E01000001", "Camden 001A", "Camden", box(-0.20, 51.50, -0.15, 51.55)),
        Area("E01000002", "Camden 001B", "Camden", box(-0.15, 51.50, -0.10, 51.55)),
        Area("E01000003", "Islington 001A", "Islington", box(-0.10, 51.50, -0.05, 51.55)),
    ]


@pytest.fixture
def boundary_repo(london_areas) -> BoundaryRepository:
    return BoundaryRepository(epsg=4326, loader=lambda: london_areas)


@pytest.fixture
def api_crime():
    def _make(
        crime_id: str,
        lat: float = 51.52,
        lon: float = -0.17,
        *,
        category: str = "anti-social-behaviour",
        month: str = "2024-03",
        outcome: str | None = None,
    ) -> dict:
        return {
            "persistent_id": crime_id,
            "id": zlib.crc32(crime_id.encode("utf-8")),
            "category": category,
            "location_type": "Force",
            "location_subtype": "",
            "location": {
                "latitude": str(lat),
                "longitude": str(lon),
                "street": {"id": 1, "name": "On or near High Street"},
            },
            "context": "",
            "month": month,
            "outcome_status": {"category": outcome, "date": month} if outcome else None,
        }

    return _make


@pytest.fixture
def crime_record():
    def _make(crime_id: str, key: str = "2024-03", **overrides) -> CrimeRecord:
        year, month = (int(part) for part in key.split("-"))
        values = {
            "crime_id": crime_id,
            "category": "burglary",
            "location_type": "force",
            "location_subtype": None,
            "partition_key": key,
            "event_date": date(year, month, 1),
            "year": year,
            "month_number": month,
            "quarter": (month - 1) // 3 + 1,
            "latitude": 51.52,
            "longitude": -0.17,
            "area_code": "E01000001",
            "area_name": "Camden 001A",
            "coarse_area_name": "Camden",
            "outcome_category": "investigation-incomplete",
            "outcome_date": None,
        }
        values.update(overrides)
        return CrimeRecord(**values)

    return _make


class FakeCrimeClient:
    """Stands in for CrimeApiClient; answers per area from a script of results or errors."""

    def __init__(self, responses: dict[str, list] | None = None, default=None) -> None:
        self.responses = responses or {}
        self.default = [] if default is None else default
        self.calls: list[tuple[str, str, str | None]] = []

    def get_crimes(self, date: str, poly: str, *, area: str | None = None) -> list[dict]:
        self.calls.append((date, poly, area))
        result = self.responses.get(area, self.default)
        if isinstance(result, BaseException):
            raise result
        if callable(result):
            return result(date)
        return result


@pytest.fixture
def fake_client_factory():
    return FakeCrimeClient
