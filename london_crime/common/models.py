"""Data models used across the pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import date
from typing import Any

from shapely.geometry.base import BaseGeometry


@dataclass(frozen=True)
class Area:
    """Fine-grained statistical area (LSOA) in the boundary CRS."""

    area_code: str
    area_name: str
    parent_area_name: str
    geometry: BaseGeometry = field(compare=False, repr=False)


@dataclass(frozen=True)
class CoarseArea:
    """Union of all Areas sharing a parent (a borough)."""

    coarse_area_name: str
    member_area_count: int
    geometry: BaseGeometry = field(compare=False, repr=False)
    query_polygon: str


@dataclass(frozen=True)
class CrimeRecord:
    crime_id: str
    category: str
    location_type: str | None
    location_subtype: str | None
    partition_key: str
    event_date: date
    year: int
    month_number: int
    quarter: int
    latitude: float
    longitude: float
    area_code: str | None
    area_name: str | None
    coarse_area_name: str | None
    outcome_category: str
    outcome_date: str | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> "CrimeRecord":
        return cls(**{name: row.get(name) for name in CRIME_RECORD_FIELDS})


CRIME_RECORD_FIELDS = tuple(f.name for f in fields(CrimeRecord))
