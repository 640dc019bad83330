"""Point-in-polygon assignment of crimes to LSOAs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from shapely import STRtree
from shapely.geometry import Point

from london_crime.common.constants import PUBLIC_CRS
from london_crime.common.geometry import WGS84_EPSG, transformer_for
from london_crime.common.logging import log_event
from london_crime.common.models import Area

DEFAULT_UNMATCHED_WARN_RATIO = 0.05


@dataclass
class AssignResult:
    records: list[dict] = field(default_factory=list)
    unmatched_count: int = 0
    total_count: int = 0
    crs: str = PUBLIC_CRS

    @property
    def unmatched_ratio(self) -> float:
        return 0.0 if self.total_count == 0 else self.unmatched_count / self.total_count


class AreaIndex:
    """STRtree over Areas kept in ``area_code`` order."""

    def __init__(self, areas: Iterable[Area]) -> None:
        self.areas = sorted(areas, key=lambda area: area.area_code)
        self.tree = STRtree([area.geometry for area in self.areas])

    def locate(self, point: Point) -> Area | None:
        inside = self.tree.query(point, predicate="within")
        if len(inside) == 0:
            # On a shared edge the point is within no polygon; take the first covering one.
            inside = self.tree.query(point, predicate="covered_by")
        if len(inside) == 0:
            return None
        return self.areas[int(min(inside))]


def assign(
    records: Iterable[dict],
    fine_areas: Iterable[Area],
    *,
    area_epsg: int,
    coordinate_epsg: int = WGS84_EPSG,
    partition_key: str | None = None,
    unmatched_warn_ratio: float = DEFAULT_UNMATCHED_WARN_RATIO,
    logger: logging.Logger | None = None,
) -> AssignResult:
    """Attach ``area_code``, ``area_name`` and ``coarse_area_name`` to each record.

    Coordinates are projected into the Areas' CRS only for the containment
    test; returned records keep their original latitude/longitude and are
    tagged with ``coordinate_epsg``. Records that fall outside every Area are
    dropped and counted.
    """
    logger = logger or logging.getLogger(__name__)
    index = AreaIndex(fine_areas)
    to_area_crs = transformer_for(int(coordinate_epsg), int(area_epsg))
    result = AssignResult(crs=f"EPSG:{int(coordinate_epsg)}")

    for record in records:
        result.total_count += 1
        x, y = to_area_crs.transform(record["longitude"], record["latitude"])
        area = index.locate(Point(x, y))
        if area is None:
            result.unmatched_count += 1
            continue
        assigned = dict(record)
        assigned["area_code"] = area.area_code
        assigned["area_name"] = area.area_name
        assigned["coarse_area_name"] = area.parent_area_name
        result.records.append(assigned)

    if result.unmatched_count:
        ratio = result.unmatched_ratio
        level = logging.WARNING if ratio > unmatched_warn_ratio else logging.INFO
        log_event(
            logger,
            f"{result.unmatched_count} of {result.total_count} crimes ({ratio:.1%}) matched no area",
            level=level,
            stage="assign",
            partition=partition_key,
            event="UNMATCHED_RECORDS",
            status="warning" if level == logging.WARNING else "ok",
            rows_in=result.total_count,
            rows_out=len(result.records),
        )
    log_event(
        logger,
        f"assigned {len(result.records)} crimes to areas",
        stage="assign",
        partition=partition_key,
        event="ASSIGN",
        status="ok",
        rows_in=result.total_count,
        rows_out=len(result.records),
    )
    return result
