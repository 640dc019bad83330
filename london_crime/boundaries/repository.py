"""Administrative boundary hierarchy: LSOAs and the boroughs derived from them."""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from pathlib import Path
from typing import Callable, Iterable

import geopandas as gpd
import shapely
from shapely.ops import unary_union

from london_crime.common.errors import BoundaryUnavailable
from london_crime.common.geometry import (
    bounds_fit_crs,
    encode_api_polygon,
    exterior_vertices,
    sample_vertices,
    to_wgs84,
)
from london_crime.common.logging import log_event
from london_crime.common.models import Area, CoarseArea

DEFAULT_FIELDS = {"code": "lsoa21cd", "name": "lsoa21nm", "parent": "lad22nm"}

AreaLoader = Callable[[], Iterable[Area]]
BoundaryFetch = Callable[[Path], None]


def _present(value) -> bool:
    if value is None:
        return False
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(str(value).strip())


def read_boundary_file(path: Path, epsg: int, fields: dict[str, str] | None = None) -> list[Area]:
    """Read Areas from any vector file GDAL understands (GeoJSON, shapefile, GeoPackage).

    The file's own CRS wins: geometries are reprojected into ``epsg``. A file
    without CRS metadata is taken to already be in ``epsg``.
    """
    fields = fields or DEFAULT_FIELDS
    try:
        gdf = gpd.read_file(path)
    except (OSError, ValueError, RuntimeError) as exc:
        raise BoundaryUnavailable(f"Unreadable boundary file {path}: {exc}") from exc

    missing = [fields[key] for key in ("code", "parent") if fields[key] not in gdf.columns]
    if missing:
        raise BoundaryUnavailable(f"Boundary file {path} lacks columns: {', '.join(missing)}")

    target = f"EPSG:{int(epsg)}"
    if gdf.crs is None:
        gdf = gdf.set_crs(target)
    elif not gdf.empty and gdf.crs.to_epsg() != int(epsg):
        gdf = gdf.to_crs(target)

    names = gdf[fields["name"]] if fields["name"] in gdf.columns else gdf[fields["code"]]
    areas: list[Area] = []
    for code, name, parent, geometry in zip(gdf[fields["code"]], names, gdf[fields["parent"]], gdf.geometry):
        if not _present(code) or not _present(parent) or geometry is None or geometry.is_empty:
            continue
        areas.append(
            Area(
                area_code=str(code),
                area_name=str(name) if _present(name) else str(code),
                parent_area_name=str(parent),
                geometry=geometry,
            )
        )
    return areas


class BoundaryRepository:
    """Loads fine areas once and derives coarse areas plus their API query polygons.

    Either ``loader`` or ``path`` must be given. When ``path`` is missing on
    disk and a ``fetch`` hook is supplied, the hook is asked to materialise it
    first.
    """

    def __init__(
        self,
        *,
        epsg: int,
        path: Path | None = None,
        fields: dict[str, str] | None = None,
        loader: AreaLoader | None = None,
        fetch: BoundaryFetch | None = None,
        max_polygon_vertices: int = 50,
        logger: logging.Logger | None = None,
    ) -> None:
        self.epsg = int(epsg)
        self.path = path
        self.fields = fields or DEFAULT_FIELDS
        self.loader = loader
        self.fetch = fetch
        self.max_polygon_vertices = max_polygon_vertices
        self.logger = logger or logging.getLogger(__name__)
        self._fine_areas: frozenset[Area] | None = None
        self._coarse_areas: tuple[CoarseArea, ...] | None = None

    def _load(self) -> list[Area]:
        if self.loader is not None:
            return list(self.loader())
        if self.path is None:
            raise BoundaryUnavailable("No boundary path or loader configured")
        if not self.path.exists():
            if self.fetch is None:
                raise BoundaryUnavailable(f"Boundary file missing and no fetch mechanism supplied: {self.path}")
            log_event(self.logger, f"fetching boundaries into {self.path}", stage="boundaries", event="BOUNDARY_FETCH")
            self.fetch(self.path)
            if not self.path.exists():
                raise BoundaryUnavailable(f"Boundary fetch did not produce {self.path}")
        return read_boundary_file(self.path, self.epsg, self.fields)

    def load_fine_areas(self) -> frozenset[Area]:
        if self._fine_areas is None:
            areas = self._load()
            if not areas:
                raise BoundaryUnavailable("Boundary source returned no areas")
            codes = [area.area_code for area in areas]
            if len(codes) != len(set(codes)):
                raise BoundaryUnavailable("Boundary source contains duplicate area codes")
            bounds = tuple(shapely.total_bounds([area.geometry for area in areas]))
            if not bounds_fit_crs(bounds, self.epsg):
                raise BoundaryUnavailable(
                    f"Boundary extent {bounds} is not plausible for EPSG:{self.epsg}; check boundaries.epsg"
                )
            self._fine_areas = frozenset(areas)
            log_event(
                self.logger,
                f"loaded {len(areas)} fine areas",
                stage="boundaries",
                event="BOUNDARY_LOAD",
                status="ok",
                rows_out=len(areas),
            )
        return self._fine_areas

    def sorted_fine_areas(self) -> list[Area]:
        return sorted(self.load_fine_areas(), key=lambda area: area.area_code)

    def coarse_areas(self) -> tuple[CoarseArea, ...]:
        if self._coarse_areas is None:
            grouped: dict[str, list[Area]] = defaultdict(list)
            for area in self.sorted_fine_areas():
                grouped[area.parent_area_name].append(area)

            coarse: list[CoarseArea] = []
            for name in sorted(grouped):
                members = grouped[name]
                geometry = unary_union([area.geometry for area in members])
                coarse.append(
                    CoarseArea(
                        coarse_area_name=name,
                        member_area_count=len(members),
                        geometry=geometry,
                        query_polygon=self._encode_query_polygon(geometry),
                    )
                )
            self._coarse_areas = tuple(coarse)
        return self._coarse_areas

    def _encode_query_polygon(self, geometry) -> str:
        vertices = exterior_vertices(to_wgs84(geometry, self.epsg))
        return encode_api_polygon(sample_vertices(vertices, self.max_polygon_vertices))

    def query_polygon(self, coarse_area: CoarseArea) -> str:
        return coarse_area.query_polygon

    def region_bbox(self) -> tuple[float, float, float, float]:
        """WGS84 ``(min_lon, min_lat, max_lon, max_lat)`` covering every fine area."""
        union = unary_union([area.geometry for area in self.load_fine_areas()])
        return to_wgs84(union, self.epsg).bounds
