"""
District boundaries and per-district shares of segment length.

Only segments lying fully inside a district count towards it; segments that
cross a boundary are left out of every district.
"""
import logging
from pathlib import Path
from typing import Optional, Protocol, Union

import geopandas as gpd
import numpy as np
import polars as pl
from shapely.geometry.polygon import orient

from taxitrace.geometry import SEGMENT_CRS
from taxitrace.kinematics import WGS84
from taxitrace.pipeline_helpers import (
    CRSMismatchError,
    DistrictDataError,
    ZeroContainmentError,
)
from taxitrace.records import DISTRICT_SHARE_SCHEMA

POLYGON_TYPES = {"Polygon", "MultiPolygon"}


# --- Geodesic measures ---


def geodesic_lengths_m(gdf: gpd.GeoDataFrame) -> np.ndarray:
    """Length of each geometry along the WGS84 ellipsoid, in meters."""
    geographic = gdf.to_crs(SEGMENT_CRS) if gdf.crs != SEGMENT_CRS else gdf
    return np.array(
        [WGS84.geometry_length(geom) for geom in geographic.geometry], dtype=float
    )


def geodesic_areas_m2(gdf: gpd.GeoDataFrame) -> np.ndarray:
    """Area of each polygon on the WGS84 ellipsoid, in square meters."""
    geographic = gdf.to_crs(SEGMENT_CRS) if gdf.crs != SEGMENT_CRS else gdf
    return np.array([polygon_area_m2(geom) for geom in geographic.geometry], dtype=float)


def polygon_area_m2(geom) -> float:
    """Geodesic area of a Polygon or MultiPolygon in lon/lat, holes subtracted."""
    parts = geom.geoms if geom.geom_type == "MultiPolygon" else [geom]
    # pyproj sums signed ring areas: shells counter-clockwise, holes clockwise
    return float(
        sum(WGS84.geometry_area_perimeter(orient(part, sign=1.0))[0] for part in parts)
    )


# --- Providers ---


def prepare_districts(districts: gpd.GeoDataFrame, name_col: str = "name") -> gpd.GeoDataFrame:
    """
    Validate a district layer and return it with columns name, area_m2, geometry.

    Raises:
        DistrictDataError: missing name column or CRS, non-polygon or empty
            geometries, or non-positive areas.
    """
    if name_col not in districts.columns:
        raise DistrictDataError(f"District name column '{name_col}' not found")
    if districts.crs is None:
        raise DistrictDataError("District layer has no coordinate reference system")
    if districts.empty:
        raise DistrictDataError("District layer is empty")
    if districts.geometry.isna().any() or districts.geometry.is_empty.any():
        raise DistrictDataError("District layer contains missing or empty geometries")
    bad_types = set(districts.geom_type) - POLYGON_TYPES
    if bad_types:
        raise DistrictDataError(f"District geometries must be polygons, got {sorted(bad_types)}")

    out = gpd.GeoDataFrame(
        {"name": districts[name_col].astype(str).to_numpy()},
        geometry=districts.geometry.to_numpy(),
        crs=districts.crs,
    )
    if "area_m2" in districts.columns:
        out["area_m2"] = districts["area_m2"].astype(float).to_numpy()
    else:
        out["area_m2"] = geodesic_areas_m2(out)
    if (out["area_m2"] <= 0).any() or out["area_m2"].isna().any():
        raise DistrictDataError("District areas must be positive")
    return out[["name", "area_m2", "geometry"]]


class DistrictProvider(Protocol):
    def load_districts(self) -> gpd.GeoDataFrame:
        ...


class StaticDistrictProvider:
    """Districts supplied as an in-memory GeoDataFrame."""

    def __init__(self, districts: gpd.GeoDataFrame, name_col: str = "name"):
        self.districts = districts
        self.name_col = name_col

    def load_districts(self) -> gpd.GeoDataFrame:
        return prepare_districts(self.districts, self.name_col)


class FileDistrictProvider:
    """Districts read from a boundary file (GeoJSON, Shapefile, GeoPackage)."""

    def __init__(self, path: Union[str, Path], name_col: str = "name", layer: Optional[str] = None):
        self.path = Path(path)
        self.name_col = name_col
        self.layer = layer

    def load_districts(self) -> gpd.GeoDataFrame:
        if not self.path.exists():
            raise DistrictDataError(f"District file not found: {self.path}")
        kwargs = {"layer": self.layer} if self.layer else {}
        try:
            districts = gpd.read_file(self.path, **kwargs)
        except Exception as e:
            raise DistrictDataError(f"Could not read district file {self.path}: {e}") from e
        logging.info(f"[DISTRICTS] Read {len(districts)} districts from {self.path} (crs={districts.crs})")
        return prepare_districts(districts, self.name_col)


# --- Containment ---


def reconcile_crs(
    segments: gpd.GeoDataFrame,
    districts: gpd.GeoDataFrame,
    reproject: bool = True,
) -> gpd.GeoDataFrame:
    """
    Return the districts in the CRS of the segments.

    Raises:
        CRSMismatchError: a layer has no CRS, or the CRS differ and
            reprojection is disabled.
    """
    if segments.crs is None or districts.crs is None:
        raise CRSMismatchError("Segments and districts must both declare a CRS")
    if segments.crs == districts.crs:
        return districts
    if not reproject:
        raise CRSMismatchError(
            f"Segment CRS {segments.crs.to_string()} does not match district CRS {districts.crs.to_string()}"
        )
    logging.info(f"[CRS] Reprojecting districts from {districts.crs.to_string()} to {segments.crs.to_string()}")
    return districts.to_crs(segments.crs)


def compute_district_shares(
    segments: gpd.GeoDataFrame,
    districts: gpd.GeoDataFrame,
    reproject: bool = True,
) -> pl.DataFrame:
    """
    Share of segment length contained in each district.

    Args:
        segments: Line geometries from build_segment_geometries.
        districts: Output of prepare_districts (name, area_m2, geometry).
        reproject: Reproject districts when the CRS differ instead of failing.

    Returns:
        Polars DataFrame (DISTRICT_SHARE_SCHEMA), one row per district, sorted
        by raw_length_share descending. Both share columns sum to 1.

    Raises:
        ZeroContainmentError: no segment lies fully inside any district.
        CRSMismatchError: see reconcile_crs.
    """
    districts = reconcile_crs(segments, districts, reproject=reproject)
    districts = districts.reset_index(drop=True)
    districts["district_idx"] = np.arange(len(districts))

    lines = gpd.GeoDataFrame(
        {"length_m": geodesic_lengths_m(segments)},
        geometry=segments.geometry.to_numpy(),
        crs=segments.crs,
    )
    joined = gpd.sjoin(
        lines,
        districts[["district_idx", "geometry"]],
        predicate="within",
        how="inner",
    )
    contained = (
        joined.groupby("district_idx")["length_m"].sum()
        .reindex(districts["district_idx"], fill_value=0.0)
        .to_numpy(dtype=float)
    )
    logging.info(f"[CONTAINMENT] {len(joined)} of {len(lines)} segments fully inside a district")

    total = contained.sum()
    if not total > 0:
        raise ZeroContainmentError(
            f"No segment length is contained in any of {len(districts)} districts"
        )

    areas = districts["area_m2"].to_numpy(dtype=float)
    density = contained / areas
    shares = pl.DataFrame(
        {
            "district_name": districts["name"].tolist(),
            "contained_length_m": contained,
            "area_m2": areas,
            "raw_length_share": contained / total,
            "area_normalized_share": density / density.sum(),
        },
        schema=DISTRICT_SHARE_SCHEMA,
    )
    return shares.sort("raw_length_share", descending=True, maintain_order=True)
