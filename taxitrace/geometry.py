"""
Line geometries for speed-tagged segments.
"""
import geopandas as gpd
import polars as pl
from shapely.geometry import LineString

from taxitrace.pipeline_helpers import PipelineError
from taxitrace.records import LAT_COL, LON_COL, VEHICLE_COL

SEGMENT_CRS = "EPSG:4326"
GEOMETRY_KEY = [VEHICLE_COL, "t_start", LON_COL, LAT_COL]


def select_segments_on_day(segments: pl.DataFrame, day: int) -> pl.DataFrame:
    """Segments whose t_start falls on day-of-month `day`."""
    if not 1 <= day <= 31:
        raise PipelineError(f"day must be between 1 and 31, got {day}", stage="geometry")
    return segments.filter(pl.col("t_start").dt.day() == day)


def build_segment_geometries(segments: pl.DataFrame) -> gpd.GeoDataFrame:
    """
    One two-point LineString per segment, from the start point to the end point,
    with the segment speed attached. Consecutive segments are not merged.

    Returns:
        GeoDataFrame with columns taxi_id, t_start, longitude, latitude
        (start point), speed_kph and geometry, in EPSG:4326.
    """
    rows = segments.select(
        VEHICLE_COL,
        "t_start",
        "from_longitude",
        "from_latitude",
        "to_longitude",
        "to_latitude",
        "speed_kph",
    )
    geometries = [
        LineString([(lon1, lat1), (lon2, lat2)])
        for lon1, lat1, lon2, lat2 in zip(
            rows["from_longitude"].to_list(),
            rows["from_latitude"].to_list(),
            rows["to_longitude"].to_list(),
            rows["to_latitude"].to_list(),
        )
    ]
    return gpd.GeoDataFrame(
        {
            VEHICLE_COL: rows[VEHICLE_COL].to_list(),
            "t_start": rows["t_start"].to_pandas(),
            LON_COL: rows["from_longitude"].to_list(),
            LAT_COL: rows["from_latitude"].to_list(),
            "speed_kph": rows["speed_kph"].to_list(),
        },
        geometry=gpd.GeoSeries(geometries, crs=SEGMENT_CRS),
        crs=SEGMENT_CRS,
    )
