"""
Segment kinematics: elapsed time, WGS84 geodesic distance and implied speed
between consecutive observations of each vehicle trace.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import polars as pl
from pyproj import Geod
from tqdm import tqdm

from taxitrace.normalization import iter_traces
from taxitrace.pipeline_helpers import StepMetadataLogger
from taxitrace.records import (
    LAT_COL,
    LON_COL,
    SEGMENT_SCHEMA,
    TIME_COL,
    VEHICLE_COL,
    empty_frame,
)

# --- Constants ---
WGS84 = Geod(ellps="WGS84")
MPS_TO_KPH = 3.6
DEFAULT_MAX_SPEED_KPH = 200.0


def geodesic_distance_m(lon1, lat1, lon2, lat2):
    """
    Distance in meters along the WGS84 ellipsoid (Karney's inverse solution).
    Accepts scalars or equally shaped arrays.
    """
    _, _, dist = WGS84.inv(lon1, lat1, lon2, lat2)
    return dist


def pair_observations(trace: pl.DataFrame) -> pl.DataFrame:
    """
    Build raw segments from one vehicle trace sorted by time.

    Every observation after the first is paired with its predecessor, so a
    trace of n observations gives n - 1 segments. The speed is null where the
    elapsed time is not positive.
    """
    n = trace.height
    if n < 2:
        return empty_frame(SEGMENT_SCHEMA)

    start = trace.head(n - 1)
    end = trace.tail(n - 1)
    distance = geodesic_distance_m(
        start[LON_COL].to_numpy(),
        start[LAT_COL].to_numpy(),
        end[LON_COL].to_numpy(),
        end[LAT_COL].to_numpy(),
    )

    segments = pl.DataFrame(
        [
            start[VEHICLE_COL],
            start[TIME_COL].alias("t_start"),
            end[TIME_COL].alias("t_end"),
            pl.Series("distance_meters", np.asarray(distance, dtype=np.float64)),
            start[LON_COL].alias("from_longitude"),
            start[LAT_COL].alias("from_latitude"),
            end[LON_COL].alias("to_longitude"),
            end[LAT_COL].alias("to_latitude"),
        ]
    )
    return add_implied_speed(
        segments.with_columns(
            ((pl.col("t_end") - pl.col("t_start")).dt.total_microseconds() / 1e6)
            .cast(pl.Float64)
            .alias("dt_seconds")
        )
    ).select(list(SEGMENT_SCHEMA))


def add_implied_speed(df: pl.DataFrame) -> pl.DataFrame:
    """Calculate speed in km/h between points, null when dt_seconds <= 0"""
    return df.with_columns(
        pl.when(pl.col("dt_seconds") > 0)
        .then(pl.col("distance_meters") / pl.col("dt_seconds") * MPS_TO_KPH)
        .otherwise(None)
        .cast(pl.Float64)
        .alias("speed_kph")
    )


def derive_raw_segments(df: pl.DataFrame, progress: bool = False) -> pl.DataFrame:
    """All consecutive-pair segments of a normalized table, before filtering."""
    parts = [
        pair_observations(trace)
        for _, trace in tqdm(
            iter_traces(df), desc="Traces", disable=not progress
        )
    ]
    parts = [p for p in parts if not p.is_empty()]
    if not parts:
        return empty_frame(SEGMENT_SCHEMA)
    return pl.concat(parts, how="vertical").cast(SEGMENT_SCHEMA)


@dataclass(frozen=True)
class SpeedFilterPolicy:
    """
    Plausibility gate for GPS noise and teleport artifacts.

    Segments are kept only when speed_kph is defined and strictly below
    max_speed_kph.
    """

    max_speed_kph: float = DEFAULT_MAX_SPEED_KPH

    def criteria(self) -> str:
        return f"speed_kph is not null and speed_kph < {self.max_speed_kph}"

    def expr(self) -> pl.Expr:
        speed = pl.col("speed_kph")
        return speed.is_not_null() & speed.is_not_nan() & (speed < self.max_speed_kph)

    def apply(self, segments: pl.DataFrame) -> pl.DataFrame:
        return segments.filter(self.expr())


def derive_segments(
    df: pl.DataFrame,
    policy: Optional[SpeedFilterPolicy] = None,
    progress: bool = False,
    metadata_logger: Optional[StepMetadataLogger] = None,
) -> pl.DataFrame:
    """
    Derive plausible segments for every vehicle of a normalized table.

    Args:
        df: Normalized observation table.
        policy: Plausibility gate; defaults to SpeedFilterPolicy().
        progress: Show a tqdm progress bar over vehicles.
        metadata_logger: If given, records the plausibility filtering counts.

    Returns:
        Segment table (SEGMENT_SCHEMA) with implausible segments removed.
    """
    policy = policy or SpeedFilterPolicy()
    raw = derive_raw_segments(df, progress=progress)
    kept = policy.apply(raw)
    if metadata_logger is not None:
        metadata_logger.record_filtering("plausibility", raw.height, kept.height, policy.criteria())
    dropped = raw.height - kept.height
    if dropped > 0:
        logging.info(f"[FILTER] Dropped {dropped} of {raw.height} segments ({policy.criteria()})")
    logging.info(f"[KINEMATICS] Derived {kept.height} segments")
    return kept
