import logging

import polars as pl

from taxitrace.pipeline_helpers import EmptyResultError
from taxitrace.records import (
    DAILY_DISTANCE_SCHEMA,
    VEHICLE_COL,
    WEEKDAY_NAMES,
    empty_frame,
)


def add_day_of_week(segments: pl.DataFrame, col: str = "t_start") -> pl.DataFrame:
    """
    Add an English weekday label (Monday..Sunday) derived from `col`.
    The label comes from the ISO weekday number, so it does not depend on locale.
    """
    return segments.with_columns(
        pl.col(col)
        .dt.weekday()
        .replace_strict(
            list(range(1, 8)), WEEKDAY_NAMES, return_dtype=pl.Utf8
        )
        .alias("day_of_week")
    )


def summarize_daily_distance(segments: pl.DataFrame) -> pl.DataFrame:
    """
    Total distance in km per vehicle and day of week.

    Only combinations present in the data are returned. The same weekday of
    different weeks falls into one bucket.
    """
    if segments.is_empty():
        return empty_frame(DAILY_DISTANCE_SCHEMA)

    daily = (
        add_day_of_week(segments)
        .group_by([VEHICLE_COL, "day_of_week"])
        .agg((pl.col("distance_meters").sum() / 1000.0).alias("total_distance_km"))
        .with_columns(
            pl.col("day_of_week")
            .replace_strict(WEEKDAY_NAMES, list(range(7)), return_dtype=pl.Int8)
            .alias("_weekday_idx")
        )
        .sort([VEHICLE_COL, "_weekday_idx"])
        .drop("_weekday_idx")
    )
    logging.info(f"[DAILY] {daily.height} vehicle/day rows")
    return daily.cast(DAILY_DISTANCE_SCHEMA)


def mean_daily_distance(daily: pl.DataFrame) -> float:
    """Mean of total_distance_km over all vehicle/day rows."""
    if daily.is_empty():
        raise EmptyResultError("No daily distance rows to average", stage="daily")
    return float(daily["total_distance_km"].mean())
