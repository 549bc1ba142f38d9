import logging
from typing import Dict, Iterator, Tuple

import polars as pl

from taxitrace.records import (
    LAT_COL,
    LON_COL,
    TIME_COL,
    VEHICLE_COL,
    Observation,
    to_records,
)

DEDUP_KEY = [TIME_COL, LON_COL, LAT_COL]


def normalize_observations(df: pl.DataFrame) -> pl.DataFrame:
    """
    Deduplicate observations and sort them into per-vehicle time order.

    Rows are unique on (time, longitude, latitude); the vehicle id is not part
    of the key, so two vehicles reporting the same fix collapse to the first
    row in input order. Sorting is stable, so equal timestamps keep their
    input order.
    """
    before = df.height
    deduped = df.unique(subset=DEDUP_KEY, keep="first", maintain_order=True)
    removed = before - deduped.height
    if removed > 0:
        logging.info(f"[NORMALIZE] Removed {removed} duplicate observations")
    return deduped.sort([VEHICLE_COL, TIME_COL], maintain_order=True)


def iter_traces(df: pl.DataFrame) -> Iterator[Tuple[str, pl.DataFrame]]:
    """Yield (taxi_id, trace) for every vehicle of a normalized table."""
    if df.is_empty():
        return
    for key, trace in df.group_by(VEHICLE_COL, maintain_order=True):
        # group_by yields tuple keys for a single column
        taxi_id = key[0] if isinstance(key, tuple) else key
        yield taxi_id, trace.sort(TIME_COL, maintain_order=True)


def trace_records(df: pl.DataFrame) -> Dict[str, Tuple[Observation, ...]]:
    """Map each taxi_id to its ordered tuple of Observation records."""
    return {
        taxi_id: tuple(to_records(trace, Observation))
        for taxi_id, trace in iter_traces(df)
    }
