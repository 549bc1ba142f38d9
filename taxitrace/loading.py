"""
Loading of raw GPS observations (taxi_id, time, longitude, latitude).

Malformed input aborts the load; there is no partial-success mode.
"""
import logging
from pathlib import Path
from typing import Union

import pandas as pd
import polars as pl

from taxitrace.pipeline_helpers import TraceLoadError
from taxitrace.records import (
    LAT_COL,
    LON_COL,
    OBSERVATION_COLUMNS,
    OBSERVATION_SCHEMA,
    TIME_COL,
    VEHICLE_COL,
)

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def validate_input_file(path: Union[str, Path]) -> Path:
    """Check if input file exists and return Path object"""
    input_path = Path(path)
    if not input_path.exists():
        raise TraceLoadError(f"Input file not found: {input_path}")
    return input_path


def read_raw_table(input_path: Path) -> pl.DataFrame:
    """Read a CSV or Parquet file without interpreting any column types."""
    suffix = input_path.suffix.lower()
    try:
        if suffix == ".csv":
            # All columns as strings; types are enforced in observations_from_frame
            return pl.read_csv(input_path, infer_schema=False)
        if suffix == ".parquet":
            return pl.read_parquet(input_path)
    except pl.exceptions.PolarsError as e:
        raise TraceLoadError(f"Could not read {input_path}: {e}") from e
    raise TraceLoadError(f"Unsupported input format '{suffix}' for {input_path}")


def _parse_time(df: pl.DataFrame) -> pl.Expr:
    dtype = df.schema[TIME_COL]
    if isinstance(dtype, pl.Datetime):
        return pl.col(TIME_COL).cast(pl.Datetime("us"))
    if dtype == pl.Date:
        return pl.col(TIME_COL).cast(pl.Datetime("us"))
    return (
        pl.col(TIME_COL)
        .cast(pl.Utf8)
        .str.strip_chars()
        .str.replace("T", " ", literal=True)
        .str.to_datetime(TIME_FORMAT, strict=True, time_unit="us")
    )


def observations_from_frame(df: Union[pl.DataFrame, pd.DataFrame]) -> pl.DataFrame:
    """
    Validate an in-memory table and coerce it to the observation schema.

    Args:
        df: Polars or pandas DataFrame with at least the columns
            taxi_id, time, longitude, latitude. Extra columns are dropped.

    Returns:
        Polars DataFrame with exactly the observation columns, in input order.

    Raises:
        TraceLoadError: on missing columns, unparseable timestamps,
            non-numeric coordinates or null values in a required field.
    """
    if isinstance(df, pd.DataFrame):
        df = pl.from_pandas(df)

    missing = [c for c in OBSERVATION_COLUMNS if c not in df.columns]
    if missing:
        raise TraceLoadError(f"Missing required columns: {missing}")

    try:
        out = df.select(
            pl.col(VEHICLE_COL).cast(pl.Utf8, strict=True),
            _parse_time(df),
            pl.col(LON_COL).cast(pl.Float64, strict=True),
            pl.col(LAT_COL).cast(pl.Float64, strict=True),
        )
    except pl.exceptions.PolarsError as e:
        raise TraceLoadError(f"Malformed observation rows: {e}") from e

    null_counts = out.null_count().row(0, named=True)
    bad = {col: n for col, n in null_counts.items() if n > 0}
    if bad:
        raise TraceLoadError(f"Null or unparseable values in required fields: {bad}")
    n_nan = out.filter(pl.col(LON_COL).is_nan() | pl.col(LAT_COL).is_nan()).height
    if n_nan > 0:
        raise TraceLoadError(f"{n_nan} rows with NaN coordinates")

    return out.cast(OBSERVATION_SCHEMA)


def load_observations(path: Union[str, Path]) -> pl.DataFrame:
    """Load raw observations from a CSV or Parquet file."""
    input_path = validate_input_file(path)
    logging.info(f"[LOAD] Reading observations from {input_path}")
    df = observations_from_frame(read_raw_table(input_path))
    n_vehicles = df.select(pl.col(VEHICLE_COL).n_unique()).item()
    logging.info(f"[LOAD] Loaded {df.height} observations for {n_vehicles} vehicles")
    return df
