"""
Record types and table schemas for the taxi trace pipeline.

Each stage passes a polars DataFrame with one of the schemas below; the frozen
dataclasses are the row-level view of the same tables.
"""
import datetime
from dataclasses import dataclass
from typing import List, Type, TypeVar

import polars as pl

# --- Column names ---

VEHICLE_COL = "taxi_id"
TIME_COL = "time"
LON_COL = "longitude"
LAT_COL = "latitude"

OBSERVATION_COLUMNS = [VEHICLE_COL, TIME_COL, LON_COL, LAT_COL]

WEEKDAY_NAMES = [
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
]

# --- Schemas ---

OBSERVATION_SCHEMA = {
    VEHICLE_COL: pl.Utf8,
    TIME_COL: pl.Datetime("us"),
    LON_COL: pl.Float64,
    LAT_COL: pl.Float64,
}

SEGMENT_SCHEMA = {
    VEHICLE_COL: pl.Utf8,
    "t_start": pl.Datetime("us"),
    "t_end": pl.Datetime("us"),
    "dt_seconds": pl.Float64,
    "distance_meters": pl.Float64,
    "speed_kph": pl.Float64,
    "from_longitude": pl.Float64,
    "from_latitude": pl.Float64,
    "to_longitude": pl.Float64,
    "to_latitude": pl.Float64,
}

DAILY_DISTANCE_SCHEMA = {
    VEHICLE_COL: pl.Utf8,
    "day_of_week": pl.Utf8,
    "total_distance_km": pl.Float64,
}

DISTRICT_SHARE_SCHEMA = {
    "district_name": pl.Utf8,
    "contained_length_m": pl.Float64,
    "area_m2": pl.Float64,
    "raw_length_share": pl.Float64,
    "area_normalized_share": pl.Float64,
}


def empty_frame(schema: dict) -> pl.DataFrame:
    """Empty DataFrame with the given schema."""
    return pl.DataFrame(schema=schema)


# --- Records ---


@dataclass(frozen=True)
class Observation:
    taxi_id: str
    time: datetime.datetime
    longitude: float
    latitude: float


@dataclass(frozen=True)
class Segment:
    taxi_id: str
    t_start: datetime.datetime
    t_end: datetime.datetime
    dt_seconds: float
    distance_meters: float
    speed_kph: float
    from_longitude: float
    from_latitude: float
    to_longitude: float
    to_latitude: float

    @property
    def from_point(self):
        return (self.from_longitude, self.from_latitude)

    @property
    def to_point(self):
        return (self.to_longitude, self.to_latitude)


@dataclass(frozen=True)
class DailyDistance:
    taxi_id: str
    day_of_week: str
    total_distance_km: float


@dataclass(frozen=True)
class DistrictShare:
    district_name: str
    contained_length_m: float
    area_m2: float
    raw_length_share: float
    area_normalized_share: float


R = TypeVar("R")


def to_records(df: pl.DataFrame, record_type: Type[R]) -> List[R]:
    """Convert a pipeline table into a list of records of `record_type`."""
    fields = list(record_type.__dataclass_fields__)
    missing = set(fields) - set(df.columns)
    if missing:
        raise ValueError(f"Columns not found for {record_type.__name__}: {missing}")
    return [record_type(**row) for row in df.select(fields).iter_rows(named=True)]
