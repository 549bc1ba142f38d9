"""
trace_report.py

Batch report for taxi GPS traces.
- Loads raw observations (CSV or Parquet), normalizes them into per-taxi traces.
- Derives segment kinematics (geodesic distance, implied speed) and filters implausible segments.
- Summarizes distance per taxi and day of week.
- Builds speed-tagged segment lines for one day of the month and relates them to district polygons.
- Outputs: segments.parquet, daily_distance.parquet, segment_lines.geojson, district_shares.parquet,
  daily_distance.html, district_shares.html, district_shares_area_normalized.html,
  segment_speed_map.png, summary.txt, step_metadata.json

Usage:
    python trace_report.py --input taxi_traces.csv --districts beijing_districts.geojson -o report
"""

import argparse
import logging
import os
import sys
from dataclasses import dataclass
from typing import Optional

import geopandas as gpd
import matplotlib.pyplot as plt
import polars as pl

from taxitrace.daily import mean_daily_distance, summarize_daily_distance
from taxitrace.districts import DistrictProvider, FileDistrictProvider, compute_district_shares
from taxitrace.geometry import build_segment_geometries, select_segments_on_day
from taxitrace.kinematics import SpeedFilterPolicy, derive_segments
from taxitrace.loading import load_observations
from taxitrace.normalization import normalize_observations
from taxitrace.pipeline_helpers import (
    EmptyResultError,
    PipelineConfig,
    PipelineError,
    StepMetadataLogger,
    configure_logging,
    profile_step,
)
from taxitrace.plotting import (
    daily_distance_bar,
    district_share_bar,
    segment_speed_map,
    summary_table,
)
from taxitrace.records import VEHICLE_COL


@dataclass(frozen=True)
class ReportTables:
    segments: pl.DataFrame
    daily: pl.DataFrame
    mean_daily_km: float
    lines: gpd.GeoDataFrame
    districts: gpd.GeoDataFrame
    shares: pl.DataFrame


@profile_step("pipeline")
def run_pipeline(
    input_path: str,
    provider: DistrictProvider,
    config: Optional[PipelineConfig] = None,
    metadata_logger: Optional[StepMetadataLogger] = None,
) -> ReportTables:
    """
    Run load -> normalize -> derive -> aggregate -> geometry -> containment.

    Raises:
        PipelineError: any stage failure; the message names the stage.
    """
    config = config or PipelineConfig()
    meta = metadata_logger or StepMetadataLogger(output_dir=".")
    meta.add_stat("config", config.to_dict())

    observations = load_observations(input_path)
    meta.add_stat("observations", observations.height)

    normalized = normalize_observations(observations)
    meta.record_filtering("dedup", observations.height, normalized.height, "unique (time, longitude, latitude)")
    if normalized.is_empty():
        raise EmptyResultError("Input contains no observations", stage="normalize")
    meta.add_stat("vehicles", normalized[VEHICLE_COL].n_unique())

    policy = SpeedFilterPolicy(max_speed_kph=config.max_speed_kph)
    segments = derive_segments(normalized, policy, progress=True, metadata_logger=meta)
    if segments.is_empty():
        raise EmptyResultError("No plausible segments after filtering", stage="kinematics")

    daily = summarize_daily_distance(segments)
    mean_km = mean_daily_distance(daily)
    meta.add_stat("mean_daily_distance_km", mean_km)
    logging.info(f"[DAILY] Mean distance per taxi per day: {mean_km:.2f} km")

    day_segments = select_segments_on_day(segments, config.day_of_month)
    if day_segments.is_empty():
        raise EmptyResultError(f"No segments start on day {config.day_of_month} of the month", stage="geometry")
    lines = build_segment_geometries(day_segments)
    meta.add_stat("segment_lines", len(lines))

    districts = provider.load_districts()
    meta.add_stat("districts", len(districts))
    shares = compute_district_shares(lines, districts, reproject=config.reproject)

    return ReportTables(
        segments=segments,
        daily=daily,
        mean_daily_km=mean_km,
        lines=lines,
        districts=districts,
        shares=shares,
    )


def save_parquet(df: pl.DataFrame, path: str, label: str = None):
    df.write_parquet(path)
    logging.info(f"Saved {label or path} to {path} (shape: {df.shape})")


def write_report(tables: ReportTables, output_dir: str) -> None:
    """Write tables, charts, the map and the text summary to output_dir."""
    os.makedirs(output_dir, exist_ok=True)
    save_parquet(tables.segments, os.path.join(output_dir, "segments.parquet"), label="Segments")
    save_parquet(tables.daily, os.path.join(output_dir, "daily_distance.parquet"), label="Daily distance")
    save_parquet(tables.shares, os.path.join(output_dir, "district_shares.parquet"), label="District shares")

    lines_path = os.path.join(output_dir, "segment_lines.geojson")
    tables.lines.to_file(lines_path, driver="GeoJSON")
    logging.info(f"Saved segment lines to {lines_path} ({len(tables.lines)} features)")

    daily_distance_bar(tables.daily).write_html(os.path.join(output_dir, "daily_distance.html"))
    district_share_bar(tables.shares, "raw_length_share").write_html(
        os.path.join(output_dir, "district_shares.html")
    )
    district_share_bar(tables.shares, "area_normalized_share").write_html(
        os.path.join(output_dir, "district_shares_area_normalized.html")
    )

    fig, _ = segment_speed_map(tables.lines, tables.districts)
    fig.savefig(os.path.join(output_dir, "segment_speed_map.png"), dpi=300, bbox_inches="tight")
    plt.close(fig)

    with open(os.path.join(output_dir, "summary.txt"), "w") as f:
        f.write(summary_table(tables.daily, tables.shares, tables.mean_daily_km))
    logging.info(f"Report written to {output_dir}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Taxi trace report: kinematics, daily distance and district shares.")
    parser.add_argument("--input", "-i", required=True, help="Input observations file (CSV or Parquet)")
    parser.add_argument("--districts", "-d", required=True, help="District boundary file (GeoJSON, Shapefile, GeoPackage)")
    parser.add_argument("--output-dir", "-o", default="report", help="Output directory for results (default: report)")
    parser.add_argument("--district-name-col", default="name", help="Column with the district name (default: name)")
    parser.add_argument("--day", type=int, default=3, help="Day of month used for the segment map (default: 3)")
    parser.add_argument("--max-speed-kph", type=float, default=200.0, help="Drop segments at or above this speed (default: 200)")
    parser.add_argument("--no-reproject", action="store_true", help="Fail instead of reprojecting districts to the segment CRS")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    configure_logging(verbose=args.verbose)
    logging.info(f"Running trace report: {args}")

    config = PipelineConfig(
        max_speed_kph=args.max_speed_kph,
        day_of_month=args.day,
        reproject=not args.no_reproject,
        district_name_col=args.district_name_col,
    )
    metadata_logger = StepMetadataLogger(output_dir=args.output_dir)
    provider = FileDistrictProvider(args.districts, name_col=config.district_name_col)
    try:
        tables = run_pipeline(args.input, provider, config, metadata_logger)
        write_report(tables, args.output_dir)
    except PipelineError as e:
        logging.error(f"Report aborted: {e}")
        metadata_logger.add_stat("error", {"stage": e.stage, "condition": e.condition})
        metadata_logger.save()
        sys.exit(1)
    metadata_logger.log_stats()
    metadata_logger.save()


if __name__ == "__main__":
    main()
