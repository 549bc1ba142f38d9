from datetime import datetime

import geopandas as gpd
import pandas as pd
import polars as pl
import pytest
from shapely.geometry import LineString, MultiPolygon, Point, Polygon, box

from taxitrace.districts import (
    FileDistrictProvider,
    StaticDistrictProvider,
    compute_district_shares,
    geodesic_lengths_m,
    polygon_area_m2,
    prepare_districts,
    reconcile_crs,
)
from taxitrace.kinematics import geodesic_distance_m
from taxitrace.pipeline_helpers import CRSMismatchError, DistrictDataError, ZeroContainmentError
from taxitrace.records import DISTRICT_SHARE_SCHEMA, DistrictShare, to_records


def make_lines(coords, crs="EPSG:4326"):
    return gpd.GeoDataFrame(
        {
            "taxi_id": [f"T{i}" for i in range(len(coords))],
            "t_start": [datetime(2008, 2, 3, 8)] * len(coords),
            "speed_kph": [20.0] * len(coords),
        },
        geometry=[LineString(c) for c in coords],
        crs=crs,
    )


@pytest.fixture
def lines():
    return make_lines(
        [
            [(116.002, 39.905), (116.004, 39.905)],  # West
            [(116.003, 39.910), (116.003, 39.915)],  # West
            [(116.015, 39.905), (116.020, 39.905)],  # East
            [(116.008, 39.910), (116.012, 39.910)],  # crosses the border
        ]
    )


def test_prepare_districts_computes_area(districts_gdf):
    districts = prepare_districts(districts_gdf)
    assert list(districts.columns) == ["name", "area_m2", "geometry"]
    west, east = districts["area_m2"].tolist()
    # 0.01 x 0.02 degrees at ~39.9N is roughly 0.85 km x 2.2 km
    assert west == pytest.approx(1.9e6, rel=0.05)
    assert east == pytest.approx(2 * west, rel=1e-3)


def test_area_ignores_ring_orientation():
    ccw = box(116.0, 39.9, 116.01, 39.92)
    cw = Polygon(list(ccw.exterior.coords)[::-1])
    assert not cw.exterior.is_ccw
    assert polygon_area_m2(cw) == pytest.approx(polygon_area_m2(ccw))

    other = box(116.02, 39.9, 116.03, 39.92)
    mixed = MultiPolygon([other, cw])
    assert polygon_area_m2(mixed) == pytest.approx(2 * polygon_area_m2(ccw), rel=1e-3)


def test_area_subtracts_holes():
    outer = box(116.0, 39.9, 116.02, 39.92)
    inner = box(116.005, 39.905, 116.015, 39.915)
    # hole wound the same way as the shell
    holed = Polygon(outer.exterior.coords, [inner.exterior.coords])
    expected = polygon_area_m2(outer) - polygon_area_m2(inner)
    assert polygon_area_m2(holed) == pytest.approx(expected, rel=1e-6)

    gdf = gpd.GeoDataFrame({"name": ["Ring"]}, geometry=[holed], crs="EPSG:4326")
    assert prepare_districts(gdf)["area_m2"].tolist() == [pytest.approx(expected, rel=1e-6)]


def test_prepare_districts_keeps_given_area(districts_gdf):
    districts_gdf["area_m2"] = [10.0, 20.0]
    assert prepare_districts(districts_gdf)["area_m2"].tolist() == [10.0, 20.0]


def test_prepare_districts_renames_name_column(districts_gdf):
    renamed = districts_gdf.rename(columns={"name": "NAME_2"})
    districts = StaticDistrictProvider(renamed, name_col="NAME_2").load_districts()
    assert districts["name"].tolist() == ["West", "East"]


@pytest.mark.parametrize(
    "gdf",
    [
        gpd.GeoDataFrame({"name": ["X"]}, geometry=[box(0, 0, 1, 1)]),
        gpd.GeoDataFrame({"label": ["X"]}, geometry=[box(0, 0, 1, 1)], crs="EPSG:4326"),
        gpd.GeoDataFrame({"name": ["X"]}, geometry=[Point(0, 0)], crs="EPSG:4326"),
        gpd.GeoDataFrame({"name": ["X"], "area_m2": [0.0]}, geometry=[box(0, 0, 1, 1)], crs="EPSG:4326"),
    ],
    ids=["no-crs", "no-name", "not-polygon", "zero-area"],
)
def test_prepare_districts_rejects_bad_layers(gdf):
    with pytest.raises(DistrictDataError):
        prepare_districts(gdf)


def test_file_district_provider(tmp_path, districts_gdf):
    path = tmp_path / "districts.geojson"
    districts_gdf.to_file(path, driver="GeoJSON")
    districts = FileDistrictProvider(path).load_districts()
    assert districts["name"].tolist() == ["West", "East"]
    assert districts.crs == "EPSG:4326"


def test_file_district_provider_missing_file(tmp_path):
    with pytest.raises(DistrictDataError, match="not found"):
        FileDistrictProvider(tmp_path / "missing.geojson").load_districts()


def test_geodesic_lengths_match_point_distance(lines):
    lengths = geodesic_lengths_m(lines)
    assert lengths[0] == pytest.approx(geodesic_distance_m(116.002, 39.905, 116.004, 39.905))


def test_district_shares(lines, districts_gdf):
    districts = prepare_districts(districts_gdf)
    shares = compute_district_shares(lines, districts)
    assert shares.schema == pl.Schema(DISTRICT_SHARE_SCHEMA)
    by_name = {row["district_name"]: row for row in shares.iter_rows(named=True)}

    lengths = geodesic_lengths_m(lines)
    west_len = lengths[0] + lengths[1]
    east_len = lengths[2]
    assert by_name["West"]["contained_length_m"] == pytest.approx(west_len)
    assert by_name["East"]["contained_length_m"] == pytest.approx(east_len)
    assert by_name["West"]["raw_length_share"] == pytest.approx(west_len / (west_len + east_len))

    west_density = west_len / by_name["West"]["area_m2"]
    east_density = east_len / by_name["East"]["area_m2"]
    assert by_name["East"]["area_normalized_share"] == pytest.approx(
        east_density / (west_density + east_density)
    )


def test_district_shares_sum_to_one(lines, districts_gdf):
    shares = compute_district_shares(lines, prepare_districts(districts_gdf))
    assert shares["raw_length_share"].sum() == pytest.approx(1.0)
    assert shares["area_normalized_share"].sum() == pytest.approx(1.0)
    assert shares["raw_length_share"].to_list() == sorted(shares["raw_length_share"].to_list(), reverse=True)
    records = to_records(shares, DistrictShare)
    assert [r.district_name for r in records] == shares["district_name"].to_list()


def test_district_without_segments_gets_zero(lines, districts_gdf):
    extra = gpd.GeoDataFrame(
        {"name": ["Far"]}, geometry=[box(117.0, 40.5, 117.1, 40.6)], crs="EPSG:4326"
    )
    districts = prepare_districts(pd.concat([districts_gdf, extra], ignore_index=True))
    shares = compute_district_shares(lines, districts)
    far = shares.filter(pl.col("district_name") == "Far").row(0, named=True)
    assert far["contained_length_m"] == 0.0
    assert far["raw_length_share"] == 0.0
    assert far["area_normalized_share"] == 0.0
    assert shares["raw_length_share"].sum() == pytest.approx(1.0)


def test_zero_containment_fails(lines):
    far = prepare_districts(
        gpd.GeoDataFrame({"name": ["Far"]}, geometry=[box(0.0, 0.0, 1.0, 1.0)], crs="EPSG:4326")
    )
    with pytest.raises(ZeroContainmentError) as excinfo:
        compute_district_shares(lines, far)
    assert excinfo.value.stage == "containment"


def test_zero_containment_with_no_segments(districts_gdf):
    with pytest.raises(ZeroContainmentError):
        compute_district_shares(make_lines([]), prepare_districts(districts_gdf))


def test_districts_in_other_crs_are_reprojected(lines, districts_gdf):
    expected = compute_district_shares(lines, prepare_districts(districts_gdf))
    projected = prepare_districts(districts_gdf.to_crs("EPSG:3857"))
    shares = compute_district_shares(lines, projected)
    assert shares["district_name"].to_list() == expected["district_name"].to_list()
    assert shares["raw_length_share"].to_list() == pytest.approx(expected["raw_length_share"].to_list())
    assert shares["area_normalized_share"].to_list() == pytest.approx(
        expected["area_normalized_share"].to_list(), rel=1e-6
    )


def test_crs_mismatch_without_reprojection(lines, districts_gdf):
    projected = prepare_districts(districts_gdf.to_crs("EPSG:3857"))
    with pytest.raises(CRSMismatchError):
        compute_district_shares(lines, projected, reproject=False)


def test_missing_crs_is_rejected(districts_gdf):
    no_crs = make_lines([[(116.002, 39.905), (116.004, 39.905)]], crs=None)
    with pytest.raises(CRSMismatchError):
        reconcile_crs(no_crs, prepare_districts(districts_gdf))


def test_file_district_provider_unreadable_file(tmp_path):
    path = tmp_path / "broken.geojson"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(DistrictDataError) as excinfo:
        FileDistrictProvider(path).load_districts()
    assert excinfo.value.stage == "districts"
