import geopandas as gpd
import pytest
from shapely.geometry import box


@pytest.fixture
def districts_gdf():
    """Two adjacent districts west and east of lon 116.01; East is twice as wide."""
    return gpd.GeoDataFrame(
        {"name": ["West", "East"]},
        geometry=[box(116.0, 39.9, 116.01, 39.92), box(116.01, 39.9, 116.03, 39.92)],
        crs="EPSG:4326",
    )
