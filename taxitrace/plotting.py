"""
Charts, maps and text summaries for the trace report.
"""
import geopandas as gpd
import matplotlib.pyplot as plt
import plotly.express as px
import polars as pl
from prettytable import PrettyTable

from taxitrace.records import VEHICLE_COL, WEEKDAY_NAMES


def daily_distance_bar(daily: pl.DataFrame) -> "plotly.graph_objs._figure.Figure":
    """
    Grouped bar chart of km travelled per weekday, one bar per taxi.
    """
    if daily.is_empty():
        raise ValueError("No daily distance rows to plot")
    pd_df = daily.to_pandas()
    fig = px.bar(
        pd_df,
        x="day_of_week",
        y="total_distance_km",
        color=VEHICLE_COL,
        barmode="group",
        category_orders={"day_of_week": WEEKDAY_NAMES},
        title="Distance travelled per taxi and day of week",
    )
    fig.update_layout(
        plot_bgcolor="white",
        xaxis_title="Day of week",
        yaxis_title="Distance (km)",
    )
    return fig


def district_share_bar(
    shares: pl.DataFrame, column: str = "raw_length_share"
) -> "plotly.graph_objs._figure.Figure":
    """Bar chart of one share column per district."""
    titles = {
        "raw_length_share": "Share of travelled length per district",
        "area_normalized_share": "Area-normalized share of travelled length per district",
    }
    if column not in titles:
        raise ValueError(f"Unknown share column: {column}")
    pd_df = shares.sort(column, descending=True).to_pandas()
    fig = px.bar(pd_df, x="district_name", y=column, title=titles[column])
    fig.update_traces(marker_color="red")
    fig.update_layout(
        plot_bgcolor="white",
        xaxis_title="District",
        yaxis_title="Share",
    )
    return fig


def segment_speed_map(
    lines: gpd.GeoDataFrame, districts: gpd.GeoDataFrame
) -> "tuple[plt.Figure, plt.Axes]":
    """
    Plot district boundaries and the segment lines coloured by speed.
    """
    if districts.crs is not None and lines.crs is not None and districts.crs != lines.crs:
        districts = districts.to_crs(lines.crs)
    fig, ax = plt.subplots(figsize=(10, 10))
    districts.plot(ax=ax, color="lightgrey", edgecolor="black", linewidth=1, alpha=0.5)
    if not lines.empty:
        lines.plot(
            ax=ax,
            column="speed_kph",
            cmap="viridis",
            linewidth=1.5,
            legend=True,
            legend_kwds={"label": "Speed (km/h)", "shrink": 0.6},
        )
    ax.set_facecolor("white")
    ax.set_title("Taxi segments by speed")
    ax.set_xlabel("Longitude")
    ax.set_ylabel("Latitude")
    plt.tight_layout()
    return fig, ax


def summary_table(daily: pl.DataFrame, shares: pl.DataFrame, mean_km: float) -> str:
    """Plain-text summary of the report tables."""
    table = PrettyTable()
    table.field_names = ["district", "length (km)", "raw share", "area-normalized share"]
    for row in shares.iter_rows(named=True):
        table.add_row(
            [
                row["district_name"],
                f"{row['contained_length_m'] / 1000:.2f}",
                f"{row['raw_length_share']:.3f}",
                f"{row['area_normalized_share']:.3f}",
            ]
        )
    n_taxis = daily[VEHICLE_COL].n_unique() if not daily.is_empty() else 0
    header = (
        f"Taxis: {n_taxis}\n"
        f"Vehicle/day rows: {daily.height}\n"
        f"Mean distance per taxi per day: {mean_km:.2f} km\n"
    )
    return header + "\n" + str(table) + "\n"
