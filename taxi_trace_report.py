import marimo

__generated_with = "0.12.9"
app = marimo.App(width="full")


@app.cell
def _():
    import marimo as mo
    import polars as pl
    from taxitrace.loading import load_observations
    from taxitrace.normalization import normalize_observations
    from taxitrace.kinematics import SpeedFilterPolicy, derive_segments
    from taxitrace.daily import summarize_daily_distance, mean_daily_distance
    from taxitrace.geometry import build_segment_geometries, select_segments_on_day
    from taxitrace.districts import FileDistrictProvider, compute_district_shares
    from taxitrace.plotting import daily_distance_bar, district_share_bar, segment_speed_map
    return (
        FileDistrictProvider,
        SpeedFilterPolicy,
        build_segment_geometries,
        compute_district_shares,
        daily_distance_bar,
        derive_segments,
        district_share_bar,
        load_observations,
        mean_daily_distance,
        mo,
        normalize_observations,
        pl,
        segment_speed_map,
        select_segments_on_day,
        summarize_daily_distance,
    )


@app.cell
def _(mo):
    mo.md(
        """
        # Taxi traces in Beijing

        GPS fixes of a handful of taxis over one week. Each pair of consecutive
        fixes of a taxi becomes a segment with a geodesic length and an implied
        speed; segments at 200 km/h or more are treated as GPS noise.
        """
    )
    return


@app.cell
def _(load_observations, normalize_observations):
    observations = load_observations("taxi_traces.csv")
    traces = normalize_observations(observations)
    traces.head()
    return observations, traces


@app.cell
def _(SpeedFilterPolicy, derive_segments, traces):
    segments = derive_segments(traces, SpeedFilterPolicy(max_speed_kph=200.0))
    segments.describe()
    return (segments,)


@app.cell
def _(mean_daily_distance, mo, segments, summarize_daily_distance):
    daily = summarize_daily_distance(segments)
    mean_km = mean_daily_distance(daily)
    mo.md(f"On average a taxi covers **{mean_km:.1f} km** per day of the week.")
    return daily, mean_km


@app.cell
def _(daily, daily_distance_bar):
    daily_distance_bar(daily)
    return


@app.cell
def _(build_segment_geometries, segments, select_segments_on_day):
    # Map only the 3rd of the month to keep the plot readable
    lines = build_segment_geometries(select_segments_on_day(segments, 3))
    return (lines,)


@app.cell
def _(FileDistrictProvider):
    districts = FileDistrictProvider("beijing_districts.geojson", name_col="name").load_districts()
    return (districts,)


@app.cell
def _(districts, lines, segment_speed_map):
    fig, ax = segment_speed_map(lines, districts)
    ax
    return ax, fig


@app.cell
def _(compute_district_shares, districts, lines):
    shares = compute_district_shares(lines, districts)
    shares
    return (shares,)


@app.cell
def _(district_share_bar, shares):
    district_share_bar(shares, "raw_length_share")
    return


@app.cell
def _(mo):
    mo.md(
        """
        Large outer districts collect a lot of length simply because they are
        large. Dividing by district area gives a density that favours the
        central districts. Segments crossing a district boundary are left out
        of both charts.
        """
    )
    return


@app.cell
def _(district_share_bar, shares):
    district_share_bar(shares, "area_normalized_share")
    return


if __name__ == "__main__":
    app.run()
