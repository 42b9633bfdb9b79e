from datetime import date, timedelta
from unittest.mock import MagicMock

import pytest
from ee import EEException

import flood_analysis as fa


FLOOD_DATE = date(2023, 11, 1)


def make_layers():
    return fa.FloodLayers(
        before=MagicMock(), after=MagicMock(), change=MagicMock(),
        change_thr=MagicMock(), flooded=MagicMock(),
        windows=fa.analysis_windows(FLOOD_DATE),
    )


def area_stats(layers):
    area_img = layers.flooded.multiply.return_value.rename.return_value
    return area_img.reduceRegion.return_value


# ── Windows ────────────────────────────────────────────────────────────────────
def test_before_window_is_the_30_days_preceding_the_flood_date():
    w = fa.analysis_windows(FLOOD_DATE)
    assert w.before_start == date(2023, 10, 2)
    assert w.before_end == FLOOD_DATE
    assert w.before_end - w.before_start == timedelta(days=30)


def test_after_window_is_the_30_days_following_the_flood_date():
    w = fa.analysis_windows(FLOOD_DATE)
    assert w.after_start == FLOOD_DATE
    assert w.after_end == date(2023, 12, 1)
    assert w.after_end - w.after_start == timedelta(days=30)


def test_windows_cross_year_boundary():
    w = fa.analysis_windows(date(2024, 1, 10))
    assert w.before_start == date(2023, 12, 11)
    assert w.after_end == date(2024, 2, 9)


def test_default_flood_date_within_selectable_range():
    assert fa.MIN_FLOOD_DATE <= fa.DEFAULT_FLOOD_DATE <= fa.MAX_FLOOD_DATE


# ── Labels ─────────────────────────────────────────────────────────────────────
def test_pending_label():
    assert fa.PENDING_LABEL == "Flooded Area: Pending..."


@pytest.mark.parametrize("area, expected", [
    (1234.567, "Flooded Area: 1234.57 sq meters"),
    (0.0, "Flooded Area: 0.00 sq meters"),
    (5, "Flooded Area: 5.00 sq meters"),
])
def test_area_label_has_two_decimals(area, expected):
    assert fa.format_area_label(area) == expected


def test_area_label_fallback():
    assert fa.format_area_label(None) == "Flooded Area: Could not calculate."


# ── Pipeline ───────────────────────────────────────────────────────────────────
def test_sar_composite_filters(fake_ee):
    aoi = MagicMock()
    fa.sar_composite(aoi, date(2023, 10, 2), date(2023, 11, 1))

    fake_ee.ImageCollection.assert_called_once_with("COPERNICUS/S1_GRD")
    coll = fake_ee.ImageCollection.return_value
    coll.filterDate.assert_called_once_with("2023-10-02", "2023-11-01")
    fake_ee.Filter.listContains.assert_called_once_with("transmitterReceiverPolarisation", "VV")
    fake_ee.Filter.eq.assert_any_call("instrumentMode", "IW")
    fake_ee.Filter.eq.assert_any_call("orbitProperties_pass", "ASCENDING")


def test_flood_layers_uses_both_windows(fake_ee):
    aoi = MagicMock()
    fa.flood_layers(aoi, FLOOD_DATE)

    filter_date = fake_ee.ImageCollection.return_value.filterDate
    filter_date.assert_any_call("2023-10-02", "2023-11-01")
    filter_date.assert_any_call("2023-11-01", "2023-12-01")


def test_flood_layers_thresholds_change_at_5_db(fake_ee):
    layers = fa.flood_layers(MagicMock(), FLOOD_DATE)

    layers.before.subtract.assert_called_once_with(layers.after)
    assert layers.change is layers.before.subtract.return_value
    layers.change.gt.assert_called_once_with(5)
    assert layers.change_thr is layers.change.gt.return_value


def test_flood_layers_masks_out_permanent_water(fake_ee):
    layers = fa.flood_layers(MagicMock(), FLOOD_DATE)

    landcover = fake_ee.ImageCollection.return_value.select
    landcover.assert_called_once_with("label")
    landcover.return_value.filterDate.assert_called_once_with("2022", "2023")
    mode = landcover.return_value.filterDate.return_value.filterBounds.return_value.mode
    mode.return_value.eq.assert_called_once_with(0)
    water_mask = mode.return_value.eq.return_value.Not.return_value

    layers.change_thr.updateMask.assert_called_once_with(water_mask)
    masked = layers.change_thr.updateMask.return_value
    masked.updateMask.assert_called_once_with(layers.change_thr)
    assert layers.flooded is masked.updateMask.return_value


def test_flooded_area_sums_pixel_area(fake_ee):
    layers = make_layers()
    aoi = MagicMock()
    area_stats(layers).getInfo.return_value = {"flooded_area": 98765.4321}

    assert fa.flooded_area(layers, aoi) == pytest.approx(98765.4321)

    layers.flooded.multiply.assert_called_once_with(fake_ee.Image.pixelArea.return_value)
    area_img = layers.flooded.multiply.return_value.rename.return_value
    area_img.reduceRegion.assert_called_once_with(
        reducer=fake_ee.Reducer.sum.return_value, geometry=aoi, scale=30, maxPixels=1e13
    )


def test_flooded_area_zero_is_a_result(fake_ee):
    layers = make_layers()
    area_stats(layers).getInfo.return_value = {"flooded_area": 0}
    assert fa.flooded_area(layers, MagicMock()) == 0.0


@pytest.mark.parametrize("result", [None, {}, {"flooded_area": None}, {"flooded_area": "n/a"},
                                    {"VV": 12.0}])
def test_flooded_area_absent_or_malformed(fake_ee, result):
    layers = make_layers()
    area_stats(layers).getInfo.return_value = result
    assert fa.flooded_area(layers, MagicMock()) is None


def test_flooded_area_service_error(fake_ee, caplog):
    layers = make_layers()
    area_stats(layers).getInfo.side_effect = EEException("Computation timed out.")

    assert fa.flooded_area(layers, MagicMock()) is None
    assert "Computation timed out." in caplog.text


# ── Precipitation ──────────────────────────────────────────────────────────────
def test_precipitation_series_covers_whole_period(fake_ee):
    aoi = MagicMock()
    coll = fake_ee.ImageCollection.return_value.select.return_value.filterDate.return_value
    features = coll.map.return_value.filter.return_value
    features.reduceColumns.return_value.get.return_value.getInfo.return_value = [
        [1698883200000, 0.4], [1698796800000, 1.25],
    ]

    df = fa.precipitation_series(aoi, fa.analysis_windows(FLOOD_DATE))

    fake_ee.ImageCollection.assert_called_once_with("NASA/GPM_L3/IMERG_V07")
    fake_ee.ImageCollection.return_value.select.assert_called_once_with("precipitation")
    fake_ee.ImageCollection.return_value.select.return_value.filterDate.assert_called_once_with(
        "2023-10-02", "2023-12-01"
    )
    assert list(df["Precipitation (mm/hr)"]) == [1.25, 0.4]


def test_precipitation_series_reduces_mean_per_image(fake_ee):
    aoi = MagicMock()
    coll = fake_ee.ImageCollection.return_value.select.return_value.filterDate.return_value
    coll.map.return_value.filter.return_value.reduceColumns.return_value.get.return_value \
        .getInfo.return_value = []
    fa.precipitation_series(aoi, fa.analysis_windows(FLOOD_DATE))

    to_feature = coll.map.call_args[0][0]
    img = MagicMock()
    to_feature(img)

    img.reduceRegion.assert_called_once_with(
        reducer=fake_ee.Reducer.mean.return_value, geometry=aoi, scale=10000
    )
    img.reduceRegion.return_value.get.assert_called_once_with("precipitation")
    img.get.assert_called_once_with("system:time_start")


def test_series_frame_sorted_by_date():
    df = fa.series_frame([[1698883200000, 0.4], [1698796800000, 1.25]])

    assert list(df.columns) == ["Date", "Precipitation (mm/hr)"]
    assert df["Date"].iloc[0].strftime("%Y-%m-%d") == "2023-11-01"
    assert df["Date"].is_monotonic_increasing


def test_series_frame_empty():
    df = fa.series_frame(None)
    assert df.empty
    assert list(df.columns) == ["Date", "Precipitation (mm/hr)"]


def test_aoi_geometry_is_planar_rectangle(fake_ee):
    geometry = fa.aoi_geometry([[25.5, 67.5], [27.5, 69.5]])

    fake_ee.Geometry.Rectangle.assert_called_once_with([67.5, 25.5, 69.5, 27.5], geodesic=False)
    assert geometry is fake_ee.Geometry.Rectangle.return_value
