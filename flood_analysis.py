import logging
from dataclasses import dataclass
from datetime import date, timedelta

import ee
import pandas as pd
from ee import EEException

logger = logging.getLogger(__name__)

# ── Constants ──────────────────────────────────────────────────────────────────
SAR_COLLECTION = "COPERNICUS/S1_GRD"
SAR_BAND       = "VV"

LANDCOVER_COLLECTION = "GOOGLE/DYNAMICWORLD/V1"
LANDCOVER_START      = "2022"
LANDCOVER_END        = "2023"
WATER_CLASS          = 0

PRECIP_COLLECTION = "NASA/GPM_L3/IMERG_V07"
PRECIP_BAND       = "precipitation"  # mm/hr
PRECIP_SCALE      = 10000

WINDOW_DAYS         = 30
CHANGE_THRESHOLD_DB = 5
ANALYSIS_SCALE      = 30
MAX_PIXELS          = 1e13
AREA_BAND           = "flooded_area"

DEFAULT_FLOOD_DATE = date(2023, 11, 1)
MIN_FLOOD_DATE     = date(2023, 1, 1)
MAX_FLOOD_DATE     = date(2024, 12, 31)

PENDING_LABEL  = "Flooded Area: Pending..."
FALLBACK_LABEL = "Flooded Area: Could not calculate."


@dataclass(frozen=True)
class AnalysisWindows:
    before_start: date
    before_end: date
    after_start: date
    after_end: date


@dataclass
class FloodLayers:
    before: ee.Image
    after: ee.Image
    change: ee.Image
    change_thr: ee.Image
    flooded: ee.Image
    windows: AnalysisWindows


def analysis_windows(flood_date):
    """Split the period around a flood date into a before and an after window."""
    span = timedelta(days=WINDOW_DAYS)
    return AnalysisWindows(
        before_start=flood_date - span,
        before_end=flood_date,
        after_start=flood_date,
        after_end=flood_date + span,
    )


# ── Earth Engine Queries ───────────────────────────────────────────────────────
def aoi_geometry(bounds):
    """Planar EE rectangle from [[south, west], [north, east]], matching the drawn shape."""
    (south, west), (north, east) = bounds
    return ee.Geometry.Rectangle([west, south, east, north], geodesic=False)


def sar_composite(aoi, start, end):
    """Mean VV backscatter of ascending IW scenes between start and end."""
    return (ee.ImageCollection(SAR_COLLECTION)
            .filterDate(start.isoformat(), end.isoformat())
            .filterBounds(aoi)
            .filter(ee.Filter.listContains("transmitterReceiverPolarisation", SAR_BAND))
            .filter(ee.Filter.eq("instrumentMode", "IW"))
            .filter(ee.Filter.eq("orbitProperties_pass", "ASCENDING"))
            .select(SAR_BAND)
            .mean()
            .clip(aoi))


def permanent_water_mask(aoi):
    """1 where the dominant Dynamic World class is anything but water."""
    return (ee.ImageCollection(LANDCOVER_COLLECTION)
            .select("label")
            .filterDate(LANDCOVER_START, LANDCOVER_END)
            .filterBounds(aoi)
            .mode()
            .eq(WATER_CLASS)
            .Not())


def flood_layers(aoi, flood_date):
    windows = analysis_windows(flood_date)
    logger.info("Building flood layers for %s (before %s..%s, after %s..%s)",
                flood_date, windows.before_start, windows.before_end,
                windows.after_start, windows.after_end)

    before = sar_composite(aoi, windows.before_start, windows.before_end)
    after  = sar_composite(aoi, windows.after_start, windows.after_end)

    # Backscatter drops over newly flooded ground, so before - after is positive
    change     = before.subtract(after)
    change_thr = change.gt(CHANGE_THRESHOLD_DB)

    water_mask = permanent_water_mask(aoi)
    flooded    = change_thr.updateMask(water_mask).updateMask(change_thr)

    return FloodLayers(before, after, change, change_thr, flooded, windows)


def flooded_area(layers, aoi):
    """Flooded area in square meters, or None if it could not be computed."""
    area_img = layers.flooded.multiply(ee.Image.pixelArea()).rename(AREA_BAND)
    stats = area_img.reduceRegion(
        reducer=ee.Reducer.sum(), geometry=aoi, scale=ANALYSIS_SCALE,
        maxPixels=MAX_PIXELS
    )
    try:
        result = stats.getInfo()
    except EEException as e:
        logger.warning("Flooded area evaluation failed: %s", e)
        return None

    value = (result or {}).get(AREA_BAND)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        logger.warning("Flooded area result is missing or malformed: %r", result)
        return None
    return float(value)


def precipitation_series(aoi, windows):
    """Mean IMERG precipitation over the AOI for the whole analysis period."""
    collection = (ee.ImageCollection(PRECIP_COLLECTION)
                  .select(PRECIP_BAND)
                  .filterDate(windows.before_start.isoformat(),
                              windows.after_end.isoformat()))

    def to_feature(img):
        value = img.reduceRegion(
            reducer=ee.Reducer.mean(), geometry=aoi, scale=PRECIP_SCALE
        ).get(PRECIP_BAND)
        return ee.Feature(None, {"time": img.get("system:time_start"), "value": value})

    features = collection.map(to_feature).filter(ee.Filter.notNull(["value"]))
    rows = features.reduceColumns(ee.Reducer.toList(2), ["time", "value"]).get("list").getInfo()
    logger.info("Fetched %d precipitation samples", len(rows or []))
    return series_frame(rows)


def series_frame(rows):
    """Build a Date/Precipitation frame from [millis, value] rows."""
    df = pd.DataFrame(rows or [], columns=["Date", "Precipitation (mm/hr)"])
    df["Date"] = pd.to_datetime(df["Date"], unit="ms")
    return df.dropna().sort_values("Date").reset_index(drop=True)


def format_area_label(area):
    if area is None:
        return FALLBACK_LABEL
    return f"Flooded Area: {area:.2f} sq meters"
