import argparse
import json
from datetime import date

from flood_analysis import (
    ANALYSIS_SCALE, AREA_BAND, CHANGE_THRESHOLD_DB, DEFAULT_FLOOD_DATE,
    LANDCOVER_COLLECTION, LANDCOVER_END, LANDCOVER_START, MAX_PIXELS,
    PRECIP_BAND, PRECIP_COLLECTION, PRECIP_SCALE, SAR_BAND, SAR_COLLECTION,
    WATER_CLASS, WINDOW_DAYS, analysis_windows,
)


def _markdown(*lines):
    return {"cell_type": "markdown", "metadata": {}, "source": list(lines)}


def _code(*lines):
    return {
        "cell_type": "code",
        "execution_count": None,
        "metadata": {},
        "outputs": [],
        "source": list(lines),
    }


def build_notebook(aoi_coords, flood_date):
    """Notebook reproducing the flood analysis for an AOI (west, south, east, north)."""
    west, south, east, north = aoi_coords
    w = analysis_windows(flood_date)

    cells = [
        _markdown(
            "# Flood Monitoring with Sentinel-1 SAR (Google Earth Engine)\n",
            "\n",
            f"Backscatter change {WINDOW_DAYS} days before and after the flood date "
            f"{flood_date.isoformat()}, masked by permanent water from Dynamic World."
        ),
        _code(
            "import ee\n",
            "import geemap\n",
            "import pandas as pd\n",
            "\n",
            "# Authenticate and Initialize Earth Engine\n",
            "try:\n",
            "    ee.Initialize()\n",
            "except Exception as e:\n",
            "    ee.Authenticate()\n",
            "    ee.Initialize()"
        ),
        _markdown("## Area of Interest and Analysis Windows"),
        _code(
            f"aoi = ee.Geometry.Rectangle([{west}, {south}, {east}, {north}], geodesic=False)\n",
            "\n",
            f"before_start = '{w.before_start.isoformat()}'\n",
            f"before_end = '{w.before_end.isoformat()}'\n",
            f"after_start = '{w.after_start.isoformat()}'\n",
            f"after_end = '{w.after_end.isoformat()}'"
        ),
        _markdown("## Sentinel-1 Composites"),
        _code(
            "def sar_composite(start, end):\n",
            f"    return (ee.ImageCollection('{SAR_COLLECTION}')\n",
            "            .filterDate(start, end)\n",
            "            .filterBounds(aoi)\n",
            f"            .filter(ee.Filter.listContains('transmitterReceiverPolarisation', '{SAR_BAND}'))\n",
            "            .filter(ee.Filter.eq('instrumentMode', 'IW'))\n",
            "            .filter(ee.Filter.eq('orbitProperties_pass', 'ASCENDING'))\n",
            f"            .select('{SAR_BAND}')\n",
            "            .mean()\n",
            "            .clip(aoi))\n",
            "\n",
            "sar_before = sar_composite(before_start, before_end)\n",
            "sar_after = sar_composite(after_start, after_end)"
        ),
        _markdown("## Change Detection and Flooded Area"),
        _code(
            "change = sar_before.subtract(sar_after)\n",
            f"change_thr = change.gt({CHANGE_THRESHOLD_DB})\n",
            "\n",
            f"water_mask = (ee.ImageCollection('{LANDCOVER_COLLECTION}')\n",
            "              .select('label')\n",
            f"              .filterDate('{LANDCOVER_START}', '{LANDCOVER_END}')\n",
            "              .filterBounds(aoi)\n",
            f"              .mode().eq({WATER_CLASS}).Not())\n",
            "flooded = change_thr.updateMask(water_mask).updateMask(change_thr)\n",
            "\n",
            f"area = flooded.multiply(ee.Image.pixelArea()).rename('{AREA_BAND}')\n",
            "stats = area.reduceRegion(\n",
            "    reducer=ee.Reducer.sum(),\n",
            "    geometry=aoi,\n",
            f"    scale={ANALYSIS_SCALE},\n",
            f"    maxPixels={MAX_PIXELS:.0e}\n",
            ")\n",
            "try:\n",
            f"    print('Flooded Area (sq meters):', stats.getInfo()['{AREA_BAND}'])\n",
            "except Exception as e:\n",
            "    print('Could not calculate flooded area:', e)"
        ),
        _markdown("## Precipitation Over Time"),
        _code(
            f"precip = (ee.ImageCollection('{PRECIP_COLLECTION}')\n",
            f"          .select('{PRECIP_BAND}')\n",
            "          .filterDate(before_start, after_end))\n",
            "\n",
            "def to_feature(img):\n",
            f"    value = img.reduceRegion(reducer=ee.Reducer.mean(), geometry=aoi, scale={PRECIP_SCALE}).get('{PRECIP_BAND}')\n",
            "    return ee.Feature(None, {'time': img.get('system:time_start'), 'value': value})\n",
            "\n",
            "rows = (precip.map(to_feature)\n",
            "        .filter(ee.Filter.notNull(['value']))\n",
            "        .reduceColumns(ee.Reducer.toList(2), ['time', 'value'])\n",
            "        .get('list')\n",
            "        .getInfo())\n",
            "\n",
            "df = pd.DataFrame(rows, columns=['Date', 'Precipitation (mm/hr)'])\n",
            "df['Date'] = pd.to_datetime(df['Date'], unit='ms')\n",
            "df = df.sort_values('Date')\n",
            "df.plot(x='Date', y='Precipitation (mm/hr)', title='Precipitation Over Time')"
        ),
        _markdown("## Visualization"),
        _code(
            "Map = geemap.Map()\n",
            "Map.centerObject(aoi)\n",
            "\n",
            "Map.addLayer(sar_before, {'min': -25, 'max': -5}, 'Before Flood', False)\n",
            "Map.addLayer(sar_after, {'min': -25, 'max': -5}, 'After Flood', False)\n",
            "Map.addLayer(change, {'min': -10, 'max': 10}, 'Change Detection', False)\n",
            "Map.addLayer(change_thr, {}, 'Thresholded Change', False)\n",
            "Map.addLayer(flooded, {'palette': ['blue']}, 'Flooded Area')\n",
            "\n",
            "Map.addLayerControl()\n",
            "Map"
        ),
    ]

    return {
        "cells": cells,
        "metadata": {
            "kernelspec": {
                "display_name": "Python 3",
                "language": "python",
                "name": "python3"
            }
        },
        "nbformat": 4,
        "nbformat_minor": 5
    }


def main(argv=None):
    parser = argparse.ArgumentParser(description="Write a flood analysis notebook for an AOI.")
    parser.add_argument("--west", type=float, required=True)
    parser.add_argument("--south", type=float, required=True)
    parser.add_argument("--east", type=float, required=True)
    parser.add_argument("--north", type=float, required=True)
    parser.add_argument("--date", type=date.fromisoformat, default=DEFAULT_FLOOD_DATE,
                        help="flood date, YYYY-MM-DD")
    parser.add_argument("--output", default="flood_analysis.ipynb")
    args = parser.parse_args(argv)

    notebook = build_notebook((args.west, args.south, args.east, args.north), args.date)
    with open(args.output, "w") as f:
        json.dump(notebook, f, indent=2)

    print(f"Created notebook {args.output}")


if __name__ == "__main__":
    main()
