import logging

logger = logging.getLogger(__name__)

DRAW_INSTRUCTIONS    = 'Draw a rectangle on the map, then click "Run Analysis" when done.'
AOI_REQUIRED_MESSAGE = "Please draw a rectangle AOI before running the analysis."


def drawn_aoi(map_output):
    """Return the GeoJSON geometry of the first shape drawn on the map, if any."""
    if not isinstance(map_output, dict):
        return None

    drawings = map_output.get("all_drawings") or []
    if not drawings and map_output.get("last_active_drawing"):
        drawings = [map_output["last_active_drawing"]]

    for feature in drawings:
        geometry = (feature or {}).get("geometry")
        if geometry and geometry.get("type") == "Polygon" and geometry.get("coordinates"):
            return geometry
    return None


def aoi_bounds(geometry):
    """[[south, west], [north, east]] of a GeoJSON polygon, for folium's fit_bounds."""
    ring = geometry["coordinates"][0]
    lons = [pt[0] for pt in ring]
    lats = [pt[1] for pt in ring]
    return [[min(lats), min(lons)], [max(lats), max(lons)]]


def run_analysis(aoi, flood_date, analyze, alert):
    """Invoke analyze(aoi, flood_date), or alert and return None when no AOI is drawn."""
    if not aoi:
        logger.info("Analysis requested without an AOI")
        alert(AOI_REQUIRED_MESSAGE)
        return None
    return analyze(aoi, flood_date)
