import json
import logging
import os
from datetime import date, timedelta

import folium
import streamlit as st
from ee import EEException
from folium import plugins
from streamlit.errors import StreamlitAPIException
from streamlit_folium import st_folium

import controls
import ee_auth
import flood_analysis as fa
from make_nb import build_notebook

logging.basicConfig(
    level=os.environ.get("FLOOD_APP_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("flood_app")

# ── Page Config ────────────────────────────────────────────────────────────────
st.set_page_config(
    page_title="Flood Monitoring App",
    page_icon="🌊",
    layout="wide",
    initial_sidebar_state="expanded"
)

# ── Dark Theme CSS ─────────────────────────────────────────────────────────────
st.markdown("""
<style>
    .stApp { background-color: #0E1117; color: #FAFAFA; }
    section[data-testid="stSidebar"] { background-color: #1A1F2E; width: 300px !important; }
    .metric-card {
        background: linear-gradient(135deg, #1A1F2E, #2A3050);
        border: 1px solid #00CFFF33;
        border-radius: 12px;
        padding: 20px;
        text-align: center;
        margin-bottom: 12px;
    }
    .metric-value { font-size: 1.6rem; font-weight: 700; color: #00CFFF; }
    .metric-label { font-size: 0.85rem; color: #aaa; margin-top: 4px; }
    h1, h2, h3 { color: #FAFAFA !important; }
</style>
""", unsafe_allow_html=True)


# ── Earth Engine Initialization ────────────────────────────────────────────────
def read_secret(key):
    try:
        return st.secrets.get(key)
    except (FileNotFoundError, StreamlitAPIException):
        return None


@st.cache_resource
def init_ee():
    """Initialize Earth Engine from Streamlit Secrets, or default credentials when unset."""
    try:
        ee_auth.initialize(read_secret("EARTHENGINE_TOKEN"), read_secret("EARTHENGINE_PROJECT"))
    except ee_auth.CredentialsError as e:
        st.error(str(e))
        return False
    except Exception as e:
        logger.exception("Earth Engine initialization failed")
        st.error(f"Earth Engine init failed: {e}")
        return False
    return True

ee_ready = init_ee()

st.session_state.setdefault("aoi", None)
st.session_state.setdefault("results", None)
st.session_state.setdefault("area_label", fa.PENDING_LABEL)
st.session_state.setdefault("map_version", 0)


# ── Sidebar ────────────────────────────────────────────────────────────────────
with st.sidebar:
    st.markdown("## 🌊 Flood Monitoring App")
    st.caption("Powered by Sentinel-1 SAR · Google Earth Engine")
    st.markdown("---")

    st.markdown("1. Draw AOI.  \n2. Exact Flood Date.  \n3. Run Analysis")

    if st.button("Draw AOI"):
        # Start over with an empty drawing layer
        st.session_state["aoi"] = None
        st.session_state["results"] = None
        st.session_state["area_label"] = fa.PENDING_LABEL
        st.session_state["map_version"] += 1
        st.info(controls.DRAW_INSTRUCTIONS)

    flood_date = st.slider(
        "Exact Flood Date:",
        min_value=fa.MIN_FLOOD_DATE,
        max_value=fa.MAX_FLOOD_DATE,
        value=fa.DEFAULT_FLOOD_DATE,
        step=timedelta(days=1),
        format="YYYY-MM-DD",
    )

    st.markdown(f"**{st.session_state['area_label']}**")

    run_clicked = st.button("Run Analysis", type="primary", disabled=not ee_ready)

    st.markdown("---")
    st.caption("Data: ESA Copernicus Sentinel-1 · Dynamic World · NASA GPM IMERG")


# ── EE Layer Helpers ───────────────────────────────────────────────────────────
def get_tile_url(ee_image, vis_params):
    """Return an XYZ tile URL for an EE image (no geemap required)."""
    map_id = ee_image.getMapId(vis_params)
    return map_id["tile_fetcher"].url_format


def result_layers(layers):
    sar_vis    = {"min": -25, "max": -5, "palette": ["000000", "ffffff"]}
    change_vis = {"min": -10, "max": 10, "palette": ["ff0000", "ffffff", "0000ff"]}
    return [
        ("Before Flood",       layers.before,     sar_vis),
        ("After Flood",        layers.after,      sar_vis),
        ("Change Detection",   layers.change,     change_vis),
        ("Thresholded Change", layers.change_thr, {"min": 0, "max": 1}),
        ("Flooded Area",       layers.flooded,    {"palette": ["blue"]}),
    ]


# ── Data Processing ────────────────────────────────────────────────────────────
# getMapId tile URLs expire, so cached tiles are dropped after an hour
CACHE_TTL = 3600


@st.cache_data(ttl=CACHE_TTL, show_spinner="Processing SAR imagery…")
def compute_flood_tiles(aoi_json, flood_date_iso):
    aoi = json.loads(aoi_json)
    geometry = fa.aoi_geometry(controls.aoi_bounds(aoi))
    layers = fa.flood_layers(geometry, date.fromisoformat(flood_date_iso))

    tiles = {name: get_tile_url(img, vis) for name, img, vis in result_layers(layers)}

    w = layers.windows
    return {
        "tiles": tiles,
        "before": f"{w.before_start.isoformat()} – {w.before_end.isoformat()}",
        "after": f"{w.after_start.isoformat()} – {w.after_end.isoformat()}",
        "flood_date": flood_date_iso,
    }


@st.cache_data(ttl=CACHE_TTL, show_spinner="Loading precipitation…")
def compute_precipitation(aoi_json, flood_date_iso):
    geometry = fa.aoi_geometry(controls.aoi_bounds(json.loads(aoi_json)))
    return fa.precipitation_series(geometry, fa.analysis_windows(date.fromisoformat(flood_date_iso)))


def analyze(aoi, flood_date):
    aoi_json = json.dumps(aoi, sort_keys=True)
    try:
        results = dict(compute_flood_tiles(aoi_json, flood_date.isoformat()))
        # Not cached, each run evaluates the area again
        with st.spinner("Calculating flooded area…"):
            geometry = fa.aoi_geometry(controls.aoi_bounds(aoi))
            results["area"] = fa.flooded_area(fa.flood_layers(geometry, flood_date), geometry)
    except EEException as e:
        logger.exception("Flood analysis failed")
        st.session_state["results"] = None
        st.session_state["area_label"] = fa.FALLBACK_LABEL
        st.session_state["analysis_error"] = f"Analysis failed: {e}"
        st.rerun()

    try:
        results["precip"] = compute_precipitation(aoi_json, flood_date.isoformat())
    except EEException as e:
        logger.warning("Precipitation series failed: %s", e)
        results["precip"] = None
    return results


# ── Main Layout ────────────────────────────────────────────────────────────────
st.markdown("# 🌊 Flood Monitoring App")
st.markdown("Sentinel-1 VV backscatter change detection around a chosen flood date")
st.markdown("---")

if not ee_ready:
    st.warning("Earth Engine is not initialised. Add EARTHENGINE_TOKEN to Streamlit Secrets.")

analysis_error = st.session_state.pop("analysis_error", None)
if analysis_error:
    st.error(analysis_error)

col_map, col_stats = st.columns([3, 1])
results = st.session_state["results"]
aoi = st.session_state["aoi"]

# ── Map Column ─────────────────────────────────────────────────────────────────
with col_map:
    st.markdown("### 🗺️ Map")

    m = folium.Map(location=[20, 0], zoom_start=2, tiles="CartoDB dark_matter")

    if results:
        for name, url in results["tiles"].items():
            folium.TileLayer(tiles=url, attr="Google Earth Engine", name=name,
                             overlay=True, opacity=0.85 if name == "Flooded Area" else 1.0,
                             show=name == "Flooded Area" or name == "After Flood").add_to(m)

    if aoi:
        folium.GeoJson({"type": "Feature", "geometry": aoi, "properties": {}}, name="AOI",
                       style_function=lambda _: {"color": "#00FFFF", "weight": 2,
                                                 "fillOpacity": 0}).add_to(m)
        m.fit_bounds(controls.aoi_bounds(aoi))

    plugins.Draw(
        export=False,
        position="topleft",
        draw_options={
            "polyline": False,
            "polygon": False,
            "circle": False,
            "marker": False,
            "circlemarker": False,
            "rectangle": {"shapeOptions": {"color": "#00FFFF", "weight": 3, "fillOpacity": 0.2}},
        },
        edit_options={"edit": False, "remove": True},
    ).add_to(m)

    folium.LayerControl().add_to(m)
    map_output = st_folium(m, key=f"map-{st.session_state['map_version']}", width=None,
                           height=620, returned_objects=["all_drawings", "last_active_drawing"])

drawn = controls.drawn_aoi(map_output)
if drawn and drawn != aoi:
    logger.info("AOI drawn: %s", controls.aoi_bounds(drawn))
    st.session_state["aoi"] = aoi = drawn

if run_clicked:
    results = controls.run_analysis(aoi, flood_date, analyze, alert=st.warning)
    if results is not None:
        st.session_state["results"] = results
        st.session_state["area_label"] = fa.format_area_label(results["area"])
        st.rerun()

# ── Stats Column ───────────────────────────────────────────────────────────────
with col_stats:
    st.markdown("### 📊 Statistics")
    if results:
        area = results["area"]
        area_text = f"{area:,.2f}" if area is not None else "—"
        st.markdown(f"""
        <div class="metric-card">
            <div class="metric-value">{area_text}</div>
            <div class="metric-label">Flooded Area (sq meters)</div>
        </div>
        """, unsafe_allow_html=True)

        st.markdown("### 📍 Analysis Details")
        st.info(f"""
**Flood date:** {results['flood_date']}

**Before:** {results['before']}
**After:** {results['after']}

**Sensor:** Sentinel-1 GRD (VV pol., ascending IW)

**Threshold:** {fa.CHANGE_THRESHOLD_DB} dB backscatter drop
        """)
    else:
        st.caption(st.session_state["area_label"])

# ── Precipitation ──────────────────────────────────────────────────────────────
if results:
    st.markdown("### 🌧️ Precipitation Over Time")
    precip = results["precip"]
    if precip is None:
        st.warning("Could not load precipitation data for this AOI.")
    elif precip.empty:
        st.info("No precipitation samples in the analysis period.")
    else:
        st.line_chart(precip, x="Date", y="Precipitation (mm/hr)", color="#00CFFF")
        st.download_button("Download precipitation CSV",
                           precip.to_csv(index=False).encode("utf-8"),
                           "precipitation.csv", "text/csv")

    if aoi:
        (south, west), (north, east) = controls.aoi_bounds(aoi)
        notebook = build_notebook((west, south, east, north),
                                  date.fromisoformat(results["flood_date"]))
        st.download_button("Download analysis notebook",
                           json.dumps(notebook, indent=2).encode("utf-8"),
                           "flood_analysis.ipynb", "application/x-ipynb+json")
