from __future__ import annotations

import runpy
import traceback
from pathlib import Path

import streamlit as st

APP_PATH = Path(__file__).with_name("app.py")
CONFIG_HINTS = ["WARD_DB_PATH", "WARD_CENSUS_SOURCE", "WARD_CONFIG_PATH", "WARD_ARCHIVE_PATH"]

try:
    runpy.run_path(str(APP_PATH), run_name="__main__")
except Exception as error:  # pragma: no cover
    try:
        st.set_page_config(page_title="Ward Census", layout="wide")
    except Exception:
        # app.py may have already set the page config before failing.
        pass
    st.title("Ward Census failed to start")
    st.error("Check the census source and ward config paths, then reload.")
    st.caption("Settings read from the environment or `.env`: " + ", ".join(f"`{name}`" for name in CONFIG_HINTS))
    st.code(f"{type(error).__name__}: {error}")
    st.code(traceback.format_exc())
