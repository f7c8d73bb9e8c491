from __future__ import annotations

import streamlit as st

from fishfarm.config import get_settings
from fishfarm.db import get_conn, ensure_schema
from fishfarm.services.demo_data import upsert_reference_data
from fishfarm.services.disposals import disposal_stats
from fishfarm.services.storage import inventory_by_storage

st.set_page_config(page_title="Fish Farm Inventory", page_icon="🐟", layout="wide")

st.title("🐟 Fish Farm Inventory")
st.caption("Sorted stock by size class and storage location, disposal candidates, transfers between stores and dispatch picking.")

settings = get_settings()
conn = get_conn(settings.db_path)
ensure_schema(conn)
upsert_reference_data(conn)

with st.sidebar:
    st.subheader("Environment")
    st.write(f"**Data directory:** `{settings.data_dir}`")
    st.write(f"**Database:** `{settings.db_path.name}`")

rows = inventory_by_storage(conn)
stats = disposal_stats(conn)

c1, c2, c3, c4 = st.columns(4)
c1.metric("Pieces in stock", f"{sum(r['total_quantity'] for r in rows):,}")
c2.metric("Stock weight (kg)", f"{sum(r['total_weight_kg'] for r in rows):,.1f}")
c3.metric("Pending disposals", stats.pending_disposals)
c4.metric("Disposed to date (kg)", f"{stats.total_disposed_weight:,.1f}")

st.info(
    "Use the left sidebar navigation. Start with **🧪 Data Management** to load demo data, then try **Inventory**, **Disposal**, **Transfers** and **Dispatch**.",
    icon="ℹ️",
)
