from __future__ import annotations

import streamlit as st

st.set_page_config(page_title="Fish Farm Inventory", page_icon="🐟", layout="wide")

pages = [
    st.Page("home.py", title="Home", icon="🏠"),
    st.Page("pages/1_📥_Sorting.py", title="Sorting Intake", icon="📥"),
    st.Page("pages/2_📦_Inventory.py", title="Inventory", icon="📦"),
    st.Page("pages/3_🗑️_Disposal.py", title="Disposal", icon="🗑️"),
    st.Page("pages/4_🔁_Transfers.py", title="Transfers", icon="🔁"),
    st.Page("pages/5_🚚_Dispatch.py", title="Dispatch", icon="🚚"),
    st.Page("pages/6_🧪_Data_Management.py", title="Data Management", icon="🧪"),
    st.Page("pages/7_📊_Reports.py", title="Reports", icon="📊"),
]

st.navigation(pages).run()
