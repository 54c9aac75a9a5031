"""
Comment Analysis Dashboard - overview page.

Run:
    streamlit run services/dashboard/app.py
"""
import streamlit as st
st.set_page_config(
    page_title="Comment Analysis Dashboard",
    page_icon="📄",
    layout="wide",
)

from dotenv import load_dotenv

from db import get_store

from charts.theme_charts import (
    top_themes_chart,
    submitter_type_chart,
)

load_dotenv()
st.markdown(
    "<h1 style='text-align: center; color: #4F8BF9;'>📄 Comment Analysis Dashboard</h1>",
    unsafe_allow_html=True
)

store = get_store()
if store is None:
    st.stop()

stats = store.meta.get('stats', {})
st.markdown(
    f"<h4 style='text-align: center;'>Document {store.meta.get('documentId', '')}</h4>",
    unsafe_allow_html=True
)
st.caption(f"Generated {store.meta.get('generatedAt', '')}")

st.sidebar.title("Filters")
max_level = st.sidebar.selectbox("Theme level", options=[1, 2, 3, 4], index=1)
top_n = st.sidebar.slider("Themes shown", min_value=5, max_value=40, value=15)

cols = st.columns(3)
cols[0].metric("Comments", stats.get('totalComments', 0))
cols[1].metric("Condensed", stats.get('condensedComments', 0))
cols[2].metric("Scored", stats.get('scoredComments', 0))
cols = st.columns(3)
cols[0].metric("Themes", stats.get('totalThemes', 0))
cols[1].metric("Theme summaries", stats.get('themeSummaries', 0))
cols[2].metric("Entities", stats.get('totalEntities', 0))

themes = [
    {'code': t['code'], 'label': t['label'], 'level': t['level'],
     'direct_count': t.get('direct_count', 0), 'touch_count': t.get('touch_count', 0)}
    for t in store.themes if t['level'] <= max_level
]
chart = top_themes_chart(themes, limit=top_n)
if chart is not None:
    st.altair_chart(chart, use_container_width=True)

chart = submitter_type_chart([{'submitterType': c.get('submitterType')} for c in store.comments])
if chart is not None:
    st.altair_chart(chart, use_container_width=True)

st.markdown(
    f"Organizations are most often recognized as **{store.organization_category}** entities."
)
