"""
Entities

Entity taxonomy by category, with mention counts and the comments that mention each entity.
"""
import streamlit as st

from db import get_store
from components import render_comment_list
from charts.theme_charts import entity_mentions_chart

st.set_page_config(
    page_title="Entities",
    page_icon="🏷️",
    layout="wide"
)

st.markdown(
    "<h1 style='text-align: center; color: #4F8BF9;'>🏷️ Entities</h1>",
    unsafe_allow_html=True
)

store = get_store()
if store is None:
    st.stop()

if not store.entities:
    st.info("No entities yet. Run `comment-analysis discover-entities <document_id>`.")
    st.stop()

# Sidebar filters
st.sidebar.title("Filters")
categories = sorted(store.entities)
default_index = categories.index(store.organization_category) if store.organization_category in categories else 0
category = st.sidebar.selectbox("Category", options=categories, index=default_index)
search = st.sidebar.text_input("Search entities", "")

entities = [
    e for e in store.entities[category]
    if search.lower() in e['label'].lower() or any(search.lower() in t.lower() for t in e.get('terms') or [])
]

chart = entity_mentions_chart(
    [{'label': e['label'], 'mentionCount': e.get('mentionCount', 0)} for e in entities],
    category
)
if chart is not None:
    st.altair_chart(chart, use_container_width=True)

if not entities:
    st.info("No entities match.")
    st.stop()

label = st.selectbox(
    "Entity",
    options=[e['label'] for e in entities],
    format_func=lambda l: f"{l} ({next(e.get('mentionCount', 0) for e in entities if e['label'] == l)})"
)
entity = next(e for e in entities if e['label'] == label)

st.subheader(entity['label'])
st.markdown(entity.get('definition') or '')
if entity.get('terms'):
    st.caption("Matched terms: " + ", ".join(entity['terms']))

render_comment_list(store.comments_for_entity(category, label), key=f"entity_{category}_{label}")
