"""
Comments

Search and filter every comment by text, theme, entity, submitter type and condensed status.
"""
import streamlit as st

from db import get_store
from components import render_comment_list
from services.dashboard.store import CommentFilters

st.set_page_config(
    page_title="Comments",
    page_icon="💬",
    layout="wide"
)

st.markdown(
    "<h1 style='text-align: center; color: #4F8BF9;'>💬 Comments</h1>",
    unsafe_allow_html=True
)

store = get_store()
if store is None:
    st.stop()

# Sidebar filters
st.sidebar.title("Filters")
search = st.sidebar.text_input("Search", "", help="Matches summary, position, content, submitter and comment id")
themes = st.sidebar.multiselect(
    "Themes",
    options=[t['code'] for t in store.themes],
    format_func=lambda c: f"{c} {store.get_theme(c)['label']}"
)
entities = st.sidebar.multiselect(
    "Entities",
    options=store.entity_keys(),
    format_func=lambda k: "{1} ({0})".format(*k.split('|', 1))
)
submitter_types = st.sidebar.multiselect("Submitter types", options=store.submitter_types())
has_condensed = st.sidebar.radio("Condensed", options=['all', 'yes', 'no'], horizontal=True)

filters = CommentFilters(
    search=search,
    themes=themes,
    entities=entities,
    submitter_types=submitter_types,
    has_condensed=has_condensed,
)
comments = store.filter_comments(filters)

st.markdown(f"**{len(comments)}** of {len(store.comments)} comments")
render_comment_list(comments, key="all_comments")
