"""
Themes

Browse the theme hierarchy and the comments that address each theme directly.
"""
import streamlit as st

from db import get_store
from components import render_comment_list

st.set_page_config(
    page_title="Themes",
    page_icon="🗂️",
    layout="wide"
)

st.markdown(
    "<h1 style='text-align: center; color: #4F8BF9;'>🗂️ Themes</h1>",
    unsafe_allow_html=True
)

store = get_store()
if store is None:
    st.stop()

# Sidebar filters
st.sidebar.title("Filters")
search = st.sidebar.text_input("Search themes", "")
min_comments = st.sidebar.number_input("Minimum direct comments", min_value=0, value=0)


def matches(node):
    text = f"{node['code']} {node['label']} {node['detailedDescription']}".lower()
    return search.lower() in text and node.get('direct_count', 0) >= min_comments


def render_tree(nodes, depth=0):
    for node in nodes:
        if matches(node):
            indent = "&nbsp;" * 4 * depth
            st.markdown(
                f"{indent}**{node['code']}** {node['label']} "
                f"({node.get('direct_count', 0)} direct, {node.get('touch_count', 0)} touch)",
                unsafe_allow_html=True
            )
        render_tree(node['children'], depth + 1)


left, right = st.columns([2, 3])

with left:
    st.subheader("Hierarchy")
    render_tree(store.build_theme_tree())

with right:
    options = [t['code'] for t in store.themes if matches(t)]
    if not options:
        st.info("No themes match the filters.")
        st.stop()

    code = st.selectbox(
        "Theme",
        options=options,
        format_func=lambda c: f"{c} {store.get_theme(c)['label']}"
    )
    theme = store.get_theme(code)
    st.subheader(f"{theme['code']} {theme['label']}")
    if theme['detailedDescription']:
        st.markdown(theme['detailedDescription'])
    if theme.get('detailed_guidelines'):
        with st.expander("Scoring guidelines"):
            st.markdown(theme['detailed_guidelines'])

    if code in store.theme_summaries:
        st.markdown("A summary is available on the **Theme Summaries** page.")

    related = store.comments_for_theme(code)
    st.markdown(f"**{len(related['direct'])}** comments address this theme directly.")
    render_comment_list(related['direct'], key=f"theme_{code}")
