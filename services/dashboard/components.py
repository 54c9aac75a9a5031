"""
Rendering helpers shared by dashboard pages.
"""

import streamlit as st

REGULATIONS_URL = "https://www.regulations.gov/comment/{comment_id}"

SECTION_TITLES = [
    ('corePosition', 'Core Position'),
    ('keyRecommendations', 'Key Recommendations'),
    ('mainConcerns', 'Main Concerns'),
    ('notableExperiences', 'Notable Experiences & Insights'),
    ('keyQuotations', 'Key Quotations'),
    ('detailedContent', 'Detailed Content'),
]


def comment_title(comment):
    sections = comment.get('structuredSections') or {}
    summary = sections.get('oneLineSummary') or 'No summary available'
    return f"{comment['id']} | {comment.get('submitter') or 'Anonymous'} | {summary}"


def render_comment(comment, expanded=False):
    """Expander with metadata, structured sections, themes and entities for one comment."""
    sections = comment.get('structuredSections') or {}
    with st.expander(comment_title(comment), expanded=expanded):
        cols = st.columns(4)
        cols[0].markdown(f"**Submitter type:** {comment.get('submitterType') or 'Unknown'}")
        cols[1].markdown(f"**Date:** {comment.get('date') or 'n/a'}")
        cols[2].markdown(f"**Location:** {comment.get('location') or 'n/a'}")
        cols[3].markdown(f"[View on regulations.gov]({REGULATIONS_URL.format(comment_id=comment['id'])})")

        if not sections:
            st.info("This comment has not been condensed yet.")
        for key, title in SECTION_TITLES:
            if sections.get(key):
                st.markdown(f"**{title}**")
                st.markdown(sections[key])

        if comment.get('themeScores'):
            st.markdown("**Themes:** " + ", ".join(sorted(comment['themeScores'])))
        if comment.get('entities'):
            st.markdown("**Entities:** " + ", ".join(f"{e['label']} ({e['category']})" for e in comment['entities']))


def render_comment_list(comments, page_size=25, key="comments"):
    """Paged list of comment expanders."""
    if not comments:
        st.info("No comments match.")
        return
    pages = max(1, (len(comments) + page_size - 1) // page_size)
    page = st.number_input("Page", min_value=1, max_value=pages, value=1, key=f"{key}_page") if pages > 1 else 1
    start = (page - 1) * page_size
    st.caption(f"Showing {start + 1}-{min(start + page_size, len(comments))} of {len(comments)}")
    for comment in comments[start:start + page_size]:
        render_comment(comment)


def render_bullets(items, field, extra=None):
    for item in items or []:
        line = f"- {item.get(field, '')}"
        if extra and item.get(extra):
            line += f" _({item[extra]})_"
        st.markdown(line)
