"""
Theme Summaries

Consensus, debates, stakeholder perspectives and quotations for summarized themes.
"""
import streamlit as st

from db import get_store
from components import render_bullets

st.set_page_config(
    page_title="Theme Summaries",
    page_icon="📝",
    layout="wide"
)

st.markdown(
    "<h1 style='text-align: center; color: #4F8BF9;'>📝 Theme Summaries</h1>",
    unsafe_allow_html=True
)

store = get_store()
if store is None:
    st.stop()

if not store.theme_summaries:
    st.info("No theme summaries yet. Run `comment-analysis summarize-themes <document_id>`.")
    st.stop()

# Sidebar filters
st.sidebar.title("Filters")
codes = sorted(store.theme_summaries, key=lambda c: -store.theme_summaries[c].get('commentCount', 0))
code = st.sidebar.selectbox(
    "Theme",
    options=codes,
    format_func=lambda c: f"{c} ({store.theme_summaries[c].get('commentCount', 0)} comments)"
)
organization_filter = st.sidebar.text_input(f"Filter by {store.organization_category.lower()}", "")

summary = store.theme_summaries[code]
sections = summary.get('sections') or {}
theme = store.get_theme(code)

st.subheader(f"{code} {theme['label'] if theme else summary.get('themeDescription', '')}")
st.caption(f"{summary.get('commentCount', 0)} comments, {summary.get('wordCount', 0):,} words analyzed")


def named(item):
    if not organization_filter:
        return True
    return any(organization_filter.lower() in org.lower() for org in item.get('organizations') or [])


if sections.get('executiveSummary'):
    st.markdown("### Executive Summary")
    st.markdown(sections['executiveSummary'])

if sections.get('consensusPoints'):
    st.markdown("### Consensus")
    for point in filter(named, sections['consensusPoints']):
        st.markdown(f"- **{point.get('text', '')}** _{point.get('supportLevel', '')}_")
        if point.get('exceptions'):
            st.caption(f"Exceptions: {point['exceptions']}")
        if point.get('organizations'):
            st.caption(", ".join(point['organizations']))

if sections.get('areasOfDebate'):
    st.markdown("### Areas of Debate")
    for debate in sections['areasOfDebate']:
        with st.expander(debate.get('topic', 'Debate')):
            st.markdown(debate.get('description', ''))
            for position in filter(named, debate.get('positions') or []):
                st.markdown(f"**{position.get('label', '')}**: {position.get('stance', '')} "
                            f"_{position.get('supportLevel', '')}_")
                for argument in position.get('keyArguments') or []:
                    st.markdown(f"  - {argument}")
                if position.get('organizations'):
                    st.caption(", ".join(position['organizations']))
            if debate.get('middleGround'):
                st.markdown(f"**Middle ground:** {debate['middleGround']}")

if sections.get('stakeholderPerspectives'):
    st.markdown("### Stakeholder Perspectives")
    for stakeholder in filter(named, sections['stakeholderPerspectives']):
        with st.expander(stakeholder.get('stakeholderType', 'Stakeholders')):
            for concern in stakeholder.get('primaryConcerns') or []:
                st.markdown(f"- {concern}")
            for point in stakeholder.get('specificPoints') or []:
                st.markdown(f"- {point}")
            if stakeholder.get('organizations'):
                st.caption(", ".join(stakeholder['organizations']))

if sections.get('noteworthyInsights'):
    st.markdown("### Noteworthy Insights")
    render_bullets(sections['noteworthyInsights'], 'insight', extra='source')

if sections.get('emergingPatterns'):
    st.markdown("### Emerging Patterns")
    render_bullets(sections['emergingPatterns'], 'pattern', extra='category')

if sections.get('keyQuotations'):
    st.markdown("### Key Quotations")
    for quote in sections['keyQuotations']:
        st.markdown(f"> {quote.get('quote', '')}")
        st.caption(f"{quote.get('source', '')} {quote.get('sourceType', '')}".strip())

if sections.get('analyticalNotes'):
    st.markdown("### Analytical Notes")
    st.markdown(sections['analyticalNotes'])
