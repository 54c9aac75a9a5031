"""
Theme Browser

Walks the theme hierarchy of a document database and shows, per theme, the
abstracted perspectives, the generated narrative and the detected stances.
"""
import pandas as pd
import streamlit as st

from db import document_selector

from queries.browser_queries import (
    get_database_stats,
    get_theme_hierarchy,
    get_child_themes,
    get_theme_ancestry,
    get_perspectives_by_theme,
    get_theme_narrative,
    get_theme_stances,
    get_theme_analysis,
    get_stance_perspectives
)

from charts.theme_charts import (
    attribute_breakdown_chart,
    stance_distribution_chart,
    stance_by_submitter_chart
)

from services.pipeline.perspectives.analyze_themes import commenter_display

st.set_page_config(
    page_title="Theme Browser",
    page_icon="🧭",
    layout="wide"
)

st.markdown(
    "<h1 style='text-align: center; color: #4F8BF9;'>🧭 Theme Browser</h1>",
    unsafe_allow_html=True
)

# Sidebar filters
st.sidebar.title("Filters")
document_id = document_selector()
if document_id is None:
    st.stop()

stats = get_database_stats(document_id)
themes = get_theme_hierarchy(document_id)
if not themes:
    st.info("This document has no themes yet. Run `comment-analysis discover-themes` first.")
    st.stop()

min_perspectives = st.sidebar.number_input("Minimum perspectives", min_value=0, value=1)
visible = [t for t in themes if t['perspective_count'] >= min_perspectives] or themes
by_code = {t['code']: t for t in themes}

code = st.sidebar.selectbox(
    "Theme",
    options=[t['code'] for t in visible],
    format_func=lambda c: f"{c} {by_code[c]['description'][:60]} ({by_code[c]['perspective_count']})"
)
submitter_filter = st.sidebar.multiselect(
    "Submitter types",
    options=[b['value'] for b in stats['attributeBreakdowns'].get('submitter_type', [])]
)

cols = st.columns(3)
cols[0].metric("Abstracted comments", stats['totalComments'])
cols[1].metric("Perspectives", stats['totalPerspectives'])
cols[2].metric("Themes", stats['totalThemes'])

with st.expander("Attribute breakdowns"):
    for attribute, breakdown in stats['attributeBreakdowns'].items():
        chart = attribute_breakdown_chart(breakdown, attribute)
        if chart is not None:
            st.altair_chart(chart, use_container_width=True)

# Breadcrumbs
ancestry = get_theme_ancestry(document_id, code)
st.markdown(" › ".join(f"**{t['code']}**" if t['code'] == code else t['code'] for t in ancestry))

theme = by_code[code]
st.subheader(f"{theme['code']} {theme['description']}")
st.caption(f"{theme['perspective_count']} perspectives from {theme['document_count']} comments")

children = get_child_themes(document_id, code)
if children:
    st.markdown("#### Sub-themes")
    st.dataframe(
        pd.DataFrame(children)[['code', 'description', 'perspective_count', 'document_count']],
        use_container_width=True,
        hide_index=True
    )

narrative_tab, stances_tab, perspectives_tab, raw_tab = st.tabs(
    ["Narrative", "Stances", "Perspectives", "Raw analysis"]
)

with narrative_tab:
    narrative = get_theme_narrative(document_id, code)
    if narrative is None:
        st.info("No narrative yet. Run `comment-analysis analyze-themes` for this document.")
    else:
        st.markdown(narrative['narrative_summary'] or '')
        if narrative['consensus_points']:
            st.markdown("**Consensus**")
            for point in narrative['consensus_points']:
                if isinstance(point, dict):
                    st.markdown(f"- {point.get('statement', '')} _({point.get('strength', '')})_")
                else:
                    st.markdown(f"- {point}")
        if narrative['debate_points']:
            st.markdown("**Debates**")
            for point in narrative['debate_points']:
                if isinstance(point, dict):
                    st.markdown(f"- **{point.get('topic', '')}**")
                    if point.get('core_tension'):
                        st.caption(point['core_tension'])
                    for position in point.get('positions') or []:
                        st.markdown(f"  - {position.get('stance', '') if isinstance(position, dict) else position}")
                else:
                    st.markdown(f"- {point}")
        if narrative['stakeholder_dynamics']:
            st.markdown("**Stakeholder dynamics**")
            st.json(narrative['stakeholder_dynamics'])

with stances_tab:
    stances = get_theme_stances(document_id, code)
    if not stances:
        st.info("No stances detected for this theme.")
    else:
        chart = stance_distribution_chart(stances)
        if chart is not None:
            st.altair_chart(chart, use_container_width=True)

        alignment = []
        for stance in stances:
            for p in get_stance_perspectives(document_id, code, stance['stance_key']):
                alignment.append({'stance_label': stance['stance_label'] or stance['stance_key'],
                                  'submitter_type': p['submitter_type']})
        chart = stance_by_submitter_chart(alignment)
        if chart is not None:
            st.altair_chart(chart, use_container_width=True)

        for stance in stances:
            with st.expander(f"{stance['stance_label'] or stance['stance_key']} ({stance['perspective_count']})"):
                st.markdown(stance['stance_description'] or '')
                for argument in stance['typical_arguments']:
                    st.markdown(f"- {argument}")
                for quote in stance['example_quotes']:
                    st.markdown(f"> {quote}")
                for p in get_stance_perspectives(document_id, code, stance['stance_key']):
                    display = commenter_display(p['organization_name'], p['metadata'], p['submitter_type'])
                    st.markdown(f"**{display}** ({p['confidence']:.0%}): {p['perspective']}")

with perspectives_tab:
    perspectives = get_perspectives_by_theme(document_id, code)
    if submitter_filter:
        perspectives = [p for p in perspectives if p['submitter_type'] in submitter_filter]
    st.markdown(f"**{len(perspectives)}** perspectives")
    for p in perspectives:
        metadata = {'organization': p['original_organization'], 'firstName': p['original_first_name'],
                    'lastName': p['original_last_name']}
        display = commenter_display(p['organization_name'], metadata, p['submitter_type'])
        with st.expander(f"[{p['taxonomy_code']}] {display}: {p['perspective'][:100]}"):
            st.markdown(p['perspective'])
            if p['excerpt']:
                st.markdown(f"> {p['excerpt']}")
            st.caption(f"Comment {p['comment_id']} | {p['submitter_type']} | sentiment: {p['sentiment'] or 'n/a'}")

with raw_tab:
    analysis = get_theme_analysis(document_id, code)
    if analysis is None:
        st.info("No analysis stored for this theme.")
    else:
        st.json(analysis)
