import altair as alt
import pandas as pd
from streamlit import cache_data


#build streamlit chart for top themes by direct comment count
@cache_data
def top_themes_chart(themes, limit=15):
    df = pd.DataFrame(themes, columns=['code', 'label', 'level', 'direct_count', 'touch_count'])
    if df.empty:
        return None
    df = df.sort_values('direct_count', ascending=False).head(limit)
    df['theme'] = df['code'] + ' ' + df['label']

    chart = alt.Chart(df).mark_bar().encode(
        x=alt.X('direct_count:Q', title='Comments (direct)'),
        y=alt.Y('theme:N', sort='-x', title='Theme'),
        color=alt.Color('level:O', title='Level'),
        tooltip=['code', 'label', 'direct_count', 'touch_count']
    ).properties(
        width=600,
        height=400,
        title='Top Themes by Comment Count'
    )
    return chart


#build streamlit chart for submitter types
@cache_data
def submitter_type_chart(comments):
    df = pd.DataFrame(comments, columns=['submitterType'])
    if df.empty:
        return None
    df = df.fillna('Unknown').value_counts().reset_index(name='n')

    chart = alt.Chart(df).mark_bar().encode(
        x=alt.X('submitterType:N', sort='-y', title='Submitter Type'),
        y=alt.Y('n:Q', title='Comments'),
        tooltip=['submitterType', 'n']
    ).properties(
        width=600,
        height=400,
        title='Comments by Submitter Type'
    )
    return chart


#build streamlit chart for entity mentions within one category
@cache_data
def entity_mentions_chart(entities, category, limit=20):
    df = pd.DataFrame(entities, columns=['label', 'mentionCount'])
    if df.empty:
        return None
    df = df.sort_values('mentionCount', ascending=False).head(limit)

    chart = alt.Chart(df).mark_bar().encode(
        x=alt.X('mentionCount:Q', title='Comments'),
        y=alt.Y('label:N', sort='-x', title=category),
        tooltip=['label', 'mentionCount']
    ).properties(
        width=600,
        height=400,
        title=f'Most Mentioned: {category}'
    )
    return chart


#build streamlit chart for attribute breakdown (value/count pairs)
@cache_data
def attribute_breakdown_chart(breakdown, attribute):
    df = pd.DataFrame(breakdown, columns=['value', 'count'])
    if df.empty:
        return None
    title = attribute.replace('_', ' ').title()

    chart = alt.Chart(df).mark_bar().encode(
        x=alt.X('count:Q', title='Comments'),
        y=alt.Y('value:N', sort='-x', title=title),
        tooltip=['value', 'count']
    ).properties(
        width=600,
        height=300,
        title=f'{title} Breakdown'
    )
    return chart


#build streamlit chart for perspectives per stance
@cache_data
def stance_distribution_chart(stances):
    df = pd.DataFrame(stances, columns=['stance_key', 'stance_label', 'perspective_count'])
    if df.empty:
        return None
    df['stance_label'] = df['stance_label'].fillna(df['stance_key'])

    chart = alt.Chart(df).mark_arc(innerRadius=50).encode(
        theta=alt.Theta('perspective_count:Q', title='Perspectives'),
        color=alt.Color('stance_label:N', title='Stance'),
        tooltip=['stance_label', 'perspective_count']
    ).properties(
        width=400,
        height=400,
        title='Perspectives by Stance'
    )
    return chart


#build streamlit chart for stance by submitter type
@cache_data
def stance_by_submitter_chart(rows):
    df = pd.DataFrame(rows, columns=['stance_label', 'submitter_type'])
    if df.empty:
        return None
    df = df.value_counts().reset_index(name='n')

    chart = alt.Chart(df).mark_bar().encode(
        x=alt.X('n:Q', stack='normalize', title='Share of Perspectives'),
        y=alt.Y('submitter_type:N', title='Submitter Type'),
        color=alt.Color('stance_label:N', title='Stance'),
        tooltip=['submitter_type', 'stance_label', 'n']
    ).properties(
        width=600,
        height=300,
        title='Stance Alignment by Submitter Type'
    )
    return chart
