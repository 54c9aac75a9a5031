import pytest

from shared.models.models_perspective import PerspectiveStance, ThemeAnalysisRaw, ThemeNarrative, ThemeStance
from services.dashboard.queries.browser_queries import (
    get_child_themes, get_database_stats, get_perspectives_by_theme, get_stance_perspectives,
    get_theme_analysis, get_theme_ancestry, get_theme_by_code, get_theme_hierarchy, get_theme_narrative,
    get_theme_stances
)

from tests.conftest import DOCUMENT_ID, add_abstraction, add_comment, add_themes


@pytest.fixture
def seeded(manager, db_dir):
    add_themes(manager, [
        ('1', 'Compliance Costs', None),
        ('1.1', 'Small Practice Burden', '1'),
        ('1.1.1', 'Solo Practices', '1.1'),
        ('2', 'Patient Access', None),
    ])
    for comment_id in ('C-1', 'C-2', 'C-3'):
        add_comment(manager, comment_id)
    ids = add_abstraction(manager, 'C-1', [('1', 'Costs are high'), ('1.1.1', 'Solo doctors suffer')],
                          submitter_type='Physician', organization='Rural Health Alliance',
                          metadata={'category': 'Physician', 'organization': 'RHA'},
                          market_segment='Rural')
    ids += add_abstraction(manager, 'C-2', [('1.1', 'Small clinics need relief')],
                           metadata={'firstName': 'Ana', 'lastName': 'Lee', 'category': 'Individual'},
                           market_segment='Rural')
    ids += add_abstraction(manager, 'C-3', [('2', 'Access drops')], submitter_type=None,
                           market_segment='Urban')

    with manager.get_session() as session:
        session.add(ThemeNarrative(theme_code='1', narrative_summary='Costs dominate.',
                                   consensus_points=[{'statement': 'Too costly', 'strength': 'strong'}],
                                   debate_points=[], stakeholder_dynamics={'alignments': []},
                                   supporting_stats={}))
        session.add(ThemeStance(theme_code='1', stance_key='delay', stance_label='Delay',
                                typical_arguments=['Costs'], example_quotes=[]))
        session.add(ThemeStance(theme_code='1', stance_key='support', stance_label='Support'))
        session.add(ThemeStance(theme_code='1', stance_key='exempt', stance_label='Exempt'))
        session.add(PerspectiveStance(perspective_id=ids[0], theme_code='1', stance_key='delay', confidence=0.6))
        session.add(PerspectiveStance(perspective_id=ids[2], theme_code='1', stance_key='delay', confidence=0.9))
        session.add(PerspectiveStance(perspective_id=ids[1], theme_code='1', stance_key='exempt'))
        session.add(ThemeAnalysisRaw(theme_code='1', analysis_json={'narrative_summary': 'Costs dominate.'}))
    return db_dir, ids


def test_database_stats(seeded):
    db_dir, _ = seeded
    stats = get_database_stats(DOCUMENT_ID, db_dir)
    assert stats['totalComments'] == 3
    assert stats['totalPerspectives'] == 4
    assert stats['totalThemes'] == 4

    breakdowns = stats['attributeBreakdowns']
    assert breakdowns['submitter_type'] == [{'value': 'Individual', 'count': 1}, {'value': 'Physician', 'count': 1}]
    assert breakdowns['market_segment'] == [{'value': 'Rural', 'count': 2}, {'value': 'Urban', 'count': 1}]
    assert breakdowns['original_category'] == [{'value': 'Individual', 'count': 1},
                                               {'value': 'Physician', 'count': 1}]
    assert 'regulatory_stance' not in breakdowns


def test_theme_hierarchy_counts_descendants(seeded):
    db_dir, _ = seeded
    themes = {t['code']: t for t in get_theme_hierarchy(DOCUMENT_ID, db_dir)}
    assert (themes['1']['perspective_count'], themes['1']['document_count']) == (3, 2)
    assert (themes['1.1']['perspective_count'], themes['1.1']['document_count']) == (2, 2)
    assert themes['1.1.1']['perspective_count'] == 1
    assert themes['2']['level'] == 1


def test_theme_navigation(seeded):
    db_dir, _ = seeded
    assert get_theme_by_code(DOCUMENT_ID, '1.1', db_dir)['parent_code'] == '1'
    assert get_theme_by_code(DOCUMENT_ID, '9', db_dir) is None
    assert [t['code'] for t in get_child_themes(DOCUMENT_ID, '1', db_dir)] == ['1.1']
    assert get_child_themes(DOCUMENT_ID, '2', db_dir) == []
    assert [t['code'] for t in get_theme_ancestry(DOCUMENT_ID, '1.1.1', db_dir)] == ['1', '1.1', '1.1.1']
    assert get_theme_ancestry(DOCUMENT_ID, '9', db_dir) == []


def test_perspectives_by_theme(seeded):
    db_dir, _ = seeded
    perspectives = get_perspectives_by_theme(DOCUMENT_ID, '1', db_dir)
    assert [p['taxonomy_code'] for p in perspectives] == ['1', '1.1', '1.1.1']

    first = perspectives[0]
    assert first['comment_id'] == 'C-1'
    assert first['organization_name'] == 'Rural Health Alliance'
    assert first['original_category'] == 'Physician'
    assert first['original_organization'] == 'RHA'

    second = perspectives[1]
    assert (second['original_first_name'], second['original_last_name']) == ('Ana', 'Lee')

    access = get_perspectives_by_theme(DOCUMENT_ID, '2', db_dir)
    assert access[0]['submitter_type'] == 'Unknown'


def test_narrative_and_analysis(seeded):
    db_dir, _ = seeded
    narrative = get_theme_narrative(DOCUMENT_ID, '1', db_dir)
    assert narrative['narrative_summary'] == 'Costs dominate.'
    assert narrative['consensus_points'] == [{'statement': 'Too costly', 'strength': 'strong'}]
    assert narrative['stakeholder_dynamics'] == {'alignments': []}
    assert get_theme_narrative(DOCUMENT_ID, '2', db_dir) is None

    assert get_theme_analysis(DOCUMENT_ID, '1', db_dir) == {'narrative_summary': 'Costs dominate.'}
    assert get_theme_analysis(DOCUMENT_ID, '2', db_dir) is None


def test_stances_and_their_perspectives(seeded):
    db_dir, ids = seeded
    stances = get_theme_stances(DOCUMENT_ID, '1', db_dir)
    assert [(s['stance_key'], s['perspective_count']) for s in stances] == [
        ('delay', 2), ('exempt', 1), ('support', 0)
    ]
    assert stances[0]['typical_arguments'] == ['Costs']
    assert stances[2]['typical_arguments'] == []

    delay = get_stance_perspectives(DOCUMENT_ID, '1', 'delay', db_dir)
    assert [p['id'] for p in delay] == [ids[2], ids[0]]
    assert delay[0]['confidence'] == 0.9
    assert delay[0]['metadata']['firstName'] == 'Ana'
    assert get_stance_perspectives(DOCUMENT_ID, '1', 'exempt', db_dir)[0]['confidence'] == 1.0
    assert get_stance_perspectives(DOCUMENT_ID, '1', 'support', db_dir) == []
