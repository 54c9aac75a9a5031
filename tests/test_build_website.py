import json

import pytest

from shared.models.models import Attachment
from services.publication import build_website

from tests.conftest import (
    DOCUMENT_ID, add_comment, add_condensed, add_entity, add_scores, add_summary, add_themes
)

SUMMARY_SECTIONS = {
    'executiveSummary': "Costs dominate.",
    'consensusPoints': [{'text': "Costs are high", 'organizations': ["AMA"]}],
}


def seed_document(manager):
    """Three comments, two condensed, scored, with one entity and one summary."""
    add_themes(manager)
    add_comment(manager, 'C-1', organization='Rural Health Alliance', city='Austin', stateProvinceRegion='TX')
    add_comment(manager, 'C-2')
    add_comment(manager, 'C-3', firstName=None, lastName=None)
    add_condensed(manager, 'C-1', word_count=120)
    add_condensed(manager, 'C-2')
    add_scores(manager, 'C-1', {'1': 1, '1.1': 3, '2': 2})
    add_scores(manager, 'C-2', {'1': 3, '1.1': 1, '2': 3})
    add_entity(manager, 'Organizations', 'American Medical Association', ['AMA'], ['C-1', 'C-2'])
    add_entity(manager, 'Agencies', 'EPA', ['EPA'], ['C-2'])
    add_summary(manager, '1', SUMMARY_SECTIONS, comment_count=1)
    with manager.get_session() as session:
        session.add(Attachment(id='A-1', comment_id='C-1', format='pdf', file_name='a.pdf'))


@pytest.fixture
def exported(manager, db_dir, tmp_path):
    seed_document(manager)
    output = tmp_path / 'site'
    stats = build_website.run(DOCUMENT_ID, output=str(output), db_dir=db_dir)
    return output, stats


def read(output, name):
    return json.loads((output / name).read_text(encoding='utf-8'))


def test_meta_and_stats(exported):
    output, stats = exported
    assert stats == {'totalComments': 3, 'condensedComments': 2, 'totalThemes': 3, 'totalEntities': 2,
                     'scoredComments': 2, 'themeSummaries': 1}
    meta = read(output, 'meta.json')
    assert meta['documentId'] == DOCUMENT_ID
    assert meta['stats'] == stats
    assert meta['generatedAt']


def test_themes_json(exported):
    output, _ = exported
    themes = {t['code']: t for t in read(output, 'themes.json')}
    assert [t['code'] for t in read(output, 'themes.json')] == ['1', '1.1', '2']
    assert themes['1']['direct_count'] == 1
    assert themes['1']['comment_count'] == 1
    assert themes['1']['children'] == ['1.1']
    assert [t['touch_count'] for t in themes.values()] == [0, 0, 0]
    assert themes['2']['direct_count'] == 0
    assert themes['1.1']['parent_code'] == '1'


def test_summaries_and_entities(exported):
    output, _ = exported
    summaries = read(output, 'theme-summaries.json')
    assert summaries == {'1': {'themeDescription': 'Compliance Costs', 'commentCount': 1, 'wordCount': 400,
                               'sections': SUMMARY_SECTIONS}}

    entities = read(output, 'entities.json')
    assert entities['Organizations'][0] == {'label': 'American Medical Association',
                                            'definition': 'American Medical Association definition',
                                            'terms': ['AMA'], 'mentionCount': 2}
    assert entities['Agencies'][0]['mentionCount'] == 1


def test_comments_json(exported):
    output, _ = exported
    comments = {c['id']: c for c in read(output, 'comments.json')}
    first = comments['C-1']
    assert first['documentId'] == DOCUMENT_ID
    assert first['submitter'] == 'Rural Health Alliance'
    assert first['submitterType'] == 'Organization'
    assert first['location'] == 'Austin, TX'
    assert first['themeScores'] == {'1': 1}
    assert first['hasAttachments'] is True
    assert first['wordCount'] == 120
    assert first['structuredSections']['oneLineSummary'] == 'Summary of C-1'
    assert first['entities'] == [{'category': 'Organizations', 'label': 'American Medical Association'}]

    third = comments['C-3']
    assert third['submitter'] == 'Anonymous'
    assert third['structuredSections'] is None
    assert third['themeScores'] == {}
    assert third['hasAttachments'] is False
    assert third['wordCount'] == 0


def test_indexes(exported):
    output, _ = exported
    assert read(output, 'indexes/theme-comments.json') == {
        '1': {'direct': ['C-1'], 'touches': []},
        '1.1': {'direct': ['C-2'], 'touches': []},
    }
    assert read(output, 'indexes/entity-comments.json') == {
        'Agencies|EPA': ['C-2'],
        'Organizations|American Medical Association': ['C-1', 'C-2'],
    }


def test_cli_prints_summary(manager, db_dir, tmp_path, capsys):
    seed_document(manager)
    build_website.main([DOCUMENT_ID, '--output', str(tmp_path / 'out'), '--db-dir', db_dir])
    assert 'WEBSITE BUILD SUMMARY' in capsys.readouterr().out
    assert (tmp_path / 'out' / 'indexes' / 'entity-comments.json').exists()
