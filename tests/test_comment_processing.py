import subprocess
from types import SimpleNamespace

from shared.utils.comment_processing import (
    enrich_comment, extract_metadata, load_condensed_comments, load_condensed_comments_for_entities,
    parse_entity_taxonomy, parse_theme_hierarchy, theme_sort_key
)

from tests.conftest import TAXONOMY_TEXT, add_comment, add_condensed


def pdf(name, data=b'%PDF'):
    return SimpleNamespace(format='pdf', blob_data=data, file_name=name)


def test_metadata_for_individual():
    meta = extract_metadata({'firstName': 'Jane', 'lastName': 'Doe', 'city': 'Austin',
                             'stateProvinceRegion': 'TX', 'country': 'United States',
                             'postedDate': '2025-03-01'})
    assert meta == {
        'submitter': 'Jane Doe',
        'submitter_type': 'Individual',
        'organization': None,
        'location': 'Austin, TX',
        'date': '2025-03-01',
    }


def test_metadata_prefers_organization_and_category():
    meta = extract_metadata({'firstName': 'Jane', 'organization': 'Rural Health Alliance',
                             'category': 'Health Care Professional', 'country': 'Canada',
                             'receiveDate': '2025-02-27'})
    assert meta['submitter'] == 'Rural Health Alliance'
    assert meta['submitter_type'] == 'Health Care Professional'
    assert meta['location'] == 'Canada'
    assert meta['date'] == '2025-02-27'


def test_metadata_anonymous():
    meta = extract_metadata({})
    assert meta['submitter'] == 'Anonymous'
    assert meta['submitter_type'] == 'Individual'
    assert meta['location'] is None


def test_enrich_comment_includes_metadata_text_and_pdfs():
    enriched = enrich_comment(
        'C-1',
        {'comment': 'Please delay the rule.', 'organization': 'Clinic Co'},
        attachments=[pdf('a.pdf'), pdf('empty.pdf'), SimpleNamespace(format='docx', blob_data=b'x', file_name='b.docx')],
        pdf_reader=lambda data: '' if data == b'' else 'Attachment body text',
    )
    assert enriched.id == 'C-1'
    assert 'ID: C-1' in enriched.content
    assert 'Organization: Clinic Co' in enriched.content
    assert 'Please delay the rule.' in enriched.content
    assert 'PDF: a.pdf\nAttachment body text' in enriched.content
    assert 'b.docx' not in enriched.content
    assert enriched.word_count == len(enriched.content.split())


def test_enrich_comment_reports_unreadable_pdf():
    def broken(data):
        raise subprocess.CalledProcessError(1, 'pdftotext')

    enriched = enrich_comment('C-2', {'comment': 'See attached.'}, attachments=[pdf('bad.pdf')], pdf_reader=broken)
    assert 'PDF: bad.pdf (error reading)' in enriched.content


def test_enrich_comment_skips_pdfs_when_disabled():
    enriched = enrich_comment('C-3', {'comment': 'Text'}, attachments=[pdf('a.pdf')], include_pdfs=False,
                              pdf_reader=lambda data: 'never')
    assert 'PDF ATTACHMENTS' not in enriched.content


def test_enrich_comment_without_text():
    assert enrich_comment('C-4', {'comment': '   '}) is None


def test_parse_theme_hierarchy():
    themes = parse_theme_hierarchy(TAXONOMY_TEXT)
    assert [t['code'] for t in themes] == ['1', '1.1', '2']

    first = themes[0]
    assert first['description'] == 'Compliance Costs'
    assert first['level'] == 1
    assert first['parent_code'] is None
    assert first['detailed_guidelines'] == (
        'Costs of meeting the new requirements. Includes staff time and software. Excludes clinical quality.'
    )

    child = themes[1]
    assert child['description'] == 'Small Practice Burden'
    assert child['level'] == 2
    assert child['parent_code'] == '1'


def test_parse_theme_hierarchy_without_separator():
    themes = parse_theme_hierarchy("3. Enforcement. Who enforces the rule. Covers audits and penalties.")
    assert themes[0]['description'] == 'Enforcement'
    assert themes[0]['detailed_guidelines'] == 'Who enforces the rule. Covers audits and penalties.'


def test_parse_entity_taxonomy():
    text = """1. Organizations
* American Medical Association: National physician group
  * "AMA"
  * American Medical Association
2. Regulations
* HIPAA: Health privacy law
  * "HIPAA"
"""
    taxonomy = parse_entity_taxonomy(text)
    assert list(taxonomy) == ['Organizations', 'Regulations']
    ama = taxonomy['Organizations'][0]
    assert ama['label'] == 'American Medical Association'
    assert ama['definition'] == 'National physician group'
    assert ama['terms'] == ['AMA', 'American Medical Association']
    assert taxonomy['Regulations'][0]['terms'] == ['HIPAA']


def test_theme_sort_key_is_numeric():
    codes = ['2.10', '10', '2.9', '2', '1.1']
    assert sorted(codes, key=theme_sort_key) == ['1.1', '2', '2.9', '2.10', '10']


def test_load_condensed_comments(manager):
    add_comment(manager, 'C-1', organization='Clinic Co')
    add_comment(manager, 'C-2')
    add_condensed(manager, 'C-1')
    add_condensed(manager, 'C-2', sections={'oneLineSummary': 'Short', 'corePosition': 'Opposes'})

    with manager.get_session() as session:
        comments = load_condensed_comments(session)
        entity_view = load_condensed_comments_for_entities(session)

    assert [c.id for c in comments] == ['C-1', 'C-2']
    assert comments[0].content == '- C-1 says the EPA rule is costly'
    assert comments[1].content == 'Short\n\nOpposes'
    assert entity_view[0].content.startswith('[Organization] Clinic Co\nOrganization: Clinic Co')
