from sqlalchemy import select

from shared.models.models import CommentEntity, EntityTaxonomy
from shared.utils.comment_processing import EnrichedComment
from services.pipeline.entities import discover_entities
from services.pipeline.entities.discover_entities import (
    find_entity_hits, frequency_bounds, normalize_taxonomy, sample_comments
)

from tests.conftest import DOCUMENT_ID, FakeLLM, add_comment, add_condensed, add_entity

DISCOVER = "Build a taxonomy of the named entities"

CONTENT = {
    'C-1': "- The AMA opposes the EPA rule",
    'C-2': "- AMA members worry about HIPAA",
    'C-3': "- Nothing specific about the epa",
    'C-4': "- The EPA ignored the AMA",
}

TAXONOMY = {
    'Organizations': [
        {'label': 'American Medical Association', 'definition': 'Physician group', 'terms': ['AMA']},
        {'label': 'Centers for Medicare & Medicaid Services', 'terms': ['CMS']},
    ],
    'Agencies': [{'label': 'EPA', 'definition': 'Environmental Protection Agency', 'terms': ['EPA']}],
    'Regulations': [{'label': 'HIPAA'}],
}


def comment(comment_id, words=10, content=''):
    return EnrichedComment(id=comment_id, content=content, word_count=words, metadata={},
                           structured_sections={'detailedContent': content})


def seed(manager):
    for comment_id, content in CONTENT.items():
        add_comment(manager, comment_id)
        add_condensed(manager, comment_id, sections={'detailedContent': content})


def test_frequency_bounds():
    assert frequency_bounds(4) == (1, 2)
    assert frequency_bounds(1000) == (10, 500)
    assert frequency_bounds(1000, 0.05, 0.2) == (50, 200)


def test_sample_comments_stops_near_target():
    comments = [comment(f"C-{i}", words=40) for i in range(10)]
    sample = sample_comments(comments, target_words=100, seed=3)
    assert len(sample) == 3
    assert len({c.id for c in sample}) == 3
    assert sample_comments(comments, target_words=100, seed=3) == sample


def test_normalize_taxonomy():
    raw = {
        'People': [{'label': ' Dr. Smith ', 'terms': ['Smith', 3, ' ']},
                   {'label': 'Dr. Smith', 'terms': ['Duplicate']},
                   {'label': ''},
                   'not a dict'],
        'Empty': [],
        'Broken': 'not a list',
    }
    assert normalize_taxonomy(raw) == {'People': [
        {'label': 'Dr. Smith', 'definition': 'A people entity mentioned in comments', 'terms': ['Smith']},
    ]}
    assert normalize_taxonomy(['not', 'a', 'dict']) == {}


def test_find_entity_hits_is_case_sensitive_and_word_bounded():
    taxonomy = normalize_taxonomy(TAXONOMY)
    comments = [comment(cid, content=text) for cid, text in CONTENT.items()]
    comments.append(comment('C-5', content="- The EPAS program"))
    hits = find_entity_hits(taxonomy, comments)
    assert hits[('Agencies', 'EPA')] == {'C-1', 'C-4'}
    assert hits[('Organizations', 'American Medical Association')] == {'C-1', 'C-2', 'C-4'}
    assert hits[('Regulations', 'HIPAA')] == {'C-2'}
    assert hits[('Organizations', 'Centers for Medicare & Medicaid Services')] == set()


def test_discover_and_filter_by_frequency(manager, db_dir):
    seed(manager)
    llm = FakeLLM([(DISCOVER, TAXONOMY)])

    stats = discover_entities.run(DOCUMENT_ID, seed=1, db_dir=db_dir, llm=llm)

    assert stats == {'comments': 4, 'sampled': 4, 'entities': 2, 'removed': 2, 'annotations': 3, 'skipped': 0}
    assert llm.task_types() == ['entity_discovery']
    assert '<comment id="C-1">' in llm.calls[0]['prompt']

    with manager.get_session() as session:
        entities = {(e.category, e.label): e.terms for e in session.scalars(select(EntityTaxonomy))}
        annotations = {(a.comment_id, a.entity_label) for a in session.scalars(select(CommentEntity))}
    assert entities == {('Agencies', 'EPA'): ['EPA'], ('Regulations', 'HIPAA'): ['HIPAA']}
    assert annotations == {('C-1', 'EPA'), ('C-4', 'EPA'), ('C-2', 'HIPAA')}


def test_plain_text_taxonomy_fallback(manager, db_dir):
    seed(manager)
    text = "1. Agencies\n* EPA: Environmental Protection Agency\n  * \"EPA\"\n"
    stats = discover_entities.run(DOCUMENT_ID, seed=1, db_dir=db_dir, llm=FakeLLM([(DISCOVER, text)]))
    assert stats['entities'] == 1
    assert stats['annotations'] == 2


def test_existing_entities_are_kept(manager, db_dir):
    seed(manager)
    add_entity(manager, 'Agencies', 'CMS', ['CMS'], [])
    stats = discover_entities.run(DOCUMENT_ID, db_dir=db_dir, llm=FakeLLM([]))
    assert stats['skipped'] == 1
    assert stats['entities'] == 1
