import pytest
from fastapi.testclient import TestClient

from shared.models.models_perspective import ThemeNarrative, ThemeStance
from shared.utils.utils import LLMError
from services.api import main

from tests.conftest import DOCUMENT_ID
from tests.test_build_website import SUMMARY_SECTIONS, seed_document


@pytest.fixture
def client(monkeypatch, manager, db_dir):
    monkeypatch.setenv('COMMENT_DB_DIR', db_dir)
    seed_document(manager)
    with manager.get_session() as session:
        session.add(ThemeNarrative(theme_code='1', narrative_summary='Costs dominate.',
                                   consensus_points=[], debate_points=[],
                                   stakeholder_dynamics={}, supporting_stats={}))
        session.add(ThemeStance(theme_code='1', stance_key='delay', stance_label='Delay',
                                typical_arguments=['Costs']))
    return TestClient(main.app)


def test_material_query_proxies_to_openai(monkeypatch):
    calls = []

    def fake_gai(sys_prompt, prompt, model="gpt-4o", use_proxy=None):
        calls.append((sys_prompt, prompt, model, use_proxy))
        return "answer"

    monkeypatch.setattr(main, 'gai', fake_gai)
    response = TestClient(main.app).post('/material_query', json={'prompt': 'Hello', 'model': 'gpt-4o-mini'})
    assert response.status_code == 200
    assert response.json() == {'response': 'answer'}
    assert calls == [('', 'Hello', 'gpt-4o-mini', False)]


def test_material_query_llm_failure(monkeypatch):
    def failing_gai(*args, **kwargs):
        raise LLMError("quota exceeded")

    monkeypatch.setattr(main, 'gai', failing_gai)
    response = TestClient(main.app).post('/material_query', json={'prompt': 'Hello'})
    assert response.status_code == 502
    assert 'quota exceeded' in response.json()['detail']


def test_material_query_requires_prompt():
    assert TestClient(main.app).post('/material_query', json={'model': 'gpt-4o'}).status_code == 422


def test_health_and_documents(client, db_dir):
    health = client.get('/health').json()
    assert health['status'] == 'healthy'
    assert health['db_dir'] == db_dir
    assert client.get('/documents').json() == {'documents': [DOCUMENT_ID]}


def test_document_stats(client):
    stats = client.get(f'/documents/{DOCUMENT_ID}/stats').json()
    assert stats == {'documentId': DOCUMENT_ID, 'totalComments': 3, 'condensedComments': 2, 'totalThemes': 3,
                     'totalEntities': 2, 'scoredComments': 2, 'themeSummaries': 1}


def test_unknown_document_is_404(client):
    assert client.get('/documents/NOPE-0001/stats').status_code == 404


def test_document_themes(client):
    themes = client.get(f'/documents/{DOCUMENT_ID}/themes').json()['themes']
    assert [t['code'] for t in themes] == ['1', '1.1', '2']
    assert [t['direct_count'] for t in themes] == [1, 1, 0]


def test_document_theme_detail(client):
    detail = client.get(f'/documents/{DOCUMENT_ID}/themes/1').json()
    assert detail['theme']['description'] == 'Compliance Costs'
    assert detail['summary'] == {'commentCount': 1, 'wordCount': 400, 'sections': SUMMARY_SECTIONS}
    assert detail['narrative']['narrative_summary'] == 'Costs dominate.'
    assert detail['stances'] == [{'stance_key': 'delay', 'stance_label': 'Delay', 'stance_description': None,
                                  'typical_arguments': ['Costs'], 'example_quotes': []}]

    other = client.get(f'/documents/{DOCUMENT_ID}/themes/2').json()
    assert other['summary'] is None
    assert other['narrative'] is None
    assert other['stances'] == []

    assert client.get(f'/documents/{DOCUMENT_ID}/themes/9').status_code == 404


def test_document_comment(client):
    comment = client.get(f'/documents/{DOCUMENT_ID}/comments/C-1').json()
    assert comment['submitter'] == 'Rural Health Alliance'
    assert comment['text'] == 'Please delay this rule.'
    assert comment['status'] == 'completed'
    assert comment['themeScores'] == {'1': 1, '1.1': 3, '2': 2}
    assert comment['entities'] == [{'category': 'Organizations', 'label': 'American Medical Association'}]
    assert comment['attachments'] == [{'id': 'A-1', 'format': 'pdf', 'fileName': 'a.pdf', 'url': None}]

    bare = client.get(f'/documents/{DOCUMENT_ID}/comments/C-3').json()
    assert bare['submitter'] == 'Anonymous'
    assert bare['status'] is None
    assert bare['structuredSections'] is None

    assert client.get(f'/documents/{DOCUMENT_ID}/comments/C-404').status_code == 404
