import pytest
from sqlalchemy import func, select

from shared.models.models import LLMCache
from shared.utils import utils
from shared.utils.utils import JSONParseError, LLMClient, LLMError, count_words, fill_prompt, parse_json_response


def test_fill_prompt_leaves_other_braces():
    template = 'Comment: {COMMENT}\nReturn {"scores": {"1": 1}} for {DOC}'
    filled = fill_prompt(template, COMMENT='hello', DOC=42)
    assert filled == 'Comment: hello\nReturn {"scores": {"1": 1}} for 42'


def test_count_words():
    assert count_words(None) == 0
    assert count_words('') == 0
    assert count_words(' one  two\nthree ') == 3


def test_parse_json_fenced_block():
    text = 'Here you go:\n```json\n{"a": [1, 2,],}\n```\nThanks'
    assert parse_json_response(text) == {'a': [1, 2]}


def test_parse_json_bare_object():
    assert parse_json_response('Result: {"b": {"c": true}} done') == {'b': {'c': True}}


def test_parse_json_first_of_several_objects():
    text = 'First {"a": 1} then {"b": "}"} and a stray }'
    assert parse_json_response(text) == {'a': 1}


def test_parse_json_passes_through_objects():
    assert parse_json_response({'x': 1}) == {'x': 1}


def test_parse_json_failure():
    with pytest.raises(JSONParseError):
        parse_json_response('no json here')
    assert issubclass(JSONParseError, ValueError)


def cache_rows(manager):
    with manager.get_session() as session:
        return session.scalar(select(func.count()).select_from(LLMCache))


def test_llm_client_caches_by_task_type(manager, fake_gai):
    calls, _ = fake_gai
    client = LLMClient(model='test-model', db_manager=manager, debug=False)

    first = client.generate_json('prompt one', task_type='scoring', params={'comment': 'C-1'})
    second = client.generate_json('prompt one', task_type='scoring')

    assert first == second == {'ok': True}
    assert calls == ['prompt one']
    assert cache_rows(manager) == 1

    with manager.get_session() as session:
        row = session.scalars(select(LLMCache)).one()
        assert row.task_type == 'scoring'
        assert row.model == 'test-model'


def test_llm_client_without_task_type_is_not_cached(manager, fake_gai):
    calls, _ = fake_gai
    client = LLMClient(model='test-model', db_manager=manager, debug=False)
    client.generate('same prompt')
    client.generate('same prompt')
    assert len(calls) == 2
    assert cache_rows(manager) == 0


def test_llm_client_does_not_cache_failed_postprocess(manager, fake_gai):
    calls, responses = fake_gai
    responses.extend(['not json', '{"fixed": 1}'])
    client = LLMClient(model='test-model', db_manager=manager, debug=False)

    with pytest.raises(JSONParseError):
        client.generate_json('p', task_type='structure')
    assert cache_rows(manager) == 0

    assert client.generate_json('p', task_type='structure') == {'fixed': 1}
    assert len(calls) == 2


def test_llm_client_rejects_empty_response(manager, fake_gai):
    _, responses = fake_gai
    responses.append('   ')
    client = LLMClient(model='test-model', db_manager=manager, debug=False)
    with pytest.raises(LLMError):
        client.generate('p', task_type='condense')


def test_llm_client_writes_debug_dumps(tmp_path, fake_gai):
    client = LLMClient(model='test-model', debug=True, debug_dir=tmp_path / 'debug')
    client.generate('dump me', debug_name='condense_C-1')
    assert (tmp_path / 'debug' / 'condense_C-1_prompt.txt').read_text() == 'dump me'
    assert (tmp_path / 'debug' / 'condense_C-1_response.txt').read_text() == '{"ok": true}'


def test_gai_requires_key_without_proxy(monkeypatch):
    monkeypatch.delenv('FASTAPI_URL', raising=False)
    monkeypatch.delenv('API_URL', raising=False)
    monkeypatch.delenv('OPENAI_PROJ_API', raising=False)
    with pytest.raises(LLMError, match='OPENAI_PROJ_API'):
        utils.gai('sys', 'user')
