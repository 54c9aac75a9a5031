from datetime import datetime, timedelta

import pytest

from shared.models.models import LLMCache
from services.pipeline.cache import manage_cache
from services.pipeline.cache.manage_cache import cache_stats, clear_cache, verify_cache

from tests.conftest import DOCUMENT_ID


def add_entry(manager, key, task_type, level=0, result='{"ok": true}', params='{}', age_days=0):
    with manager.get_session() as session:
        session.add(LLMCache(prompt_hash=key, task_type=task_type, task_level=level, task_params=params,
                             result=result, model='gpt-4o',
                             created_at=datetime.utcnow() - timedelta(days=age_days)))


@pytest.fixture
def seeded(manager):
    add_entry(manager, 'a', 'theme_scoring')
    add_entry(manager, 'b', 'theme_scoring')
    add_entry(manager, 'c', 'theme_discovery_merge', level=1)
    add_entry(manager, 'd', 'theme_discovery_merge', level=2, age_days=40)
    return manager


def test_cache_stats(seeded):
    stats = cache_stats(seeded)
    assert stats['total'] == 4
    assert [(e['task_type'], e['task_level'], e['count']) for e in stats['entries']] == [
        ('theme_discovery_merge', 1, 1),
        ('theme_discovery_merge', 2, 1),
        ('theme_scoring', 0, 2),
    ]
    assert stats['size_bytes'] == 4 * (len('{"ok": true}') + len('{}'))


def test_clear_by_task_type_and_level(seeded):
    assert clear_cache(seeded, task_type='theme_discovery_merge', level=2) == 1
    assert clear_cache(seeded, task_type='theme_scoring') == 2
    assert cache_stats(seeded)['total'] == 1


def test_clear_old_and_all(seeded):
    assert clear_cache(seeded, older_than_days=30) == 1
    assert clear_cache(seeded, all_entries=True) == 3
    assert cache_stats(seeded)['total'] == 0


def test_clear_requires_a_selection(seeded):
    with pytest.raises(ValueError):
        clear_cache(seeded)


def test_verify_cache(manager):
    add_entry(manager, 'ok', 'condense')
    add_entry(manager, 'empty', 'condense', result='')
    add_entry(manager, 'bad', 'abstraction', params='{not json')
    add_entry(manager, 'odd', 'legacy_task')
    assert verify_cache(manager) == {
        'empty_results': ['empty'],
        'invalid_params': ['bad'],
        'unknown_task_types': ['legacy_task'],
    }


def test_cli_stats_and_clear(seeded, db_dir, capsys):
    result = manage_cache.main(['stats', DOCUMENT_ID, '--db-dir', db_dir])
    assert result['total'] == 4
    assert 'Total entries: 4' in capsys.readouterr().out

    assert manage_cache.main(['clear', DOCUMENT_ID, '--all', '--db-dir', db_dir]) == 4

    with pytest.raises(SystemExit):
        manage_cache.main(['clear', DOCUMENT_ID, '--db-dir', db_dir])
