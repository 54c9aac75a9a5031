"""
Per-task settings resolved from the tasks/global/models sections of config.yaml.
"""

import logging

from shared.utils.utils import cfg

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5
DEFAULT_MERGE_WIDTH = 10
FALLBACK_MODEL = "gpt-4o"


def _global():
    return cfg.section('global')


def get_task_model(task, cli_model=None, stage=None):
    """
    Model for a task: CLI > stage > task > global default > gpt-4o.

    Args:
        task: Task key under `tasks:` (e.g. 'condense')
        cli_model: --model value, if given
        stage: Optional stage name whose `<stage>_model` key overrides the task model
    """
    if cli_model:
        return cli_model
    task_cfg = cfg.section('tasks').get(task) or {}
    if stage and task_cfg.get(f"{stage}_model"):
        return task_cfg[f"{stage}_model"]
    if task_cfg.get('model'):
        return task_cfg['model']
    return _global().get('default_model') or FALLBACK_MODEL


def get_task_config(task, model=None):
    """
    Merged settings for a task.

    Concurrency is the task value (or the global default) scaled by the
    model's concurrency multiplier when one is configured.
    """
    glob = _global()
    task_cfg = dict(cfg.section('tasks').get(task) or {})

    concurrency = task_cfg.get('concurrency', glob.get('concurrency', DEFAULT_CONCURRENCY))
    model = model or get_task_model(task)
    multiplier = (cfg.section('models').get(model) or {}).get('concurrency')
    if multiplier:
        concurrency = max(1, round(concurrency * multiplier))

    task_cfg['concurrency'] = concurrency
    task_cfg['merge_width'] = task_cfg.get('merge_width', glob.get('merge_width', DEFAULT_MERGE_WIDTH))
    task_cfg['model'] = model
    return task_cfg


def get_batch_options(task):
    """The task's batching block ({trigger_word_limit, batch_word_limit}) or None."""
    batching = (cfg.section('tasks').get(task) or {}).get('batching')
    return dict(batching) if batching else None


def get_pipeline_config():
    pipeline = cfg.section('pipeline')
    return {
        'max_crashes': pipeline.get('max_crashes', 10),
        'retry_delay': pipeline.get('retry_delay', 5),
        'output_dir': pipeline.get('output_dir', 'dist/data'),
    }
