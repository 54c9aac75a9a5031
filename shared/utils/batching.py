"""
Word-count batching and dependency-aware task scheduling.

Large LLM jobs (theme discovery, theme summaries) are split into batches that
fit a context window, processed in parallel, and then merged level by level.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor, FIRST_COMPLETED, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from shared.utils.utils import count_words

logger = logging.getLogger(__name__)

DEFAULT_TRIGGER_WORD_LIMIT = 250000
DEFAULT_BATCH_WORD_LIMIT = 150000


@dataclass
class Batch:
    items: List[Any] = field(default_factory=list)
    word_count: int = 0
    number: int = 1


def _word_count(item, get_word_count):
    if get_word_count is not None:
        return get_word_count(item)
    if isinstance(item, dict):
        if 'word_count' in item:
            return item['word_count']
        return count_words(item.get('content', ''))
    return getattr(item, 'word_count', 0)


def create_batches(items: Sequence[Any],
                   trigger_word_limit: int = DEFAULT_TRIGGER_WORD_LIMIT,
                   batch_word_limit: int = DEFAULT_BATCH_WORD_LIMIT,
                   get_word_count: Optional[Callable[[Any], int]] = None) -> List[Batch]:
    """
    Split items into sequential batches by word count.

    When the total fits under trigger_word_limit everything goes in one batch.
    Otherwise a new batch starts whenever adding the next item would push the
    current batch over batch_word_limit. An oversized item still gets a batch
    of its own.
    """
    counts = [_word_count(item, get_word_count) for item in items]
    total = sum(counts)

    if total <= trigger_word_limit:
        return [Batch(items=list(items), word_count=total, number=1)]

    batches = []
    current = Batch(number=1)
    for item, words in zip(items, counts):
        if current.word_count > 0 and current.word_count + words > batch_word_limit:
            batches.append(current)
            current = Batch(number=len(batches) + 1)
        current.items.append(item)
        current.word_count += words
    if current.items:
        batches.append(current)
    return batches


def create_even_batches(items: Sequence[Any],
                        trigger_word_limit: int = DEFAULT_TRIGGER_WORD_LIMIT,
                        batch_word_limit: int = DEFAULT_BATCH_WORD_LIMIT,
                        get_word_count: Optional[Callable[[Any], int]] = None) -> List[Batch]:
    """
    Split items into ceil(total / batch_word_limit) batches of similar size.

    Items are placed largest first into the currently lightest batch, then
    each batch is put back in the items' original order. A trigger limit of 0
    always batches.
    """
    counts = [_word_count(item, get_word_count) for item in items]
    total = sum(counts)

    if total <= trigger_word_limit:
        return [Batch(items=list(items), word_count=total, number=1)]

    num_batches = max(1, math.ceil(total / batch_word_limit))
    buckets: List[List[int]] = [[] for _ in range(num_batches)]
    loads = [0] * num_batches

    order = sorted(range(len(items)), key=lambda i: counts[i], reverse=True)
    for idx in order:
        lightest = loads.index(min(loads))
        buckets[lightest].append(idx)
        loads[lightest] += counts[idx]

    batches = []
    for bucket, load in zip(buckets, loads):
        if not bucket:
            continue
        bucket.sort()
        batches.append(Batch(items=[items[i] for i in bucket], word_count=load, number=len(batches) + 1))
    return batches


# ============================================================================
# Task queue
# ============================================================================

@dataclass
class Task:
    id: str
    data: Any = None
    dependencies: List[str] = field(default_factory=list)


class TaskQueue:
    """
    Runs tasks on a thread pool as soon as their dependencies have finished.

    The processor is called as processor(task, get_result) where get_result(id)
    returns the result of a completed task. The first failure propagates after
    on_task_error (if given) has been called.
    """

    def __init__(self, tasks: Sequence[Task], concurrency: int = 5,
                 on_task_start: Optional[Callable[[Task], None]] = None,
                 on_task_complete: Optional[Callable[[Task, Any], None]] = None,
                 on_task_error: Optional[Callable[[Task, Exception], None]] = None):
        ids = [t.id for t in tasks]
        if len(ids) != len(set(ids)):
            raise ValueError("Duplicate task ids")
        self.tasks = {t.id: t for t in tasks}
        self.concurrency = max(1, concurrency)
        self.on_task_start = on_task_start
        self.on_task_complete = on_task_complete
        self.on_task_error = on_task_error
        self.results: Dict[str, Any] = {}

    def get_result(self, task_id: str):
        if task_id not in self.results:
            raise KeyError(f"Result for task {task_id} is not available")
        return self.results[task_id]

    def _ready(self, pending):
        return [tid for tid in pending
                if all(dep in self.results for dep in self.tasks[tid].dependencies)]

    def process(self, processor: Callable[[Task, Callable[[str], Any]], Any]) -> Dict[str, Any]:
        pending = list(self.tasks)
        running = {}

        with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
            while pending or running:
                for tid in self._ready(pending):
                    if len(running) >= self.concurrency:
                        break
                    pending.remove(tid)
                    task = self.tasks[tid]
                    if self.on_task_start:
                        self.on_task_start(task)
                    running[executor.submit(processor, task, self.get_result)] = task

                if not running:
                    raise RuntimeError(
                        "Circular dependency detected. Remaining tasks: " + ", ".join(pending)
                    )

                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in done:
                    task = running.pop(future)
                    try:
                        result = future.result()
                    except Exception as e:
                        if self.on_task_error:
                            self.on_task_error(task, e)
                        for other in running:
                            other.cancel()
                        raise
                    self.results[task.id] = result
                    if self.on_task_complete:
                        self.on_task_complete(task, result)

        return dict(self.results)


def build_hierarchical_tasks(items: Sequence[Any],
                             get_id: Callable[[Any, int], str],
                             task_prefix: str = "merge",
                             merge_width: int = 2,
                             force_finalize: bool = False) -> List[Task]:
    """
    Build an initial task per item plus a tree of merge tasks over them.

    Each level is split into ceil(n / merge_width) groups whose sizes differ
    by at most one. Groups of one carry forward to the next level. With
    force_finalize a single item still gets a merge task at level 1, so a
    lone batch is always followed by a finalizing pass.

    Task data is {'type': 'initial', 'item': item} or
    {'type': 'merge', 'inputs': [task ids]}.
    """
    merge_width = max(2, merge_width)
    tasks = []
    level_ids = []
    for i, item in enumerate(items):
        task_id = get_id(item, i)
        tasks.append(Task(id=task_id, data={'type': 'initial', 'item': item}))
        level_ids.append(task_id)

    level = 1
    while len(level_ids) > 1 or (force_finalize and len(level_ids) == 1 and level == 1):
        n = len(level_ids)
        num_groups = math.ceil(n / merge_width)
        base, remainder = divmod(n, num_groups)

        next_ids = []
        pos = 0
        for group_idx in range(num_groups):
            size = base + (1 if group_idx < remainder else 0)
            group = level_ids[pos:pos + size]
            pos += size
            if len(group) > 1 or (force_finalize and level == 1):
                task_id = f"{task_prefix}_L{level}_P{group_idx}"
                tasks.append(Task(id=task_id, data={'type': 'merge', 'inputs': group},
                                  dependencies=list(group)))
                next_ids.append(task_id)
            else:
                next_ids.extend(group)

        level_ids = next_ids
        level += 1

    return tasks


def final_task_id(tasks: Sequence[Task]) -> Optional[str]:
    """Id of the task nothing else depends on (the root of the merge tree)."""
    if not tasks:
        return None
    depended = {dep for t in tasks for dep in t.dependencies}
    roots = [t.id for t in tasks if t.id not in depended]
    return roots[-1]


def run_pool(items: Sequence[Any], concurrency: int,
             worker: Callable[[Any, int, int], Any]) -> List[Any]:
    """
    Run worker(item, index, total) over items with bounded concurrency.

    Returns results in item order. Worker exceptions propagate.
    """
    total = len(items)
    if total == 0:
        return []
    with ThreadPoolExecutor(max_workers=max(1, concurrency)) as executor:
        futures = [executor.submit(worker, item, i, total) for i, item in enumerate(items)]
        return [f.result() for f in futures]
