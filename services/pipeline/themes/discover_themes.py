"""
Discover the theme hierarchy from condensed comments.

Comments are split into even word-count batches, each batch yields a draft
taxonomy, and the drafts are merged level by level (merge_width at a time)
into one two-level hierarchy. A final merge always runs, even for a single
batch, so the output has the same shape regardless of corpus size.

Usage:
    python services/pipeline/themes/discover_themes.py CMS-2025-0050-0031
    python services/pipeline/themes/discover_themes.py CMS-2025-0050-0031 --merge-width 4 --concurrency 3
"""

import argparse
import logging
import re
import sys
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select

# Add project root to path
project_root = Path(__file__).parent.parent.parent.parent
sys.path.insert(0, str(project_root))

from shared.config.batch_config import get_batch_options, get_task_config, get_task_model
from shared.database.database import get_db_manager
from shared.models.models import ThemeHierarchy
from shared.utils.batching import (
    Batch, TaskQueue, build_hierarchical_tasks, create_even_batches, final_task_id,
    DEFAULT_BATCH_WORD_LIMIT, DEFAULT_TRIGGER_WORD_LIMIT,
)
from shared.utils.comment_processing import EnrichedComment, load_condensed_comments, parse_theme_hierarchy
from shared.utils.prompts import theme_discovery_prompt, theme_merge_prompt
from shared.utils.utils import LLMClient, fill_prompt

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

TASK = 'discover_themes'


def format_comment_block(comment: EnrichedComment) -> str:
    """XML-ish block with the parts of a condensed comment that carry policy content."""
    sections = comment.structured_sections or {}
    metadata = comment.metadata or {}
    lines = [
        f'<comment id="{comment.id}">',
        f"<submitter>{metadata.get('submitter') or 'Anonymous'}</submitter>",
        f"<submitter_type>{metadata.get('submitter_type') or 'Individual'}</submitter_type>",
    ]
    if not sections:
        lines.append("<note>No structured content available</note>")
    else:
        if sections.get('commenterProfile'):
            lines.append(f"<commenter_profile>{sections['commenterProfile']}</commenter_profile>")
        if sections.get('corePosition'):
            lines.append(f"<core_position>{sections['corePosition']}</core_position>")
        recommendations = sections.get('keyRecommendations')
        if recommendations and not recommendations.startswith("No specific"):
            lines.append(f"<key_recommendations>{recommendations}</key_recommendations>")
        concerns = sections.get('mainConcerns')
        if concerns and not concerns.startswith("No specific"):
            lines.append(f"<main_concerns>{concerns}</main_concerns>")
    lines.append("</comment>")
    return "\n".join(lines)


def plan_batches(comments: List[EnrichedComment], trigger_word_limit: int,
                 batch_word_limit: int) -> List[Batch]:
    total = sum(c.word_count for c in comments)
    if total <= trigger_word_limit:
        logger.info(f"Small dataset ({total} <= {trigger_word_limit} words) - single batch")
        return [Batch(items=list(comments), word_count=total, number=1)]
    logger.info(f"Large dataset ({total} > {trigger_word_limit} words) - batches of ~{batch_word_limit} words")
    return create_even_batches(comments, trigger_word_limit=0, batch_word_limit=batch_word_limit,
                               get_word_count=lambda c: c.word_count)


def _task_level(task_id: str) -> int:
    match = re.search(r'_L(\d+)_', task_id)
    return int(match.group(1)) if match else 0


def discover_taxonomy(comments: List[EnrichedComment], llm, concurrency: int = 5, merge_width: int = 10,
                      trigger_word_limit: int = DEFAULT_TRIGGER_WORD_LIMIT,
                      batch_word_limit: int = DEFAULT_BATCH_WORD_LIMIT) -> str:
    """
    Run batch discovery and hierarchical merges.

    Returns:
        Final taxonomy text
    """
    batches = plan_batches(comments, trigger_word_limit, batch_word_limit)
    tasks = build_hierarchical_tasks(batches, lambda _, i: f"batch_{i}", "merge", merge_width, force_finalize=True)
    logger.info(f"{len(batches)} batch(es), {len(tasks) - len(batches)} merge task(s)")

    def process(task, get_result):
        if task.data['type'] == 'initial':
            batch = task.data['item']
            logger.info(f"[{task.id}] Discovering themes ({len(batch.items)} comments, {batch.word_count} words)")
            blocks = "\n\n".join(format_comment_block(c) for c in batch.items)
            prompt = fill_prompt(theme_discovery_prompt, COMMENTS=blocks)
            response = llm.generate(prompt, task_type='theme_discovery', task_level=0,
                                    params={'task_id': task.id, 'comment_count': len(batch.items),
                                            'word_count': batch.word_count},
                                    debug_name=f"themes_{task.id}")
            return response.strip()

        inputs = [get_result(input_id) for input_id in task.data['inputs']]
        logger.info(f"[{task.id}] Merging {' + '.join(task.data['inputs'])}")
        sections = "\n\n".join(
            f"--- INPUT TAXONOMY {i} ---\n{content}\n--- END OF INPUT TAXONOMY {i} ---"
            for i, content in enumerate(inputs, 1)
        )
        prompt = fill_prompt(theme_merge_prompt, TAXONOMIES=sections)
        response = llm.generate(prompt, task_type='theme_discovery_merge', task_level=_task_level(task.id),
                                params={'task_id': task.id, 'input_ids': task.data['inputs']},
                                debug_name=f"themes_{task.id}")
        return response.strip()

    queue = TaskQueue(
        tasks,
        concurrency=concurrency,
        on_task_complete=lambda task, _: logger.info(f"[{task.id}] Completed"),
        on_task_error=lambda task, e: logger.error(f"[{task.id}] Failed: {e}"),
    )
    results = queue.process(process)
    return results[final_task_id(tasks)]


def save_theme_hierarchy(manager, themes: List[Dict]) -> int:
    with manager.get_session() as session:
        session.execute(delete(ThemeHierarchy))
        for theme in themes:
            session.merge(ThemeHierarchy(
                code=theme['code'],
                description=theme['description'],
                level=theme['level'],
                parent_code=theme['parent_code'],
                detailed_guidelines=theme.get('detailed_guidelines') or None,
            ))
    return len({theme['code'] for theme in themes})


def run(document_id: str, limit: Optional[int] = None, concurrency: Optional[int] = None,
        model: Optional[str] = None, merge_width: Optional[int] = None,
        batch_limit: Optional[int] = None, batch_size: Optional[int] = None,
        force: bool = False, db_dir: Optional[str] = None, llm=None, debug: bool = False) -> Dict[str, int]:
    manager = get_db_manager(document_id, db_dir)
    stats = {'comments': 0, 'themes': 0, 'skipped': 0}

    with manager.get_session() as session:
        existing = session.scalar(select(func.count()).select_from(ThemeHierarchy))
    if existing and not force:
        logger.warning(f"Themes already discovered ({existing} themes); clear theme_hierarchy or use --force to re-run")
        stats['skipped'] = 1
        stats['themes'] = existing
        return stats

    with manager.get_session() as session:
        comments = load_condensed_comments(session, limit)
    if not comments:
        logger.error("No condensed comments found. Run the condense step first.")
        return stats
    stats['comments'] = len(comments)

    model = get_task_model(TASK, model)
    task_cfg = get_task_config(TASK, model)
    batching = get_batch_options(TASK) or {}
    llm = llm or LLMClient(model=model, db_manager=manager, debug=debug)

    taxonomy_text = discover_taxonomy(
        comments, llm,
        concurrency=concurrency or task_cfg['concurrency'],
        merge_width=merge_width or task_cfg['merge_width'],
        trigger_word_limit=batch_limit or batching.get('trigger_word_limit', DEFAULT_TRIGGER_WORD_LIMIT),
        batch_word_limit=batch_size or batching.get('batch_word_limit', DEFAULT_BATCH_WORD_LIMIT),
    )

    themes = parse_theme_hierarchy(taxonomy_text)
    if not themes:
        raise ValueError("No themes could be parsed from the final taxonomy")
    stats['themes'] = save_theme_hierarchy(manager, themes)
    logger.info(f"Saved {stats['themes']} themes")
    return stats


def build_parser():
    parser = argparse.ArgumentParser(description="Discover theme hierarchy from condensed comments")
    parser.add_argument("document_id", help="Document id")
    parser.add_argument("-l", "--limit", type=int, help="Use only N comments")
    parser.add_argument("--batch-limit", type=int, help="Word count that triggers batching (default: 250000)")
    parser.add_argument("--batch-size", type=int, help="Target words per batch (default: 150000)")
    parser.add_argument("--merge-width", type=int, help="Taxonomies merged at once (default: 10)")
    parser.add_argument("-c", "--concurrency", type=int, help="Parallel LLM calls")
    parser.add_argument("-m", "--model", help="LLM model")
    parser.add_argument("--force", action="store_true", help="Replace an existing hierarchy")
    parser.add_argument("--db-dir", help="Directory holding per-document databases")
    parser.add_argument("-d", "--debug", action="store_true", help="Save prompts and responses")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    stats = run(args.document_id, limit=args.limit, concurrency=args.concurrency, model=args.model,
                merge_width=args.merge_width, batch_limit=args.batch_limit, batch_size=args.batch_size,
                force=args.force, db_dir=args.db_dir, debug=args.debug)

    print("\n" + "=" * 60)
    print("THEME DISCOVERY SUMMARY")
    print("=" * 60)
    print(f"Comments: {stats['comments']}")
    print(f"Themes:   {stats['themes']}")
    print("=" * 60)
    return stats


if __name__ == "__main__":
    main()
