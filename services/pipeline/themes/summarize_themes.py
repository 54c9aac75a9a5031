"""
Summarize each theme from its comment extracts.

Themes with at least min_comments extracts are analyzed. Small themes go
through one analysis prompt; themes above the single-pass word limit are
split into even batches whose analyses are merged. The final analysis is
converted into structured JSON and saved to theme_summaries.

Usage:
    python services/pipeline/themes/summarize_themes.py CMS-2025-0050-0031
    python services/pipeline/themes/summarize_themes.py CMS-2025-0050-0031 --themes 1.1,2.3 --min-comments 3
"""

import argparse
import logging
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select

# Add project root to path
project_root = Path(__file__).parent.parent.parent.parent
sys.path.insert(0, str(project_root))

from shared.config.batch_config import get_batch_options, get_task_config, get_task_model
from shared.database.database import get_db_manager
from shared.models.models import CommentThemeExtract, CondensedComment, ThemeHierarchy, ThemeSummary
from shared.utils.batching import create_even_batches, run_pool
from shared.utils.comment_processing import theme_sort_key
from shared.utils.prompts import extract_merge_prompt, theme_structure_prompt, theme_summary_prompt
from shared.utils.utils import LLMClient, count_words, fill_prompt

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

TASK = 'summarize_themes'
DEFAULT_MIN_COMMENTS = 5
DEFAULT_SINGLE_PASS_WORDS = 200000
DEFAULT_BATCH_WORDS = 125000

SECTION_TITLES = [
    ('positions', 'Positions'),
    ('concerns', 'Concerns'),
    ('recommendations', 'Recommendations'),
    ('experiences', 'Experiences/Examples'),
    ('key_quotes', 'Key Quotes'),
]


@dataclass
class ThemeExtract:
    comment_id: str
    extract: Dict[str, Any]
    sections: Dict[str, Any]

    @property
    def word_count(self) -> int:
        items = []
        for key, _ in SECTION_TITLES:
            items.extend((self.extract.get('extract') or {}).get(key) or [])
        return count_words(" ".join(items) + " " + (self.sections.get('commenterProfile') or ''))


def full_description(theme: ThemeHierarchy) -> str:
    if theme.detailed_guidelines:
        return f"{theme.description}. {theme.detailed_guidelines}"
    return theme.description


def format_extract_block(item: ThemeExtract) -> str:
    content = item.extract.get('extract') or {}
    parts = []
    for key, title in SECTION_TITLES:
        values = content.get(key) or []
        if values:
            parts.append(f"**{title}:**\n" + "\n".join(f"- {v}" for v in values))
    formatted = "\n\n".join(parts) or "No specific content extracted for this theme"
    profile = item.sections.get('commenterProfile') or "No profile information provided"
    return (
        f'<comment id="{item.comment_id}">\n'
        f"<commenter_profile>\n{profile}\n</commenter_profile>\n\n"
        f'<theme_specific_content relevance="{item.extract.get("relevance", 1)}">\n'
        f"{formatted}\n"
        f"</theme_specific_content>\n"
        f"</comment>"
    )


def select_themes(manager, min_comments: int, theme_codes: Optional[List[str]] = None) -> List[Dict]:
    """Themes with enough extracts and no summary yet, largest first."""
    with manager.get_session() as session:
        extract_count = func.count(func.distinct(CommentThemeExtract.comment_id)).label('extract_count')
        stmt = (
            select(ThemeHierarchy, extract_count)
            .join(CommentThemeExtract, CommentThemeExtract.theme_code == ThemeHierarchy.code)
            .group_by(ThemeHierarchy.code)
            .having(extract_count >= min_comments)
        )
        if theme_codes:
            stmt = stmt.where(ThemeHierarchy.code.in_(theme_codes))
        rows = session.execute(stmt).all()
        done = set(session.scalars(select(ThemeSummary.theme_code)))

        themes = [{'code': theme.code, 'description': theme.description,
                   'full_description': full_description(theme), 'extract_count': count}
                  for theme, count in rows if theme.code not in done]
    themes.sort(key=lambda t: (-t['extract_count'], theme_sort_key(t['code'])))
    return themes


def load_extracts(manager, theme_code: str) -> List[ThemeExtract]:
    with manager.get_session() as session:
        stmt = (
            select(CommentThemeExtract.comment_id, CommentThemeExtract.extract_json,
                   CondensedComment.structured_sections)
            .join(CondensedComment, CondensedComment.comment_id == CommentThemeExtract.comment_id)
            .where(CommentThemeExtract.theme_code == theme_code)
            .order_by(CommentThemeExtract.comment_id)
        )
        return [ThemeExtract(comment_id=row[0], extract=row[1] or {}, sections=row[2] or {})
                for row in session.execute(stmt)]


def analyze_extracts(llm, theme: Dict, extracts: List[ThemeExtract], batch_label: Optional[str] = None) -> str:
    blocks = "\n\n---\n\n".join(format_extract_block(e) for e in extracts)
    prompt = fill_prompt(theme_summary_prompt, THEME_CODE=theme['code'],
                         THEME_DESCRIPTION=theme['full_description'], EXTRACTS=blocks)
    suffix = f"_{batch_label}" if batch_label else ""
    return llm.generate(prompt, task_type='theme_summary',
                        params={'theme_code': theme['code'], 'batch': batch_label,
                                'extract_count': len(extracts)},
                        debug_name=f"theme_summary_{theme['code']}{suffix}").strip()


def analyze_in_batches(llm, theme: Dict, extracts: List[ThemeExtract], batch_word_limit: int) -> str:
    batches = create_even_batches(extracts, trigger_word_limit=0, batch_word_limit=batch_word_limit,
                                  get_word_count=lambda e: e.word_count)
    logger.info(f"[{theme['code']}] Large theme: {len(batches)} batches")
    analyses = []
    for batch in batches:
        logger.info(f"[{theme['code']}] Batch {batch.number}: {len(batch.items)} extracts, {batch.word_count} words")
        analyses.append(analyze_extracts(llm, theme, batch.items,
                                         batch_label=f"batch_{batch.number}-of-{len(batches)}"))

    if len(analyses) == 1:
        return analyses[0]

    merged_input = "\n\n".join(
        f'<batch_analysis number="{i}">\n{analysis}\n</batch_analysis>'
        for i, analysis in enumerate(analyses, 1)
    )
    prompt = fill_prompt(extract_merge_prompt, THEME_CODE=theme['code'],
                         THEME_DESCRIPTION=theme['full_description'], EXTRACT_SETS=merged_input)
    return llm.generate(prompt, task_type='theme_summary_merge', task_level=1,
                        params={'theme_code': theme['code'], 'batches': len(analyses)},
                        debug_name=f"theme_summary_{theme['code']}_merge").strip()


def summarize_theme(manager, llm, theme: Dict, single_pass_limit: int = DEFAULT_SINGLE_PASS_WORDS,
                    batch_word_limit: int = DEFAULT_BATCH_WORDS) -> Dict[str, Any]:
    """
    Analyze, structure and save one theme summary.

    Returns:
        The structured sections that were saved
    """
    extracts = load_extracts(manager, theme['code'])
    total_words = sum(e.word_count for e in extracts)
    logger.info(f"[{theme['code']}] {len(extracts)} extracts, {total_words} words")

    if total_words <= single_pass_limit:
        analysis = analyze_extracts(llm, theme, extracts)
    else:
        analysis = analyze_in_batches(llm, theme, extracts, batch_word_limit)

    prompt = fill_prompt(theme_structure_prompt, THEME_CODE=theme['code'],
                         THEME_DESCRIPTION=theme['full_description'], ANALYSIS=analysis)
    sections = llm.generate_json(prompt, task_type='theme_summary_structure',
                                 params={'theme_code': theme['code'], 'extract_count': len(extracts)},
                                 debug_name=f"theme_summary_{theme['code']}_structured")
    if not isinstance(sections, dict):
        raise ValueError("Structured summary is not a JSON object")

    with manager.get_session() as session:
        session.merge(ThemeSummary(theme_code=theme['code'], structured_sections=sections,
                                   comment_count=len(extracts), word_count=total_words))
    return sections


def run(document_id: str, themes: Optional[List[str]] = None, min_comments: Optional[int] = None,
        concurrency: Optional[int] = None, model: Optional[str] = None, batch_limit: Optional[int] = None,
        batch_size: Optional[int] = None, db_dir: Optional[str] = None, llm=None,
        debug: bool = False) -> Dict[str, int]:
    manager = get_db_manager(document_id, db_dir)
    model = get_task_model(TASK, model)
    task_cfg = get_task_config(TASK, model)
    thresholds = task_cfg.get('thresholds') or {}
    batching = get_batch_options(TASK) or {}

    min_comments = min_comments or thresholds.get('min_comments', DEFAULT_MIN_COMMENTS)
    single_pass_limit = batch_limit or thresholds.get('single_pass_word_limit', DEFAULT_SINGLE_PASS_WORDS)
    batch_word_limit = batch_size or batching.get('batch_word_limit', DEFAULT_BATCH_WORDS)

    selected = select_themes(manager, min_comments, themes)
    stats = {'selected': len(selected), 'summarized': 0, 'failed': 0}
    if not selected:
        logger.info("No themes need summarization")
        return stats
    logger.info(f"Summarizing {len(selected)} themes (min {min_comments} comments)")

    llm = llm or LLMClient(model=model, db_manager=manager, debug=debug)
    lock = threading.Lock()

    def worker(theme, index, total):
        logger.info(f"[{index}/{total}] Theme {theme['code']}: {theme['description']}")
        try:
            summarize_theme(manager, llm, theme, single_pass_limit, batch_word_limit)
        except Exception as e:
            logger.error(f"[{theme['code']}] Summary failed: {e}")
            with lock:
                stats['failed'] += 1
            return False
        with lock:
            stats['summarized'] += 1
        return True

    run_pool(selected, concurrency or task_cfg['concurrency'], worker)
    return stats


def build_parser():
    parser = argparse.ArgumentParser(description="Summarize themes from extracted comment content")
    parser.add_argument("document_id", help="Document id")
    parser.add_argument("--themes", help="Comma-separated theme codes to summarize")
    parser.add_argument("--min-comments", type=int, help="Minimum extracts per theme (default: 5)")
    parser.add_argument("--batch-limit", type=int, help="Word count above which a theme is batched (default: 200000)")
    parser.add_argument("--batch-size", type=int, help="Target words per batch (default: 125000)")
    parser.add_argument("-c", "--concurrency", type=int, help="Themes processed in parallel")
    parser.add_argument("-m", "--model", help="LLM model")
    parser.add_argument("--db-dir", help="Directory holding per-document databases")
    parser.add_argument("-d", "--debug", action="store_true", help="Save prompts and responses")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    themes = [t.strip() for t in args.themes.split(',') if t.strip()] if args.themes else None
    stats = run(args.document_id, themes=themes, min_comments=args.min_comments,
                concurrency=args.concurrency, model=args.model, batch_limit=args.batch_limit,
                batch_size=args.batch_size, db_dir=args.db_dir, debug=args.debug)

    print("\n" + "=" * 60)
    print("THEME SUMMARY RESULTS")
    print("=" * 60)
    print(f"Selected:   {stats['selected']}")
    print(f"Summarized: {stats['summarized']}")
    print(f"Failed:     {stats['failed']}")
    print("=" * 60)
    return stats


if __name__ == "__main__":
    main()
