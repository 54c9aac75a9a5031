"""
Extract what each commenter says about every theme they address.

For each condensed comment without extracts, the LLM returns per-theme
positions, concerns, recommendations, experiences and quotes. Only themes
with relevance 1 are kept, after placeholder text ("No specific concerns",
"not addressed", ...) has been filtered out.

Usage:
    python services/pipeline/themes/extract_theme_content.py CMS-2025-0050-0031
    python services/pipeline/themes/extract_theme_content.py CMS-2025-0050-0031 --limit 20 --concurrency 4
"""

import argparse
import json
import logging
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select

# Add project root to path
project_root = Path(__file__).parent.parent.parent.parent
sys.path.insert(0, str(project_root))

from shared.config.batch_config import get_task_config, get_task_model
from shared.database.database import get_db_manager
from shared.models.models import CommentThemeExtract, CondensedComment, ProcessingStatus, ThemeHierarchy
from shared.utils.batching import run_pool
from shared.utils.comment_processing import load_theme_hierarchy
from shared.utils.prompts import placeholder_phrases, theme_extract_prompt
from shared.utils.utils import LLMClient, fill_prompt

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

TASK = 'extract_theme_content'
EXTRACT_SECTIONS = ['positions', 'concerns', 'recommendations', 'experiences', 'key_quotes']


def should_filter_text(text: str) -> bool:
    """True for short text with the bare word "no" and for placeholder phrases."""
    lower = text.lower()
    words = lower.split()
    if len(words) < 20 and 'no' in words:
        return True
    return any(phrase in lower for phrase in placeholder_phrases)


def clean_extract(entry: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Drop placeholder items and empty sections from one theme extract.

    Returns:
        {'relevance': ..., 'extract': {...}} or None when nothing is left
    """
    if not isinstance(entry, dict) or not isinstance(entry.get('extract'), dict):
        return None

    cleaned = {}
    for section in EXTRACT_SECTIONS:
        items = entry['extract'].get(section)
        if not isinstance(items, list):
            continue
        kept = [item.strip() for item in items
                if isinstance(item, str) and item.strip() and not should_filter_text(item)]
        if kept:
            cleaned[section] = kept

    if not cleaned:
        return None
    return {'relevance': entry.get('relevance'), 'extract': cleaned}


def format_hierarchy(themes: List[ThemeHierarchy]) -> str:
    lines = []
    for theme in themes:
        if theme.detailed_guidelines:
            lines.append(f"{theme.code}: {theme.description}. {theme.detailed_guidelines}")
        else:
            lines.append(f"{theme.code}: {theme.description}")
    return "\n".join(lines)


def comment_text(sections: Optional[Dict]) -> str:
    sections = sections or {}
    text = ""
    quotes = sections.get('keyQuotations')
    if quotes and not any(phrase in quotes.lower() for phrase in placeholder_phrases + ['no standout']):
        text += f"## Notable Quotes from Commenter\n{quotes}\n\n"
    text += f"## Detailed Analysis\n{sections.get('detailedContent') or json.dumps(sections)}"
    return text


def select_comments(manager, limit: Optional[int] = None) -> List[Tuple[str, Dict]]:
    """Completed condensed comments that have no extracts yet."""
    with manager.get_session() as session:
        extracted = select(CommentThemeExtract.comment_id).distinct()
        stmt = (
            select(CondensedComment.comment_id, CondensedComment.structured_sections)
            .where(CondensedComment.status == ProcessingStatus.COMPLETED.value)
            .where(CondensedComment.comment_id.not_in(extracted))
            .order_by(CondensedComment.comment_id)
        )
        if limit:
            stmt = stmt.limit(limit)
        return [(row[0], row[1]) for row in session.execute(stmt)]


def extract_comment(manager, llm, comment_id: str, sections: Dict, hierarchy_text: str,
                    theme_codes: set) -> int:
    """
    Extract and save theme content for one comment.

    Returns:
        Number of theme extracts saved
    """
    prompt = fill_prompt(theme_extract_prompt, THEME_HIERARCHY=hierarchy_text, COMMENT=comment_text(sections))
    result = llm.generate_json(prompt, task_type='theme_extract', params={'comment_id': comment_id},
                               debug_name=f"extract_{comment_id}")
    if not isinstance(result, dict):
        raise ValueError("Extraction response is not a JSON object")

    extracts = {}
    for code, entry in result.items():
        if code not in theme_codes:
            logger.warning(f"[{comment_id}] Ignoring unknown theme code {code}")
            continue
        if not isinstance(entry, dict) or entry.get('relevance') != 1:
            continue
        cleaned = clean_extract(entry)
        if cleaned:
            extracts[code] = cleaned

    with manager.get_session() as session:
        for code, cleaned in extracts.items():
            session.merge(CommentThemeExtract(comment_id=comment_id, theme_code=code, extract_json=cleaned))

    logger.info(f"[{comment_id}] Saved {len(extracts)} theme extracts")
    return len(extracts)


def run(document_id: str, limit: Optional[int] = None, concurrency: Optional[int] = None,
        model: Optional[str] = None, db_dir: Optional[str] = None, llm=None,
        debug: bool = False) -> Dict[str, int]:
    manager = get_db_manager(document_id, db_dir)
    model = get_task_model(TASK, model)
    concurrency = concurrency or get_task_config(TASK, model)['concurrency']

    stats = {'processed': 0, 'successful': 0, 'failed': 0, 'extracts': 0}
    with manager.get_session() as session:
        themes = load_theme_hierarchy(session)
    if not themes:
        logger.error("No theme hierarchy found. Run discover-themes first.")
        return stats

    hierarchy_text = format_hierarchy(themes)
    theme_codes = {t.code for t in themes}
    comments = select_comments(manager, limit)
    logger.info(f"Extracting theme content from {len(comments)} comments")
    if not comments:
        return stats

    llm = llm or LLMClient(model=model, db_manager=manager, debug=debug)
    lock = threading.Lock()

    def worker(item, index, total):
        comment_id, sections = item
        try:
            saved = extract_comment(manager, llm, comment_id, sections, hierarchy_text, theme_codes)
        except Exception as e:
            logger.error(f"[{comment_id}] Extraction failed: {e}")
            with lock:
                stats['processed'] += 1
                stats['failed'] += 1
            return None
        with lock:
            stats['processed'] += 1
            stats['successful'] += 1
            stats['extracts'] += saved
        return saved

    run_pool(comments, concurrency, worker)
    return stats


def build_parser():
    parser = argparse.ArgumentParser(description="Extract theme-specific content from condensed comments")
    parser.add_argument("document_id", help="Document id")
    parser.add_argument("-l", "--limit", type=int, help="Process at most N comments")
    parser.add_argument("-c", "--concurrency", type=int, help="Parallel LLM calls")
    parser.add_argument("-m", "--model", help="LLM model")
    parser.add_argument("--db-dir", help="Directory holding per-document databases")
    parser.add_argument("-d", "--debug", action="store_true", help="Save prompts and responses")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    stats = run(args.document_id, limit=args.limit, concurrency=args.concurrency, model=args.model,
                db_dir=args.db_dir, debug=args.debug)

    print("\n" + "=" * 60)
    print("THEME EXTRACTION SUMMARY")
    print("=" * 60)
    print(f"Processed:  {stats['processed']}")
    print(f"Successful: {stats['successful']}")
    print(f"Failed:     {stats['failed']}")
    print(f"Extracts:   {stats['extracts']}")
    print("=" * 60)
    return stats


if __name__ == "__main__":
    main()
