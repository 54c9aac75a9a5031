"""
Score every condensed comment against every theme in the hierarchy.

Scores: 1 = directly addresses the theme, 2 = touches on it, 3 = not addressed.
A response is accepted only if it covers every theme code; a small grace
allowance is made for invalid values. Progress is tracked in
theme_scoring_status so runs can resume and failures can be retried.

Usage:
    python services/pipeline/themes/score_themes.py CMS-2025-0050-0031
    python services/pipeline/themes/score_themes.py CMS-2025-0050-0031 --retry-failed --concurrency 4
"""

import argparse
import json
import logging
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from sqlalchemy import delete, or_, select

# Add project root to path
project_root = Path(__file__).parent.parent.parent.parent
sys.path.insert(0, str(project_root))

from shared.config.batch_config import get_task_config, get_task_model
from shared.database.database import get_db_manager
from shared.models.models import (
    CommentTheme, CondensedComment, ProcessingStatus, ThemeHierarchy, ThemeScoringStatus
)
from shared.utils.batching import run_pool
from shared.utils.comment_processing import load_theme_hierarchy
from shared.utils.prompts import theme_scoring_prompt
from shared.utils.utils import LLMClient, fill_prompt, parse_json_response

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

TASK = 'score_themes'
DEFAULT_GRACE = 5


class ScoreValidationError(ValueError):
    pass


def format_hierarchy(themes: List[ThemeHierarchy]) -> str:
    return "\n".join(f"{'  ' * (t.level - 1)}{t.code}. {t.description}" for t in themes)


def comment_text(sections: Optional[Dict]) -> str:
    sections = sections or {}
    return sections.get('detailedContent') or json.dumps(sections)


def validate_scores(scores: Dict, theme_codes: List[str], grace: int = DEFAULT_GRACE) -> Dict[str, int]:
    """
    Keep integer scores of 1, 2 or 3 for known theme codes.

    Raises:
        ScoreValidationError: too few valid scores, or any theme code missing
    """
    if not isinstance(scores, dict):
        raise ScoreValidationError("Scores response is not a JSON object")

    valid = {code: score for code, score in scores.items()
             if type(score) is int and score in (1, 2, 3)}
    if len(valid) < len(theme_codes) - grace:
        missing = [code for code in theme_codes if code not in valid]
        raise ScoreValidationError(
            f"Expected at least {len(theme_codes) - grace} theme scores, got {len(valid)}. "
            f"Missing themes: {', '.join(missing)}"
        )

    missing = [code for code in theme_codes if code not in scores]
    if missing:
        raise ScoreValidationError(f"Missing scores for themes: {', '.join(missing)}")

    known = set(theme_codes)
    return {code: score for code, score in valid.items() if code in known}


def select_comments(manager, retry_failed: bool = False, limit: Optional[int] = None) -> List[Tuple[str, Dict]]:
    with manager.get_session() as session:
        stmt = (
            select(CondensedComment.comment_id, CondensedComment.structured_sections)
            .outerjoin(ThemeScoringStatus, ThemeScoringStatus.comment_id == CondensedComment.comment_id)
            .where(CondensedComment.status == ProcessingStatus.COMPLETED.value)
        )
        if retry_failed:
            stmt = stmt.where(ThemeScoringStatus.status == ProcessingStatus.FAILED.value).order_by(
                ThemeScoringStatus.attempt_count, CondensedComment.comment_id)
        else:
            stmt = stmt.where(or_(
                ThemeScoringStatus.comment_id.is_(None),
                ThemeScoringStatus.status.in_([ProcessingStatus.PENDING.value, ProcessingStatus.PROCESSING.value]),
            )).order_by(CondensedComment.comment_id)
        if limit:
            stmt = stmt.limit(limit)
        return [(row[0], row[1]) for row in session.execute(stmt)]


def _set_status(session, comment_id: str, status: ProcessingStatus, error: Optional[str] = None):
    row = session.get(ThemeScoringStatus, comment_id)
    if row is None:
        row = ThemeScoringStatus(comment_id=comment_id, attempt_count=0)
        session.add(row)
    row.status = status.value
    row.error_message = error
    row.last_attempt_at = datetime.utcnow()
    if status == ProcessingStatus.FAILED:
        row.attempt_count = (row.attempt_count or 0) + 1


def score_comment(manager, llm, comment_id: str, sections: Dict, hierarchy_text: str,
                  theme_codes: List[str], grace: int = DEFAULT_GRACE) -> bool:
    with manager.get_session() as session:
        _set_status(session, comment_id, ProcessingStatus.PROCESSING)

    try:
        prompt = fill_prompt(theme_scoring_prompt, THEME_HIERARCHY=hierarchy_text,
                             THEME_COUNT=len(theme_codes), COMMENT=comment_text(sections))
        # a rejected answer never reaches the cache
        valid = llm.generate(
            prompt, task_type='theme_scoring', params={'comment_id': comment_id},
            debug_name=f"score_themes_{comment_id}",
            postprocess=lambda text: validate_scores(parse_json_response(text), theme_codes, grace),
        )

        with manager.get_session() as session:
            session.execute(delete(CommentTheme).where(CommentTheme.comment_id == comment_id))
            for code, score in valid.items():
                session.add(CommentTheme(comment_id=comment_id, theme_code=code, score=score))
            _set_status(session, comment_id, ProcessingStatus.COMPLETED)

        breakdown = {s: sum(1 for v in valid.values() if v == s) for s in (1, 2, 3)}
        logger.info(f"[{comment_id}] Scored: {breakdown[1]} direct, {breakdown[2]} touches, "
                    f"{breakdown[3]} not addressed")
        return True

    except Exception as e:
        logger.error(f"[{comment_id}] Scoring failed: {e}")
        with manager.get_session() as session:
            _set_status(session, comment_id, ProcessingStatus.FAILED, str(e))
        return False


def run(document_id: str, limit: Optional[int] = None, concurrency: Optional[int] = None,
        model: Optional[str] = None, retry_failed: bool = False, grace: Optional[int] = None,
        db_dir: Optional[str] = None, llm=None, debug: bool = False) -> Dict[str, int]:
    manager = get_db_manager(document_id, db_dir)
    model = get_task_model(TASK, model)
    task_cfg = get_task_config(TASK, model)
    concurrency = concurrency or task_cfg['concurrency']
    if grace is None:
        grace = (task_cfg.get('validation') or {}).get('grace_count', DEFAULT_GRACE)

    stats = {'selected': 0, 'successful': 0, 'failed': 0}
    with manager.get_session() as session:
        themes = load_theme_hierarchy(session)
    if not themes:
        logger.error("No theme hierarchy found. Run discover-themes first.")
        return stats

    hierarchy_text = format_hierarchy(themes)
    theme_codes = [t.code for t in themes]
    comments = select_comments(manager, retry_failed, limit)
    stats['selected'] = len(comments)
    logger.info(f"Scoring {len(comments)} comments against {len(theme_codes)} themes")
    if not comments:
        return stats

    llm = llm or LLMClient(model=model, db_manager=manager, debug=debug)
    lock = threading.Lock()

    def worker(item, index, total):
        comment_id, sections = item
        ok = score_comment(manager, llm, comment_id, sections, hierarchy_text, theme_codes, grace)
        with lock:
            stats['successful' if ok else 'failed'] += 1
        return ok

    run_pool(comments, concurrency, worker)
    return stats


def theme_coverage(manager, top: int = 10) -> List[Dict]:
    """Themes ranked by number of comments that address or touch them."""
    with manager.get_session() as session:
        themes = {t.code: t.description for t in load_theme_hierarchy(session)}
        counts = {code: {1: 0, 2: 0, 3: 0} for code in themes}
        for code, score in session.execute(select(CommentTheme.theme_code, CommentTheme.score)):
            if code in counts:
                counts[code][score] += 1
    rows = [{'code': code, 'description': themes[code], 'direct': c[1], 'touches': c[2], 'not_addressed': c[3]}
            for code, c in counts.items()]
    rows.sort(key=lambda r: r['direct'] + r['touches'], reverse=True)
    return rows[:top]


def build_parser():
    parser = argparse.ArgumentParser(description="Score condensed comments against the theme hierarchy")
    parser.add_argument("document_id", help="Document id")
    parser.add_argument("-l", "--limit", type=int, help="Process at most N comments")
    parser.add_argument("-c", "--concurrency", type=int, help="Parallel LLM calls")
    parser.add_argument("-m", "--model", help="LLM model")
    parser.add_argument("--retry-failed", action="store_true", help="Retry previously failed comments")
    parser.add_argument("--grace", type=int, help="Allowed number of invalid scores (default: 5)")
    parser.add_argument("--db-dir", help="Directory holding per-document databases")
    parser.add_argument("-d", "--debug", action="store_true", help="Save prompts and responses")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    stats = run(args.document_id, limit=args.limit, concurrency=args.concurrency, model=args.model,
                retry_failed=args.retry_failed, grace=args.grace, db_dir=args.db_dir, debug=args.debug)

    print("\n" + "=" * 60)
    print("THEME SCORING SUMMARY")
    print("=" * 60)
    print(f"Selected:   {stats['selected']}")
    print(f"Successful: {stats['successful']}")
    print(f"Failed:     {stats['failed']}")
    print("\nTop themes by relevance (direct + touches):")
    for row in theme_coverage(get_db_manager(args.document_id, args.db_dir)):
        print(f"  {row['code']}: {row['direct'] + row['touches']} relevant "
              f"({row['direct']} direct, {row['touches']} touches)")
    print("=" * 60)
    return stats


if __name__ == "__main__":
    main()
