"""
Condense raw comments (plus PDF attachment text) into structured sections.

Each comment goes through the condense prompt once; progress is tracked in
condensed_comments.status so interrupted runs resume, and failed comments can
be retried separately.

Usage:
    python services/pipeline/condense/condense_comments.py CMS-2025-0050-0031
    python services/pipeline/condense/condense_comments.py CMS-2025-0050-0031 --limit 50 --concurrency 8
    python services/pipeline/condense/condense_comments.py CMS-2025-0050-0031 --retry-failed
"""

import argparse
import logging
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import selectinload

# Add project root to path
project_root = Path(__file__).parent.parent.parent.parent
sys.path.insert(0, str(project_root))

from shared.config.batch_config import get_task_config, get_task_model
from shared.database.database import get_db_manager
from shared.models.models import Comment, CondensedComment, ProcessingStatus
from shared.utils.batching import run_pool
from shared.utils.comment_processing import enrich_comment
from shared.utils.condensed_sections import parse_condensed_sections
from shared.utils.prompts import condense_prompt
from shared.utils.utils import LLMClient, fill_prompt

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

TASK = 'condense'


def select_comment_ids(manager, retry_failed: bool = False, limit: Optional[int] = None) -> List[str]:
    """
    Comments still to condense: no condensed row yet, or left pending/processing
    by an interrupted run. With retry_failed, failed comments ordered by
    fewest attempts.
    """
    with manager.get_session() as session:
        if retry_failed:
            stmt = (
                select(CondensedComment.comment_id)
                .where(CondensedComment.status == ProcessingStatus.FAILED.value)
                .order_by(CondensedComment.attempt_count, CondensedComment.comment_id)
            )
        else:
            stmt = (
                select(Comment.id)
                .outerjoin(CondensedComment, CondensedComment.comment_id == Comment.id)
                .where(or_(
                    CondensedComment.comment_id.is_(None),
                    CondensedComment.status.in_([ProcessingStatus.PENDING.value,
                                                 ProcessingStatus.PROCESSING.value]),
                ))
                .order_by(Comment.id)
            )
        if limit:
            stmt = stmt.limit(limit)
        return list(session.scalars(stmt))


def _set_status(manager, comment_id: str, status: ProcessingStatus, **fields):
    with manager.get_session() as session:
        row = session.get(CondensedComment, comment_id)
        if row is None:
            row = CondensedComment(comment_id=comment_id, attempt_count=0)
            session.add(row)
        row.status = status.value
        for key, value in fields.items():
            setattr(row, key, value)
        if status == ProcessingStatus.FAILED:
            row.attempt_count = (row.attempt_count or 0) + 1
            row.last_attempt_at = datetime.utcnow()


def condense_comment(manager, llm, comment_id: str, include_pdfs: bool = True) -> str:
    """
    Condense one comment and store the result.

    Returns:
        'completed', 'empty' or 'failed'
    """
    _set_status(manager, comment_id, ProcessingStatus.PROCESSING)
    try:
        with manager.get_session() as session:
            comment = session.scalar(
                select(Comment).options(selectinload(Comment.attachments)).where(Comment.id == comment_id)
            )
            enriched = enrich_comment(comment.id, comment.attributes_json or {},
                                      comment.attachments, include_pdfs=include_pdfs)

        if enriched is None:
            _set_status(manager, comment_id, ProcessingStatus.FAILED, error_message="Empty comment content")
            return 'empty'

        prompt = fill_prompt(condense_prompt, COMMENT_TEXT=enriched.content)
        response = llm.generate(prompt, task_type=TASK, params={'comment_id': comment_id},
                                debug_name=f"condense_{comment_id}")

        sections, errors = parse_condensed_sections(response)
        for error in errors:
            logger.warning(f"{comment_id}: {error}")

        _set_status(manager, comment_id, ProcessingStatus.COMPLETED,
                    structured_sections=sections,
                    word_count=enriched.word_count,
                    error_message=None,
                    last_attempt_at=datetime.utcnow())
        return 'completed'

    except Exception as e:
        logger.error(f"Failed to condense {comment_id}: {e}")
        _set_status(manager, comment_id, ProcessingStatus.FAILED, error_message=str(e))
        return 'failed'


def run(document_id: str, limit: Optional[int] = None, concurrency: Optional[int] = None,
        model: Optional[str] = None, retry_failed: bool = False, include_pdfs: bool = True,
        db_dir: Optional[str] = None, llm=None, debug: bool = False) -> Dict[str, int]:
    """Condense all outstanding comments for a document."""
    manager = get_db_manager(document_id, db_dir)
    model = get_task_model(TASK, model)
    task_cfg = get_task_config(TASK, model)
    concurrency = concurrency or task_cfg['concurrency']
    llm = llm or LLMClient(model=model, db_manager=manager, debug=debug)

    comment_ids = select_comment_ids(manager, retry_failed=retry_failed, limit=limit)
    stats = {'selected': len(comment_ids), 'completed': 0, 'empty': 0, 'failed': 0}
    if not comment_ids:
        logger.info("No comments to condense")
        return stats

    logger.info(f"Condensing {len(comment_ids)} comments with {model} (concurrency {concurrency})")
    lock = threading.Lock()

    def worker(comment_id, index, total):
        outcome = condense_comment(manager, llm, comment_id, include_pdfs=include_pdfs)
        with lock:
            stats[outcome] += 1
            done = stats['completed'] + stats['empty'] + stats['failed']
        if done % 10 == 0 or done == total:
            logger.info(f"Progress: {done}/{total} ({stats['failed']} failed)")
        return outcome

    run_pool(comment_ids, concurrency, worker)
    return stats


def build_parser():
    parser = argparse.ArgumentParser(description="Condense comments into structured sections")
    parser.add_argument("document_id", help="Document id")
    parser.add_argument("-l", "--limit", type=int, help="Process at most N comments")
    parser.add_argument("-c", "--concurrency", type=int, help="Parallel LLM calls")
    parser.add_argument("-m", "--model", help="LLM model")
    parser.add_argument("--retry-failed", action="store_true", help="Retry previously failed comments")
    parser.add_argument("--skip-pdfs", action="store_true", help="Ignore PDF attachments")
    parser.add_argument("--db-dir", help="Directory holding per-document databases")
    parser.add_argument("-d", "--debug", action="store_true", help="Save prompts and responses")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    stats = run(args.document_id, limit=args.limit, concurrency=args.concurrency, model=args.model,
                retry_failed=args.retry_failed, include_pdfs=not args.skip_pdfs,
                db_dir=args.db_dir, debug=args.debug)

    print("\n" + "=" * 60)
    print("CONDENSE SUMMARY")
    print("=" * 60)
    print(f"Selected:  {stats['selected']}")
    print(f"Completed: {stats['completed']}")
    print(f"Empty:     {stats['empty']}")
    print(f"Failed:    {stats['failed']}")
    print("=" * 60)
    return stats


if __name__ == "__main__":
    main()
