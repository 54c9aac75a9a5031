"""
Abstract comments into a submitter profile and theme-tagged perspectives.

Each comment that has text and no abstraction yet is sent to the LLM with the
theme hierarchy and the attribute values observed so far. The answer is
stored as one abstraction row plus one perspective row per viewpoint, and
new attribute values are added to observed_attributes so later prompts reuse
the same labels.

Usage:
    python services/pipeline/perspectives/abstract_comments.py CMS-2025-0050-0031
    python services/pipeline/perspectives/abstract_comments.py CMS-2025-0050-0031 --limit 25 --concurrency 4
"""

import argparse
import logging
import sys
import threading
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select

# Add project root to path
project_root = Path(__file__).parent.parent.parent.parent
sys.path.insert(0, str(project_root))

from shared.config.batch_config import get_task_config, get_task_model
from shared.database.database import get_db_manager
from shared.models.models import Comment
from shared.models.models_perspective import Abstraction, ObservedAttribute, Perspective
from shared.utils.batching import run_pool
from shared.utils.comment_processing import load_theme_hierarchy
from shared.utils.prompts_perspective import abstract_prompt, attribute_types
from shared.utils.utils import LLMClient, fill_prompt

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

TASK = 'abstract_comments'
ATTRIBUTE_FIELDS = ['market_segment', 'geographic_scope', 'stakeholder_category',
                    'technical_sophistication', 'regulatory_stance']
CONFIDENCE_WORDS = {'explicit': 1.0, 'high': 0.9, 'medium': 0.6, 'low': 0.3}

# Serializes observed_attributes updates across worker threads
_attributes_lock = threading.Lock()


def parse_confidence(value) -> Optional[float]:
    """Numeric confidence from a number or a word such as 'High'."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().lower()
    if text in CONFIDENCE_WORDS:
        return CONFIDENCE_WORDS[text]
    try:
        return float(text)
    except ValueError:
        return None


def format_taxonomy(themes) -> str:
    return "\n".join(f"{'  ' * (t.level - 1)}{t.code}. {t.description}" for t in themes)


def load_observed_attributes(manager) -> Dict[str, List[str]]:
    observed: Dict[str, List[str]] = defaultdict(list)
    with manager.get_session() as session:
        for row in session.scalars(select(ObservedAttribute).order_by(ObservedAttribute.attribute_type,
                                                                       ObservedAttribute.value)):
            observed[row.attribute_type].append(row.value)
    return dict(observed)


def format_attributes(observed: Dict[str, List[str]]) -> str:
    lines = []
    for attribute_type in attribute_types:
        values = observed.get(attribute_type) or []
        lines.append(f"{attribute_type}: {', '.join(values) if values else '(none yet)'}")
    return "\n".join(lines)


def select_comments(manager, limit: Optional[int] = None) -> List[Tuple[str, str, Dict[str, Any]]]:
    """(comment_id, text, attributes) for comments with text and no abstraction."""
    with manager.get_session() as session:
        done = select(Abstraction.comment_id)
        stmt = select(Comment).where(Comment.id.not_in(done)).order_by(Comment.id)
        selected = []
        for comment in session.scalars(stmt):
            attrs = comment.attributes_json or {}
            text = (attrs.get('comment') or '').strip()
            if not text:
                continue
            selected.append((comment.id, text, attrs))
            if limit and len(selected) >= limit:
                break
    return selected


def save_abstraction(manager, comment_id: str, content: str, attrs: Dict[str, Any],
                     data: Dict[str, Any], theme_codes: set) -> int:
    """
    Store one abstraction with its perspectives.

    Returns:
        Number of perspectives saved
    """
    submitter = data.get('submitter') or {}
    attributes = data.get('attributes') or {}
    primary = data.get('primary_themes') or []
    if isinstance(primary, str):
        primary = [primary]

    perspectives = []
    for item in data.get('perspectives') or []:
        if not isinstance(item, dict) or not item.get('perspective'):
            continue
        code = str(item.get('taxonomy_code') or '').strip()
        if code not in theme_codes:
            logger.warning(f"[{comment_id}] Dropping perspective with unknown theme code '{code}'")
            continue
        perspectives.append(Perspective(
            taxonomy_code=code,
            perspective=item['perspective'],
            excerpt=item.get('excerpt'),
            sentiment=item.get('sentiment'),
        ))

    with manager.get_session() as session:
        session.add(Abstraction(
            comment_id=comment_id,
            content=content,
            submitter_type=submitter.get('type'),
            submitter_type_confidence=parse_confidence(submitter.get('confidence')),
            organization_name=submitter.get('organization') or None,
            market_segment=attributes.get('market_segment'),
            stakeholder_category=attributes.get('stakeholder_category'),
            geographic_scope=attributes.get('geographic_scope'),
            technical_sophistication=attributes.get('technical_sophistication'),
            regulatory_stance=attributes.get('regulatory_stance'),
            primary_themes=", ".join(str(code) for code in primary),
            original_metadata_json=attrs,
            perspectives=perspectives,
        ))

    observed = [('submitter_type', submitter.get('type'))]
    observed += [(field, attributes.get(field)) for field in ATTRIBUTE_FIELDS]
    observed += [('sentiment', p.sentiment) for p in perspectives]
    with _attributes_lock, manager.get_session() as session:
        for attribute_type, value in observed:
            if isinstance(value, str) and value.strip():
                session.merge(ObservedAttribute(attribute_type=attribute_type, value=value.strip()))

    return len(perspectives)


def abstract_comment(manager, llm, comment_id: str, content: str, attrs: Dict[str, Any],
                     taxonomy_text: str, theme_codes: set) -> int:
    prompt = fill_prompt(abstract_prompt, TAXONOMY=taxonomy_text,
                         ATTRIBUTES=format_attributes(load_observed_attributes(manager)),
                         CONTENT=content)
    data = llm.generate_json(prompt, task_type='abstraction', params={'comment_id': comment_id},
                             debug_name=f"abstract_{comment_id}")
    if not isinstance(data, dict):
        raise ValueError("Abstraction response is not a JSON object")
    return save_abstraction(manager, comment_id, content, attrs, data, theme_codes)


def run(document_id: str, limit: Optional[int] = None, concurrency: Optional[int] = None,
        model: Optional[str] = None, db_dir: Optional[str] = None, llm=None,
        debug: bool = False) -> Dict[str, int]:
    manager = get_db_manager(document_id, db_dir)
    model = get_task_model(TASK, model)
    concurrency = concurrency or get_task_config(TASK, model)['concurrency']

    stats = {'selected': 0, 'successful': 0, 'failed': 0, 'perspectives': 0}
    with manager.get_session() as session:
        themes = load_theme_hierarchy(session)
    if not themes:
        logger.error("No theme hierarchy found. Run discover-themes first.")
        return stats

    taxonomy_text = format_taxonomy(themes)
    theme_codes = {t.code for t in themes}
    comments = select_comments(manager, limit)
    stats['selected'] = len(comments)
    logger.info(f"Abstracting {len(comments)} comments")
    if not comments:
        return stats

    llm = llm or LLMClient(model=model, db_manager=manager, debug=debug)
    lock = threading.Lock()

    def worker(item, index, total):
        comment_id, content, attrs = item
        try:
            saved = abstract_comment(manager, llm, comment_id, content, attrs, taxonomy_text, theme_codes)
        except Exception as e:
            logger.error(f"[{comment_id}] Abstraction failed: {e}")
            with lock:
                stats['failed'] += 1
            return None
        logger.info(f"[{index}/{total}] {comment_id}: {saved} perspectives")
        with lock:
            stats['successful'] += 1
            stats['perspectives'] += saved
        return saved

    run_pool(comments, concurrency, worker)
    return stats


def build_parser():
    parser = argparse.ArgumentParser(description="Abstract comments into theme-tagged perspectives")
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
    print("ABSTRACTION SUMMARY")
    print("=" * 60)
    print(f"Selected:     {stats['selected']}")
    print(f"Successful:   {stats['successful']}")
    print(f"Failed:       {stats['failed']}")
    print(f"Perspectives: {stats['perspectives']}")
    print("=" * 60)
    return stats


if __name__ == "__main__":
    main()
