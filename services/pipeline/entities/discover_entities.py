"""
Discover the entity taxonomy and annotate comments with the entities they mention.

A random sample of condensed comments (up to a target word count) is sent
to the LLM in one prompt, which returns categories of named entities with
their matching terms. Every comment is then scanned for those terms with a
case-sensitive word-boundary match. Entities mentioned by too few (under 1%)
or too many (over 50%) comments are dropped before saving.

Usage:
    python services/pipeline/entities/discover_entities.py CMS-2025-0050-0031
    python services/pipeline/entities/discover_entities.py CMS-2025-0050-0031 --word-limit 80000 --seed 7
"""

import argparse
import logging
import math
import random
import re
import sys
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy import func, select

# Add project root to path
project_root = Path(__file__).parent.parent.parent.parent
sys.path.insert(0, str(project_root))

from shared.config.batch_config import get_task_config, get_task_model
from shared.database.database import get_db_manager
from shared.models.models import CommentEntity, EntityTaxonomy
from shared.utils.comment_processing import (
    EnrichedComment, load_condensed_comments_for_entities, parse_entity_taxonomy
)
from shared.utils.prompts_entity import entity_discovery_prompt
from shared.utils.utils import JSONParseError, LLMClient, fill_prompt, parse_json_response

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

TASK = 'discover_entities'
DEFAULT_TARGET_WORDS = 150000
DEFAULT_MIN_RATIO = 0.01
DEFAULT_MAX_RATIO = 0.5

EntityKey = Tuple[str, str]


def sample_comments(comments: List[EnrichedComment], target_words: int,
                    seed: Optional[int] = None) -> List[EnrichedComment]:
    """
    Random sample up to roughly target_words. Stops once the next comment
    would overshoot and more than 90% of the target is already covered.
    """
    shuffled = list(comments)
    random.Random(seed).shuffle(shuffled)

    selected = []
    total = 0
    for comment in shuffled:
        words = comment.word_count
        if total + words > target_words and total > target_words * 0.9:
            break
        selected.append(comment)
        total += words
    return selected


def normalize_taxonomy(raw) -> Dict[str, List[Dict]]:
    """Clean the LLM taxonomy: string labels, list of string terms, first label wins."""
    taxonomy: Dict[str, List[Dict]] = {}
    if not isinstance(raw, dict):
        return taxonomy

    for category, entities in raw.items():
        if not isinstance(entities, list):
            continue
        seen = set()
        cleaned = []
        for entity in entities:
            if not isinstance(entity, dict) or not str(entity.get('label') or '').strip():
                continue
            label = str(entity['label']).strip()
            if label in seen:
                continue
            seen.add(label)
            terms = [t.strip() for t in (entity.get('terms') or []) if isinstance(t, str) and t.strip()]
            definition = str(entity.get('definition') or '').strip()
            cleaned.append({
                'label': label,
                'definition': definition or f"A {category.lower()} entity mentioned in comments",
                'terms': terms or [label],
            })
        if cleaned:
            taxonomy[str(category).strip()] = cleaned
    return taxonomy


def discover_taxonomy(llm, comments: List[EnrichedComment]) -> Dict[str, List[Dict]]:
    blocks = "\n\n".join(f'<comment id="{c.id}">\n{c.content}\n</comment>' for c in comments)
    prompt = fill_prompt(entity_discovery_prompt, COMMENTS=blocks)
    response = llm.generate(prompt, task_type='entity_discovery',
                            params={'comment_count': len(comments)},
                            debug_name="entity_discovery")
    try:
        raw = parse_json_response(response)
    except JSONParseError:
        logger.warning("Entity taxonomy is not JSON, parsing as plain text")
        raw = parse_entity_taxonomy(response)
    return normalize_taxonomy(raw)


def _term_patterns(taxonomy: Dict[str, List[Dict]]) -> List[Tuple[EntityKey, re.Pattern]]:
    patterns = []
    for category, entities in taxonomy.items():
        for entity in entities:
            for term in entity['terms']:
                patterns.append(((category, entity['label']), re.compile(rf"\b{re.escape(term)}\b")))
    return patterns


def find_entity_hits(taxonomy: Dict[str, List[Dict]], comments: List[EnrichedComment]) -> Dict[EntityKey, Set[str]]:
    """Comment ids mentioning each entity, matched over detailedContent."""
    hits: Dict[EntityKey, Set[str]] = {
        (category, entity['label']): set()
        for category, entities in taxonomy.items() for entity in entities
    }
    patterns = _term_patterns(taxonomy)

    for i, comment in enumerate(comments, 1):
        content = (comment.structured_sections or {}).get('detailedContent') or ''
        if not content:
            continue
        for key, pattern in patterns:
            if comment.id not in hits[key] and pattern.search(content):
                hits[key].add(comment.id)
        if i % 100 == 0:
            logger.info(f"Scanned {i}/{len(comments)} comments")
    return hits


def frequency_bounds(total_comments: int, min_ratio: float = DEFAULT_MIN_RATIO,
                     max_ratio: float = DEFAULT_MAX_RATIO) -> Tuple[int, int]:
    return max(1, math.floor(total_comments * min_ratio)), math.floor(total_comments * max_ratio)


def save_entities(manager, taxonomy: Dict[str, List[Dict]], hits: Dict[EntityKey, Set[str]],
                  lower: int, upper: int) -> Tuple[int, int, List[EntityKey]]:
    """
    Save entities within [lower, upper] hits and their comment annotations.

    Returns:
        (entities saved, annotations saved, removed entity keys)
    """
    removed = [key for key, ids in hits.items() if not lower <= len(ids) <= upper]
    removed_set = set(removed)
    saved = annotations = 0

    with manager.get_session() as session:
        for category, entities in taxonomy.items():
            for entity in entities:
                key = (category, entity['label'])
                if key in removed_set or session.get(EntityTaxonomy, key) is not None:
                    continue
                session.add(EntityTaxonomy(category=category, label=entity['label'],
                                           definition=entity['definition'], terms=entity['terms']))
                saved += 1
                for comment_id in sorted(hits[key]):
                    session.merge(CommentEntity(comment_id=comment_id, category=category,
                                                entity_label=entity['label']))
                    annotations += 1
    return saved, annotations, removed


def run(document_id: str, limit: Optional[int] = None, word_limit: Optional[int] = None,
        model: Optional[str] = None, seed: Optional[int] = None, db_dir: Optional[str] = None,
        llm=None, debug: bool = False) -> Dict[str, int]:
    manager = get_db_manager(document_id, db_dir)
    model = get_task_model(TASK, model)
    task_cfg = get_task_config(TASK, model)
    thresholds = task_cfg.get('thresholds') or {}
    target_words = word_limit or task_cfg.get('target_words', DEFAULT_TARGET_WORDS)

    stats = {'comments': 0, 'sampled': 0, 'entities': 0, 'removed': 0, 'annotations': 0, 'skipped': 0}
    with manager.get_session() as session:
        existing = session.scalar(select(func.count()).select_from(EntityTaxonomy))
    if existing:
        logger.warning(f"Entities already discovered ({existing} entities); clear entity_taxonomy to re-run")
        stats['skipped'] = 1
        stats['entities'] = existing
        return stats

    with manager.get_session() as session:
        comments = load_condensed_comments_for_entities(session, limit)
    if not comments:
        logger.error("No condensed comments found. Run the condense step first.")
        return stats
    stats['comments'] = len(comments)

    sample = sample_comments(comments, target_words, seed)
    stats['sampled'] = len(sample)
    logger.info(f"Sampled {len(sample)} of {len(comments)} comments "
                f"({sum(c.word_count for c in sample)} words, target {target_words})")

    llm = llm or LLMClient(model=model, db_manager=manager, debug=debug)
    taxonomy = discover_taxonomy(llm, sample)
    logger.info(f"Discovered {sum(len(e) for e in taxonomy.values())} entities in {len(taxonomy)} categories")

    hits = find_entity_hits(taxonomy, comments)
    lower, upper = frequency_bounds(len(comments), thresholds.get('min_ratio', DEFAULT_MIN_RATIO),
                                    thresholds.get('max_ratio', DEFAULT_MAX_RATIO))
    saved, annotations, removed = save_entities(manager, taxonomy, hits, lower, upper)
    stats.update(entities=saved, removed=len(removed), annotations=annotations)

    if removed:
        logger.warning(f"Removed {len(removed)} entities outside [{lower}, {upper}] comment mentions")
        for category, label in removed[:10]:
            logger.warning(f"  - {category}|{label} ({len(hits[(category, label)])} comments)")
    return stats


def build_parser():
    parser = argparse.ArgumentParser(description="Discover entity taxonomy and annotate comments")
    parser.add_argument("document_id", help="Document id")
    parser.add_argument("-l", "--limit", type=int, help="Use only N comments")
    parser.add_argument("-w", "--word-limit", type=int, help="Target words in the discovery sample (default: 150000)")
    parser.add_argument("-m", "--model", help="LLM model")
    parser.add_argument("--seed", type=int, help="Random seed for sampling")
    parser.add_argument("--db-dir", help="Directory holding per-document databases")
    parser.add_argument("-d", "--debug", action="store_true", help="Save prompts and responses")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    stats = run(args.document_id, limit=args.limit, word_limit=args.word_limit, model=args.model,
                seed=args.seed, db_dir=args.db_dir, debug=args.debug)

    print("\n" + "=" * 60)
    print("ENTITY DISCOVERY SUMMARY")
    print("=" * 60)
    print(f"Comments:    {stats['comments']}")
    print(f"Sampled:     {stats['sampled']}")
    print(f"Entities:    {stats['entities']}")
    print(f"Removed:     {stats['removed']}")
    print(f"Annotations: {stats['annotations']}")
    print("=" * 60)
    return stats


if __name__ == "__main__":
    main()
