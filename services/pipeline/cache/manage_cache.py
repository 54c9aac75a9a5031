"""
Inspect and clear the per-document LLM response cache (llm_cache table).

Usage:
    python services/pipeline/cache/manage_cache.py stats CMS-2025-0050-0031
    python services/pipeline/cache/manage_cache.py clear CMS-2025-0050-0031 --task-type theme_scoring
    python services/pipeline/cache/manage_cache.py clear CMS-2025-0050-0031 --old 30
    python services/pipeline/cache/manage_cache.py verify CMS-2025-0050-0031
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy import delete, func, or_, select

# Add project root to path
project_root = Path(__file__).parent.parent.parent.parent
sys.path.insert(0, str(project_root))

from shared.database.database import get_db_manager
from shared.models.models import LLMCache

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# task_type values written by the pipeline steps
KNOWN_TASK_TYPES = {
    'condense',
    'theme_discovery',
    'theme_discovery_merge',
    'theme_scoring',
    'theme_extract',
    'theme_summary',
    'theme_summary_merge',
    'theme_summary_structure',
    'entity_discovery',
    'abstraction',
    'theme_narrative',
    'theme_stances',
}


def cache_stats(manager) -> Dict:
    """Entry counts per task type and level, plus total and approximate size in bytes."""
    with manager.get_session() as session:
        rows = session.execute(
            select(LLMCache.task_type, LLMCache.task_level, func.count(),
                   func.min(LLMCache.created_at), func.max(LLMCache.created_at))
            .group_by(LLMCache.task_type, LLMCache.task_level)
            .order_by(LLMCache.task_type, LLMCache.task_level)
        ).all()
        size = session.scalar(select(func.sum(
            func.length(LLMCache.result) + func.coalesce(func.length(LLMCache.task_params), 0)
        )))

    entries = [{'task_type': r[0], 'task_level': r[1], 'count': r[2], 'oldest': r[3], 'newest': r[4]}
               for r in rows]
    return {'entries': entries, 'total': sum(e['count'] for e in entries), 'size_bytes': int(size or 0)}


def clear_cache(manager, all_entries: bool = False, task_type: Optional[str] = None,
                level: Optional[int] = None, older_than_days: Optional[int] = None) -> int:
    """
    Delete cache rows.

    Raises:
        ValueError: when no selection is given
    """
    stmt = delete(LLMCache)
    if older_than_days is not None:
        stmt = stmt.where(LLMCache.created_at < datetime.utcnow() - timedelta(days=older_than_days))
    elif all_entries:
        pass
    elif task_type:
        stmt = stmt.where(LLMCache.task_type == task_type)
        if level is not None:
            stmt = stmt.where(LLMCache.task_level == level)
    else:
        raise ValueError("Specify --all, --task-type or --old")

    with manager.get_session() as session:
        return session.execute(stmt).rowcount


def verify_cache(manager) -> Dict[str, List]:
    """Empty results, unparseable task_params and task types no pipeline step writes."""
    with manager.get_session() as session:
        empty = list(session.scalars(
            select(LLMCache.prompt_hash).where(or_(LLMCache.result.is_(None), LLMCache.result == ''))
        ))
        bad_params = []
        for key, params in session.execute(select(LLMCache.prompt_hash, LLMCache.task_params)):
            if params is None:
                continue
            try:
                json.loads(params)
            except json.JSONDecodeError:
                bad_params.append(key)
        task_types = set(session.scalars(select(LLMCache.task_type).distinct()))

    return {
        'empty_results': empty,
        'invalid_params': bad_params,
        'unknown_task_types': sorted(task_types - KNOWN_TASK_TYPES),
    }


def build_parser():
    parser = argparse.ArgumentParser(description="Manage the LLM cache")
    subparsers = parser.add_subparsers(dest="command", required=True)

    stats = subparsers.add_parser("stats", help="Show cache statistics")
    stats.add_argument("document_id", help="Document id")

    clear = subparsers.add_parser("clear", help="Clear cache entries")
    clear.add_argument("document_id", help="Document id")
    clear.add_argument("--all", action="store_true", help="Clear all entries")
    clear.add_argument("--task-type", help="Clear one task type")
    clear.add_argument("--level", type=int, help="With --task-type, clear one level")
    clear.add_argument("--old", type=int, metavar="DAYS", help="Clear entries older than N days")

    verify = subparsers.add_parser("verify", help="Check cache integrity")
    verify.add_argument("document_id", help="Document id")

    for sub in (stats, clear, verify):
        sub.add_argument("--db-dir", help="Directory holding per-document databases")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    manager = get_db_manager(args.document_id, args.db_dir)

    print("\n" + "=" * 60)
    if args.command == "stats":
        result = cache_stats(manager)
        print(f"LLM CACHE: {args.document_id}")
        print("=" * 60)
        for entry in result['entries']:
            print(f"  {entry['task_type']} (level {entry['task_level']}): {entry['count']} entries "
                  f"[{entry['oldest']} .. {entry['newest']}]")
        print(f"Total entries: {result['total']}")
        print(f"Approx. size:  {result['size_bytes'] / 1024 / 1024:.2f} MB")

    elif args.command == "clear":
        try:
            result = clear_cache(manager, all_entries=args.all, task_type=args.task_type,
                                 level=args.level, older_than_days=args.old)
        except ValueError as e:
            parser.error(str(e))
        print("LLM CACHE CLEAR")
        print("=" * 60)
        print(f"Deleted: {result}")

    else:
        result = verify_cache(manager)
        print("LLM CACHE VERIFY")
        print("=" * 60)
        print(f"Empty results:      {len(result['empty_results'])}")
        print(f"Invalid params:     {len(result['invalid_params'])}")
        print(f"Unknown task types: {', '.join(result['unknown_task_types']) or 'none'}")
    print("=" * 60)
    return result


if __name__ == "__main__":
    main()
