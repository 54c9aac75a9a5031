"""
Export a document database as the static JSON files read by the dashboard.

Output layout (default dist/data):
    meta.json, themes.json, theme-summaries.json, entities.json, comments.json,
    indexes/theme-comments.json, indexes/entity-comments.json

Usage:
    python services/publication/build_website.py CMS-2025-0050-0031
    python services/publication/build_website.py CMS-2025-0050-0031 --output site/data
"""

import argparse
import json
import logging
import sys
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import text

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from shared.config.batch_config import get_pipeline_config
from shared.database.database import get_db_manager
from shared.utils.comment_processing import extract_metadata, theme_sort_key

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _loads(value, default=None):
    if value is None:
        return default
    if isinstance(value, (dict, list)):
        return value
    try:
        loaded = json.loads(value)
    except (TypeError, json.JSONDecodeError):
        return default
    return default if loaded is None else loaded


def get_stats(conn) -> Dict[str, int]:
    def count(sql):
        return conn.execute(text(sql)).scalar() or 0

    return {
        'totalComments': count("SELECT COUNT(*) FROM comments"),
        'condensedComments': count("SELECT COUNT(*) FROM condensed_comments WHERE status = 'completed'"),
        'totalThemes': count("SELECT COUNT(*) FROM theme_hierarchy"),
        'totalEntities': count("SELECT COUNT(*) FROM entity_taxonomy"),
        'scoredComments': count("SELECT COUNT(DISTINCT comment_id) FROM comment_themes"),
        'themeSummaries': count("SELECT COUNT(*) FROM theme_summaries"),
    }


def get_themes(conn) -> List[Dict[str, Any]]:
    """Theme hierarchy with direct (score 1) counts and child codes. touch_count is always 0."""
    rows = conn.execute(text("""
        SELECT
            t.code, t.description, t.level, t.parent_code, t.detailed_guidelines,
            COUNT(DISTINCT CASE WHEN ct.score = 1 THEN ct.comment_id END) AS direct_count,
            0 AS touch_count
        FROM theme_hierarchy t
        LEFT JOIN comment_themes ct ON t.code = ct.theme_code
        GROUP BY t.code
    """)).mappings().all()

    themes = sorted((dict(r) for r in rows), key=lambda t: theme_sort_key(t['code']))
    children = defaultdict(list)
    for theme in themes:
        if theme['parent_code']:
            children[theme['parent_code']].append(theme['code'])
    for theme in themes:
        theme['comment_count'] = theme['direct_count']
        theme['children'] = children.get(theme['code'], [])
    return themes


def get_theme_summaries(conn) -> Dict[str, Dict[str, Any]]:
    rows = conn.execute(text("""
        SELECT ts.theme_code, ts.structured_sections, ts.comment_count, ts.word_count,
               th.description AS theme_description
        FROM theme_summaries ts
        JOIN theme_hierarchy th ON ts.theme_code = th.code
        ORDER BY ts.theme_code
    """)).mappings().all()

    return {
        row['theme_code']: {
            'themeDescription': row['theme_description'],
            'commentCount': row['comment_count'],
            'wordCount': row['word_count'],
            'sections': _loads(row['structured_sections'], {}),
        }
        for row in rows
    }


def get_entities(conn) -> Dict[str, List[Dict[str, Any]]]:
    rows = conn.execute(text("""
        SELECT e.category, e.label, e.definition, e.terms,
               COUNT(DISTINCT ce.comment_id) AS mention_count
        FROM entity_taxonomy e
        LEFT JOIN comment_entities ce ON e.category = ce.category AND e.label = ce.entity_label
        GROUP BY e.category, e.label
        ORDER BY e.category, mention_count DESC, e.label
    """)).mappings().all()

    taxonomy: Dict[str, List[Dict[str, Any]]] = {}
    for row in rows:
        taxonomy.setdefault(row['category'], []).append({
            'label': row['label'],
            'definition': row['definition'],
            'terms': _loads(row['terms'], []),
            'mentionCount': row['mention_count'],
        })
    return taxonomy


def get_comments(conn, document_id: str) -> List[Dict[str, Any]]:
    comments = conn.execute(text("""
        SELECT c.id, c.attributes_json, cc.structured_sections, cc.word_count,
               (SELECT COUNT(*) FROM attachments a WHERE a.comment_id = c.id) AS attachment_count
        FROM comments c
        LEFT JOIN condensed_comments cc ON c.id = cc.comment_id
        ORDER BY c.id
    """)).mappings().all()

    scores = defaultdict(dict)
    for row in conn.execute(text(
            "SELECT comment_id, theme_code FROM comment_themes WHERE score = 1 ORDER BY theme_code")):
        scores[row[0]][row[1]] = 1

    entities = defaultdict(list)
    for row in conn.execute(text(
            "SELECT comment_id, category, entity_label FROM comment_entities ORDER BY category, entity_label")):
        entities[row[0]].append({'category': row[1], 'label': row[2]})

    results = []
    for c in comments:
        metadata = extract_metadata(_loads(c['attributes_json'], {}))
        results.append({
            'id': c['id'],
            'documentId': document_id,
            'submitter': metadata['submitter'],
            'submitterType': metadata['submitter_type'],
            'date': metadata['date'],
            'location': metadata['location'] or '',
            'structuredSections': _loads(c['structured_sections']),
            'themeScores': scores.get(c['id'], {}),
            'entities': entities.get(c['id'], []),
            'hasAttachments': (c['attachment_count'] or 0) > 0,
            'wordCount': c['word_count'] or 0,
        })
    return results


def get_theme_index(conn) -> Dict[str, Dict[str, List[str]]]:
    index: Dict[str, Dict[str, List[str]]] = {}
    for code, comment_id in conn.execute(text(
            "SELECT theme_code, comment_id FROM comment_themes WHERE score = 1 ORDER BY theme_code, comment_id")):
        index.setdefault(code, {'direct': [], 'touches': []})['direct'].append(comment_id)
    return index


def get_entity_index(conn) -> Dict[str, List[str]]:
    index: Dict[str, List[str]] = {}
    for category, label, comment_id in conn.execute(text(
            "SELECT category, entity_label, comment_id FROM comment_entities "
            "ORDER BY category, entity_label, comment_id")):
        index.setdefault(f"{category}|{label}", []).append(comment_id)
    return index


def write_json(path: Path, data: Any):
    path.write_text(json.dumps(data, indent=2, default=str), encoding='utf-8')


def run(document_id: str, output: Optional[str] = None, db_dir: Optional[str] = None) -> Dict[str, int]:
    output_dir = Path(output or get_pipeline_config()['output_dir'])
    (output_dir / 'indexes').mkdir(parents=True, exist_ok=True)
    manager = get_db_manager(document_id, db_dir, create=False)

    with manager.engine.connect() as conn:
        stats = get_stats(conn)
        write_json(output_dir / 'meta.json', {
            'documentId': document_id,
            'generatedAt': datetime.now(timezone.utc).isoformat(),
            'stats': stats,
        })
        logger.info("Wrote meta.json")

        themes = get_themes(conn)
        write_json(output_dir / 'themes.json', themes)
        logger.info(f"Wrote themes.json ({len(themes)} themes)")

        summaries = get_theme_summaries(conn)
        write_json(output_dir / 'theme-summaries.json', summaries)
        logger.info(f"Wrote theme-summaries.json ({len(summaries)} summaries)")

        write_json(output_dir / 'entities.json', get_entities(conn))
        logger.info("Wrote entities.json")

        comments = get_comments(conn, document_id)
        write_json(output_dir / 'comments.json', comments)
        logger.info(f"Wrote comments.json ({len(comments)} comments)")

        write_json(output_dir / 'indexes' / 'theme-comments.json', get_theme_index(conn))
        write_json(output_dir / 'indexes' / 'entity-comments.json', get_entity_index(conn))
        logger.info("Wrote indexes")

    return stats


def build_parser():
    parser = argparse.ArgumentParser(description="Generate static data files for the dashboard")
    parser.add_argument("document_id", help="Document id")
    parser.add_argument("-o", "--output", help="Output directory (default: dist/data)")
    parser.add_argument("--db-dir", help="Directory holding per-document databases")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    stats = run(args.document_id, output=args.output, db_dir=args.db_dir)

    print("\n" + "=" * 60)
    print("WEBSITE BUILD SUMMARY")
    print("=" * 60)
    for key, value in stats.items():
        print(f"{key}: {value}")
    print("=" * 60)
    return stats


if __name__ == "__main__":
    main()
