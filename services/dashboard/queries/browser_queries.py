"""
Query functions for the theme browser (perspectives, narratives, stances).
"""

import json
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from shared.database.database import get_engine
from services.pipeline.perspectives.abstract_comments import ATTRIBUTE_FIELDS

# Counts include every descendant theme (code '2' covers '2.1', '2.1.3', ...)
THEME_COUNTS = """
    (SELECT COUNT(DISTINCT p.id) FROM perspectives p
     WHERE p.taxonomy_code = t.code OR p.taxonomy_code LIKE t.code || '.%') AS perspective_count,
    (SELECT COUNT(DISTINCT p.abstraction_id) FROM perspectives p
     WHERE p.taxonomy_code = t.code OR p.taxonomy_code LIKE t.code || '.%') AS document_count
"""


def _json(value, default=None):
    if value is None:
        return default
    if isinstance(value, (dict, list)):
        return value
    try:
        loaded = json.loads(value)
    except (TypeError, json.JSONDecodeError):
        return default
    return default if loaded is None else loaded


def _theme_rows(result) -> List[Dict[str, Any]]:
    return [
        {
            'code': row['code'],
            'description': row['description'],
            'level': int(row['level']),
            'parent_code': row['parent_code'],
            'perspective_count': int(row['perspective_count'] or 0),
            'document_count': int(row['document_count'] or 0),
        }
        for row in result.mappings()
    ]


def get_database_stats(document_id: str, db_dir: Optional[str] = None) -> Dict[str, Any]:
    """
    Totals plus per-attribute value breakdowns for the abstracted comments.

    Args:
        document_id: Document id
        db_dir: Optional database directory

    Returns:
        Dictionary with totalComments, totalPerspectives, totalThemes and
        attributeBreakdowns ({attribute: [{value, count}, ...]} sorted by count)
    """
    engine = get_engine(document_id, db_dir)

    with engine.connect() as conn:
        totals = conn.execute(text("""
            SELECT
                (SELECT COUNT(*) FROM abstractions) AS total_comments,
                (SELECT COUNT(*) FROM perspectives) AS total_perspectives,
                (SELECT COUNT(*) FROM theme_hierarchy) AS total_themes
        """)).mappings().one()

        breakdowns: Dict[str, List[Dict[str, Any]]] = {}
        for field in ['submitter_type'] + ATTRIBUTE_FIELDS:
            # field names come from a fixed list, never from user input
            rows = conn.execute(text(f"""
                SELECT {field} AS value, COUNT(*) AS count
                FROM abstractions
                WHERE {field} IS NOT NULL AND {field} != ''
                GROUP BY {field}
                ORDER BY count DESC, value
            """)).all()
            if rows:
                breakdowns[field] = [{'value': r[0], 'count': int(r[1])} for r in rows]

        categories = conn.execute(text("""
            SELECT json_extract(original_metadata_json, '$.category') AS value, COUNT(*) AS count
            FROM abstractions
            WHERE json_extract(original_metadata_json, '$.category') IS NOT NULL
            GROUP BY value
            ORDER BY count DESC, value
        """)).all()
        if categories:
            breakdowns['original_category'] = [{'value': r[0], 'count': int(r[1])} for r in categories]

    return {
        'totalComments': int(totals['total_comments']),
        'totalPerspectives': int(totals['total_perspectives']),
        'totalThemes': int(totals['total_themes']),
        'attributeBreakdowns': breakdowns,
    }


def get_theme_hierarchy(document_id: str, db_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    All themes with perspective and document counts including descendants.

    Returns:
        List of theme dictionaries ordered by code
    """
    engine = get_engine(document_id, db_dir)

    query = text(f"""
        SELECT t.code, t.description, t.level, t.parent_code, {THEME_COUNTS}
        FROM theme_hierarchy t
        ORDER BY t.code
    """)

    with engine.connect() as conn:
        return _theme_rows(conn.execute(query))


def get_theme_by_code(document_id: str, code: str, db_dir: Optional[str] = None) -> Optional[Dict[str, Any]]:
    engine = get_engine(document_id, db_dir)

    query = text(f"""
        SELECT t.code, t.description, t.level, t.parent_code, {THEME_COUNTS}
        FROM theme_hierarchy t
        WHERE t.code = :code
    """)

    with engine.connect() as conn:
        rows = _theme_rows(conn.execute(query, {'code': code}))
    return rows[0] if rows else None


def get_child_themes(document_id: str, parent_code: str, db_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Direct children of a theme, with descendant-inclusive counts.

    Args:
        document_id: Document id
        parent_code: Code of the parent theme
        db_dir: Optional database directory

    Returns:
        List of theme dictionaries ordered by code
    """
    engine = get_engine(document_id, db_dir)

    query = text(f"""
        SELECT t.code, t.description, t.level, t.parent_code, {THEME_COUNTS}
        FROM theme_hierarchy t
        WHERE t.parent_code = :parent_code
        ORDER BY t.code
    """)

    with engine.connect() as conn:
        return _theme_rows(conn.execute(query, {'parent_code': parent_code}))


def get_theme_ancestry(document_id: str, code: str, db_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    """Themes from the root down to (and including) code, for breadcrumbs."""
    ancestry = []
    seen = set()
    current = code
    while current and current not in seen:
        seen.add(current)
        theme = get_theme_by_code(document_id, current, db_dir)
        if theme is None:
            break
        ancestry.insert(0, theme)
        current = theme['parent_code']
    return ancestry


def get_perspectives_by_theme(document_id: str, code: str, db_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Perspectives tagged with a theme or any of its descendants.

    Returns:
        List of perspective dictionaries with the submitter's profile fields
        and the original regulations.gov metadata
    """
    engine = get_engine(document_id, db_dir)

    query = text("""
        SELECT
            p.id,
            p.abstraction_id,
            p.taxonomy_code,
            p.perspective,
            p.excerpt,
            p.sentiment,
            a.comment_id,
            a.submitter_type,
            a.organization_name,
            a.stakeholder_category,
            a.original_metadata_json
        FROM perspectives p
        JOIN abstractions a ON p.abstraction_id = a.id
        WHERE p.taxonomy_code = :code OR p.taxonomy_code LIKE :code || '.%'
        ORDER BY p.taxonomy_code, p.id
    """)

    with engine.connect() as conn:
        rows = conn.execute(query, {'code': code}).mappings().all()

    perspectives = []
    for row in rows:
        metadata = _json(row['original_metadata_json'], {})
        perspectives.append({
            'id': row['id'],
            'abstraction_id': row['abstraction_id'],
            'taxonomy_code': row['taxonomy_code'],
            'perspective': row['perspective'],
            'excerpt': row['excerpt'],
            'sentiment': row['sentiment'],
            'comment_id': row['comment_id'],
            'submitter_type': row['submitter_type'] or 'Unknown',
            'organization_name': row['organization_name'],
            'stakeholder_category': row['stakeholder_category'],
            'original_category': metadata.get('category'),
            'original_organization': metadata.get('organization'),
            'original_first_name': metadata.get('firstName'),
            'original_last_name': metadata.get('lastName'),
        })
    return perspectives


def get_theme_narrative(document_id: str, code: str, db_dir: Optional[str] = None) -> Optional[Dict[str, Any]]:
    engine = get_engine(document_id, db_dir)

    query = text("""
        SELECT theme_code, narrative_summary, consensus_points, debate_points,
               stakeholder_dynamics, supporting_stats
        FROM theme_narratives
        WHERE theme_code = :code
    """)

    with engine.connect() as conn:
        row = conn.execute(query, {'code': code}).mappings().first()

    if row is None:
        return None
    return {
        'theme_code': row['theme_code'],
        'narrative_summary': row['narrative_summary'],
        'consensus_points': _json(row['consensus_points'], []),
        'debate_points': _json(row['debate_points'], []),
        'stakeholder_dynamics': _json(row['stakeholder_dynamics'], {}),
        'supporting_stats': _json(row['supporting_stats'], {}),
    }


def get_theme_stances(document_id: str, code: str, db_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Stances detected for a theme with how many perspectives hold each.

    Returns:
        List of stance dictionaries ordered by perspective_count descending
    """
    engine = get_engine(document_id, db_dir)

    query = text("""
        SELECT
            s.stance_key,
            s.stance_label,
            s.stance_description,
            s.typical_arguments,
            s.example_quotes,
            COUNT(ps.perspective_id) AS perspective_count
        FROM theme_stances s
        LEFT JOIN perspective_stances ps
            ON ps.theme_code = s.theme_code AND ps.stance_key = s.stance_key
        WHERE s.theme_code = :code
        GROUP BY s.theme_code, s.stance_key
        ORDER BY perspective_count DESC, s.stance_key
    """)

    with engine.connect() as conn:
        rows = conn.execute(query, {'code': code}).mappings().all()

    return [
        {
            'stance_key': row['stance_key'],
            'stance_label': row['stance_label'],
            'stance_description': row['stance_description'],
            'typical_arguments': _json(row['typical_arguments'], []),
            'example_quotes': _json(row['example_quotes'], []),
            'perspective_count': int(row['perspective_count']),
        }
        for row in rows
    ]


def get_theme_analysis(document_id: str, code: str, db_dir: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Merged raw analysis JSON for a theme, or None."""
    engine = get_engine(document_id, db_dir)

    with engine.connect() as conn:
        value = conn.execute(
            text("SELECT analysis_json FROM theme_analysis_raw WHERE theme_code = :code"),
            {'code': code}
        ).scalar()
    return _json(value)


def get_stance_perspectives(document_id: str, code: str, stance_key: str,
                            db_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Perspectives mapped to one stance of a theme.

    Args:
        document_id: Document id
        code: Theme code
        stance_key: Stance key within the theme
        db_dir: Optional database directory

    Returns:
        List of perspective dictionaries with mapping confidence, highest first
    """
    engine = get_engine(document_id, db_dir)

    query = text("""
        SELECT
            p.id,
            p.taxonomy_code,
            p.perspective,
            p.excerpt,
            p.sentiment,
            ps.confidence,
            a.comment_id,
            a.submitter_type,
            a.organization_name,
            a.original_metadata_json
        FROM perspective_stances ps
        JOIN perspectives p ON p.id = ps.perspective_id
        JOIN abstractions a ON a.id = p.abstraction_id
        WHERE ps.theme_code = :code AND ps.stance_key = :stance_key
        ORDER BY ps.confidence DESC, p.id
    """)

    with engine.connect() as conn:
        rows = conn.execute(query, {'code': code, 'stance_key': stance_key}).mappings().all()

    return [
        {
            'id': row['id'],
            'taxonomy_code': row['taxonomy_code'],
            'perspective': row['perspective'],
            'excerpt': row['excerpt'],
            'sentiment': row['sentiment'],
            'confidence': float(row['confidence']) if row['confidence'] is not None else 1.0,
            'comment_id': row['comment_id'],
            'submitter_type': row['submitter_type'] or 'Unknown',
            'organization_name': row['organization_name'],
            'metadata': _json(row['original_metadata_json'], {}),
        }
        for row in rows
    ]
