"""
Build theme narratives and stance maps from abstracted perspectives.

A theme qualifies once it (with its descendants) has at least
min_perspectives perspectives. For each qualifying theme two prompts run:
a narrative (consensus, debates, stakeholder dynamics) and a stance
detection that maps every perspective to one of 3-5 stances. Both results
are also folded into theme_analysis_raw, one fragment at a time.

Usage:
    python services/pipeline/perspectives/analyze_themes.py CMS-2025-0050-0031
    python services/pipeline/perspectives/analyze_themes.py CMS-2025-0050-0031 --theme 2.1 --force
"""

import argparse
import logging
import sys
import threading
from collections import OrderedDict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, or_, select

# Add project root to path
project_root = Path(__file__).parent.parent.parent.parent
sys.path.insert(0, str(project_root))

from shared.config.batch_config import get_task_config, get_task_model
from shared.database.database import get_db_manager
from shared.models.models_perspective import (
    Abstraction, Perspective, PerspectiveStance, ThemeAnalysisRaw, ThemeNarrative, ThemeStance
)
from shared.utils.batching import run_pool
from shared.utils.comment_processing import load_theme_hierarchy
from shared.utils.prompts_perspective import stance_detection_prompt, theme_narrative_prompt
from shared.utils.utils import JSONParseError, LLMClient, fill_prompt, parse_json_response

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

TASK = 'analyze_themes'
DEFAULT_MIN_PERSPECTIVES = 10
DEFAULT_MIN_STANCES = 3

# theme_analysis_raw is read-modify-write
_merge_lock = threading.Lock()


def commenter_display(organization_name: Optional[str], metadata: Optional[Dict], submitter_type: Optional[str]) -> str:
    """Organization, else metadata organization, else first + last name, else submitter type."""
    metadata = metadata or {}
    if organization_name:
        return organization_name
    if metadata.get('organization'):
        return metadata['organization']
    if metadata.get('firstName') and metadata.get('lastName'):
        return f"{metadata['firstName']} {metadata['lastName']}"
    return submitter_type or 'Unknown'


def theme_filter(code: str):
    return or_(Perspective.taxonomy_code == code, Perspective.taxonomy_code.like(f"{code}.%"))


def load_perspectives(session, code: str) -> List[Dict[str, Any]]:
    """Perspectives on a theme and its descendants, grouped order by submitter type."""
    stmt = (
        select(Perspective.id, Perspective.perspective, Perspective.excerpt, Perspective.abstraction_id,
               Abstraction.submitter_type, Abstraction.organization_name, Abstraction.original_metadata_json)
        .join(Abstraction, Abstraction.id == Perspective.abstraction_id)
        .where(theme_filter(code))
        .order_by(Abstraction.submitter_type, Perspective.id)
    )
    return [
        {'id': row[0], 'perspective': row[1], 'excerpt': row[2], 'abstraction_id': row[3],
         'submitter_type': row[4] or 'Unknown', 'organization_name': row[5], 'metadata': row[6] or {}}
        for row in session.execute(stmt)
    ]


def format_narrative_list(perspectives: List[Dict[str, Any]]) -> str:
    entries = []
    for p in perspectives:
        display = commenter_display(p['organization_name'], p['metadata'], p['submitter_type'])
        category = f" | originalCategory:{p['metadata']['category']}" if p['metadata'].get('category') else ""
        entries.append(f"[ID:{p['id']}] {display} ({p['submitter_type']}{category})\n"
                       f"Perspective: {p['perspective']}\nExcerpt: \"{p['excerpt'] or ''}\"")
    return "\n\n".join(entries)


def format_stance_list(perspectives: List[Dict[str, Any]]) -> str:
    return "\n\n".join(
        f"[ID:{p['id']}] ({p['submitter_type']}) {p['perspective']}\nExcerpt: \"{p['excerpt'] or ''}\""
        for p in perspectives
    )


def merge_and_save_analysis(manager, theme_code: str, fragment: Dict[str, Any]) -> Dict[str, Any]:
    """Shallow-merge a fragment into the theme's raw analysis; keys in the fragment win."""
    with _merge_lock, manager.get_session() as session:
        row = session.get(ThemeAnalysisRaw, theme_code)
        merged = {**((row.analysis_json or {}) if row else {}), **fragment}
        if row is None:
            session.add(ThemeAnalysisRaw(theme_code=theme_code, analysis_json=merged))
        else:
            row.analysis_json = merged
            row.updated_at = datetime.utcnow()
    return merged


def qualifying_themes(manager, min_perspectives: int, theme_codes: Optional[List[str]] = None) -> List[Dict]:
    with manager.get_session() as session:
        themes = load_theme_hierarchy(session)
        results = []
        for theme in themes:
            if theme_codes and theme.code not in theme_codes:
                continue
            count = session.scalar(select(func.count()).select_from(Perspective).where(theme_filter(theme.code)))
            if count >= min_perspectives:
                results.append({'code': theme.code, 'description': theme.description, 'perspectives': count})
    return results


def is_analyzed(manager, code: str, min_stances: int = DEFAULT_MIN_STANCES) -> bool:
    with manager.get_session() as session:
        narrative = session.get(ThemeNarrative, code)
        stances = session.scalar(select(func.count()).select_from(ThemeStance).where(ThemeStance.theme_code == code))
    return bool(narrative and (narrative.narrative_summary or '').strip()) and stances >= min_stances


class AnalysisValidationError(ValueError):
    """A parsed narrative or stance answer that cannot be saved."""


def parse_narrative(text) -> Dict[str, Any]:
    narrative = parse_json_response(text)
    if not isinstance(narrative, dict) or not str(narrative.get('narrative_summary') or '').strip():
        raise AnalysisValidationError("narrative_summary is missing")
    return {
        'narrative_summary': narrative['narrative_summary'],
        'consensus_points': narrative.get('consensus_points') or [],
        'debate_points': narrative.get('debate_points') or [],
        'stakeholder_dynamics': narrative.get('stakeholder_dynamics') or {},
        'supporting_stats': narrative.get('supporting_stats') or {},
    }


def _perspective_id(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_stances(text, known_ids, min_stances: int = DEFAULT_MIN_STANCES) -> Dict[str, Any]:
    """Keep keyed stances and mappings onto known perspectives; fewer than min_stances is an error."""
    result = parse_json_response(text)
    if not isinstance(result, dict):
        raise AnalysisValidationError("stance answer is not an object")
    stances = [s for s in result.get('stances') or [] if isinstance(s, dict) and s.get('stance_key')]
    if len(stances) < min_stances:
        raise AnalysisValidationError(f"{len(stances)} stances, need at least {min_stances}")
    stance_keys = {s['stance_key'] for s in stances}
    mapping = []
    for m in result.get('perspective_mapping') or []:
        if not isinstance(m, dict):
            continue
        perspective_id = _perspective_id(m.get('perspective_id'))
        if perspective_id in known_ids and m.get('stance_key') in stance_keys:
            mapping.append({**m, 'perspective_id': perspective_id})
    return {'stances': stances, 'perspective_mapping': mapping, 'mapping_notes': result.get('mapping_notes')}


def generate_narrative(manager, llm, theme: Dict) -> Optional[Dict[str, Any]]:
    with manager.get_session() as session:
        perspectives = load_perspectives(session, theme['code'])
    if not perspectives:
        return None

    grouped = OrderedDict()
    for p in perspectives:
        grouped.setdefault(p['submitter_type'], []).append(p)

    prompt = fill_prompt(
        theme_narrative_prompt,
        THEME_CODE=theme['code'],
        THEME_DESCRIPTION=theme['description'],
        TOTAL_PERSPECTIVES=len(perspectives),
        TOTAL_DOCUMENTS=len({p['abstraction_id'] for p in perspectives}),
        UNIQUE_STAKEHOLDERS=len(grouped),
        PERSPECTIVES_LIST=format_narrative_list(perspectives),
    )
    # a rejected answer never reaches the cache
    try:
        fragment = llm.generate(prompt, task_type='theme_narrative', params={'theme_code': theme['code']},
                                debug_name=f"narrative_{theme['code']}", postprocess=parse_narrative)
    except (JSONParseError, AnalysisValidationError) as e:
        logger.warning(f"[{theme['code']}] Narrative response rejected: {e}")
        return None

    with manager.get_session() as session:
        session.merge(ThemeNarrative(theme_code=theme['code'], **fragment))
    merge_and_save_analysis(manager, theme['code'], fragment)
    return fragment


def detect_stances(manager, llm, theme: Dict, min_stances: int = DEFAULT_MIN_STANCES) -> Optional[Dict[str, Any]]:
    with manager.get_session() as session:
        perspectives = load_perspectives(session, theme['code'])
    if not perspectives:
        return None

    prompt = fill_prompt(
        stance_detection_prompt,
        THEME_CODE=theme['code'],
        THEME_DESCRIPTION=theme['description'],
        COUNT=len(perspectives),
        PERSPECTIVES_LIST=format_stance_list(perspectives),
    )
    known_ids = {p['id'] for p in perspectives}
    try:
        fragment = llm.generate(prompt, task_type='theme_stances', params={'theme_code': theme['code']},
                                debug_name=f"stances_{theme['code']}",
                                postprocess=lambda text: parse_stances(text, known_ids, min_stances))
    except (JSONParseError, AnalysisValidationError) as e:
        logger.warning(f"[{theme['code']}] Stance response rejected: {e}")
        return None
    stances, mapping = fragment['stances'], fragment['perspective_mapping']

    with manager.get_session() as session:
        session.execute(delete(PerspectiveStance).where(PerspectiveStance.theme_code == theme['code']))
        session.execute(delete(ThemeStance).where(ThemeStance.theme_code == theme['code']))
        for stance in stances:
            session.add(ThemeStance(
                theme_code=theme['code'],
                stance_key=stance['stance_key'],
                stance_label=stance.get('stance_label'),
                stance_description=stance.get('stance_description'),
                typical_arguments=stance.get('typical_arguments') or [],
                example_quotes=stance.get('example_quotes') or [],
            ))
        for m in mapping:
            session.merge(PerspectiveStance(perspective_id=m['perspective_id'], theme_code=theme['code'],
                                            stance_key=m['stance_key'], confidence=m.get('confidence') or 1.0))

    merge_and_save_analysis(manager, theme['code'], fragment)
    return fragment


def analyze_theme(manager, llm, theme: Dict, min_stances: int = DEFAULT_MIN_STANCES) -> bool:
    narrative = generate_narrative(manager, llm, theme)
    stances = detect_stances(manager, llm, theme, min_stances)
    if narrative is None or stances is None:
        return False
    logger.info(f"[{theme['code']}] Narrative saved, {len(stances['stances'])} stances, "
                f"{len(stances['perspective_mapping'])} perspectives mapped")
    return True


def run(document_id: str, themes: Optional[List[str]] = None, min_perspectives: Optional[int] = None,
        force: bool = False, concurrency: Optional[int] = None, model: Optional[str] = None,
        db_dir: Optional[str] = None, llm=None, debug: bool = False) -> Dict[str, int]:
    manager = get_db_manager(document_id, db_dir)
    model = get_task_model(TASK, model)
    task_cfg = get_task_config(TASK, model)
    thresholds = task_cfg.get('thresholds') or {}
    min_perspectives = min_perspectives or thresholds.get('min_perspectives', DEFAULT_MIN_PERSPECTIVES)
    min_stances = thresholds.get('min_stances', DEFAULT_MIN_STANCES)

    candidates = qualifying_themes(manager, min_perspectives, themes)
    stats = {'qualifying': len(candidates), 'analyzed': 0, 'skipped': 0, 'already_done': 0, 'failed': 0}
    pending = []
    for theme in candidates:
        if not force and is_analyzed(manager, theme['code'], min_stances):
            stats['already_done'] += 1
        else:
            pending.append(theme)

    logger.info(f"{len(candidates)} themes with >= {min_perspectives} perspectives, {len(pending)} to analyze")
    if not pending:
        return stats

    llm = llm or LLMClient(model=model, db_manager=manager, debug=debug)
    lock = threading.Lock()

    def worker(theme, index, total):
        logger.info(f"[{index}/{total}] Theme {theme['code']} ({theme['perspectives']} perspectives)")
        try:
            ok = analyze_theme(manager, llm, theme, min_stances)
        except Exception as e:
            logger.error(f"[{theme['code']}] Analysis failed: {e}")
            with lock:
                stats['failed'] += 1
            return False
        with lock:
            stats['analyzed' if ok else 'skipped'] += 1
        return ok

    run_pool(pending, concurrency or task_cfg['concurrency'], worker)
    return stats


def build_parser():
    parser = argparse.ArgumentParser(description="Generate theme narratives and stances from perspectives")
    parser.add_argument("document_id", help="Document id")
    parser.add_argument("-t", "--theme", action="append", dest="themes", help="Only this theme code (repeatable)")
    parser.add_argument("--min-perspectives", type=int, help="Minimum perspectives per theme (default: 10)")
    parser.add_argument("--force", action="store_true", help="Re-analyze themes that are already done")
    parser.add_argument("-c", "--concurrency", type=int, help="Themes processed in parallel")
    parser.add_argument("-m", "--model", help="LLM model")
    parser.add_argument("--db-dir", help="Directory holding per-document databases")
    parser.add_argument("-d", "--debug", action="store_true", help="Save prompts and responses")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    stats = run(args.document_id, themes=args.themes, min_perspectives=args.min_perspectives, force=args.force,
                concurrency=args.concurrency, model=args.model, db_dir=args.db_dir, debug=args.debug)

    print("\n" + "=" * 60)
    print("THEME ANALYSIS SUMMARY")
    print("=" * 60)
    print(f"Qualifying:   {stats['qualifying']}")
    print(f"Already done: {stats['already_done']}")
    print(f"Analyzed:     {stats['analyzed']}")
    print(f"Skipped:      {stats['skipped']}")
    print(f"Failed:       {stats['failed']}")
    print("=" * 60)
    return stats


if __name__ == "__main__":
    main()
