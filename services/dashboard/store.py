"""
In-memory store over the JSON files written by build_website.

Loads meta, themes, theme summaries, entities, comments and the two
indexes once, then answers the dashboard's filter and lookup questions.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

# "Brief Label. Detailed description..."
THEME_DESCRIPTION = re.compile(r'^([^.]+)\.\s*(.+)$', re.DOTALL)
ORGANIZATION_SAMPLE_SIZE = 200
DEFAULT_ORGANIZATION_CATEGORY = 'Organizations'
SEARCH_SECTIONS = ('oneLineSummary', 'corePosition', 'detailedContent')


def parse_theme_description(description: Optional[str]) -> Dict[str, str]:
    """Split a theme description into its label and detailed text."""
    description = description or ''
    match = THEME_DESCRIPTION.match(description)
    if match:
        return {'label': match.group(1).strip(), 'detailedDescription': match.group(2).strip()}
    return {'label': description, 'detailedDescription': ''}


def _as_list(value) -> list:
    return value if isinstance(value, list) else []


@dataclass
class CommentFilters:
    search: str = ''
    themes: List[str] = field(default_factory=list)
    entities: List[str] = field(default_factory=list)
    submitter_types: List[str] = field(default_factory=list)
    has_condensed: str = 'all'


class DashboardStore:
    """
    Dashboard data loaded from a build_website output directory.

    Usage:
        store = DashboardStore.load("dist/data")
        store.filter_comments(CommentFilters(search="medicare"))
    """

    def __init__(self, meta: Dict[str, Any], themes: List[Dict[str, Any]],
                 theme_summaries: Dict[str, Dict[str, Any]], entities: Dict[str, List[Dict[str, Any]]],
                 comments: List[Dict[str, Any]], theme_index: Dict[str, Dict[str, List[str]]],
                 entity_index: Dict[str, List[str]]):
        self.meta = meta
        self.themes = [{**theme, **parse_theme_description(theme.get('description'))} for theme in themes]
        self.theme_summaries = theme_summaries
        self.entities = entities
        self.comments = comments
        self.theme_index = theme_index
        self.entity_index = entity_index
        self._comments_by_id = {c['id']: c for c in comments}
        self.organization_category = self.determine_organization_category()

    @classmethod
    def load(cls, data_dir: Union[str, Path]) -> "DashboardStore":
        data_dir = Path(data_dir)

        def read(name):
            return json.loads((data_dir / name).read_text(encoding='utf-8'))

        store = cls(
            meta=read('meta.json'),
            themes=read('themes.json'),
            theme_summaries=read('theme-summaries.json'),
            entities=read('entities.json'),
            comments=read('comments.json'),
            theme_index=read('indexes/theme-comments.json'),
            entity_index=read('indexes/entity-comments.json'),
        )
        logger.info(f"Loaded {len(store.comments)} comments and {len(store.themes)} themes from {data_dir}")
        return store

    def get_comment(self, comment_id: str) -> Optional[Dict[str, Any]]:
        return self._comments_by_id.get(comment_id)

    def get_theme(self, code: str) -> Optional[Dict[str, Any]]:
        return next((t for t in self.themes if t['code'] == code), None)

    def submitter_types(self) -> List[str]:
        return sorted({c['submitterType'] for c in self.comments if c.get('submitterType')})

    def entity_keys(self) -> List[str]:
        return [f"{category}|{e['label']}" for category, items in sorted(self.entities.items()) for e in items]

    def filter_comments(self, filters: Optional[CommentFilters] = None) -> List[Dict[str, Any]]:
        """Comments matching every active filter; an empty filter list means no constraint."""
        filters = filters or CommentFilters()
        results = list(self.comments)

        if filters.search:
            query = filters.search.lower()

            def matches(c):
                sections = c.get('structuredSections') or {}
                values = [sections.get(key) for key in SEARCH_SECTIONS] + [c.get('submitter'), c.get('id')]
                return any(isinstance(v, str) and query in v.lower() for v in values)

            results = [c for c in results if matches(c)]

        if filters.themes:
            def in_themes(c):
                scores = c.get('themeScores') or {}
                return any(scores.get(code) and scores[code] <= 2 for code in filters.themes)

            results = [c for c in results if in_themes(c)]

        if filters.entities:
            wanted = {tuple(key.split('|', 1)) for key in filters.entities}
            results = [
                c for c in results
                if any((e['category'], e['label']) in wanted for e in c.get('entities') or [])
            ]

        if filters.submitter_types:
            results = [c for c in results if c.get('submitterType') in filters.submitter_types]

        if filters.has_condensed == 'yes':
            results = [c for c in results if c.get('structuredSections')]
        elif filters.has_condensed == 'no':
            results = [c for c in results if not c.get('structuredSections')]

        return results

    def comments_for_theme(self, code: str) -> Dict[str, List[Dict[str, Any]]]:
        ids = self.theme_index.get(code) or {}
        return {
            key: [self._comments_by_id[i] for i in ids.get(key, []) if i in self._comments_by_id]
            for key in ('direct', 'touches')
        }

    def comments_for_entity(self, category: str, label: str) -> List[Dict[str, Any]]:
        ids = self.entity_index.get(f"{category}|{label}", [])
        return [self._comments_by_id[i] for i in ids if i in self._comments_by_id]

    def _organization_sample(self) -> set:
        """Organizations named in theme summaries; malformed entries are skipped."""
        sample = set()
        for summary in self.theme_summaries.values():
            if len(sample) >= ORGANIZATION_SAMPLE_SIZE:
                break
            sections = summary.get('sections') if isinstance(summary, dict) else None
            if not isinstance(sections, dict):
                continue
            groups = list(_as_list(sections.get('consensusPoints')))
            for debate in _as_list(sections.get('areasOfDebate')):
                if isinstance(debate, dict):
                    groups.extend(_as_list(debate.get('positions')))
            groups.extend(_as_list(sections.get('stakeholderPerspectives')))
            for group in groups:
                organizations = group.get('organizations') if isinstance(group, dict) else None
                if isinstance(organizations, list):
                    sample.update(o for o in organizations if isinstance(o, str))
        return sample

    def determine_organization_category(self) -> str:
        """
        Entity category that best matches the organizations named in theme summaries.

        Each entity counts once if any of its terms is a sampled organization;
        ties keep the first category seen.
        """
        sample = self._organization_sample()
        best, best_count = None, 0
        for category, items in self.entities.items():
            count = sum(1 for entity in _as_list(items)
                        if isinstance(entity, dict)
                        and any(isinstance(t, str) and t in sample for t in _as_list(entity.get('terms'))))
            if count > best_count:
                best, best_count = category, count
        return best or DEFAULT_ORGANIZATION_CATEGORY

    def build_theme_tree(self) -> List[Dict[str, Any]]:
        """Nested themes ({..., 'children': [...]}) rooted at themes without a known parent."""
        nodes = {t['code']: {**t, 'children': []} for t in self.themes}
        roots = []
        for theme in self.themes:
            node = nodes[theme['code']]
            parent = theme.get('parent_code')
            if parent and parent in nodes:
                nodes[parent]['children'].append(node)
            else:
                roots.append(node)
        return roots
