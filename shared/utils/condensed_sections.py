"""
Parsing of condensed comment output.

The condense prompt asks for eight '### HEADER' sections. This module maps
them onto stable keys and pulls out the list-shaped parts for prompts and
the dashboard.
"""

import re
from typing import Dict, List, Tuple

SECTION_HEADERS = {
    'ONE-LINE SUMMARY': 'oneLineSummary',
    'COMMENTER PROFILE': 'commenterProfile',
    'CORE POSITION': 'corePosition',
    'KEY RECOMMENDATIONS': 'keyRecommendations',
    'MAIN CONCERNS': 'mainConcerns',
    'NOTABLE EXPERIENCES & INSIGHTS': 'notableExperiences',
    'KEY QUOTATIONS': 'keyQuotations',
    'DETAILED CONTENT': 'detailedContent',
}

SECTION_KEYS = list(SECTION_HEADERS.values())

_PROFILE_LINE = re.compile(r'^\s*-\s*\*\*([^:]+):\*\*\s*(.+)$')


def parse_condensed_sections(text: str) -> Tuple[Dict[str, str], List[str]]:
    """
    Split condensed output into its sections.

    Returns:
        (sections, errors). Errors are informational; sections holds whatever
        could be recognized.
    """
    sections: Dict[str, str] = {}
    errors: List[str] = []

    parts = re.split(r'^###\s+', text or '', flags=re.MULTILINE)
    intro = parts[0].strip()
    if intro and not intro.startswith('#'):
        errors.append(f'Unexpected content before first section: "{intro[:50]}..."')

    for part in parts[1:]:
        header, _, body = part.partition('\n')
        header = header.strip()
        key = SECTION_HEADERS.get(header.upper())
        if key is None:
            errors.append(f'Unknown section header: "{header}"')
            continue
        sections[key] = body.strip()

    missing = [key for key in SECTION_KEYS if key not in sections]
    if missing:
        errors.append(f"Missing required sections: {', '.join(missing)}")

    return sections, errors


def _bullet_items(text: str) -> List[str]:
    """Lines starting with '- ' once trimmed, in order; nested bullets count as items too."""
    items: List[str] = []
    for line in (text or '').splitlines():
        stripped = line.strip()
        if stripped.startswith('- '):
            items.append(stripped[2:])
    return items


def _strip_quotes(text: str) -> str:
    if text.startswith('"') and text.endswith('"'):
        return text[1:-1]
    return text


def extract_structured_data(sections: Dict[str, str]) -> Dict:
    """
    Structured view of condensed sections.

    Returns a dict with summary, profile (lowercased letter-only keys from
    '- **Key:** value' lines), position, and lists of recommendations,
    concerns, experiences and quotations.
    """
    profile = {}
    for line in (sections.get('commenterProfile') or '').splitlines():
        match = _PROFILE_LINE.match(line)
        if match:
            key = re.sub(r'[^a-z]', '', match.group(1).lower())
            profile[key] = match.group(2).strip()

    return {
        'summary': (sections.get('oneLineSummary') or '').strip(),
        'profile': profile,
        'position': (sections.get('corePosition') or '').strip(),
        'recommendations': _bullet_items(sections.get('keyRecommendations')),
        'concerns': _bullet_items(sections.get('mainConcerns')),
        'experiences': _bullet_items(sections.get('notableExperiences')),
        'quotations': [_strip_quotes(q) for q in _bullet_items(sections.get('keyQuotations'))],
    }
