"""
Comment metadata extraction and enrichment, condensed comment loading and the plain-text
taxonomy parsers used by the theme and entity discovery steps.
"""

import logging
import re
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from shared.models.models import Comment, CondensedComment, ProcessingStatus, ThemeHierarchy
from shared.utils.utils import count_words

logger = logging.getLogger(__name__)


@dataclass
class EnrichedComment:
    id: str
    content: str
    word_count: int
    metadata: Dict[str, Any]
    structured_sections: Dict[str, str] = field(default_factory=dict)


def extract_metadata(attrs: Dict[str, Any]) -> Dict[str, Any]:
    """
    Display metadata for a comment.

    Returns:
        dict with submitter, submitter_type, organization, location and date
    """
    first = attrs.get('firstName')
    last = attrs.get('lastName')
    organization = attrs.get('organization')

    if organization:
        submitter = organization
    elif first and last:
        submitter = f"{first} {last}"
    else:
        submitter = first or last or "Anonymous"

    submitter_type = attrs.get('category') or ("Organization" if organization else "Individual")

    location_parts = []
    if attrs.get('city'):
        location_parts.append(attrs['city'])
    if attrs.get('stateProvinceRegion'):
        location_parts.append(attrs['stateProvinceRegion'])
    if attrs.get('country') and attrs['country'] != "United States":
        location_parts.append(attrs['country'])

    return {
        'submitter': submitter,
        'submitter_type': submitter_type,
        'organization': organization or None,
        'location': ", ".join(location_parts) or None,
        'date': attrs.get('postedDate') or attrs.get('receiveDate'),
    }


def extract_pdf_text(data: bytes) -> str:
    """Text of a PDF via pdftotext (poppler). Raises on tool failure."""
    with tempfile.TemporaryDirectory(prefix='pdf-extract-') as tmp:
        pdf_path = Path(tmp) / 'attachment.pdf'
        pdf_path.write_bytes(data)
        result = subprocess.run(
            ['pdftotext', '-layout', '-enc', 'UTF-8', str(pdf_path), '-'],
            capture_output=True, check=True, timeout=120,
        )
    return result.stdout.decode('utf-8', errors='replace').strip()


def enrich_comment(comment_id: str, attrs: Dict[str, Any], attachments=None,
                   include_pdfs: bool = True, pdf_reader=extract_pdf_text) -> Optional[EnrichedComment]:
    """
    Build the full text sent to the condense prompt.

    Args:
        comment_id: Comment id
        attrs: Comment attributes (regulations.gov attribute names)
        attachments: Attachment rows for this comment
        include_pdfs: Append extracted text of PDF attachments
        pdf_reader: Callable turning PDF bytes into text

    Returns:
        EnrichedComment, or None when the comment has no text
    """
    metadata = extract_metadata(attrs)
    parts = [
        "=== COMMENT METADATA ===",
        f"ID: {comment_id}",
        f"Date: {metadata['date'] or 'Unknown'}",
        f"Submitter: {metadata['submitter']}",
        f"Type: {metadata['submitter_type']}",
    ]
    if metadata['organization']:
        parts.append(f"Organization: {metadata['organization']}")
    if metadata['location']:
        parts.append(f"Location: {metadata['location']}")

    comment_text = attrs.get('comment') or attrs.get('text') or ""
    if not comment_text.strip():
        return None
    parts.append("\n=== COMMENT TEXT ===")
    parts.append(comment_text)

    if include_pdfs:
        pdfs = [a for a in (attachments or []) if (a.format or '').lower() == 'pdf' and a.blob_data]
        if pdfs:
            parts.append("\n=== PDF ATTACHMENTS ===")
            for pdf in pdfs:
                try:
                    extracted = pdf_reader(pdf.blob_data).strip()
                except (OSError, subprocess.SubprocessError) as e:
                    logger.warning(f"Could not read {pdf.file_name} for {comment_id}: {e}")
                    parts.append(f"\nPDF: {pdf.file_name} (error reading)")
                    continue
                if extracted:
                    parts.append(f"\nPDF: {pdf.file_name}")
                    parts.append(extracted)
                else:
                    parts.append(f"\nPDF: {pdf.file_name} (no extractable text)")

    content = "\n".join(parts)
    return EnrichedComment(
        id=comment_id,
        content=content,
        word_count=count_words(content),
        metadata=metadata,
    )


def _completed_condensed(session: Session, limit: Optional[int]):
    stmt = (
        select(Comment, CondensedComment)
        .join(CondensedComment, CondensedComment.comment_id == Comment.id)
        .where(CondensedComment.status == ProcessingStatus.COMPLETED.value)
        .order_by(Comment.id)
    )
    if limit:
        stmt = stmt.limit(limit)
    return session.execute(stmt).all()


def load_condensed_comments(session: Session, limit: Optional[int] = None) -> List[EnrichedComment]:
    """
    Completed condensed comments. Content is the detailed content, or the key
    sections joined by blank lines when it is missing.
    """
    results = []
    for comment, condensed in _completed_condensed(session, limit):
        sections = condensed.structured_sections or {}
        content = sections.get('detailedContent') or "\n\n".join(filter(None, [
            sections.get('oneLineSummary'),
            sections.get('commenterProfile'),
            sections.get('corePosition'),
            sections.get('keyRecommendations'),
            sections.get('mainConcerns'),
        ]))
        results.append(EnrichedComment(
            id=comment.id,
            content=content,
            word_count=count_words(content),
            metadata=extract_metadata(comment.attributes_json or {}),
            structured_sections=sections,
        ))
    return results


def load_condensed_comments_for_entities(session: Session, limit: Optional[int] = None) -> List[EnrichedComment]:
    """Condensed comments rendered as a metadata header plus detailed content."""
    results = []
    for comment, condensed in _completed_condensed(session, limit):
        sections = condensed.structured_sections or {}
        metadata = extract_metadata(comment.attributes_json or {})

        parts = [f"[{metadata['submitter_type']}] {metadata['submitter']}"]
        if metadata['organization']:
            parts.append(f"Organization: {metadata['organization']}")
        if metadata['location']:
            parts.append(f"Location: {metadata['location']}")
        parts.append("")
        if sections.get('detailedContent'):
            parts.append(sections['detailedContent'])

        content = "\n".join(parts)
        results.append(EnrichedComment(
            id=comment.id,
            content=content,
            word_count=count_words(content),
            metadata=metadata,
            structured_sections=sections,
        ))
    return results


# ============================================================================
# Taxonomy parsers
# ============================================================================

_THEME_START = re.compile(r'^(\d+(?:\.\d+)*)\.\s+', re.MULTILINE)
_THEME_LABEL = re.compile(r'^(.*?)(?<!vs)\.\s(.*)$', re.DOTALL)


def parse_theme_hierarchy(text: str) -> List[Dict[str, Any]]:
    """
    Parse '1.2. Label. Brief description || Detailed guidelines' paragraphs.

    Returns:
        list of dicts with code, description (the label), level, parent_code
        and detailed_guidelines
    """
    starts = list(_THEME_START.finditer(text or ''))
    themes = []

    for i, match in enumerate(starts):
        end = starts[i + 1].start() if i + 1 < len(starts) else len(text)
        code = match.group(1)
        after_code = text[match.end():end].strip()

        label_match = _THEME_LABEL.match(after_code)
        if not label_match:
            continue
        label, rest = label_match.group(1), label_match.group(2)

        if ' || ' in rest:
            pieces = rest.split(' || ')
            brief = pieces[0].strip()
            detailed = ' || '.join(pieces[1:]).strip()
        else:
            full_text = rest.strip()
            period = full_text.find('. ')
            if 0 < period < 200:
                brief = full_text[:period]
                detailed = full_text[period + 2:].strip()
            else:
                brief, detailed = full_text, ''

        if brief.endswith('.'):
            brief = brief[:-1]

        code_parts = code.split('.')
        themes.append({
            'code': code,
            'description': label.strip(),
            'level': len(code_parts),
            'parent_code': '.'.join(code_parts[:-1]) if len(code_parts) > 1 else None,
            'detailed_guidelines': brief + ('. ' + detailed if detailed else ''),
        })

    return themes


_CATEGORY_LINE = re.compile(r'^\d+\.\s+(.+)$')
_ENTITY_LINE = re.compile(r'^\*\s+([^:]+):\s+(.+)$')
_TERM_LINE = re.compile(r'^\*\s+"?([^"]+)"?$')


def parse_entity_taxonomy(text: str) -> Dict[str, List[Dict[str, Any]]]:
    """
    Parse the plain-text entity taxonomy format:

        1. Category
        * Entity Label: Definition
          * "term"
    """
    result: Dict[str, List[Dict[str, Any]]] = {}
    category = None
    entity = None

    for line in (text or '').splitlines():
        trimmed = line.strip()

        category_match = _CATEGORY_LINE.match(trimmed)
        if category_match:
            category = category_match.group(1)
            result.setdefault(category, [])
            entity = None
            continue

        entity_match = _ENTITY_LINE.match(trimmed)
        if entity_match and category:
            entity = {
                'label': entity_match.group(1).strip(),
                'definition': entity_match.group(2).strip(),
                'terms': [],
            }
            result[category].append(entity)
            continue

        term_match = _TERM_LINE.match(trimmed)
        if term_match and entity:
            entity['terms'].append(term_match.group(1).strip())

    return result


def theme_sort_key(code: str):
    """Numeric ordering for theme codes, so 2.10 sorts after 2.9."""
    return tuple(int(part) if part.isdigit() else 0 for part in code.split('.'))


def load_theme_hierarchy(session: Session) -> List[ThemeHierarchy]:
    """All themes in numeric code order."""
    return sorted(session.scalars(select(ThemeHierarchy)), key=lambda t: theme_sort_key(t.code))
