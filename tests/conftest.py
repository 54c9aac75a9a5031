"""
Shared fixtures: a throwaway per-document database, a scripted LLM and
helpers that seed the tables each pipeline step reads.
"""

import json
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pytest

from shared.database.database import get_db_manager
from shared.models.models import (
    Comment, CommentEntity, CommentTheme, CommentThemeExtract, CondensedComment, EntityTaxonomy,
    ProcessingStatus, ThemeHierarchy, ThemeSummary
)
from shared.models.models_perspective import Abstraction, Perspective
from shared.utils import utils
from shared.utils.utils import parse_json_response

DOCUMENT_ID = "TEST-2025-0001-0001"

Response = Union[str, Dict[str, Any], Callable[[str], Union[str, Dict[str, Any]]]]

CONDENSED_TEMPLATE = """### ONE-LINE SUMMARY
{summary}

### COMMENTER PROFILE
- **Name/Organization:** {submitter}
- **Type:** Individual

### CORE POSITION
{position}

### KEY RECOMMENDATIONS
- Delay the reporting deadline
  - by at least one year

### MAIN CONCERNS
- Cost of compliance

### NOTABLE EXPERIENCES & INSIGHTS
No distinctive experiences shared

### KEY QUOTATIONS
- "This rule will close rural clinics."

### DETAILED CONTENT
- {detail}
"""

TAXONOMY_TEXT = """1. Compliance Costs. Costs of meeting the new requirements. || Includes staff time and software. Excludes clinical quality.

1.1. Small Practice Burden. How costs fall on small practices. || Includes rural clinics and solo practitioners.

2. Patient Access. Effects on patient access to care. || Includes wait times and clinic closures.
"""


class FakeLLM:
    """
    Stand-in for LLMClient that answers by prompt marker.

    responses is a list of (marker, response) pairs; the first marker found in
    the prompt wins. A response may be text, a dict (returned as JSON) or a
    callable taking the prompt.
    """

    def __init__(self, responses: List[Tuple[str, Response]]):
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def _answer(self, prompt: str) -> str:
        for marker, response in self.responses:
            if marker in prompt:
                if callable(response):
                    response = response(prompt)
                if isinstance(response, (dict, list)):
                    return json.dumps(response)
                return response
        raise AssertionError(f"Unexpected prompt: {prompt[:120]!r}")

    def generate(self, prompt, task_type=None, task_level=0, params=None, debug_name=None, postprocess=None):
        with self._lock:
            self.calls.append({'prompt': prompt, 'task_type': task_type, 'task_level': task_level,
                               'params': params})
        response = self._answer(prompt)
        return postprocess(response) if postprocess else response

    def generate_json(self, prompt, **kwargs):
        return self.generate(prompt, postprocess=parse_json_response, **kwargs)

    def task_types(self) -> List[str]:
        return [call['task_type'] for call in self.calls]


@pytest.fixture
def db_dir(tmp_path):
    return str(tmp_path / "dbs")


@pytest.fixture
def manager(db_dir):
    return get_db_manager(DOCUMENT_ID, db_dir)


@pytest.fixture
def fake_llm_factory():
    return FakeLLM


@pytest.fixture
def fake_gai(monkeypatch):
    """Replaces gai for a real LLMClient; returns (prompts sent, queued responses)."""
    calls = []
    responses = []

    def gai(sys_prompt, user_prompt, model='gpt-4o', use_proxy=None):
        calls.append(user_prompt)
        return responses.pop(0) if responses else '{"ok": true}'

    monkeypatch.setattr(utils, 'gai', gai)
    return calls, responses


def condensed_text(summary="Supports the rule with changes", submitter="Jane Doe",
                   position="The rule needs a longer timeline.",
                   detail="The EPA reporting rule costs small clinics too much"):
    return CONDENSED_TEMPLATE.format(summary=summary, submitter=submitter, position=position, detail=detail)


def add_comment(manager, comment_id: str, text: str = "Please delay this rule.", **attrs) -> None:
    attributes = {'comment': text, 'firstName': 'Jane', 'lastName': 'Doe', 'postedDate': '2025-03-01'}
    attributes.update(attrs)
    with manager.get_session() as session:
        session.merge(Comment(id=comment_id, attributes_json=attributes))


def add_condensed(manager, comment_id: str, sections: Optional[Dict[str, str]] = None,
                  status: ProcessingStatus = ProcessingStatus.COMPLETED, word_count: int = 50) -> None:
    if sections is None:
        sections = {
            'oneLineSummary': f"Summary of {comment_id}",
            'commenterProfile': "- **Type:** Individual",
            'corePosition': "Wants a longer timeline.",
            'keyQuotations': "No standout quotations",
            'detailedContent': f"- {comment_id} says the EPA rule is costly",
        }
    with manager.get_session() as session:
        session.merge(CondensedComment(comment_id=comment_id, structured_sections=sections,
                                       word_count=word_count, status=status.value))


def add_themes(manager, themes: Optional[List[Tuple[str, str, Optional[str]]]] = None) -> None:
    themes = themes or [
        ('1', 'Compliance Costs', None),
        ('1.1', 'Small Practice Burden', '1'),
        ('2', 'Patient Access', None),
    ]
    with manager.get_session() as session:
        for code, description, parent in themes:
            session.merge(ThemeHierarchy(code=code, description=description, level=len(code.split('.')),
                                         parent_code=parent, detailed_guidelines=f"Guidelines for {code}"))


def add_scores(manager, comment_id: str, scores: Dict[str, int]) -> None:
    with manager.get_session() as session:
        for code, score in scores.items():
            session.merge(CommentTheme(comment_id=comment_id, theme_code=code, score=score))


def add_extract(manager, comment_id: str, theme_code: str, concerns: Optional[List[str]] = None) -> None:
    extract = {'relevance': 1, 'extract': {'concerns': concerns or [f"{comment_id} worries about cost"]}}
    with manager.get_session() as session:
        session.merge(CommentThemeExtract(comment_id=comment_id, theme_code=theme_code, extract_json=extract))


def add_entity(manager, category: str, label: str, terms: List[str], comment_ids: List[str]) -> None:
    with manager.get_session() as session:
        session.merge(EntityTaxonomy(category=category, label=label, definition=f"{label} definition", terms=terms))
        for comment_id in comment_ids:
            session.merge(CommentEntity(comment_id=comment_id, category=category, entity_label=label))


def add_summary(manager, theme_code: str, sections: Dict[str, Any], comment_count: int = 5) -> None:
    with manager.get_session() as session:
        session.merge(ThemeSummary(theme_code=theme_code, structured_sections=sections,
                                   comment_count=comment_count, word_count=400))


def add_abstraction(manager, comment_id: str, perspectives: List[Tuple[str, str]],
                    submitter_type: str = "Individual", organization: Optional[str] = None,
                    metadata: Optional[Dict[str, Any]] = None, **attributes) -> List[int]:
    """Abstraction with (taxonomy_code, perspective) rows; returns the perspective ids."""
    with manager.get_session() as session:
        abstraction = Abstraction(
            comment_id=comment_id,
            content="text",
            submitter_type=submitter_type,
            organization_name=organization,
            original_metadata_json=metadata or {},
            perspectives=[Perspective(taxonomy_code=code, perspective=text, excerpt=f"excerpt {text}",
                                      sentiment='concerned')
                          for code, text in perspectives],
            **attributes,
        )
        session.add(abstraction)
        session.flush()
        return [p.id for p in abstraction.perspectives]
