"""
FastAPI service: LLM proxy for the pipeline plus read-only document endpoints.

Run:
    uvicorn services.api.main:app --host 0.0.0.0 --port 5001

The pipeline routes LLM calls here when FASTAPI_URL (or API_URL) is set.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from sqlalchemy import func, select

from shared.config.config import OPENAI_API_KEY
from shared.database.database import DatabaseError, get_db_manager, list_documents, resolve_db_dir
from shared.models.models import (
    Attachment, Comment, CommentEntity, CommentTheme, CondensedComment, EntityTaxonomy,
    ProcessingStatus, ThemeHierarchy, ThemeScore, ThemeSummary
)
from shared.models.models_perspective import ThemeNarrative, ThemeStance
from shared.utils.comment_processing import extract_metadata, load_theme_hierarchy
from shared.utils.utils import LLMError, gai

logger = logging.getLogger(__name__)

app = FastAPI(title="Comment Analysis API")


class QueryInput(BaseModel):
    model: str = "gpt-4o"
    sys_prompt: str = ""
    prompt: str


class QueryResponse(BaseModel):
    response: str


def _manager(document_id: str):
    if document_id not in list_documents():
        raise HTTPException(status_code=404, detail=f"Document not found: {document_id}")
    try:
        return get_db_manager(document_id, create=False)
    except DatabaseError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.post("/material_query", response_model=QueryResponse)
def material_query(input: QueryInput):
    """LLM proxy. Always calls OpenAI directly so the service never routes to itself."""
    try:
        content = gai(input.sys_prompt, input.prompt, model=input.model, use_proxy=False)
    except LLMError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"response": content}


@app.get("/")
async def root():
    return {"message": "Comment Analysis API is running"}


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": "comment-analysis-api",
        "db_dir": str(resolve_db_dir()),
        "openai_configured": bool(OPENAI_API_KEY),
    }


@app.get("/documents")
def documents() -> Dict[str, List[str]]:
    return {"documents": list_documents()}


@app.get("/documents/{document_id}/stats")
def document_stats(document_id: str) -> Dict[str, Any]:
    manager = _manager(document_id)
    with manager.get_session() as session:
        def count(stmt):
            return session.scalar(stmt) or 0

        return {
            "documentId": document_id,
            "totalComments": count(select(func.count()).select_from(Comment)),
            "condensedComments": count(select(func.count()).select_from(CondensedComment)
                                       .where(CondensedComment.status == ProcessingStatus.COMPLETED.value)),
            "totalThemes": count(select(func.count()).select_from(ThemeHierarchy)),
            "totalEntities": count(select(func.count()).select_from(EntityTaxonomy)),
            "scoredComments": count(select(func.count(func.distinct(CommentTheme.comment_id)))),
            "themeSummaries": count(select(func.count()).select_from(ThemeSummary)),
        }


@app.get("/documents/{document_id}/themes")
def document_themes(document_id: str) -> Dict[str, Any]:
    manager = _manager(document_id)
    with manager.get_session() as session:
        direct = dict(session.execute(
            select(CommentTheme.theme_code, func.count()).where(CommentTheme.score == ThemeScore.DIRECT.value)
            .group_by(CommentTheme.theme_code)
        ).all())
        themes = []
        for theme in load_theme_hierarchy(session):
            data = theme.to_dict()
            data['direct_count'] = direct.get(theme.code, 0)
            themes.append(data)
    return {"documentId": document_id, "themes": themes}


@app.get("/documents/{document_id}/themes/{code}")
def document_theme(document_id: str, code: str) -> Dict[str, Any]:
    manager = _manager(document_id)
    with manager.get_session() as session:
        theme = session.get(ThemeHierarchy, code)
        if theme is None:
            raise HTTPException(status_code=404, detail=f"Theme not found: {code}")

        summary = session.get(ThemeSummary, code)
        narrative = session.get(ThemeNarrative, code)
        stances = session.scalars(
            select(ThemeStance).where(ThemeStance.theme_code == code).order_by(ThemeStance.stance_key)
        ).all()

        return {
            "theme": theme.to_dict(),
            "summary": {
                "commentCount": summary.comment_count,
                "wordCount": summary.word_count,
                "sections": summary.structured_sections,
            } if summary else None,
            "narrative": {
                "narrative_summary": narrative.narrative_summary,
                "consensus_points": narrative.consensus_points,
                "debate_points": narrative.debate_points,
                "stakeholder_dynamics": narrative.stakeholder_dynamics,
                "supporting_stats": narrative.supporting_stats,
            } if narrative else None,
            "stances": [
                {
                    "stance_key": s.stance_key,
                    "stance_label": s.stance_label,
                    "stance_description": s.stance_description,
                    "typical_arguments": s.typical_arguments or [],
                    "example_quotes": s.example_quotes or [],
                }
                for s in stances
            ],
        }


@app.get("/documents/{document_id}/comments/{comment_id}")
def document_comment(document_id: str, comment_id: str) -> Dict[str, Any]:
    manager = _manager(document_id)
    with manager.get_session() as session:
        comment = session.get(Comment, comment_id)
        if comment is None:
            raise HTTPException(status_code=404, detail=f"Comment not found: {comment_id}")

        condensed: Optional[CondensedComment] = session.get(CondensedComment, comment_id)
        scores = dict(session.execute(
            select(CommentTheme.theme_code, CommentTheme.score).where(CommentTheme.comment_id == comment_id)
        ).all())
        entities = session.execute(
            select(CommentEntity.category, CommentEntity.entity_label).where(CommentEntity.comment_id == comment_id)
        ).all()
        attachments = session.scalars(select(Attachment).where(Attachment.comment_id == comment_id)).all()

        metadata = extract_metadata(comment.attributes_json or {})
        return {
            "id": comment.id,
            "documentId": document_id,
            **metadata,
            "text": (comment.attributes_json or {}).get('comment'),
            "status": condensed.status if condensed else None,
            "structuredSections": condensed.structured_sections if condensed else None,
            "themeScores": scores,
            "entities": [{"category": c, "label": label} for c, label in entities],
            "attachments": [{"id": a.id, "format": a.format, "fileName": a.file_name, "url": a.url}
                            for a in attachments],
        }
