"""
Core models for the comment analysis pipeline.

Each regulation document has its own SQLite database holding the raw comments,
their attachments, the condensed (structured) versions, the discovered theme
and entity taxonomies, per-comment theme scores and extracts, theme summaries
and the LLM response cache.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Integer, String, Text, DateTime, LargeBinary, ForeignKey,
    CheckConstraint, Index, JSON
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from shared.database.database import Base


# ============================================================================
# Enums
# ============================================================================

class ProcessingStatus(str, PyEnum):
    """Per-comment processing state for resumable LLM steps"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ThemeScore(int, PyEnum):
    """How a comment relates to a theme"""
    DIRECT = 1
    TOUCHES = 2
    NOT_ADDRESSED = 3


# ============================================================================
# Raw comments
# ============================================================================

class Comment(Base):
    """A public comment as returned by regulations.gov (or a bulk CSV export)."""
    __tablename__ = 'comments'

    id: Mapped[str] = mapped_column(String, primary_key=True)
    attributes_json: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    attachments: Mapped[List["Attachment"]] = relationship(
        back_populates="comment", cascade="all, delete-orphan"
    )
    condensed: Mapped[Optional["CondensedComment"]] = relationship(
        back_populates="comment", uselist=False, cascade="all, delete-orphan"
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'attributes': self.attributes_json,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Comment(id='{self.id}')>"


class Attachment(Base):
    __tablename__ = 'attachments'

    id: Mapped[str] = mapped_column(String, primary_key=True)
    format: Mapped[str] = mapped_column(String, primary_key=True)
    comment_id: Mapped[str] = mapped_column(ForeignKey('comments.id', ondelete='CASCADE'), nullable=False)
    file_name: Mapped[Optional[str]] = mapped_column(String)
    url: Mapped[Optional[str]] = mapped_column(Text)
    size: Mapped[Optional[int]] = mapped_column(Integer)
    blob_data: Mapped[Optional[bytes]] = mapped_column(LargeBinary)

    comment: Mapped["Comment"] = relationship(back_populates="attachments")

    __table_args__ = (
        Index('idx_attachments_comment', 'comment_id'),
    )

    def __repr__(self):
        return f"<Attachment(id='{self.id}', format='{self.format}')>"


# ============================================================================
# Condensed comments
# ============================================================================

class CondensedComment(Base):
    """LLM-condensed, sectioned version of a comment."""
    __tablename__ = 'condensed_comments'

    comment_id: Mapped[str] = mapped_column(ForeignKey('comments.id', ondelete='CASCADE'), primary_key=True)
    structured_sections: Mapped[Optional[Dict[str, str]]] = mapped_column(JSON)
    word_count: Mapped[Optional[int]] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ProcessingStatus.PENDING.value)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    comment: Mapped["Comment"] = relationship(back_populates="condensed")

    __table_args__ = (
        Index('idx_condensed_status', 'status'),
    )

    def __repr__(self):
        return f"<CondensedComment(comment_id='{self.comment_id}', status='{self.status}')>"


# ============================================================================
# Taxonomies
# ============================================================================

class ThemeHierarchy(Base):
    """One node of the discovered theme taxonomy, e.g. code '2.1'."""
    __tablename__ = 'theme_hierarchy'

    code: Mapped[str] = mapped_column(String, primary_key=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    parent_code: Mapped[Optional[str]] = mapped_column(String)
    quotes_json: Mapped[Optional[List[str]]] = mapped_column(JSON)
    detailed_guidelines: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_theme_parent', 'parent_code'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'description': self.description,
            'level': self.level,
            'parent_code': self.parent_code,
            'detailed_guidelines': self.detailed_guidelines,
        }

    def __repr__(self):
        return f"<ThemeHierarchy(code='{self.code}', description='{self.description[:40]}')>"


class EntityTaxonomy(Base):
    __tablename__ = 'entity_taxonomy'

    category: Mapped[str] = mapped_column(String, primary_key=True)
    label: Mapped[str] = mapped_column(String, primary_key=True)
    definition: Mapped[Optional[str]] = mapped_column(Text)
    terms: Mapped[List[str]] = mapped_column(JSON, default=list)

    def __repr__(self):
        return f"<EntityTaxonomy(category='{self.category}', label='{self.label}')>"


class CommentEntity(Base):
    __tablename__ = 'comment_entities'

    comment_id: Mapped[str] = mapped_column(ForeignKey('comments.id', ondelete='CASCADE'), primary_key=True)
    category: Mapped[str] = mapped_column(String, primary_key=True)
    entity_label: Mapped[str] = mapped_column(String, primary_key=True)


# ============================================================================
# Theme scoring, extracts and summaries
# ============================================================================

class CommentTheme(Base):
    __tablename__ = 'comment_themes'

    comment_id: Mapped[str] = mapped_column(ForeignKey('comments.id', ondelete='CASCADE'), primary_key=True)
    theme_code: Mapped[str] = mapped_column(String, primary_key=True)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint('score IN (1, 2, 3)', name='check_theme_score'),
        Index('idx_comment_themes_theme', 'theme_code', 'score'),
    )


class ThemeScoringStatus(Base):
    __tablename__ = 'theme_scoring_status'

    comment_id: Mapped[str] = mapped_column(ForeignKey('comments.id', ondelete='CASCADE'), primary_key=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ProcessingStatus.PENDING.value)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime)


class CommentThemeExtract(Base):
    """Theme-specific content pulled from one comment."""
    __tablename__ = 'comment_theme_extracts'

    comment_id: Mapped[str] = mapped_column(ForeignKey('comments.id', ondelete='CASCADE'), primary_key=True)
    theme_code: Mapped[str] = mapped_column(String, primary_key=True)
    extract_json: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_extracts_theme', 'theme_code'),
    )


class ThemeSummary(Base):
    __tablename__ = 'theme_summaries'

    theme_code: Mapped[str] = mapped_column(String, primary_key=True)
    structured_sections: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    comment_count: Mapped[Optional[int]] = mapped_column(Integer)
    word_count: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<ThemeSummary(theme_code='{self.theme_code}', comments={self.comment_count})>"


# ============================================================================
# LLM cache
# ============================================================================

class LLMCache(Base):
    __tablename__ = 'llm_cache'

    prompt_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    task_type: Mapped[str] = mapped_column(String, nullable=False)
    task_level: Mapped[int] = mapped_column(Integer, default=0)
    task_params: Mapped[Optional[str]] = mapped_column(Text)
    result: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[Optional[str]] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_llm_cache_task', 'task_type', 'task_level'),
    )
