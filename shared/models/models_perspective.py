"""
Perspective models.

Comments are abstracted into a submitter profile plus a list of perspectives,
each tagged with a theme code. Theme-level analysis (narratives and stances)
is stored alongside, together with the merged raw analysis JSON.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Integer, String, Text, Float, DateTime, ForeignKey, Index, JSON
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from shared.database.database import Base


# ============================================================================
# Abstractions and perspectives
# ============================================================================

class Abstraction(Base):
    """Structured profile of one comment's submitter plus its perspectives."""
    __tablename__ = 'abstractions'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    comment_id: Mapped[str] = mapped_column(ForeignKey('comments.id', ondelete='CASCADE'), unique=True, nullable=False)
    content: Mapped[Optional[str]] = mapped_column(Text)
    submitter_type: Mapped[Optional[str]] = mapped_column(String)
    submitter_type_confidence: Mapped[Optional[float]] = mapped_column(Float)
    organization_name: Mapped[Optional[str]] = mapped_column(String)
    market_segment: Mapped[Optional[str]] = mapped_column(String)
    stakeholder_category: Mapped[Optional[str]] = mapped_column(String)
    geographic_scope: Mapped[Optional[str]] = mapped_column(String)
    technical_sophistication: Mapped[Optional[str]] = mapped_column(String)
    regulatory_stance: Mapped[Optional[str]] = mapped_column(String)
    primary_themes: Mapped[Optional[str]] = mapped_column(Text)
    original_metadata_json: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    processed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    perspectives: Mapped[List["Perspective"]] = relationship(
        back_populates="abstraction", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Abstraction(comment_id='{self.comment_id}', type='{self.submitter_type}')>"


class Perspective(Base):
    __tablename__ = 'perspectives'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    abstraction_id: Mapped[int] = mapped_column(ForeignKey('abstractions.id', ondelete='CASCADE'), nullable=False)
    taxonomy_code: Mapped[str] = mapped_column(String, nullable=False)
    perspective: Mapped[str] = mapped_column(Text, nullable=False)
    excerpt: Mapped[Optional[str]] = mapped_column(Text)
    sentiment: Mapped[Optional[str]] = mapped_column(String)

    abstraction: Mapped["Abstraction"] = relationship(back_populates="perspectives")

    __table_args__ = (
        Index('idx_perspectives_code', 'taxonomy_code'),
        Index('idx_perspectives_abstraction', 'abstraction_id'),
    )


class ObservedAttribute(Base):
    """Attribute values seen so far; fed back into prompts for consistent labels."""
    __tablename__ = 'observed_attributes'

    attribute_type: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(String, primary_key=True)


# ============================================================================
# Theme analysis
# ============================================================================

class ThemeNarrative(Base):
    __tablename__ = 'theme_narratives'

    theme_code: Mapped[str] = mapped_column(String, primary_key=True)
    narrative_summary: Mapped[Optional[str]] = mapped_column(Text)
    consensus_points: Mapped[Optional[List[Any]]] = mapped_column(JSON)
    debate_points: Mapped[Optional[List[Any]]] = mapped_column(JSON)
    stakeholder_dynamics: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    supporting_stats: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class ThemeStance(Base):
    __tablename__ = 'theme_stances'

    theme_code: Mapped[str] = mapped_column(String, primary_key=True)
    stance_key: Mapped[str] = mapped_column(String, primary_key=True)
    stance_label: Mapped[Optional[str]] = mapped_column(String)
    stance_description: Mapped[Optional[str]] = mapped_column(Text)
    typical_arguments: Mapped[Optional[List[str]]] = mapped_column(JSON)
    example_quotes: Mapped[Optional[List[str]]] = mapped_column(JSON)


class PerspectiveStance(Base):
    __tablename__ = 'perspective_stances'

    perspective_id: Mapped[int] = mapped_column(ForeignKey('perspectives.id', ondelete='CASCADE'), primary_key=True)
    theme_code: Mapped[str] = mapped_column(String, primary_key=True)
    stance_key: Mapped[str] = mapped_column(String, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, default=1.0)

    __table_args__ = (
        Index('idx_perspective_stances_theme', 'theme_code', 'stance_key'),
    )


class ThemeAnalysisRaw(Base):
    """Theme analysis JSON assembled from incrementally merged fragments."""
    __tablename__ = 'theme_analysis_raw'

    theme_code: Mapped[str] = mapped_column(String, primary_key=True)
    analysis_json: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
