from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from pgvector.sqlalchemy import Vector

from complyrag.core.config import EMBED_DIM


# JSONB on Postgres, plain JSON elsewhere so tests can run on SQLite.
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        Index("ix_documents_status", "status"),
        Index("ix_documents_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    # Mirrors the current version so listings never need a join.
    name: Mapped[str] = mapped_column(String)
    size: Mapped[int] = mapped_column(Integer, default=0)
    media_type: Mapped[str] = mapped_column(String)
    # No FK: versions reference documents, and the pointer is kept valid by the version store.
    current_version_id: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default="draft")
    index_state: Mapped[str] = mapped_column(String, default="pending")
    index_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    index_attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_indexed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    view_roles: Mapped[list[str]] = mapped_column(JSONType, default=list)
    edit_roles: Mapped[list[str]] = mapped_column(JSONType, default=list)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    created_by: Mapped[str] = mapped_column(String)
    status_changed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    status_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class DocumentVersion(Base):
    __tablename__ = "document_versions"
    __table_args__ = (
        # Unique numbering per document turns a concurrent max+1 race into an integrity error.
        UniqueConstraint("document_id", "version_number", name="uq_document_versions_number"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    document_id: Mapped[str] = mapped_column(
        String, ForeignKey("documents.id", ondelete="CASCADE"), index=True
    )
    version_number: Mapped[int] = mapped_column(Integer)
    storage_key: Mapped[str] = mapped_column(String)
    name: Mapped[str] = mapped_column(String)
    size: Mapped[int] = mapped_column(Integer, default=0)
    media_type: Mapped[str] = mapped_column(String)
    uploaded_by: Mapped[str] = mapped_column(String)
    change_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Cache of the extracted text so suggestion runs do not re-parse binaries.
    extracted_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class DocumentVector(Base):
    __tablename__ = "document_vectors"

    # One vector per document; re-indexing replaces the row.
    document_id: Mapped[str] = mapped_column(String, primary_key=True)
    embedding: Mapped[list[float]] = mapped_column(Vector(EMBED_DIM))
    payload_json: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Rule(Base):
    __tablename__ = "rules"
    __table_args__ = (
        # Natural key for idempotent AI merges; NULL source ids never collide.
        UniqueConstraint("source_document_id", "name", name="uq_rules_source_name"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    rule_id: Mapped[str] = mapped_column(String, unique=True)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    priority: Mapped[str] = mapped_column(String, default="medium")
    status: Mapped[str] = mapped_column(String, default="draft")
    tags: Mapped[list[str]] = mapped_column(JSONType, default=list)
    source_document_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    ai_generated: Mapped[bool] = mapped_column(Boolean, default=False)
    last_ai_update: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    human_edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_modified_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Risk(Base):
    __tablename__ = "risks"
    __table_args__ = (
        UniqueConstraint("source_document_id", "title", name="uq_risks_source_title"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    risk_id: Mapped[str] = mapped_column(String, unique=True)
    title: Mapped[str] = mapped_column(String)
    description: Mapped[str] = mapped_column(Text, default="")
    source: Mapped[str | None] = mapped_column(String, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    probability: Mapped[str] = mapped_column(String, default="low")
    impact: Mapped[str] = mapped_column(String, default="low")
    risk_score: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(String, default="open")
    owner: Mapped[str | None] = mapped_column(String, nullable=True)
    identified_date: Mapped[date] = mapped_column(Date)
    source_document_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    ai_generated: Mapped[bool] = mapped_column(Boolean, default=False)
    linked_rule_ids: Mapped[list[str]] = mapped_column(JSONType, default=list)
    last_ai_update: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    human_edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_modified_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class MitigationMeasure(Base):
    __tablename__ = "mitigation_measures"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    risk_id: Mapped[str] = mapped_column(String, ForeignKey("risks.id", ondelete="CASCADE"), index=True)
    description: Mapped[str] = mapped_column(Text)
    responsible: Mapped[str | None] = mapped_column(String, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String, default="planned")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
